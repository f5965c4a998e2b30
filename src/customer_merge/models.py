from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

RawName = str


def name_key(name: str) -> str:
    """Identity key used for exclusion and rejection lookups."""
    return " ".join(name.split()).casefold()


def pair_key(left: str, right: str) -> frozenset[str]:
    return frozenset((name_key(left), name_key(right)))


@dataclass(frozen=True, slots=True)
class SimilaritySignals:
    """Per-algorithm scores, each in [0, 1]."""

    levenshtein: float = 0.0
    jaro_winkler: float = 0.0
    token_set: float = 0.0
    suffix_stripped: float = 0.0
    ngram_prefix: float = 0.0
    core_brand: float = 0.0
    phonetic: float = 0.0

    @classmethod
    def exact(cls) -> "SimilaritySignals":
        return cls(1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0)

    def as_dict(self) -> dict[str, float]:
        return {
            "levenshtein": self.levenshtein,
            "jaro_winkler": self.jaro_winkler,
            "token_set": self.token_set,
            "suffix_stripped": self.suffix_stripped,
            "ngram_prefix": self.ngram_prefix,
            "core_brand": self.core_brand,
            "phonetic": self.phonetic,
        }


@dataclass(frozen=True, slots=True)
class SimilarityResult:
    """Composite similarity of an unordered name pair.

    ``left`` and ``right`` are kept in sorted order so the result of
    ``similarity(a, b)`` equals the result of ``similarity(b, a)``.
    ``penalties`` lists the edge-case factors applied to the score, in order.
    """

    left: RawName
    right: RawName
    score: float
    signals: SimilaritySignals
    exact_match: bool = False
    base_score: float = 0.0
    penalties: tuple[tuple[str, float], ...] = ()

    @property
    def pair(self) -> frozenset[str]:
        return pair_key(self.left, self.right)

    def as_dict(self) -> dict[str, Any]:
        return {
            "pair": [self.left, self.right],
            "score": round(self.score, 4),
            "exact_match": self.exact_match,
            "signals": {k: round(v, 4) for k, v in self.signals.as_dict().items()},
            "penalties": dict(self.penalties),
        }


@dataclass(frozen=True, slots=True)
class MergeGroup:
    """Proposed cluster of raw names believed to denote one customer."""

    members: tuple[RawName, ...]
    suggested_canonical_name: str
    confidence: float
    pairwise_details: tuple[SimilarityResult, ...] = ()

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def member_set(self) -> frozenset[str]:
        return frozenset(name_key(member) for member in self.members)

    @property
    def complexity(self) -> float:
        if not self.pairwise_details:
            return 0.0
        return sum(1.0 - d.score for d in self.pairwise_details) / len(self.pairwise_details)

    def as_dict(self) -> dict[str, Any]:
        return {
            "members": list(self.members),
            "suggested_canonical_name": self.suggested_canonical_name,
            "confidence": round(self.confidence, 4),
            "complexity": round(self.complexity, 4),
            "pairwise_details": [detail.as_dict() for detail in self.pairwise_details],
        }


@dataclass(frozen=True, slots=True)
class FlaggedComponent:
    """Connected component held back from automatic suggestion."""

    members: tuple[RawName, ...]
    reason: str


class RuleStatus(StrEnum):
    ACTIVE = "ACTIVE"
    NEEDS_UPDATE = "NEEDS_UPDATE"
    ORPHANED = "ORPHANED"


class RuleSource(StrEnum):
    ADMIN_CREATED = "ADMIN_CREATED"
    AI_SUGGESTED = "AI_SUGGESTED"


LIVE_RULE_STATUSES = frozenset({RuleStatus.ACTIVE, RuleStatus.NEEDS_UPDATE})


@dataclass(slots=True)
class MergeRule:
    """Persisted merge group with lifecycle status."""

    division: str
    canonical_name: str
    original_customers: tuple[RawName, ...]
    status: RuleStatus = RuleStatus.ACTIVE
    source: RuleSource = RuleSource.ADMIN_CREATED
    confidence: float | None = None
    id: int | None = None
    created_at: datetime | None = None
    last_validated_at: datetime | None = None
    validation_notes: dict[str, Any] = field(default_factory=dict)
    version: int = 0

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_RULE_STATUSES

    @property
    def customer_keys(self) -> frozenset[str]:
        return frozenset(name_key(customer) for customer in self.original_customers)


@dataclass(frozen=True, slots=True)
class RejectionRecord:
    """Unordered pair a reviewer declared not to be a duplicate."""

    customer_a: RawName
    customer_b: RawName
    reason: str = ""
    rejected_by: str = ""
    confidence: float | None = None

    @property
    def pair(self) -> frozenset[str]:
        return pair_key(self.customer_a, self.customer_b)


class SuggestionStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass(slots=True)
class SuggestionRecord:
    division: str
    group: MergeGroup
    status: SuggestionStatus = SuggestionStatus.PENDING
    id: int | None = None
    created_rule_id: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class CustomerStatistics:
    customer_name: RawName
    total_sales: float = 0.0
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ReplacementSuggestion:
    missing: RawName
    replacement: RawName
    confidence: float
    alternatives: tuple[tuple[RawName, float], ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "missing": self.missing,
            "replacement": self.replacement,
            "confidence": round(self.confidence, 4),
            "alternatives": [
                {"name": name, "confidence": round(score, 4)} for name, score in self.alternatives
            ],
        }


@dataclass(slots=True)
class RuleValidation:
    rule_id: int | None
    canonical_name: str
    status: RuleStatus
    found: list[RawName]
    missing: list[RawName]
    suggestions: list[ReplacementSuggestion] = field(default_factory=list)
    conflicts: list[RawName] = field(default_factory=list)

    def notes(self) -> dict[str, Any]:
        return {
            "found": list(self.found),
            "missing": list(self.missing),
            "suggestions": [s.as_dict() for s in self.suggestions],
            "conflicts": list(self.conflicts),
        }
