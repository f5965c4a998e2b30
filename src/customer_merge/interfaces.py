from __future__ import annotations

from collections.abc import Callable, Collection, Mapping, Sequence
from typing import Any, Protocol

from customer_merge.config import MergeConfig
from customer_merge.models import (
    CustomerStatistics,
    MergeGroup,
    MergeRule,
    RejectionRecord,
    SimilarityResult,
    SuggestionRecord,
    SuggestionStatus,
)
from customer_merge.progress import CancellationToken, ProgressTracker


class CustomerSource(Protocol):
    """Read-only universe of distinct, non-blank customer names."""

    def list_distinct_customer_names(self, division: str) -> set[str]:
        ...


class StatisticsSource(Protocol):
    """Sales totals and first-seen dates used by business-rule protection."""

    def get_customer_statistics(self, division: str) -> list[CustomerStatistics]:
        ...


class RuleStore(Protocol):
    def get_active_rules(self, division: str) -> list[MergeRule]:
        ...

    def list_rules(self, division: str) -> list[MergeRule]:
        ...

    def get_rule(self, rule_id: int) -> MergeRule:
        ...

    def save_rule(self, rule: MergeRule) -> int:
        ...

    def update_rule(
        self, rule_id: int, patch: Mapping[str, Any], expected_version: int | None = None
    ) -> MergeRule:
        ...

    def delete_rule(self, rule_id: int) -> None:
        ...


class RejectionStore(Protocol):
    """Feedback loop input; may be empty in a minimal deployment."""

    def get_rejected_pairs(self, division: str) -> set[frozenset[str]]:
        ...

    def add_rejections(self, division: str, records: Sequence[RejectionRecord]) -> None:
        ...


class SuggestionStore(Protocol):
    def append_suggestions(self, division: str, groups: Sequence[MergeGroup]) -> int:
        """All-or-nothing append, ignoring (division, name, members) duplicates."""
        ...

    def list_suggestions(self, division: str, status: SuggestionStatus | None = None) -> list[SuggestionRecord]:
        ...

    def get_suggestion(self, suggestion_id: int) -> SuggestionRecord:
        ...

    def mark_reviewed(
        self, suggestion_id: int, status: SuggestionStatus, created_rule_id: int | None = None
    ) -> None:
        ...


class ConfigSource(Protocol):
    def load(self, division: str) -> MergeConfig:
        ...


class PairScorer(Protocol):
    """Scores every same-block pair and returns those at or above threshold."""

    def score_blocks(
        self,
        blocks: Mapping[str, Sequence[str]],
        similarity: Callable[[str, str], SimilarityResult],
        threshold: float,
        rejected_pairs: Collection[frozenset[str]] = (),
        tracker: ProgressTracker | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[SimilarityResult]:
        ...
