from __future__ import annotations

import logging
import time
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from customer_merge.config import BusinessRules, MergeConfig
from customer_merge.errors import ConfigurationError
from customer_merge.interfaces import PairScorer
from customer_merge.models import CustomerStatistics, FlaggedComponent, MergeGroup, MergeRule, name_key
from customer_merge.progress import CancellationToken, ProgressTracker
from customer_merge.runners.local import LocalPairScorer
from customer_merge.steps.blocking import BlockingIndex, pair_count
from customer_merge.steps.clustering import ClusterBuilder
from customer_merge.steps.similarity import SimilarityEngine

logger = logging.getLogger(__name__)

MEDIUM_CONFIDENCE = 0.75
LARGE_GROUP_SIZE = 3
LARGE_GROUP_MIN_CONFIDENCE = 0.85


@dataclass(slots=True)
class ScanStats:
    customers: int = 0
    excluded: int = 0
    protected: int = 0
    blocks: int = 0
    candidate_pairs: int = 0
    edges: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    elapsed_seconds: float = 0.0

    @property
    def cache_hit_rate(self) -> float:
        total = self.cache_hits + self.cache_misses
        return self.cache_hits / total if total else 0.0


@dataclass(slots=True)
class QualityReport:
    total_suggestions: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    average_complexity: float = 0.0
    potential_issues: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class ScanResult:
    groups: list[MergeGroup]
    flagged: list[FlaggedComponent]
    stats: ScanStats
    quality: QualityReport
    protected_customers: list[str] = field(default_factory=list)


class SuggestionScanner:
    """Blocking, pair scoring, clustering and filtering for one division scan."""

    def __init__(
        self,
        config: MergeConfig,
        engine: SimilarityEngine | None = None,
        scorer: PairScorer | None = None,
    ) -> None:
        self.config = config
        self.engine = engine or SimilarityEngine(config)
        self._scorer = scorer or LocalPairScorer()
        self._blocking = BlockingIndex(self.engine.normalizer)
        self._clusters = ClusterBuilder(self.engine.similarity, max_group_size=config.max_group_size)

    def scan_and_suggest(
        self,
        universe: Iterable[str],
        active_rules: Sequence[MergeRule],
        rejected_pairs: Collection[frozenset[str]],
        **options: Any,
    ) -> list[MergeGroup]:
        return self.scan(universe, active_rules, rejected_pairs, **options).groups

    def scan(
        self,
        universe: Iterable[str],
        active_rules: Sequence[MergeRule],
        rejected_pairs: Collection[frozenset[str]],
        *,
        protected: Collection[str] = (),
        exclude: Collection[str] = (),
        min_confidence: float | None = None,
        tracker: ProgressTracker | None = None,
        cancel: CancellationToken | None = None,
    ) -> ScanResult:
        acceptance = self.config.min_confidence_threshold if min_confidence is None else min_confidence
        if not 0.0 <= acceptance <= 1.0:
            raise ConfigurationError(f"min_confidence must be within [0, 1], got {acceptance}")

        started = time.perf_counter()
        hits_before, misses_before = self.engine.cache.hits, self.engine.cache.misses
        names = {name for name in universe if name and name.strip()}
        stats = ScanStats(customers=len(names))
        logger.info("Scanning %d unique customers", len(names))

        claimed: set[str] = set()
        for rule in active_rules:
            if rule.is_live:
                claimed |= rule.customer_keys
        protected_keys = {name_key(name) for name in protected}
        excluded = claimed | protected_keys | {name_key(name) for name in exclude}
        stats.protected = sum(1 for name in names if name_key(name) in protected_keys)
        stats.excluded = sum(1 for name in names if name_key(name) in excluded)
        logger.info(
            "%d rules cover %d customers; %d protected; %d rejected pairs",
            len(active_rules),
            len(claimed),
            stats.protected,
            len(rejected_pairs),
        )

        blocks = self._blocking.build_blocks(names, exclude=excluded)
        stats.blocks = len(blocks)
        stats.candidate_pairs = pair_count(blocks)
        logger.info("Built %d blocks with %d candidate pairs", stats.blocks, stats.candidate_pairs)
        if tracker is not None:
            tracker.set_total(stats.candidate_pairs)

        edges = self._scorer.score_blocks(
            blocks,
            self.engine.similarity,
            self.config.min_confidence_threshold,
            rejected_pairs,
            tracker,
            cancel,
        )
        stats.edges = len(edges)

        candidates = [name for members in blocks.values() for name in members]
        outcome = self._clusters.partition(((e.left, e.right) for e in edges), candidates, rejected_pairs)
        groups = [group for group in outcome.groups if group.confidence >= acceptance]
        for flagged in outcome.flagged:
            logger.warning("Held back %d-name component (%s): %s", len(flagged.members), flagged.reason, flagged.members[:3])

        stats.cache_hits = self.engine.cache.hits - hits_before
        stats.cache_misses = self.engine.cache.misses - misses_before
        stats.elapsed_seconds = time.perf_counter() - started
        if tracker is not None:
            tracker.finish()
        logger.info(
            "Found %d merge groups above %.0f%% in %.2fs (cache hit rate %.1f%%)",
            len(groups),
            acceptance * 100,
            stats.elapsed_seconds,
            stats.cache_hit_rate * 100,
        )
        return ScanResult(
            groups=groups,
            flagged=outcome.flagged,
            stats=stats,
            quality=quality_report(groups, self.config),
            protected_customers=sorted(name for name in names if name_key(name) in protected_keys),
        )


def protected_customers(
    statistics: Iterable[CustomerStatistics],
    rules: BusinessRules,
    now: datetime | None = None,
) -> set[str]:
    """Name keys of high-value or recently added customers."""
    if not rules.protect_high_value_customers and not rules.protect_recent_customers:
        return set()
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=rules.recent_days_threshold)
    protected: set[str] = set()
    for stat in statistics:
        high_value = rules.protect_high_value_customers and stat.total_sales >= rules.high_value_threshold
        recent = rules.protect_recent_customers and stat.created_at is not None and _aware(stat.created_at) > cutoff
        if high_value or recent:
            protected.add(name_key(stat.customer_name))
    return protected


def quality_report(groups: Sequence[MergeGroup], config: MergeConfig) -> QualityReport:
    report = QualityReport(total_suggestions=len(groups))
    for group in groups:
        if group.confidence >= config.high_confidence_threshold:
            report.high_confidence += 1
        elif group.confidence >= MEDIUM_CONFIDENCE:
            report.medium_confidence += 1
        else:
            report.low_confidence += 1
        if group.size > LARGE_GROUP_SIZE and group.confidence < LARGE_GROUP_MIN_CONFIDENCE:
            report.potential_issues.append(
                {
                    "type": "large_group_low_confidence",
                    "customers": list(group.members),
                    "confidence": group.confidence,
                }
            )
    if groups:
        report.average_complexity = sum(g.complexity for g in groups) / len(groups)
    return report


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)
