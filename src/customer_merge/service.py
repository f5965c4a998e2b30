from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from customer_merge.config import MergeConfig, StaticConfigSource
from customer_merge.errors import ValidationError
from customer_merge.interfaces import (
    ConfigSource,
    CustomerSource,
    PairScorer,
    RejectionStore,
    RuleStore,
    StatisticsSource,
    SuggestionStore,
)
from customer_merge.lifecycle import RuleLifecycleManager
from customer_merge.models import (
    MergeRule,
    RejectionRecord,
    RuleSource,
    RuleStatus,
    RuleValidation,
    SuggestionRecord,
    SuggestionStatus,
    name_key,
)
from customer_merge.progress import CancellationToken, ProgressObserver, ProgressTracker
from customer_merge.steps.similarity import SimilarityEngine
from customer_merge.suggestions import ScanResult, SuggestionScanner, protected_customers

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ServiceScanResult:
    division: str
    result: ScanResult
    stored: int


class MergeService:
    """Wires the collaborators of one deployment into division-level operations.

    Every store argument may be the same object (the bundled stores implement
    all protocols). Collaborator failures surface as ``DataAccessError`` and are
    never retried here.
    """

    def __init__(
        self,
        customers: CustomerSource,
        rules: RuleStore,
        rejections: RejectionStore,
        suggestions: SuggestionStore,
        statistics: StatisticsSource | None = None,
        config_source: ConfigSource | None = None,
        scorer: PairScorer | None = None,
    ) -> None:
        self.customers = customers
        self.rules = rules
        self.rejections = rejections
        self.suggestions = suggestions
        self.statistics = statistics
        self.config_source = config_source or StaticConfigSource()
        self.scorer = scorer
        self._engines: dict[MergeConfig, SimilarityEngine] = {}

    def engine_for(self, config: MergeConfig) -> SimilarityEngine:
        engine = self._engines.get(config)
        if engine is None:
            engine = SimilarityEngine(config)
            self._engines[config] = engine
        return engine

    def lifecycle(self, division: str) -> RuleLifecycleManager:
        config = self.config_source.load(division)
        return RuleLifecycleManager(self.rules, self.engine_for(config), config)

    def scan(
        self,
        division: str,
        *,
        min_confidence: float | None = None,
        observers: Sequence[ProgressObserver] = (),
        cancel: CancellationToken | None = None,
        now: datetime | None = None,
    ) -> ServiceScanResult:
        config = self.config_source.load(division)
        universe = self.customers.list_distinct_customer_names(division)
        live_rules = [rule for rule in self.rules.list_rules(division) if rule.is_live]
        rejected = self.rejections.get_rejected_pairs(division)
        protected: set[str] = set()
        if self.statistics is not None:
            protected = protected_customers(
                self.statistics.get_customer_statistics(division), config.business_rules, now=now
            )

        tracker = ProgressTracker(observers=list(observers)) if observers else None
        scanner = SuggestionScanner(config, engine=self.engine_for(config), scorer=self.scorer)
        result = scanner.scan(
            universe,
            live_rules,
            rejected,
            protected=protected,
            min_confidence=min_confidence,
            tracker=tracker,
            cancel=cancel,
        )
        stored = self.suggestions.append_suggestions(division, result.groups)
        logger.info("Stored %d new suggestions for %s (%d found)", stored, division, len(result.groups))
        return ServiceScanResult(division=division, result=result, stored=stored)

    def validate_rules(self, division: str, now: datetime | None = None) -> list[RuleValidation]:
        universe = self.customers.list_distinct_customer_names(division)
        return self.lifecycle(division).revalidate(division, universe, now=now)

    def create_manual_rule(self, division: str, canonical_name: str, customers: Iterable[str]) -> MergeRule:
        return self.lifecycle(division).create_manual_rule(division, canonical_name, customers)

    def update_rule(
        self, rule_id: int, canonical_name: str | None = None, customers: Iterable[str] | None = None
    ) -> MergeRule:
        rule = self.rules.get_rule(rule_id)
        return self.lifecycle(rule.division).update_rule(rule_id, canonical_name, customers)

    def delete_rule(self, rule_id: int) -> None:
        rule = self.rules.get_rule(rule_id)
        self.lifecycle(rule.division).delete_rule(rule_id)

    def approve_suggestion(self, suggestion_id: int) -> MergeRule:
        record = self._pending(suggestion_id)
        group = record.group
        rule = self.lifecycle(record.division).create_manual_rule(
            record.division,
            group.suggested_canonical_name,
            group.members,
            source=RuleSource.AI_SUGGESTED,
            confidence=group.confidence,
        )
        self.suggestions.mark_reviewed(suggestion_id, SuggestionStatus.APPROVED, created_rule_id=rule.id)
        logger.info("Approved suggestion %s as rule %s", suggestion_id, rule.id)
        return rule

    def edit_and_approve(
        self,
        suggestion_id: int,
        canonical_name: str | None = None,
        customers: Iterable[str] | None = None,
    ) -> MergeRule:
        record = self._pending(suggestion_id)
        group = record.group
        rule = self.lifecycle(record.division).create_manual_rule(
            record.division,
            group.suggested_canonical_name if canonical_name is None else canonical_name,
            group.members if customers is None else customers,
            source=RuleSource.AI_SUGGESTED,
            confidence=group.confidence,
        )
        self.suggestions.mark_reviewed(suggestion_id, SuggestionStatus.APPROVED, created_rule_id=rule.id)
        logger.info("Approved edited suggestion %s as rule %s", suggestion_id, rule.id)
        return rule

    def reject_suggestion(self, suggestion_id: int, reason: str = "", rejected_by: str = "") -> int:
        """Record every member pair as a rejection; returns the pair count."""
        record = self._pending(suggestion_id)
        scores = {detail.pair: detail.score for detail in record.group.pairwise_details}
        rejections = [
            RejectionRecord(
                customer_a=left,
                customer_b=right,
                reason=reason,
                rejected_by=rejected_by,
                confidence=scores.get(frozenset((name_key(left), name_key(right)))),
            )
            for left, right in itertools.combinations(record.group.members, 2)
        ]
        self.rejections.add_rejections(record.division, rejections)
        self.suggestions.mark_reviewed(suggestion_id, SuggestionStatus.REJECTED)
        logger.info("Rejected suggestion %s (%d pairs)", suggestion_id, len(rejections))
        return len(rejections)

    def apply_fix(self, rule_id: int, missing: str, replacement: str | None = None) -> MergeRule:
        """Swap a vanished original customer, defaulting to the stored best replacement."""
        rule = self.rules.get_rule(rule_id)
        if replacement is None:
            stored = rule.validation_notes.get("suggestions", [])
            match = next((s for s in stored if name_key(s["missing"]) == name_key(missing)), None)
            if match is None:
                raise ValidationError(f"no replacement suggestion recorded for {missing!r} on rule {rule_id}")
            replacement = match["replacement"]
        return self.lifecycle(rule.division).apply_fix(rule_id, missing, replacement)

    def stats(self, division: str) -> dict[str, Any]:
        rules = self.rules.list_rules(division)
        suggestions = self.suggestions.list_suggestions(division)
        return {
            "division": division,
            "rules": {str(status): sum(1 for r in rules if r.status is status) for status in RuleStatus},
            "covered_customers": sum(len(r.original_customers) for r in rules if r.is_live),
            "suggestions": {
                str(status): sum(1 for s in suggestions if s.status is status) for status in SuggestionStatus
            },
        }

    def _pending(self, suggestion_id: int) -> SuggestionRecord:
        record = self.suggestions.get_suggestion(suggestion_id)
        if record.status is not SuggestionStatus.PENDING:
            raise ValidationError(f"suggestion {suggestion_id} was already {record.status.lower()}")
        return record
