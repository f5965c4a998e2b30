from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from customer_merge.config import MergeConfig
from customer_merge.errors import PersistenceConflict, ValidationError
from customer_merge.interfaces import RuleStore
from customer_merge.models import (
    MergeRule,
    ReplacementSuggestion,
    RuleSource,
    RuleStatus,
    RuleValidation,
    name_key,
)
from customer_merge.steps.similarity import SimilarityEngine

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 2


class RuleLifecycleManager:
    """Creates, revalidates and repairs merge rules.

    A rule is ACTIVE while every original customer exists in the live universe,
    NEEDS_UPDATE when only some do and ORPHANED when none do. Revalidation moves
    rules between these states in both directions. No customer may belong to
    two live (ACTIVE or NEEDS_UPDATE) rules.
    """

    def __init__(self, rules: RuleStore, engine: SimilarityEngine, config: MergeConfig | None = None) -> None:
        self._rules = rules
        self._engine = engine
        self._config = config or engine.config

    @staticmethod
    def validate_rule(rule: MergeRule, universe: Iterable[str]) -> RuleValidation:
        present = {name_key(name) for name in universe}
        found = [c for c in rule.original_customers if name_key(c) in present]
        missing = [c for c in rule.original_customers if name_key(c) not in present]
        if not missing:
            status = RuleStatus.ACTIVE
        elif not found:
            status = RuleStatus.ORPHANED
        else:
            status = RuleStatus.NEEDS_UPDATE
        return RuleValidation(
            rule_id=rule.id,
            canonical_name=rule.canonical_name,
            status=status,
            found=found,
            missing=missing,
        )

    def find_replacements(
        self,
        rule: MergeRule,
        missing: Sequence[str],
        universe: Iterable[str],
        claimed: set[str] | None = None,
    ) -> list[ReplacementSuggestion]:
        """Best unclaimed look-alike for each vanished original customer."""
        taken = set(claimed or ()) | rule.customer_keys
        candidates = sorted({name for name in universe if name_key(name) not in taken})
        threshold = self._config.replacement_threshold
        suggestions: list[ReplacementSuggestion] = []
        for vanished in missing:
            scored = [(name, self._engine.score(vanished, name)) for name in candidates]
            ranked = sorted(
                ((name, score) for name, score in scored if score >= threshold),
                key=lambda item: (-item[1], item[0]),
            )
            if not ranked:
                continue
            best_name, best_score = ranked[0]
            suggestions.append(
                ReplacementSuggestion(
                    missing=vanished,
                    replacement=best_name,
                    confidence=best_score,
                    alternatives=tuple(ranked[1 : 1 + MAX_ALTERNATIVES]),
                )
            )
        return suggestions

    def revalidate(self, division: str, universe: Iterable[str], now: datetime | None = None) -> list[RuleValidation]:
        """Recompute the status of every rule in ``division``.

        A non-live rule whose customers reappear is only revived when none of
        them has been claimed by another live rule in the meantime; otherwise
        it stays ORPHANED and the contested names are recorded as conflicts.
        """
        snapshot = {name for name in universe if name and name.strip()}
        now = now or datetime.now(timezone.utc)
        rules = self._rules.list_rules(division)
        claimed = _claimed_keys(rules)
        logger.info("Validating %d merge rules for %s", len(rules), division)

        results: list[RuleValidation] = []
        for rule in rules:
            validation = self.validate_rule(rule, snapshot)
            if not rule.is_live and validation.status is not RuleStatus.ORPHANED:
                conflicts = [c for c in rule.original_customers if name_key(c) in claimed]
                if conflicts:
                    logger.warning(
                        "Rule %s (%s) stays orphaned, customers now covered by another rule: %s",
                        rule.id,
                        rule.canonical_name,
                        ", ".join(conflicts),
                    )
                    validation.status = RuleStatus.ORPHANED
                    validation.conflicts = conflicts
            if validation.status is not RuleStatus.ACTIVE:
                validation.suggestions = self.find_replacements(rule, validation.missing, snapshot, claimed)
            if validation.status is not rule.status:
                logger.info("Rule %s (%s): %s -> %s", rule.id, rule.canonical_name, rule.status, validation.status)
            self._write(
                rule,
                {"status": validation.status, "last_validated_at": now, "validation_notes": validation.notes()},
            )
            revived = validation.status is not RuleStatus.ORPHANED
            if rule.is_live and not revived:
                claimed -= rule.customer_keys
            elif revived and not rule.is_live:
                claimed |= rule.customer_keys
            results.append(validation)

        counts = {status: sum(1 for r in results if r.status is status) for status in RuleStatus}
        logger.info(
            "Validation done: %d active, %d need update, %d orphaned",
            counts[RuleStatus.ACTIVE],
            counts[RuleStatus.NEEDS_UPDATE],
            counts[RuleStatus.ORPHANED],
        )
        return results

    def create_manual_rule(
        self,
        division: str,
        canonical_name: str,
        customers: Iterable[str],
        source: RuleSource = RuleSource.ADMIN_CREATED,
        confidence: float | None = None,
    ) -> MergeRule:
        existing = self._rules.list_rules(division)
        name, originals = self._validated(canonical_name, customers, existing)
        rule = MergeRule(
            division=division,
            canonical_name=name,
            original_customers=originals,
            status=RuleStatus.ACTIVE,
            source=source,
            confidence=confidence,
            created_at=datetime.now(timezone.utc),
        )
        rule_id = self._rules.save_rule(rule)
        logger.info("Created %s rule %s: %r (%d customers)", source, rule_id, name, len(originals))
        return self._rules.get_rule(rule_id)

    def update_rule(
        self,
        rule_id: int,
        canonical_name: str | None = None,
        customers: Iterable[str] | None = None,
    ) -> MergeRule:
        rule = self._rules.get_rule(rule_id)
        others = [r for r in self._rules.list_rules(rule.division) if r.id != rule_id]
        name, originals = self._validated(
            rule.canonical_name if canonical_name is None else canonical_name,
            rule.original_customers if customers is None else customers,
            others,
        )
        return self._write(rule, {"canonical_name": name, "original_customers": originals})

    def apply_fix(self, rule_id: int, missing: str, replacement: str) -> MergeRule:
        rule = self._rules.get_rule(rule_id)
        if name_key(missing) not in rule.customer_keys:
            raise ValidationError(f"{missing!r} is not an original customer of rule {rule_id}")
        if name_key(replacement) != name_key(missing) and name_key(replacement) in rule.customer_keys:
            raise ValidationError(f"{replacement!r} is already an original customer of rule {rule_id}")

        updated = tuple(
            replacement if name_key(customer) == name_key(missing) else customer
            for customer in rule.original_customers
        )
        others = [r for r in self._rules.list_rules(rule.division) if r.id != rule_id]
        _, originals = self._validated(rule.canonical_name, updated, others)
        logger.info("Rule %s fixed: %r -> %r", rule_id, missing, replacement)
        return self._write(
            rule,
            {
                "original_customers": originals,
                "status": RuleStatus.ACTIVE,
                "last_validated_at": datetime.now(timezone.utc),
                "validation_notes": {},
            },
        )

    def delete_rule(self, rule_id: int) -> None:
        self._rules.delete_rule(rule_id)
        logger.info("Deleted rule %s", rule_id)

    def _write(self, rule: MergeRule, patch: Mapping[str, Any]) -> MergeRule:
        if rule.id is None:
            raise ValidationError(f"rule {rule.canonical_name!r} has not been saved")
        try:
            return self._rules.update_rule(rule.id, patch, expected_version=rule.version)
        except PersistenceConflict as conflict:
            logger.warning("Concurrent update of rule %s, last write wins: %s", rule.id, conflict)
            return self._rules.update_rule(rule.id, patch)

    @staticmethod
    def _validated(
        canonical_name: str, customers: Iterable[str], others: Sequence[MergeRule]
    ) -> tuple[str, tuple[str, ...]]:
        name = " ".join((canonical_name or "").split())
        if not name:
            raise ValidationError("canonical name must not be empty")

        originals: list[str] = []
        seen: set[str] = set()
        for customer in customers:
            cleaned = " ".join((customer or "").split())
            if cleaned and name_key(cleaned) not in seen:
                seen.add(name_key(cleaned))
                originals.append(cleaned)
        if len(originals) < 2:
            raise ValidationError("a merge rule needs at least 2 distinct original customers")

        live = [rule for rule in others if rule.is_live]
        if any(name_key(rule.canonical_name) == name_key(name) for rule in live):
            raise ValidationError(f"a rule named {name!r} already exists")
        overlap = sorted(seen & _claimed_keys(live))
        if overlap:
            raise ValidationError(f"customers already covered by another rule: {', '.join(overlap)}")
        return name, tuple(originals)


def _claimed_keys(rules: Iterable[MergeRule]) -> set[str]:
    claimed: set[str] = set()
    for rule in rules:
        if rule.is_live:
            claimed |= rule.customer_keys
    return claimed
