from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from customer_merge.errors import NotFoundError, PersistenceConflict
from customer_merge.models import (
    CustomerStatistics,
    MergeGroup,
    MergeRule,
    RejectionRecord,
    RuleStatus,
    SuggestionRecord,
    SuggestionStatus,
    name_key,
)

RULE_PATCH_FIELDS = frozenset(
    {
        "canonical_name",
        "original_customers",
        "status",
        "confidence",
        "last_validated_at",
        "validation_notes",
    }
)


class InMemoryMergeStore:
    """Process-local implementation of every collaborator protocol.

    Used by tests and by ``customer-merge run-test``. All mutations happen
    under one lock; suggestion batches become visible atomically.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._customers: dict[str, dict[str, CustomerStatistics]] = defaultdict(dict)
        self._rules: dict[int, MergeRule] = {}
        self._rejections: dict[str, dict[frozenset[str], RejectionRecord]] = defaultdict(dict)
        self._suggestions: dict[int, SuggestionRecord] = {}
        self._next_rule_id = 1
        self._next_suggestion_id = 1

    # Customers

    def add_customers(self, division: str, customers: Iterable[str | CustomerStatistics]) -> int:
        added = 0
        with self._lock:
            for customer in customers:
                stat = customer if isinstance(customer, CustomerStatistics) else CustomerStatistics(customer)
                if stat.customer_name and stat.customer_name.strip():
                    self._customers[division][stat.customer_name] = stat
                    added += 1
        return added

    def list_distinct_customer_names(self, division: str) -> set[str]:
        with self._lock:
            return set(self._customers[division])

    def get_customer_statistics(self, division: str) -> list[CustomerStatistics]:
        with self._lock:
            return list(self._customers[division].values())

    # Rules

    def get_active_rules(self, division: str) -> list[MergeRule]:
        return [rule for rule in self.list_rules(division) if rule.status is RuleStatus.ACTIVE]

    def list_rules(self, division: str) -> list[MergeRule]:
        with self._lock:
            rules = [replace(rule) for rule in self._rules.values() if rule.division == division]
        return sorted(rules, key=lambda rule: rule.id or 0)

    def get_rule(self, rule_id: int) -> MergeRule:
        with self._lock:
            if rule_id not in self._rules:
                raise NotFoundError(f"merge rule {rule_id} not found")
            return replace(self._rules[rule_id])

    def save_rule(self, rule: MergeRule) -> int:
        with self._lock:
            rule_id = self._next_rule_id
            self._next_rule_id += 1
            self._rules[rule_id] = replace(
                rule,
                id=rule_id,
                version=1,
                created_at=rule.created_at or datetime.now(timezone.utc),
            )
            return rule_id

    def update_rule(
        self, rule_id: int, patch: Mapping[str, Any], expected_version: int | None = None
    ) -> MergeRule:
        unknown = set(patch) - RULE_PATCH_FIELDS
        if unknown:
            raise ValueError(f"cannot patch rule fields: {sorted(unknown)}")
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                raise NotFoundError(f"merge rule {rule_id} not found")
            if expected_version is not None and current.version != expected_version:
                raise PersistenceConflict(rule_id, expected_version, current.version)
            updated = replace(current, **patch, version=current.version + 1)
            self._rules[rule_id] = updated
            return replace(updated)

    def delete_rule(self, rule_id: int) -> None:
        with self._lock:
            if self._rules.pop(rule_id, None) is None:
                raise NotFoundError(f"merge rule {rule_id} not found")

    # Rejections

    def get_rejected_pairs(self, division: str) -> set[frozenset[str]]:
        with self._lock:
            return set(self._rejections[division])

    def add_rejections(self, division: str, records: Sequence[RejectionRecord]) -> None:
        with self._lock:
            for record in records:
                self._rejections[division].setdefault(record.pair, record)

    # Suggestions

    def append_suggestions(self, division: str, groups: Sequence[MergeGroup]) -> int:
        with self._lock:
            existing = {
                _suggestion_key(record.group)
                for record in self._suggestions.values()
                if record.division == division
            }
            batch: list[SuggestionRecord] = []
            for group in groups:
                key = _suggestion_key(group)
                if key in existing:
                    continue
                existing.add(key)
                batch.append(
                    SuggestionRecord(division=division, group=group, created_at=datetime.now(timezone.utc))
                )
            for record in batch:
                record.id = self._next_suggestion_id
                self._next_suggestion_id += 1
                self._suggestions[record.id] = record
            return len(batch)

    def list_suggestions(self, division: str, status: SuggestionStatus | None = None) -> list[SuggestionRecord]:
        with self._lock:
            records = [
                replace(record)
                for record in self._suggestions.values()
                if record.division == division and (status is None or record.status is status)
            ]
        return sorted(records, key=lambda record: record.id or 0)

    def get_suggestion(self, suggestion_id: int) -> SuggestionRecord:
        with self._lock:
            if suggestion_id not in self._suggestions:
                raise NotFoundError(f"suggestion {suggestion_id} not found")
            return replace(self._suggestions[suggestion_id])

    def mark_reviewed(
        self, suggestion_id: int, status: SuggestionStatus, created_rule_id: int | None = None
    ) -> None:
        with self._lock:
            record = self._suggestions.get(suggestion_id)
            if record is None:
                raise NotFoundError(f"suggestion {suggestion_id} not found")
            record.status = status
            record.created_rule_id = created_rule_id


def _suggestion_key(group: MergeGroup) -> tuple[str, frozenset[str]]:
    return name_key(group.suggested_canonical_name), group.member_set
