from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from customer_merge.config import MergeConfig, StaticConfigSource
from customer_merge.errors import DataAccessError, ValidationError
from customer_merge.models import CustomerStatistics, RuleSource, RuleStatus, SuggestionStatus, pair_key
from customer_merge.progress import QueueProgressObserver
from customer_merge.service import MergeService
from customer_merge.stores import InMemoryMergeStore, SQLiteMergeStore

DIVISION = "north"


class UnavailableCustomers:
    def list_distinct_customer_names(self, division: str) -> set[str]:
        raise DataAccessError("customer database unreachable")


def _suggestion_for(service: MergeService, member: str):
    for record in service.suggestions.list_suggestions(DIVISION):
        if member in record.group.members:
            return record
    raise AssertionError(f"no suggestion contains {member!r}")


def test_scan_persists_suggestions_once(service: MergeService) -> None:
    first = service.scan(DIVISION)
    second = service.scan(DIVISION)

    assert first.stored == len(first.result.groups) == 4
    assert second.stored == 0
    assert len(service.suggestions.list_suggestions(DIVISION)) == 4


def test_scan_publishes_progress(service: MergeService) -> None:
    observer = QueueProgressObserver()

    service.scan(DIVISION, observers=[observer])

    events = observer.drain()
    assert events
    assert events[-1].percent == 100.0


def test_approve_creates_rule_and_claims_members(service: MergeService) -> None:
    service.scan(DIVISION)
    record = _suggestion_for(service, "Falcon Technologies")

    rule = service.approve_suggestion(record.id)

    assert rule.source is RuleSource.AI_SUGGESTED
    assert rule.canonical_name == "Falcon Technologies"
    assert set(rule.original_customers) == set(record.group.members)
    assert rule.confidence == record.group.confidence
    reviewed = service.suggestions.get_suggestion(record.id)
    assert reviewed.status is SuggestionStatus.APPROVED
    assert reviewed.created_rule_id == rule.id

    rescan = service.scan(DIVISION)
    members = {name for group in rescan.result.groups for name in group.members}
    assert members.isdisjoint(record.group.members)

    with pytest.raises(ValidationError):
        service.approve_suggestion(record.id)


def test_edit_and_approve_uses_operator_changes(service: MergeService) -> None:
    service.scan(DIVISION)
    record = _suggestion_for(service, "Falcon Technologies")

    rule = service.edit_and_approve(
        record.id,
        canonical_name="Falcon Tech",
        customers=["Falcon Technologies", "Falcon Technologies LLC"],
    )

    assert rule.canonical_name == "Falcon Tech"
    assert rule.original_customers == ("Falcon Technologies", "Falcon Technologies LLC")
    assert service.suggestions.get_suggestion(record.id).status is SuggestionStatus.APPROVED


def test_reject_records_every_member_pair(service: MergeService) -> None:
    service.scan(DIVISION)
    record = _suggestion_for(service, "Falcon Technologies")

    count = service.reject_suggestion(record.id, reason="separate branches", rejected_by="ops")

    assert count == 3
    rejected = service.rejections.get_rejected_pairs(DIVISION)
    assert pair_key("Falcon Technologies", "Falcon Technologies LLC") in rejected
    assert service.suggestions.get_suggestion(record.id).status is SuggestionStatus.REJECTED

    for _ in range(2):
        rescan = service.scan(DIVISION)
        for group in rescan.result.groups:
            assert len(set(group.members) & set(record.group.members)) <= 1


def test_validate_and_apply_stored_fix(store: InMemoryMergeStore, service: MergeService) -> None:
    rule = service.create_manual_rule(DIVISION, "Acme", ["Acme LLC", "Acme Trading LLC"])
    store.add_customers(DIVISION, ["ACME L.L.C"])

    [validation] = service.validate_rules(DIVISION)

    assert validation.status is RuleStatus.NEEDS_UPDATE
    assert validation.missing == ["Acme LLC"]

    fixed = service.apply_fix(rule.id, "Acme LLC")

    assert fixed.status is RuleStatus.ACTIVE
    assert "ACME L.L.C" in fixed.original_customers
    with pytest.raises(ValidationError):
        service.apply_fix(rule.id, "Acme Trading LLC")


def test_update_and_delete_through_service(service: MergeService) -> None:
    rule = service.create_manual_rule(DIVISION, "Acme", ["Acme Trading LLC", "ACME TRADING"])

    updated = service.update_rule(rule.id, canonical_name="Acme Trading")
    service.delete_rule(rule.id)

    assert updated.canonical_name == "Acme Trading"
    assert service.rules.list_rules(DIVISION) == []


def test_business_rules_protect_valuable_and_new_customers(universe: list[str]) -> None:
    now = datetime(2024, 6, 30, tzinfo=timezone.utc)
    store = InMemoryMergeStore()
    store.add_customers(DIVISION, universe)
    store.add_customers(
        DIVISION,
        [
            CustomerStatistics("ACME TRADING", total_sales=3_000_000),
            CustomerStatistics("Gulf Pearl Electronic", created_at=now - timedelta(days=3)),
        ],
    )
    service = MergeService(store, store, store, store, statistics=store)

    result = service.scan(DIVISION, now=now).result

    members = {name for group in result.groups for name in group.members}
    assert "ACME TRADING" not in members
    assert "Gulf Pearl Electronic" not in members
    assert result.protected_customers == ["ACME TRADING", "Gulf Pearl Electronic"]


def test_scan_uses_division_configuration(store: InMemoryMergeStore) -> None:
    service = MergeService(
        store, store, store, store, config_source=StaticConfigSource(MergeConfig(max_group_size=2))
    )

    result = service.scan(DIVISION).result

    assert len(result.flagged) == 1
    assert all(group.size == 2 for group in result.groups)


def test_unavailable_source_aborts_scan_without_storing(store: InMemoryMergeStore) -> None:
    service = MergeService(UnavailableCustomers(), store, store, store)

    with pytest.raises(DataAccessError):
        service.scan(DIVISION)
    assert store.list_suggestions(DIVISION) == []


def test_stats_counts_rules_and_suggestions(service: MergeService) -> None:
    service.scan(DIVISION)
    record = _suggestion_for(service, "Acme Trading LLC")
    service.approve_suggestion(record.id)

    stats = service.stats(DIVISION)

    assert stats["rules"] == {"ACTIVE": 1, "NEEDS_UPDATE": 0, "ORPHANED": 0}
    assert stats["covered_customers"] == 2
    assert stats["suggestions"] == {"PENDING": 3, "APPROVED": 1, "REJECTED": 0}


def test_service_over_sqlite_store(tmp_path: Path, universe: list[str]) -> None:
    store = SQLiteMergeStore(tmp_path / "merge.sqlite3")
    store.add_customers(DIVISION, universe)
    service = MergeService(store, store, store, store, statistics=store)

    assert service.scan(DIVISION).stored == 4
    record = _suggestion_for(service, "Gulf Pearl Electronics")
    service.reject_suggestion(record.id)
    rule = service.approve_suggestion(_suggestion_for(service, "ACME TRADING").id)

    rescan = service.scan(DIVISION)

    assert rescan.stored == 0
    assert all("ACME TRADING" not in group.members for group in rescan.result.groups)
    assert all("Gulf Pearl Electronic" not in group.members for group in rescan.result.groups)
    assert store.get_rule(rule.id).source is RuleSource.AI_SUGGESTED
    store.close()
