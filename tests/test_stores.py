from datetime import datetime, timezone
from pathlib import Path

import pytest

from customer_merge.errors import DataAccessError, NotFoundError, PersistenceConflict
from customer_merge.models import (
    CustomerStatistics,
    MergeGroup,
    MergeRule,
    RejectionRecord,
    RuleSource,
    RuleStatus,
    SimilarityResult,
    SimilaritySignals,
    SuggestionStatus,
)
from customer_merge.stores import InMemoryMergeStore, SQLiteMergeStore

DIVISION = "north"


@pytest.fixture(params=["memory", "sqlite"])
def merge_store(request, tmp_path: Path):
    if request.param == "memory":
        yield InMemoryMergeStore()
        return
    store = SQLiteMergeStore(tmp_path / "merge.sqlite3")
    yield store
    store.close()


def _rule(name: str = "Acme", customers: tuple[str, ...] = ("Acme LLC", "Acme Trading")) -> MergeRule:
    return MergeRule(
        division=DIVISION,
        canonical_name=name,
        original_customers=customers,
        source=RuleSource.AI_SUGGESTED,
        confidence=0.91,
        created_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


def _group(members: tuple[str, ...], canonical: str, confidence: float = 0.9) -> MergeGroup:
    details = tuple(
        SimilarityResult(
            left=a,
            right=b,
            score=confidence,
            signals=SimilaritySignals(levenshtein=0.8),
            penalties=(("length_mismatch", 0.85),),
        )
        for i, a in enumerate(members)
        for b in members[i + 1 :]
    )
    return MergeGroup(
        members=members,
        suggested_canonical_name=canonical,
        confidence=confidence,
        pairwise_details=details,
    )


def test_customers_round_trip(merge_store) -> None:
    created = datetime(2024, 6, 20, tzinfo=timezone.utc)
    merge_store.add_customers(
        DIVISION,
        ["Acme Trading", "", CustomerStatistics("Oasis Est", total_sales=1_500_000, created_at=created)],
    )
    merge_store.add_customers("south", ["Zenith"])

    assert merge_store.list_distinct_customer_names(DIVISION) == {"Acme Trading", "Oasis Est"}
    statistics = {s.customer_name: s for s in merge_store.get_customer_statistics(DIVISION)}
    assert statistics["Oasis Est"].total_sales == 1_500_000
    assert statistics["Oasis Est"].created_at == created
    assert statistics["Acme Trading"].created_at is None


def test_rule_crud_with_versions(merge_store) -> None:
    rule_id = merge_store.save_rule(_rule())

    stored = merge_store.get_rule(rule_id)
    assert stored.id == rule_id
    assert stored.version == 1
    assert stored.original_customers == ("Acme LLC", "Acme Trading")
    assert stored.source is RuleSource.AI_SUGGESTED
    assert stored.created_at == datetime(2024, 6, 1, tzinfo=timezone.utc)

    validated = datetime(2024, 6, 30, tzinfo=timezone.utc)
    updated = merge_store.update_rule(
        rule_id,
        {
            "status": RuleStatus.NEEDS_UPDATE,
            "last_validated_at": validated,
            "validation_notes": {"missing": ["Acme LLC"]},
        },
        expected_version=1,
    )
    assert updated.version == 2
    assert updated.status is RuleStatus.NEEDS_UPDATE
    assert updated.last_validated_at == validated
    assert merge_store.get_rule(rule_id).validation_notes == {"missing": ["Acme LLC"]}

    with pytest.raises(PersistenceConflict):
        merge_store.update_rule(rule_id, {"confidence": 0.5}, expected_version=1)
    with pytest.raises(ValueError):
        merge_store.update_rule(rule_id, {"division": "south"})

    merge_store.delete_rule(rule_id)
    with pytest.raises(NotFoundError):
        merge_store.get_rule(rule_id)
    with pytest.raises(NotFoundError):
        merge_store.delete_rule(rule_id)


def test_active_rules_exclude_other_statuses(merge_store) -> None:
    active = merge_store.save_rule(_rule("Acme"))
    stale = merge_store.save_rule(_rule("Oasis", ("Oasis", "Oasis Est")))
    merge_store.update_rule(stale, {"status": RuleStatus.ORPHANED})
    merge_store.save_rule(MergeRule(division="south", canonical_name="Zenith", original_customers=("Z1", "Z2")))

    assert [rule.id for rule in merge_store.get_active_rules(DIVISION)] == [active]
    assert [rule.id for rule in merge_store.list_rules(DIVISION)] == [active, stale]


def test_rejections_are_unordered_and_deduplicated(merge_store) -> None:
    merge_store.add_rejections(
        DIVISION,
        [
            RejectionRecord("Acme Trading", "ACME  LLC", reason="different owners", rejected_by="ops"),
            RejectionRecord("acme llc", "acme trading"),
        ],
    )

    assert merge_store.get_rejected_pairs(DIVISION) == {frozenset({"acme trading", "acme llc"})}
    assert merge_store.get_rejected_pairs("south") == set()


def test_suggestions_append_is_idempotent(merge_store) -> None:
    acme = _group(("ACME TRADING", "Acme Trading LLC"), "ACME TRADING")
    oasis = _group(("Oasis", "Oasis Est", "Oasis Trading"), "Oasis", confidence=0.8)

    assert merge_store.append_suggestions(DIVISION, [acme, oasis]) == 2
    assert merge_store.append_suggestions(DIVISION, [acme]) == 0
    assert merge_store.append_suggestions("south", [acme]) == 1

    records = merge_store.list_suggestions(DIVISION)
    assert [record.group.members for record in records] == [acme.members, oasis.members]
    assert records[0].group == acme
    assert all(record.status is SuggestionStatus.PENDING for record in records)

    merge_store.mark_reviewed(records[0].id, SuggestionStatus.APPROVED, created_rule_id=7)

    approved = merge_store.get_suggestion(records[0].id)
    assert approved.status is SuggestionStatus.APPROVED
    assert approved.created_rule_id == 7
    assert [r.id for r in merge_store.list_suggestions(DIVISION, SuggestionStatus.PENDING)] == [records[1].id]
    with pytest.raises(NotFoundError):
        merge_store.get_suggestion(999)
    with pytest.raises(NotFoundError):
        merge_store.mark_reviewed(999, SuggestionStatus.REJECTED)


def test_sqlite_store_persists_across_connections(tmp_path: Path) -> None:
    path = tmp_path / "merge.sqlite3"
    store = SQLiteMergeStore(path)
    rule_id = store.save_rule(_rule())
    store.append_suggestions(DIVISION, [_group(("Oasis", "Oasis Est"), "Oasis")])
    store.close()

    reopened = SQLiteMergeStore(path)

    assert reopened.get_rule(rule_id).canonical_name == "Acme"
    assert len(reopened.list_suggestions(DIVISION)) == 1
    reopened.close()


def test_sqlite_store_wraps_driver_errors(tmp_path: Path) -> None:
    with pytest.raises(DataAccessError):
        SQLiteMergeStore(tmp_path)
