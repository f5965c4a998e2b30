from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any

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
    SuggestionRecord,
    SuggestionStatus,
    name_key,
)
from customer_merge.stores.memory import RULE_PATCH_FIELDS

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS customers (
        division TEXT NOT NULL,
        name TEXT NOT NULL,
        total_sales REAL NOT NULL DEFAULT 0,
        created_at TEXT,
        PRIMARY KEY(division, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS merge_rules (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        division TEXT NOT NULL,
        canonical_name TEXT NOT NULL,
        original_customers TEXT NOT NULL,
        status TEXT NOT NULL,
        source TEXT NOT NULL,
        confidence REAL,
        created_at TEXT NOT NULL,
        last_validated_at TEXT,
        validation_notes TEXT NOT NULL DEFAULT '{}',
        version INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rejections (
        division TEXT NOT NULL,
        customer_a TEXT NOT NULL,
        customer_b TEXT NOT NULL,
        reason TEXT NOT NULL DEFAULT '',
        rejected_by TEXT NOT NULL DEFAULT '',
        confidence REAL,
        rejected_at TEXT NOT NULL,
        PRIMARY KEY(division, customer_a, customer_b)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS suggestions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        division TEXT NOT NULL,
        canonical_key TEXT NOT NULL,
        member_key TEXT NOT NULL,
        payload TEXT NOT NULL,
        status TEXT NOT NULL,
        created_rule_id INTEGER,
        created_at TEXT NOT NULL,
        UNIQUE(division, canonical_key, member_key)
    )
    """,
)


class SQLiteMergeStore:
    """SQLite-backed implementation of every collaborator protocol."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = Lock()
        try:
            if str(path) != ":memory:":
                self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            with self._conn:
                for statement in _SCHEMA:
                    self._conn.execute(statement)
        except (OSError, sqlite3.Error) as exc:
            raise DataAccessError(f"cannot open merge store at {path}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as exc:
                raise DataAccessError(str(exc)) from exc

    # Customers

    def add_customers(self, division: str, customers: Iterable[str | CustomerStatistics]) -> int:
        rows = []
        for customer in customers:
            stat = customer if isinstance(customer, CustomerStatistics) else CustomerStatistics(customer)
            if stat.customer_name and stat.customer_name.strip():
                rows.append((division, stat.customer_name, stat.total_sales, _iso(stat.created_at)))
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT INTO customers(division, name, total_sales, created_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(division, name) DO UPDATE SET
                    total_sales = excluded.total_sales,
                    created_at = COALESCE(excluded.created_at, customers.created_at)
                """,
                rows,
            )
        return len(rows)

    def list_distinct_customer_names(self, division: str) -> set[str]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT DISTINCT name FROM customers WHERE division = ? AND name IS NOT NULL AND TRIM(name) != ''",
                (division,),
            ).fetchall()
        return {row["name"] for row in rows}

    def get_customer_statistics(self, division: str) -> list[CustomerStatistics]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT name, total_sales, created_at FROM customers WHERE division = ? ORDER BY name",
                (division,),
            ).fetchall()
        return [
            CustomerStatistics(row["name"], row["total_sales"], _parse_time(row["created_at"])) for row in rows
        ]

    # Rules

    def get_active_rules(self, division: str) -> list[MergeRule]:
        return [rule for rule in self.list_rules(division) if rule.status is RuleStatus.ACTIVE]

    def list_rules(self, division: str) -> list[MergeRule]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM merge_rules WHERE division = ? ORDER BY id", (division,)).fetchall()
        return [_rule_from_row(row) for row in rows]

    def get_rule(self, rule_id: int) -> MergeRule:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM merge_rules WHERE id = ?", (rule_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"merge rule {rule_id} not found")
        return _rule_from_row(row)

    def save_rule(self, rule: MergeRule) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO merge_rules(
                    division, canonical_name, original_customers, status, source,
                    confidence, created_at, last_validated_at, validation_notes, version
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
                """,
                (
                    rule.division,
                    rule.canonical_name,
                    json.dumps(list(rule.original_customers)),
                    str(rule.status),
                    str(rule.source),
                    rule.confidence,
                    _iso(rule.created_at or datetime.now(timezone.utc)),
                    _iso(rule.last_validated_at),
                    json.dumps(rule.validation_notes),
                ),
            )
            return int(cursor.lastrowid)

    def update_rule(
        self, rule_id: int, patch: Mapping[str, Any], expected_version: int | None = None
    ) -> MergeRule:
        unknown = set(patch) - RULE_PATCH_FIELDS
        if unknown:
            raise ValueError(f"cannot patch rule fields: {sorted(unknown)}")
        columns = {key: _rule_column_value(key, value) for key, value in patch.items()}
        with self._transaction() as conn:
            row = conn.execute("SELECT version FROM merge_rules WHERE id = ?", (rule_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"merge rule {rule_id} not found")
            if expected_version is not None and row["version"] != expected_version:
                raise PersistenceConflict(rule_id, expected_version, row["version"])
            assignments = ", ".join(f"{column} = ?" for column in columns)
            prefix = f"{assignments}, " if assignments else ""
            conn.execute(
                f"UPDATE merge_rules SET {prefix}version = version + 1 WHERE id = ?",
                (*columns.values(), rule_id),
            )
            updated = conn.execute("SELECT * FROM merge_rules WHERE id = ?", (rule_id,)).fetchone()
        return _rule_from_row(updated)

    def delete_rule(self, rule_id: int) -> None:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM merge_rules WHERE id = ?", (rule_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"merge rule {rule_id} not found")

    # Rejections

    def get_rejected_pairs(self, division: str) -> set[frozenset[str]]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT customer_a, customer_b FROM rejections WHERE division = ?", (division,)
            ).fetchall()
        return {frozenset((row["customer_a"], row["customer_b"])) for row in rows}

    def add_rejections(self, division: str, records: Sequence[RejectionRecord]) -> None:
        now = _iso(datetime.now(timezone.utc))
        rows = []
        for record in records:
            first, second = sorted((name_key(record.customer_a), name_key(record.customer_b)))
            rows.append((division, first, second, record.reason, record.rejected_by, record.confidence, now))
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT OR IGNORE INTO rejections(
                    division, customer_a, customer_b, reason, rejected_by, confidence, rejected_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )

    # Suggestions

    def append_suggestions(self, division: str, groups: Sequence[MergeGroup]) -> int:
        now = _iso(datetime.now(timezone.utc))
        inserted = 0
        with self._transaction() as conn:
            for group in groups:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO suggestions(
                        division, canonical_key, member_key, payload, status, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        division,
                        name_key(group.suggested_canonical_name),
                        json.dumps(sorted(group.member_set)),
                        json.dumps(group_to_payload(group)),
                        str(SuggestionStatus.PENDING),
                        now,
                    ),
                )
                inserted += cursor.rowcount
        return inserted

    def list_suggestions(self, division: str, status: SuggestionStatus | None = None) -> list[SuggestionRecord]:
        query = "SELECT * FROM suggestions WHERE division = ?"
        params: tuple[Any, ...] = (division,)
        if status is not None:
            query += " AND status = ?"
            params += (str(status),)
        with self._transaction() as conn:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()
        return [_suggestion_from_row(row) for row in rows]

    def get_suggestion(self, suggestion_id: int) -> SuggestionRecord:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM suggestions WHERE id = ?", (suggestion_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"suggestion {suggestion_id} not found")
        return _suggestion_from_row(row)

    def mark_reviewed(
        self, suggestion_id: int, status: SuggestionStatus, created_rule_id: int | None = None
    ) -> None:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE suggestions SET status = ?, created_rule_id = ? WHERE id = ?",
                (str(status), created_rule_id, suggestion_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"suggestion {suggestion_id} not found")


def group_to_payload(group: MergeGroup) -> dict[str, Any]:
    return {
        "members": list(group.members),
        "suggested_canonical_name": group.suggested_canonical_name,
        "confidence": group.confidence,
        "pairwise_details": [
            {
                "left": detail.left,
                "right": detail.right,
                "score": detail.score,
                "exact_match": detail.exact_match,
                "base_score": detail.base_score,
                "penalties": [list(item) for item in detail.penalties],
                "signals": detail.signals.as_dict(),
            }
            for detail in group.pairwise_details
        ],
    }


def group_from_payload(payload: Mapping[str, Any]) -> MergeGroup:
    details = tuple(
        SimilarityResult(
            left=item["left"],
            right=item["right"],
            score=item["score"],
            signals=SimilaritySignals(**item["signals"]),
            exact_match=item.get("exact_match", False),
            base_score=item.get("base_score", 0.0),
            penalties=tuple((name, factor) for name, factor in item.get("penalties", [])),
        )
        for item in payload.get("pairwise_details", [])
    )
    return MergeGroup(
        members=tuple(payload["members"]),
        suggested_canonical_name=payload["suggested_canonical_name"],
        confidence=payload["confidence"],
        pairwise_details=details,
    )


def _rule_column_value(key: str, value: Any) -> Any:
    if key == "original_customers":
        return json.dumps(list(value))
    if key == "validation_notes":
        return json.dumps(value or {})
    if key == "last_validated_at":
        return _iso(value)
    if key == "status":
        return str(RuleStatus(value))
    return value


def _rule_from_row(row: sqlite3.Row) -> MergeRule:
    return MergeRule(
        id=row["id"],
        division=row["division"],
        canonical_name=row["canonical_name"],
        original_customers=tuple(json.loads(row["original_customers"])),
        status=RuleStatus(row["status"]),
        source=RuleSource(row["source"]),
        confidence=row["confidence"],
        created_at=_parse_time(row["created_at"]),
        last_validated_at=_parse_time(row["last_validated_at"]),
        validation_notes=json.loads(row["validation_notes"] or "{}"),
        version=row["version"],
    )


def _suggestion_from_row(row: sqlite3.Row) -> SuggestionRecord:
    return SuggestionRecord(
        id=row["id"],
        division=row["division"],
        group=group_from_payload(json.loads(row["payload"])),
        status=SuggestionStatus(row["status"]),
        created_rule_id=row["created_rule_id"],
        created_at=_parse_time(row["created_at"]),
    )


def _iso(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment is not None else None


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
