from __future__ import annotations

import argparse
import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from customer_merge.config import StaticConfigSource, YamlConfigSource
from customer_merge.datasets import ReferenceCustomer, ReferenceDatasetGenerator, ground_truth_pairs
from customer_merge.errors import CustomerMergeError, ValidationError
from customer_merge.interfaces import ConfigSource
from customer_merge.models import CustomerStatistics, MergeGroup, MergeRule, SuggestionStatus, pair_key
from customer_merge.progress import ProgressEvent
from customer_merge.runners import LocalPairScorer, ThreadedPairScorer
from customer_merge.service import MergeService
from customer_merge.stores import InMemoryMergeStore, SQLiteMergeStore
from customer_merge.suggestions import ScanResult

logger = logging.getLogger(__name__)

_DEFAULT_DB = Path("data/customer_merge.sqlite3")


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return

    try:
        _COMMANDS[args.command](args)
    except CustomerMergeError as exc:
        if args.command == "scan":
            print("suggestions=0")
        print(f"error={type(exc).__name__}: {exc}")
        raise SystemExit(1) from exc


def run_test(
    *,
    size: int,
    duplicate_rate: float,
    seed: int,
    output_dir: Path,
    min_confidence: float | None,
    workers: int,
    show_groups: int,
) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)

    generator = ReferenceDatasetGenerator(seed=seed)
    customers = generator.generate(size=size, duplicate_rate=duplicate_rate)
    dataset_path = output_dir / "test_customers.csv"
    _write_customers_csv(dataset_path, customers)

    store = InMemoryMergeStore()
    store.add_customers("test", [customer.statistics() for customer in customers])
    service = _service(store, StaticConfigSource(), workers)
    scan = service.scan("test", min_confidence=min_confidence, now=max(c.created_at for c in customers))

    groups_path = output_dir / "groups.json"
    summary_path = output_dir / "summary.json"
    _write_json(groups_path, [group.as_dict() for group in scan.result.groups])
    summary = _build_summary(
        customers=customers,
        groups=scan.result.groups,
        scan=scan.result,
        dataset_path=dataset_path,
        groups_path=groups_path,
    )
    _write_json(summary_path, summary)

    print(f"Dataset: {dataset_path}")
    print(f"Groups: {groups_path}")
    print(f"Summary: {summary_path}")
    print("---")
    print(f"customers={summary['customer_count']}")
    print(f"candidate_pairs={summary['candidate_pair_count']}")
    print(f"groups={summary['group_count']}")
    print(f"flagged_components={summary['flagged_component_count']}")
    print(f"grouped_customers={summary['grouped_customer_count']}")
    print(f"pair_precision={summary['pair_precision']}")
    print(f"pair_recall={summary['pair_recall']}")
    if show_groups > 0:
        print("---")
        print("sample_groups=")
        print(json.dumps([group.as_dict() for group in scan.result.groups[:show_groups]], indent=2))


def _build_summary(
    *,
    customers: list[ReferenceCustomer],
    groups: list[MergeGroup],
    scan: ScanResult,
    dataset_path: Path,
    groups_path: Path,
) -> dict[str, object]:
    truth = {pair_key(*pair) for pair in ground_truth_pairs(customers)}
    predicted = {
        pair_key(left, right)
        for group in groups
        for i, left in enumerate(group.members)
        for right in group.members[i + 1 :]
    }
    true_positives = len(truth & predicted)
    group_sizes = [group.size for group in groups]

    return {
        "customer_count": len(customers),
        "entity_count": len({customer.entity_id for customer in customers}),
        "candidate_pair_count": scan.stats.candidate_pairs,
        "edge_count": scan.stats.edges,
        "group_count": len(groups),
        "flagged_component_count": len(scan.flagged),
        "protected_customer_count": scan.stats.protected,
        "grouped_customer_count": sum(group_sizes),
        "avg_group_size": round(sum(group_sizes) / len(group_sizes), 3) if group_sizes else 0.0,
        "max_group_size": max(group_sizes) if group_sizes else 0,
        "pair_precision": round(true_positives / len(predicted), 4) if predicted else 0.0,
        "pair_recall": round(true_positives / len(truth), 4) if truth else 0.0,
        "high_confidence_groups": scan.quality.high_confidence,
        "medium_confidence_groups": scan.quality.medium_confidence,
        "low_confidence_groups": scan.quality.low_confidence,
        "cache_hit_rate": round(scan.stats.cache_hit_rate, 4),
        "elapsed_seconds": round(scan.stats.elapsed_seconds, 3),
        "dataset_path": str(dataset_path),
        "groups_path": str(groups_path),
    }


def _cmd_run_test(args: argparse.Namespace) -> None:
    run_test(
        size=args.size,
        duplicate_rate=args.duplicate_rate,
        seed=args.seed,
        output_dir=args.output_dir,
        min_confidence=args.min_confidence,
        workers=args.workers,
        show_groups=args.show_groups,
    )


def _cmd_load_customers(args: argparse.Namespace) -> None:
    store = SQLiteMergeStore(args.db)
    loaded = store.add_customers(args.division, _read_customers_csv(args.input_csv))
    print(f"loaded={loaded}")


def _cmd_scan(args: argparse.Namespace) -> None:
    store = SQLiteMergeStore(args.db)
    service = _service(store, _config_source(args.config), args.workers)
    observers = [_log_progress] if args.progress else []
    scan = service.scan(args.division, min_confidence=args.min_confidence, observers=observers)
    result = scan.result
    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        _write_json(args.output, [group.as_dict() for group in result.groups])
    print(f"suggestions={len(result.groups)}")
    print(f"stored={scan.stored}")
    print(f"flagged_components={len(result.flagged)}")
    print(f"customers={result.stats.customers}")
    print(f"excluded={result.stats.excluded}")
    print(f"candidate_pairs={result.stats.candidate_pairs}")
    print(f"cache_hit_rate={result.stats.cache_hit_rate:.3f}")
    print(f"elapsed_seconds={result.stats.elapsed_seconds:.3f}")


def _cmd_suggestions(args: argparse.Namespace) -> None:
    store = SQLiteMergeStore(args.db)
    status = SuggestionStatus(args.status.upper()) if args.status else None
    payload = [
        {
            "id": record.id,
            "status": str(record.status),
            "created_rule_id": record.created_rule_id,
            **record.group.as_dict(),
        }
        for record in store.list_suggestions(args.division, status)
    ]
    print(json.dumps(payload, indent=2))


def _cmd_approve(args: argparse.Namespace) -> None:
    service = _service(SQLiteMergeStore(args.db), _config_source(args.config))
    if args.name is None and args.customers is None:
        rule = service.approve_suggestion(args.id)
    else:
        rule = service.edit_and_approve(args.id, canonical_name=args.name, customers=args.customers)
    print(json.dumps(_rule_payload(rule), indent=2))


def _cmd_reject(args: argparse.Namespace) -> None:
    service = _service(SQLiteMergeStore(args.db), _config_source(args.config))
    pairs = service.reject_suggestion(args.id, reason=args.reason, rejected_by=args.by)
    print(f"rejected_pairs={pairs}")


def _cmd_add_rule(args: argparse.Namespace) -> None:
    service = _service(SQLiteMergeStore(args.db), _config_source(args.config))
    rule = service.create_manual_rule(args.division, args.name, args.customers)
    print(json.dumps(_rule_payload(rule), indent=2))


def _cmd_rules(args: argparse.Namespace) -> None:
    store = SQLiteMergeStore(args.db)
    print(json.dumps([_rule_payload(rule) for rule in store.list_rules(args.division)], indent=2))


def _cmd_validate(args: argparse.Namespace) -> None:
    service = _service(SQLiteMergeStore(args.db), _config_source(args.config))
    validations = service.validate_rules(args.division)
    payload = [
        {"rule_id": v.rule_id, "canonical_name": v.canonical_name, "status": str(v.status), **v.notes()}
        for v in validations
    ]
    print(json.dumps(payload, indent=2))


def _cmd_fix(args: argparse.Namespace) -> None:
    service = _service(SQLiteMergeStore(args.db), _config_source(args.config))
    rule = service.apply_fix(args.rule_id, args.missing, args.replacement)
    print(json.dumps(_rule_payload(rule), indent=2))


def _cmd_stats(args: argparse.Namespace) -> None:
    service = _service(SQLiteMergeStore(args.db), _config_source(args.config))
    print(json.dumps(service.stats(args.division), indent=2))


_COMMANDS = {
    "run-test": _cmd_run_test,
    "load-customers": _cmd_load_customers,
    "scan": _cmd_scan,
    "suggestions": _cmd_suggestions,
    "approve": _cmd_approve,
    "reject": _cmd_reject,
    "add-rule": _cmd_add_rule,
    "rules": _cmd_rules,
    "validate": _cmd_validate,
    "fix": _cmd_fix,
    "stats": _cmd_stats,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="customer-merge", description="Customer merge CLI")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    subparsers = parser.add_subparsers(dest="command")

    run_test_parser = subparsers.add_parser(
        "run-test",
        help="Generate a synthetic name dataset, scan it in memory, and output groups + summary",
    )
    run_test_parser.add_argument("--size", type=int, default=2000)
    run_test_parser.add_argument("--duplicate-rate", type=float, default=0.15)
    run_test_parser.add_argument("--seed", type=int, default=42)
    run_test_parser.add_argument("--min-confidence", type=float, default=None)
    run_test_parser.add_argument("--workers", type=int, default=0)
    run_test_parser.add_argument("--output-dir", type=Path, default=Path("data/cli_output"))
    run_test_parser.add_argument("--show-groups", type=int, default=10)

    store_args = argparse.ArgumentParser(add_help=False)
    store_args.add_argument("--db", type=Path, default=_DEFAULT_DB)
    store_args.add_argument("--config", type=Path, default=None, help="YAML merge configuration")
    division_args = argparse.ArgumentParser(add_help=False)
    division_args.add_argument("--division", required=True)

    load_parser = subparsers.add_parser(
        "load-customers",
        parents=[store_args, division_args],
        help="Load customers from a CSV with name[,total_sales,created_at] columns",
    )
    load_parser.add_argument("--input-csv", type=Path, required=True)

    scan_parser = subparsers.add_parser(
        "scan", parents=[store_args, division_args], help="Scan a division and store new suggestions"
    )
    scan_parser.add_argument("--min-confidence", type=float, default=None)
    scan_parser.add_argument("--workers", type=int, default=0)
    scan_parser.add_argument("--output", type=Path, default=None)
    scan_parser.add_argument("--progress", action="store_true")

    suggestions_parser = subparsers.add_parser(
        "suggestions", parents=[store_args, division_args], help="List stored suggestions"
    )
    suggestions_parser.add_argument("--status", choices=["pending", "approved", "rejected"], default=None)

    approve_parser = subparsers.add_parser(
        "approve", parents=[store_args], help="Approve a suggestion, optionally with edits"
    )
    approve_parser.add_argument("--id", type=int, required=True)
    approve_parser.add_argument("--name", default=None)
    approve_parser.add_argument("--customers", nargs="+", default=None)

    reject_parser = subparsers.add_parser("reject", parents=[store_args], help="Reject a suggestion")
    reject_parser.add_argument("--id", type=int, required=True)
    reject_parser.add_argument("--reason", default="")
    reject_parser.add_argument("--by", default="")

    add_rule_parser = subparsers.add_parser(
        "add-rule", parents=[store_args, division_args], help="Create a manual merge rule"
    )
    add_rule_parser.add_argument("--name", required=True)
    add_rule_parser.add_argument("--customers", nargs="+", required=True)

    subparsers.add_parser("rules", parents=[store_args, division_args], help="List merge rules")
    subparsers.add_parser(
        "validate", parents=[store_args, division_args], help="Revalidate merge rules against current customers"
    )

    fix_parser = subparsers.add_parser(
        "fix", parents=[store_args], help="Replace a vanished customer of a rule"
    )
    fix_parser.add_argument("--rule-id", type=int, required=True)
    fix_parser.add_argument("--missing", required=True)
    fix_parser.add_argument("--replacement", default=None)

    subparsers.add_parser("stats", parents=[store_args, division_args], help="Rule and suggestion counts")

    return parser


def _service(
    store: InMemoryMergeStore | SQLiteMergeStore, config_source: ConfigSource, workers: int = 0
) -> MergeService:
    scorer = ThreadedPairScorer(max_workers=workers) if workers > 0 else LocalPairScorer()
    return MergeService(
        customers=store,
        rules=store,
        rejections=store,
        suggestions=store,
        statistics=store,
        config_source=config_source,
        scorer=scorer,
    )


def _config_source(path: Path | None) -> ConfigSource:
    return YamlConfigSource(path) if path is not None else StaticConfigSource()


def _log_progress(event: ProgressEvent) -> None:
    logger.warning(
        "%5.1f%% (%d/%d) eta %.1fs %s", event.percent, event.current, event.total, event.eta_seconds, event.message
    )


def _rule_payload(rule: MergeRule) -> dict[str, Any]:
    return {
        "id": rule.id,
        "division": rule.division,
        "canonical_name": rule.canonical_name,
        "original_customers": list(rule.original_customers),
        "status": str(rule.status),
        "source": str(rule.source),
        "confidence": rule.confidence,
        "last_validated_at": rule.last_validated_at.isoformat() if rule.last_validated_at else None,
        "validation_notes": rule.validation_notes,
        "version": rule.version,
    }


def _write_json(path: Path, payload: object) -> None:
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)


def _write_customers_csv(path: Path, customers: list[ReferenceCustomer]) -> None:
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(
            handle, fieldnames=["record_id", "entity_id", "name", "total_sales", "created_at", "variant"]
        )
        writer.writeheader()
        for customer in customers:
            writer.writerow(
                {
                    "record_id": customer.record_id,
                    "entity_id": customer.entity_id,
                    "name": customer.name,
                    "total_sales": customer.total_sales,
                    "created_at": customer.created_at.isoformat(),
                    "variant": customer.variant,
                }
            )


def _read_customers_csv(path: Path) -> list[CustomerStatistics]:
    customers: list[CustomerStatistics] = []
    with path.open("r", newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        for line, row in enumerate(reader, start=2):
            name = row.get("name")
            if not name or not name.strip():
                continue
            sales = row.get("total_sales") or "0"
            created = row.get("created_at")
            try:
                customers.append(
                    CustomerStatistics(
                        customer_name=name,
                        total_sales=float(sales),
                        created_at=datetime.fromisoformat(created) if created else None,
                    )
                )
            except ValueError as exc:
                raise ValidationError(f"{path}:{line}: {exc}") from exc
    return customers


if __name__ == "__main__":
    main()
