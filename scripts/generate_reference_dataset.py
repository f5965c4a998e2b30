from __future__ import annotations

import argparse
import csv
from pathlib import Path

from customer_merge.datasets import ReferenceDatasetGenerator

_COLUMNS = ["record_id", "entity_id", "name", "total_sales", "created_at", "variant"]


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate synthetic customer name dataset")
    parser.add_argument("--size", type=int, default=10000)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--duplicate-rate", type=float, default=0.15)
    parser.add_argument("--output", type=Path, default=Path("data/reference_customer_names.csv"))
    args = parser.parse_args()

    customers = ReferenceDatasetGenerator(seed=args.seed).generate(
        size=args.size,
        duplicate_rate=args.duplicate_rate,
    )

    args.output.parent.mkdir(parents=True, exist_ok=True)
    with args.output.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=_COLUMNS)
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


if __name__ == "__main__":
    main()
