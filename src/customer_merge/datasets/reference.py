from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from customer_merge.datasets.profiles import (
    ABBREVIATION_FORMS,
    BRAND_WORDS,
    DESCRIPTOR_WORDS,
    LEGAL_SUFFIX_FORMS,
    LOCATION_WORDS,
    STREET_WORDS,
)
from customer_merge.models import CustomerStatistics

VARIANTS = ("abbreviation", "case", "suffix", "address", "po_box", "phone", "typo")


@dataclass(frozen=True, slots=True)
class ReferenceCustomer:
    """One generated raw name; ``entity_id`` is the ground-truth identity."""

    record_id: str
    entity_id: str
    name: str
    total_sales: float
    created_at: datetime
    variant: str = "original"

    def statistics(self) -> CustomerStatistics:
        return CustomerStatistics(self.name, self.total_sales, self.created_at)


class ReferenceDatasetGenerator:
    """Generate synthetic customer names (with intentional dupes) for tests and benchmarks."""

    def __init__(self, seed: int = 7, now: datetime | None = None) -> None:
        self._rng = random.Random(seed)
        self._now = now or datetime(2024, 6, 30, tzinfo=timezone.utc)

    def generate(self, size: int, duplicate_rate: float = 0.15) -> list[ReferenceCustomer]:
        if size <= 0:
            return []

        unique_count = int(size * (1.0 - duplicate_rate))
        unique_count = max(1, min(unique_count, size))

        customers: list[ReferenceCustomer] = []
        seen: set[str] = set()
        idx = 0
        while len(customers) < unique_count:
            if idx > unique_count * 50:
                raise ValueError(f"cannot generate {unique_count} distinct base names")
            name = self._base_name()
            idx += 1
            if name in seen:
                continue
            seen.add(name)
            customers.append(self._customer(len(customers), f"ent_{len(customers):06d}", name, "original"))

        attempts = 0
        while len(customers) < size and attempts < size * 20:
            attempts += 1
            source = self._rng.choice(customers[:unique_count])
            variant = self._rng.choice(VARIANTS)
            name = self._variant(source.name, variant)
            if name in seen:
                continue
            seen.add(name)
            customers.append(self._customer(len(customers), source.entity_id, name, variant))

        self._rng.shuffle(customers)
        return customers

    def _customer(self, idx: int, entity_id: str, name: str, variant: str) -> ReferenceCustomer:
        # Log-normal sales so a few customers land above the high-value threshold.
        sales = round(self._rng.lognormvariate(11.0, 1.4), 2)
        created = self._now - timedelta(days=self._rng.randint(0, 3 * 365))
        return ReferenceCustomer(
            record_id=f"cust_{idx:07d}",
            entity_id=entity_id,
            name=name,
            total_sales=sales,
            created_at=created,
            variant=variant,
        )

    def _base_name(self) -> str:
        brand = self._rng.choice(BRAND_WORDS)
        descriptor = self._rng.choice(DESCRIPTOR_WORDS)
        suffix = self._rng.choice(LEGAL_SUFFIX_FORMS)
        parts = [brand, descriptor]
        if self._rng.random() < 0.3:
            parts.append(self._rng.choice(LOCATION_WORDS))
        if self._rng.random() < 0.2:
            parts.insert(1, str(self._rng.randint(1, 9)))
        return f"{' '.join(parts)} {suffix}"

    def _variant(self, name: str, variant: str) -> str:
        if variant == "abbreviation":
            for long_form, short_form in ABBREVIATION_FORMS.items():
                if long_form in name:
                    return name.replace(long_form, short_form, 1)
            return name.upper()
        if variant == "case":
            return self._rng.choice([name.upper(), name.lower(), name.title()])
        if variant == "suffix":
            words = name.split()
            if words[-1] in LEGAL_SUFFIX_FORMS:
                words = words[:-1]
            replacement = self._rng.choice(["", *LEGAL_SUFFIX_FORMS])
            return " ".join(words + [replacement]).strip()
        if variant == "address":
            street = self._rng.choice(STREET_WORDS)
            return f"{name}, Shop No. {self._rng.randint(1, 99)} {street}"
        if variant == "po_box":
            return f"{name} P.O. Box {self._rng.randint(1000, 99999)}"
        if variant == "phone":
            return f"{name} Tel: +971 4 {self._rng.randint(200, 999)} {self._rng.randint(1000, 9999)}"
        return self._typo(name)

    def _typo(self, name: str) -> str:
        words = name.split()
        candidates = [i for i, word in enumerate(words) if len(word) > 4 and word.isalpha()]
        if not candidates:
            return name.lower()
        i = self._rng.choice(candidates)
        word = words[i]
        pos = self._rng.randint(1, len(word) - 2)
        words[i] = word[:pos] + word[pos + 1] + word[pos] + word[pos + 2 :]
        return " ".join(words)


def ground_truth_pairs(customers: list[ReferenceCustomer]) -> set[frozenset[str]]:
    """Unordered name pairs that share an entity."""
    by_entity: dict[str, list[str]] = {}
    for customer in customers:
        by_entity.setdefault(customer.entity_id, []).append(customer.name)
    pairs: set[frozenset[str]] = set()
    for names in by_entity.values():
        for i, left in enumerate(names):
            for right in names[i + 1 :]:
                pairs.add(frozenset((left, right)))
    return pairs
