from __future__ import annotations

from collections.abc import Callable, Mapping

import pytest

from customer_merge.config import MergeConfig
from customer_merge.models import SimilarityResult, SimilaritySignals, pair_key
from customer_merge.service import MergeService
from customer_merge.steps.similarity import SimilarityEngine
from customer_merge.stores import InMemoryMergeStore

DIVISION = "north"

UNIVERSE = [
    "Falcon Technologies LLC",
    "FALCON TECHNOLOGIES L.L.C.",
    "Falcon Technologies",
    "Blue Ocean Foodstuff Trading",
    "Blue Ocean Foodstuff Trading LLC",
    "Gulf Pearl Electronics",
    "Gulf Pearl Electronic",
    "Zenith Contracting Est",
    "Acme Trading LLC",
    "ACME TRADING",
]

StubSimilarity = Callable[[str, str], SimilarityResult]


@pytest.fixture
def universe() -> list[str]:
    return list(UNIVERSE)


@pytest.fixture
def engine() -> SimilarityEngine:
    return SimilarityEngine(MergeConfig())


@pytest.fixture
def store(universe: list[str]) -> InMemoryMergeStore:
    merge_store = InMemoryMergeStore()
    merge_store.add_customers(DIVISION, universe)
    return merge_store


@pytest.fixture
def service(store: InMemoryMergeStore) -> MergeService:
    return MergeService(
        customers=store,
        rules=store,
        rejections=store,
        suggestions=store,
        statistics=store,
    )


@pytest.fixture
def stub_similarity() -> Callable[..., StubSimilarity]:
    """Builds a similarity function from explicit pair scores."""

    def build(scores: Mapping[tuple[str, str], float], default: float = 0.0) -> StubSimilarity:
        by_pair = {pair_key(a, b): score for (a, b), score in scores.items()}

        def similarity(a: str, b: str) -> SimilarityResult:
            left, right = sorted((a, b))
            return SimilarityResult(
                left=left,
                right=right,
                score=by_pair.get(pair_key(a, b), default),
                signals=SimilaritySignals(),
            )

        return similarity

    return build
