from __future__ import annotations

from collections.abc import Callable, Collection, Mapping, Sequence
from itertools import combinations

from customer_merge.models import SimilarityResult, pair_key
from customer_merge.progress import CancellationToken, ProgressTracker


class LocalPairScorer:
    """Sequential scorer, suitable for single-machine scans and tests."""

    def score_blocks(
        self,
        blocks: Mapping[str, Sequence[str]],
        similarity: Callable[[str, str], SimilarityResult],
        threshold: float,
        rejected_pairs: Collection[frozenset[str]] = (),
        tracker: ProgressTracker | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[SimilarityResult]:
        edges: list[SimilarityResult] = []
        for key, members in blocks.items():
            if cancel is not None:
                cancel.raise_if_cancelled()
            edges.extend(score_block(members, similarity, threshold, rejected_pairs))
            if tracker is not None:
                tracker.advance(block_pairs(members), message=f"Scored block {key}")
        return edges


def score_block(
    members: Sequence[str],
    similarity: Callable[[str, str], SimilarityResult],
    threshold: float,
    rejected_pairs: Collection[frozenset[str]] = (),
) -> list[SimilarityResult]:
    edges: list[SimilarityResult] = []
    for left, right in combinations(members, 2):
        if rejected_pairs and pair_key(left, right) in rejected_pairs:
            continue
        result = similarity(left, right)
        if result.score >= threshold:
            edges.append(result)
    return edges


def block_pairs(members: Sequence[str]) -> int:
    return len(members) * (len(members) - 1) // 2
