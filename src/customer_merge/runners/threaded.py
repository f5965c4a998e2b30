from __future__ import annotations

from collections.abc import Callable, Collection, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor

from customer_merge.models import SimilarityResult
from customer_merge.progress import CancellationToken, ProgressTracker
from customer_merge.runners.local import block_pairs, score_block


class ThreadedPairScorer:
    """Scores blocks on a thread pool, one task per block.

    Pair scoring is pure; the only shared structure is the similarity cache.
    Cancellation is checked when a block task starts, so a block in flight is
    always finished. Edges are returned in block order regardless of which
    worker finished first.
    """

    def __init__(self, max_workers: int | None = None) -> None:
        self._max_workers = max_workers

    def score_blocks(
        self,
        blocks: Mapping[str, Sequence[str]],
        similarity: Callable[[str, str], SimilarityResult],
        threshold: float,
        rejected_pairs: Collection[frozenset[str]] = (),
        tracker: ProgressTracker | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[SimilarityResult]:
        def run(key: str, members: Sequence[str]) -> list[SimilarityResult] | None:
            if cancel is not None and cancel.cancelled:
                return None
            edges = score_block(members, similarity, threshold, rejected_pairs)
            if tracker is not None:
                tracker.advance(block_pairs(members), message=f"Scored block {key}")
            return edges

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="merge-scan") as pool:
            futures = [pool.submit(run, key, members) for key, members in blocks.items()]
            results = [future.result() for future in futures]

        if cancel is not None:
            cancel.raise_if_cancelled()
        return [edge for block_edges in results if block_edges for edge in block_edges]
