from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Collection, Iterable

from metaphone import doublemetaphone

from customer_merge.models import name_key
from customer_merge.steps.normalize import NameNormalizer

logger = logging.getLogger(__name__)


class BlockingIndex:
    """Buckets names by the phonetic code of their first significant word.

    Only names sharing a bucket are compared pairwise. A duplicate whose first
    word differs entirely (word order swapped) lands in another bucket and is
    never proposed; that costs suggestion recall only.
    """

    def __init__(self, normalizer: NameNormalizer) -> None:
        self._normalizer = normalizer

    def blocking_key(self, raw: str) -> str:
        normalized = self._normalizer.normalize(raw)
        for token in normalized.split(" "):
            if len(token) > 1:
                primary, _ = doublemetaphone(token)
                return primary or token
        stripped = raw.strip().lower()
        return stripped[:1]

    def build_blocks(self, names: Iterable[str], exclude: Collection[str] = ()) -> dict[str, list[str]]:
        excluded = {name_key(name) for name in exclude}
        blocks: dict[str, list[str]] = defaultdict(list)
        dropped = 0
        for name in set(names):
            if not name or not name.strip():
                continue
            if name_key(name) in excluded:
                dropped += 1
                continue
            blocks[self.blocking_key(name)].append(name)

        ordered = {key: sorted(blocks[key]) for key in sorted(blocks)}
        if dropped:
            logger.info("Blocking skipped %d excluded names", dropped)
        return ordered


def pair_count(blocks: dict[str, list[str]]) -> int:
    return sum(len(members) * (len(members) - 1) // 2 for members in blocks.values())
