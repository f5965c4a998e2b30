from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Collection, Iterable, Sequence
from dataclasses import dataclass, field
from itertools import combinations

from customer_merge.models import FlaggedComponent, MergeGroup, SimilarityResult, pair_key
from customer_merge.steps.normalize import strip_trailing_suffixes

OVERSIZED = "oversized"
REJECTED_PAIR = "rejected_pair"


@dataclass(slots=True)
class ClusterOutcome:
    groups: list[MergeGroup] = field(default_factory=list)
    flagged: list[FlaggedComponent] = field(default_factory=list)


class ClusterBuilder:
    """Turns above-threshold pairs into merge groups via connected components.

    Components are order independent and transitively closed: if A~B and B~C,
    A, B and C form one group even when A and C score low directly. Group
    confidence is the mean over every member pair, not just the edges, so weak
    internal cohesion still shows.
    """

    def __init__(
        self,
        similarity: Callable[[str, str], SimilarityResult],
        max_group_size: int = 5,
    ) -> None:
        self._similarity = similarity
        self._max_group_size = max_group_size

    def cluster(self, edges: Iterable[tuple[str, str]], all_names: Iterable[str]) -> list[MergeGroup]:
        return self.partition(edges, all_names).groups

    def partition(
        self,
        edges: Iterable[tuple[str, str]],
        all_names: Iterable[str],
        rejected_pairs: Collection[frozenset[str]] = (),
    ) -> ClusterOutcome:
        outcome = ClusterOutcome()
        for members in connected_components(edges, all_names):
            if len(members) < 2:
                continue
            if len(members) > self._max_group_size:
                outcome.flagged.append(FlaggedComponent(members=tuple(members), reason=OVERSIZED))
                continue
            if rejected_pairs and _contains_rejected_pair(members, rejected_pairs):
                outcome.flagged.append(FlaggedComponent(members=tuple(members), reason=REJECTED_PAIR))
                continue
            outcome.groups.append(self.build_group(members))

        outcome.groups.sort(key=lambda g: (-g.confidence, g.suggested_canonical_name, g.members))
        outcome.flagged.sort(key=lambda f: f.members)
        return outcome

    def build_group(self, members: Sequence[str]) -> MergeGroup:
        ordered = tuple(sorted(members))
        details = tuple(self._similarity(a, b) for a, b in combinations(ordered, 2))
        confidence = sum(d.score for d in details) / len(details) if details else 0.0
        return MergeGroup(
            members=ordered,
            suggested_canonical_name=suggest_canonical_name(ordered),
            confidence=confidence,
            pairwise_details=details,
        )


def connected_components(edges: Iterable[tuple[str, str]], all_names: Iterable[str]) -> list[list[str]]:
    """Sorted components via depth-first search with an explicit stack."""
    adjacency: dict[str, set[str]] = defaultdict(set)
    for name in all_names:
        adjacency.setdefault(name, set())
    for left, right in edges:
        if left == right:
            continue
        adjacency[left].add(right)
        adjacency[right].add(left)

    seen: set[str] = set()
    components: list[list[str]] = []
    for start in sorted(adjacency):
        if start in seen:
            continue
        seen.add(start)
        stack = [start]
        component: list[str] = []
        while stack:
            node = stack.pop()
            component.append(node)
            for neighbour in adjacency[node]:
                if neighbour not in seen:
                    seen.add(neighbour)
                    stack.append(neighbour)
        components.append(sorted(component))
    return components


def suggest_canonical_name(members: Iterable[str]) -> str:
    """Shortest member (alphabetical tie-break) minus trailing legal suffixes."""
    shortest = min(members, key=lambda name: (len(name), name))
    stripped = strip_trailing_suffixes(shortest)
    if len(stripped) < 3:
        return shortest.strip()
    return stripped


def _contains_rejected_pair(members: Sequence[str], rejected_pairs: Collection[frozenset[str]]) -> bool:
    return any(pair_key(a, b) in rejected_pairs for a, b in combinations(members, 2))
