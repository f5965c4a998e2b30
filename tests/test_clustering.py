import random

import pytest

from customer_merge.models import pair_key
from customer_merge.steps.clustering import (
    OVERSIZED,
    REJECTED_PAIR,
    ClusterBuilder,
    connected_components,
    suggest_canonical_name,
)

FALCON_TRADING = "Falcon Trading"
FALCON_TRDG = "Falcon Trdg"
FALCON_GENERAL = "Falcon General Trading DXB"


def _edges(similarity, names, threshold):
    return [
        (a, b)
        for i, a in enumerate(names)
        for b in names[i + 1 :]
        if similarity(a, b).score >= threshold
    ]


def test_transitive_pairs_form_one_group(stub_similarity) -> None:
    similarity = stub_similarity(
        {
            (FALCON_TRADING, FALCON_TRDG): 0.95,
            (FALCON_TRDG, FALCON_GENERAL): 0.80,
            (FALCON_TRADING, FALCON_GENERAL): 0.55,
        }
    )
    names = [FALCON_TRADING, FALCON_TRDG, FALCON_GENERAL, "Zenith Contracting"]

    groups = ClusterBuilder(similarity).cluster(_edges(similarity, names, 0.65), names)

    assert len(groups) == 1
    group = groups[0]
    assert group.members == (FALCON_GENERAL, FALCON_TRADING, FALCON_TRDG)
    assert group.confidence == pytest.approx((0.95 + 0.80 + 0.55) / 3)
    assert len(group.pairwise_details) == 3
    assert group.suggested_canonical_name == FALCON_TRDG


def test_oversized_component_is_flagged_not_truncated(stub_similarity) -> None:
    names = [f"Horizon Store {i}" for i in range(8)]
    chain = {(names[i], names[i + 1]): 0.9 for i in range(7)}
    similarity = stub_similarity(chain)

    outcome = ClusterBuilder(similarity, max_group_size=5).partition(list(chain), names)

    assert outcome.groups == []
    assert len(outcome.flagged) == 1
    assert outcome.flagged[0].reason == OVERSIZED
    assert sorted(outcome.flagged[0].members) == sorted(names)


def test_component_with_rejected_pair_is_held_back(stub_similarity) -> None:
    similarity = stub_similarity({("A Co", "B Co"): 0.9, ("B Co", "C Co"): 0.9})
    names = ["A Co", "B Co", "C Co", "D Co", "E Co"]
    edges = [("A Co", "B Co"), ("B Co", "C Co"), ("D Co", "E Co")]

    outcome = ClusterBuilder(similarity).partition(edges, names, rejected_pairs={pair_key("A Co", "C Co")})

    assert [f.reason for f in outcome.flagged] == [REJECTED_PAIR]
    assert [g.members for g in outcome.groups] == [("D Co", "E Co")]


def test_groups_sorted_by_confidence(stub_similarity) -> None:
    similarity = stub_similarity({("Acme", "Acme Co"): 0.7, ("Oasis", "Oasis Est"): 0.9})

    groups = ClusterBuilder(similarity).cluster([("Acme", "Acme Co"), ("Oasis", "Oasis Est")], [])

    assert [g.suggested_canonical_name for g in groups] == ["Oasis", "Acme"]


def test_connected_components_ignore_edge_order() -> None:
    edges = [("a", "b"), ("b", "c"), ("d", "e"), ("f", "f")]
    names = ["a", "b", "c", "d", "e", "f", "g"]
    shuffled = list(edges)
    random.Random(3).shuffle(shuffled)

    expected = [["a", "b", "c"], ["d", "e"], ["f"], ["g"]]
    assert connected_components(edges, names) == expected
    assert connected_components(shuffled, reversed(names)) == expected


def test_connected_components_handle_long_chains() -> None:
    names = [f"name{i:05d}" for i in range(5000)]
    edges = list(zip(names, names[1:]))

    components = connected_components(edges, names)

    assert len(components) == 1
    assert len(components[0]) == 5000


def test_suggest_canonical_name() -> None:
    assert suggest_canonical_name(["Acme Trading LLC", "ACME TRADING", "Acme Trading L.L.C."]) == "ACME TRADING"
    assert suggest_canonical_name(["Acme Limited", "Acme LLC"]) == "Acme"
    assert suggest_canonical_name(["Co Limited", "Co LLC"]) == "Co LLC"
