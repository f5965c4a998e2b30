from customer_merge.steps.blocking import BlockingIndex, pair_count
from customer_merge.steps.normalize import NameNormalizer


def test_variants_of_one_name_share_a_block() -> None:
    index = BlockingIndex(NameNormalizer())

    assert index.blocking_key("Falcon Technologies LLC") == index.blocking_key("FALCON TECH L.L.C.")
    assert index.blocking_key("Falcon Technologies LLC") != index.blocking_key("Blue Ocean Foodstuff")


def test_build_blocks_is_sorted_and_skips_excluded_and_blank_names() -> None:
    index = BlockingIndex(NameNormalizer())

    blocks = index.build_blocks(
        ["Falcon Tech", "Acme Trading", "", "  ", "Falcon Technologies", "ACME TRADING LLC"],
        exclude=["acme  trading"],
    )

    assert list(blocks) == sorted(blocks)
    members = [name for names in blocks.values() for name in names]
    assert "Acme Trading" not in members
    assert "ACME TRADING LLC" in members
    assert "" not in members and "  " not in members
    falcon_block = blocks[index.blocking_key("Falcon Tech")]
    assert falcon_block == ["Falcon Tech", "Falcon Technologies"]


def test_pair_count() -> None:
    assert pair_count({"a": ["x", "y", "z"], "b": ["w"], "c": ["u", "v"]}) == 4
