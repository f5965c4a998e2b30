import pytest

from customer_merge.config import EdgeCasePenalties, MergeConfig
from customer_merge.steps import similarity as similarity_module
from customer_merge.steps.similarity import SimilarityCache, SimilarityEngine

PAIRS = [
    ("Falcon Technologies LLC", "Falcon Tech LLC"),
    ("Gulf Pearl Electronics", "Gulf Pearl Electronic"),
    ("Blue Ocean Foodstuff", "Zenith Contracting Est"),
    ("Acme", "Acne"),
]


def _uncached(config: MergeConfig | None = None) -> SimilarityEngine:
    return SimilarityEngine(config or MergeConfig(cache_size=0))


def test_exact_match_shortcut() -> None:
    result = _uncached().similarity("ABC LLC", "abc llc")

    assert result.score == 1.0
    assert result.exact_match is True
    assert result.signals.levenshtein == 1.0


def test_similarity_is_symmetric() -> None:
    engine = _uncached()
    for a, b in PAIRS:
        assert engine.similarity(a, b) == engine.similarity(b, a)


def test_scores_and_signals_stay_in_unit_interval() -> None:
    engine = _uncached()
    for a, b in PAIRS:
        result = engine.similarity(a, b)
        assert 0.0 <= result.score <= 1.0
        assert all(0.0 <= value <= 1.0 for value in result.signals.as_dict().values())


def test_near_duplicates_score_above_unrelated_names() -> None:
    engine = _uncached()

    close = engine.score("Falcon Technologies LLC", "Falcon Tech LLC")
    unrelated = engine.score("Falcon Technologies LLC", "Blue Ocean Foodstuff")

    assert close >= 0.65
    assert unrelated < 0.5


def test_core_brand_boost_applies_on_matching_brand() -> None:
    result = _uncached().similarity("Falcon Technologies LLC", "Falcon Tech LLC")

    assert result.signals.core_brand == 1.0
    assert result.score == pytest.approx(min(1.0, result.base_score * 1.08))

    flat = _uncached(MergeConfig(cache_size=0, core_brand_boost=1.0))
    assert flat.score("Falcon Technologies LLC", "Falcon Tech LLC") == pytest.approx(result.base_score)


def test_failing_signal_degrades_to_zero(monkeypatch: pytest.MonkeyPatch) -> None:
    baseline = _uncached().similarity("Gulf Pearl Electronics", "Gulf Pearl Electronic")

    def broken(left: str, right: str) -> float:
        raise RuntimeError("phonetic backend unavailable")

    monkeypatch.setattr(similarity_module, "phonetic_similarity", broken)
    degraded = _uncached().similarity("Gulf Pearl Electronics", "Gulf Pearl Electronic")

    assert degraded.signals.phonetic == 0.0
    assert degraded.signals.levenshtein == baseline.signals.levenshtein
    assert degraded.base_score <= baseline.base_score


def test_edge_case_penalties_only_lower_scores() -> None:
    plain = _uncached()
    penalized = _uncached(MergeConfig(cache_size=0, edge_cases=EdgeCasePenalties(enabled=True)))
    for a, b in PAIRS:
        assert penalized.score(a, b) <= plain.score(a, b)


def test_engine_reuses_cached_results_for_either_order() -> None:
    engine = SimilarityEngine(MergeConfig())

    first = engine.similarity("Acme Trading", "Acme Trdg")
    second = engine.similarity("Acme Trdg", "Acme Trading")

    assert first is second
    assert engine.cache.hits == 1
    assert engine.cache.misses == 1


def test_similarity_cache_evicts_least_recently_used() -> None:
    cache = SimilarityCache(max_size=2)
    engine = _uncached()
    ab = engine.similarity("a1", "b1")
    cd = engine.similarity("c1", "d1")
    ef = engine.similarity("e1", "f1")

    cache.put("a1", "b1", ab)
    cache.put("c1", "d1", cd)
    assert cache.get("b1", "a1") is ab
    cache.put("e1", "f1", ef)

    assert len(cache) == 2
    assert cache.get("c1", "d1") is None
    assert cache.get("a1", "b1") is ab
    assert cache.hit_rate == pytest.approx(2 / 3)


def test_result_records_which_penalties_fired() -> None:
    plain = _uncached().similarity("Abc", "Xyz")
    penalized = _uncached(MergeConfig(cache_size=0, edge_cases=EdgeCasePenalties(enabled=True))).similarity(
        "Abc", "Xyz"
    )

    assert plain.penalties == ()
    assert dict(penalized.penalties) == {"single_word": 0.85, "short_name": 0.90}
    assert penalized.as_dict()["penalties"] == {"single_word": 0.85, "short_name": 0.90}
