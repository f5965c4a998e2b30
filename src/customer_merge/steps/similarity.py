from __future__ import annotations

import logging
import re
import threading
from collections import OrderedDict
from collections.abc import Callable

from metaphone import doublemetaphone
from rapidfuzz.distance import JaroWinkler, Levenshtein

from customer_merge.config import MergeConfig
from customer_merge.models import SimilarityResult, SimilaritySignals
from customer_merge.steps.normalize import (
    TOKEN_STOP_WORDS,
    NameNormalizer,
    meaningful_tokens,
    strip_legal_suffixes,
)

logger = logging.getLogger(__name__)

NGRAM_PREFIX_TOKENS = 2
CORE_BRAND_BOOST_FLOOR = 0.90

_NUMERIC_VARIANT_RE = re.compile(r"\b(?:\d+|one|two|three|four|five|branch|br)\b")


class SimilarityCache:
    """Bounded LRU cache of similarity results keyed by unordered name pair.

    Eviction only costs recomputation. Concurrent writers of the same key store
    the same deterministic value, so last-write-wins is harmless.
    """

    def __init__(self, max_size: int = 50_000) -> None:
        self.max_size = max_size
        self._entries: OrderedDict[tuple[str, str], SimilarityResult] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(left: str, right: str) -> tuple[str, str]:
        return (left, right) if left <= right else (right, left)

    def get(self, left: str, right: str) -> SimilarityResult | None:
        key = self.key(left, right)
        with self._lock:
            result = self._entries.get(key)
            if result is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return result

    def put(self, left: str, right: str, result: SimilarityResult) -> None:
        if self.max_size <= 0:
            return
        key = self.key(left, right)
        with self._lock:
            self._entries[key] = result
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class SimilarityEngine:
    """Seven-signal weighted similarity between two raw customer names."""

    def __init__(
        self,
        config: MergeConfig | None = None,
        normalizer: NameNormalizer | None = None,
        cache: SimilarityCache | None = None,
    ) -> None:
        self.config = config or MergeConfig()
        self.normalizer = normalizer or NameNormalizer(
            strip_locations=self.config.strip_locations,
            cache_size=self.config.cache_size,
        )
        self.cache = cache if cache is not None else SimilarityCache(self.config.cache_size)

    def similarity(self, a: str, b: str) -> SimilarityResult:
        cached = self.cache.get(a, b)
        if cached is not None:
            return cached
        result = self._compute(*SimilarityCache.key(a, b))
        self.cache.put(a, b, result)
        return result

    def score(self, a: str, b: str) -> float:
        return self.similarity(a, b).score

    def _compute(self, left: str, right: str) -> SimilarityResult:
        norm_left = self.normalizer.normalize(left)
        norm_right = self.normalizer.normalize(right)
        if norm_left == norm_right:
            return SimilarityResult(
                left=left,
                right=right,
                score=1.0,
                signals=SimilaritySignals.exact(),
                exact_match=True,
                base_score=1.0,
            )

        signals = SimilaritySignals(
            levenshtein=self._signal("levenshtein", Levenshtein.normalized_similarity, norm_left, norm_right),
            jaro_winkler=self._signal("jaro_winkler", JaroWinkler.normalized_similarity, norm_left, norm_right),
            token_set=self._signal("token_set", token_set_similarity, norm_left, norm_right),
            suffix_stripped=self._signal("suffix_stripped", suffix_stripped_similarity, left, right),
            ngram_prefix=self._signal("ngram_prefix", ngram_prefix_similarity, norm_left, norm_right),
            core_brand=self._signal("core_brand", self._core_brand_similarity, left, right),
            phonetic=self._signal("phonetic", phonetic_similarity, norm_left, norm_right),
        )

        weights = self.config.weights.as_tuple()
        values = (
            signals.levenshtein,
            signals.jaro_winkler,
            signals.token_set,
            signals.suffix_stripped,
            signals.ngram_prefix,
            signals.core_brand,
            signals.phonetic,
        )
        base = sum(w * v for w, v in zip(weights, values))
        score = base
        if signals.core_brand >= CORE_BRAND_BOOST_FLOOR:
            score = min(1.0, score * self.config.core_brand_boost)
        penalties: tuple[tuple[str, float], ...] = ()
        if self.config.edge_cases.enabled:
            score, penalties = self._apply_penalties(score, norm_left, norm_right)

        return SimilarityResult(
            left=left,
            right=right,
            score=min(1.0, max(0.0, score)),
            signals=signals,
            base_score=base,
            penalties=penalties,
        )

    def _core_brand_similarity(self, left: str, right: str) -> float:
        core_left = self.normalizer.core_brand(left)
        core_right = self.normalizer.core_brand(right)
        if not core_left and not core_right:
            return 1.0
        if not core_left or not core_right:
            return 0.0
        if core_left == core_right:
            return 1.0
        return Levenshtein.normalized_similarity(core_left, core_right)

    def _apply_penalties(
        self, score: float, norm_left: str, norm_right: str
    ) -> tuple[float, tuple[tuple[str, float], ...]]:
        penalties = self.config.edge_cases
        tokens_left = norm_left.split()
        tokens_right = norm_right.split()
        applied: list[tuple[str, float]] = []
        if len(tokens_left) == 1 and len(tokens_right) == 1 and score < 0.85:
            applied.append(("single_word", penalties.single_word))
        if (len(norm_left) < 4 or len(norm_right) < 4) and score < 0.90:
            applied.append(("short_name", penalties.short_name))
        longest = max(len(norm_left), len(norm_right))
        shortest = min(len(norm_left), len(norm_right))
        if longest and (longest - shortest) / longest > 0.70:
            applied.append(("length_mismatch", penalties.length_mismatch))
        has_number_left = bool(_NUMERIC_VARIANT_RE.search(norm_left))
        has_number_right = bool(_NUMERIC_VARIANT_RE.search(norm_right))
        if has_number_left != has_number_right and score < 0.80:
            applied.append(("numeric_variance", penalties.numeric_variance))
        adjusted = score
        for _, factor in applied:
            adjusted *= factor
        return adjusted, tuple(applied)

    @staticmethod
    def _signal(name: str, fn: Callable[[str, str], float], left: str, right: str) -> float:
        # One failing algorithm must not cost the whole candidate pair.
        try:
            value = float(fn(left, right))
        except Exception:
            logger.debug("Signal %s failed for %r / %r", name, left, right, exc_info=True)
            return 0.0
        return min(1.0, max(0.0, value))


def token_set_similarity(left: str, right: str) -> float:
    tokens_left = {t for t in meaningful_tokens(left) if t not in TOKEN_STOP_WORDS}
    tokens_right = {t for t in meaningful_tokens(right) if t not in TOKEN_STOP_WORDS}
    if not tokens_left and not tokens_right:
        return 1.0
    if not tokens_left or not tokens_right:
        return 0.0
    return len(tokens_left & tokens_right) / len(tokens_left | tokens_right)


def suffix_stripped_similarity(left: str, right: str) -> float:
    clean_left = strip_legal_suffixes(left)
    clean_right = strip_legal_suffixes(right)
    if clean_left == clean_right:
        return 1.0
    return Levenshtein.normalized_similarity(clean_left, clean_right)


def ngram_prefix_similarity(left: str, right: str, n: int = NGRAM_PREFIX_TOKENS) -> float:
    tokens_left = meaningful_tokens(left)
    tokens_right = meaningful_tokens(right)
    compare = min(n, len(tokens_left), len(tokens_right))
    if compare == 0:
        return 0.0
    prefix_left = " ".join(tokens_left[:compare])
    prefix_right = " ".join(tokens_right[:compare])
    if prefix_left == prefix_right:
        return 1.0
    return Levenshtein.normalized_similarity(prefix_left, prefix_right)


def phonetic_codes(normalized: str) -> set[str]:
    codes: set[str] = set()
    for word in meaningful_tokens(normalized):
        primary, alternate = doublemetaphone(word)
        if primary:
            codes.add(primary)
        if alternate:
            codes.add(alternate)
    return codes


def phonetic_similarity(left: str, right: str) -> float:
    codes_left = phonetic_codes(left)
    codes_right = phonetic_codes(right)
    union = codes_left | codes_right
    if not codes_left or not codes_right or not union:
        return 0.0
    return len(codes_left & codes_right) / len(union)
