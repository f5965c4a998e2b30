from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable, Mapping
from functools import lru_cache

ABBREVIATIONS: Mapping[str, str] = {
    "intl": "international",
    "int'l": "international",
    "int": "international",
    "co": "company",
    "cos": "companies",
    "gen": "general",
    "mfg": "manufacturing",
    "mfr": "manufacturer",
    "dist": "distribution",
    "distr": "distribution",
    "trdg": "trading",
    "trd": "trading",
    "dxb": "dubai",
    "shj": "sharjah",
    "auh": "abu dhabi",
    "dept": "department",
    "mgmt": "management",
    "svcs": "services",
    "tech": "technology",
    "elec": "electronics",
    "auto": "automotive",
}

LEGAL_SUFFIXES = (
    "llc",
    "l l c",
    "ltd",
    "limited",
    "inc",
    "incorporated",
    "corp",
    "corporation",
    "co",
    "company",
    "est",
    "establishment",
    "fze",
    "fzc",
    "fzco",
    "plc",
    "pllc",
)

LOCATION_KEYWORDS = (
    "dubai",
    "uae",
    "sharjah",
    "abu dhabi",
    "ajman",
    "ras al khaimah",
    "fujairah",
    "umm al quwain",
    "dxb",
    "shj",
    "auh",
)

# Words that follow the brand in a trading name.
DESCRIPTORS = frozenset(
    {
        "center", "centre", "manufacturing", "trading", "general", "store", "shop",
        "outlet", "mart", "market", "supermarket", "international", "enterprises",
        "industries", "services", "solutions", "systems", "technology", "technologies", "group",
        "holdings", "distribution", "distributors", "wholesale", "retail", "sales",
        "products", "supplies", "equipment",
    }
)

ARTICLES = frozenset({"and", "the", "for", "with", "from"})

TOKEN_STOP_WORDS = ARTICLES | {"group", "international", "trading", "general", "company", "enterprises"}

_SUFFIX_WORDS = frozenset(suffix for suffix in LEGAL_SUFFIXES if " " not in suffix)

_ABBREVIATION_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(k) for k in sorted(ABBREVIATIONS, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)
_SUFFIX_RE = re.compile(r"\b(?:" + "|".join(re.escape(s) for s in LEGAL_SUFFIXES) + r")\b")
_TRAILING_SUFFIX_RE = re.compile(
    r"[\s,]+(?:l\.?\s?l\.?\s?c|ltd|limited|inc|incorporated|corp|corporation|co|company|"
    r"est|establishment|fze|fzc|fzco|plc|pllc)\.?\s*$",
    re.IGNORECASE,
)
_LOCATION_RE = re.compile(r"\b(?:" + "|".join(re.escape(loc) for loc in LOCATION_KEYWORDS) + r")\b")
_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")

# Applied in order on lowercased text. Emails and phones go before bare numbers.
_NOISE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern), replacement)
    for pattern, replacement in (
        (r"\b(llc|ltd|inc|est|co)(no|street|shop|floor|building|unit|suite|room|office)\s*(\d+|\.)", r"\1 \2 \3"),
        (r"\S+@\S+\.\S+", " "),
        (r"\b(?:tel|phone|mob|mobile|fax)[:.\s]*[\d\s\-+()]+", " "),
        (r"[+(]?\d{2,4}[)\-\s]?\d{3,4}[\-\s]?\d{3,4}", " "),
        (r"\b(?:po|p\.o\.?)\s*box[:\s]*\d+", " "),
        (r"\bpobox\s*\d+", " "),
        (r"\b(?:shop|office|unit|suite|room)\s*(?:no\.?|number|#)?\s*:?\s*\d+", " "),
        (r"\bstore\s*(?:no\.?|number|#)\s*:?\s*\d+", " "),
        (r"\b(?:building|floor|level|block)\s*:?\s*\d+", " "),
        (r"\bstreet\s*\d+", " "),
        (r"\bst\.?\s*\d+", " "),
        (r"\bno\.?\s*\d+", " "),
        (r"\bnumber\.?\s*\d+", " "),
        (r"#\s*\d+", " "),
        (r"\b\d{3,}\b", " "),
        (r"[,;]+", " "),
    )
)


class NameNormalizer:
    """Canonicalizes raw customer names into a comparison-only form.

    Stages run in order: accent folding, abbreviation expansion, address and
    contact noise removal, then case/punctuation/legal-suffix folding. A stage
    that would empty the name is skipped, so a non-blank name never normalizes
    to an empty string. Results are cached per raw string.
    """

    def __init__(self, strip_locations: bool = False, cache_size: int | None = 50_000) -> None:
        self._strip_locations = strip_locations
        self._cached: Callable[[str], str] = lru_cache(maxsize=cache_size)(self._normalize)

    def normalize(self, raw: str) -> str:
        if not raw:
            return ""
        return self._cached(raw)

    def cache_info(self):
        return self._cached.cache_info()

    def _normalize(self, raw: str) -> str:
        current = _collapse(fold_accents(raw))
        if not current:
            return ""
        for stage in (self.expand_abbreviations, self.remove_noise, _standardize):
            staged = stage(current)
            if staged:
                current = staged
        return _collapse(current.lower())

    def expand_abbreviations(self, text: str) -> str:
        return _ABBREVIATION_RE.sub(lambda m: ABBREVIATIONS[m.group(0).lower()], text.lower())

    def remove_noise(self, text: str) -> str:
        cleaned = text.lower()
        for pattern, replacement in _NOISE_PATTERNS:
            cleaned = pattern.sub(replacement, cleaned)
        if self._strip_locations:
            cleaned = _LOCATION_RE.sub(" ", cleaned)
        return _collapse(cleaned)

    def core_brand(self, raw: str) -> str:
        """Leading brand-identifying tokens, descriptors and suffixes dropped."""
        tokens = [t for t in meaningful_tokens(self.normalize(raw)) if t not in ARTICLES]
        if not tokens:
            return ""
        core: list[str] = []
        for token in tokens:
            if token in DESCRIPTORS or token in _SUFFIX_WORDS:
                break
            core.append(token)
            if len(core) >= 4:
                break
        if not core:
            return " ".join(tokens[:2])
        return " ".join(core)


def fold_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def meaningful_tokens(normalized: str) -> list[str]:
    return [token for token in normalized.split(" ") if len(token) > 2]


def strip_legal_suffixes(raw: str) -> str:
    """Removes punctuation and legal-entity suffixes only; no other cleaning."""
    cleaned = _PUNCTUATION_RE.sub("", raw.lower())
    return _collapse(_SUFFIX_RE.sub(" ", _collapse(cleaned)))


def strip_trailing_suffixes(raw: str) -> str:
    stripped = raw.strip()
    while True:
        shorter = _TRAILING_SUFFIX_RE.sub("", stripped).strip()
        if shorter == stripped:
            return stripped
        stripped = shorter


def _standardize(text: str) -> str:
    cleaned = _PUNCTUATION_RE.sub("", _collapse(text.lower()))
    return _collapse(_SUFFIX_RE.sub(" ", _collapse(cleaned)))


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()
