from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from customer_merge.errors import ConfigurationError

logger = logging.getLogger(__name__)

_WEIGHT_TOLERANCE = 0.01
_MAX_CORE_BRAND_BOOST = 1.08

# camelCase keys accepted from JSON-style configuration documents.
_ALIASES = {
    "businessSuffix": "suffix_stripped",
    "withoutSuffix": "suffix_stripped",
    "nGramPrefix": "ngram_prefix",
    "rules": "business_rules",
    "businessRules": "business_rules",
}


@dataclass(frozen=True)
class SignalWeights:
    levenshtein: float = 0.10
    jaro_winkler: float = 0.10
    token_set: float = 0.15
    suffix_stripped: float = 0.08
    ngram_prefix: float = 0.23
    core_brand: float = 0.22
    phonetic: float = 0.12

    def __post_init__(self) -> None:
        values = self.as_tuple()
        if any(value < 0 for value in values):
            raise ConfigurationError(f"signal weights must be non-negative: {values}")
        total = sum(values)
        if abs(total - 1.0) > _WEIGHT_TOLERANCE:
            raise ConfigurationError(f"signal weights must sum to 1.0, got {total:.4f}")

    def as_tuple(self) -> tuple[float, ...]:
        return (
            self.levenshtein,
            self.jaro_winkler,
            self.token_set,
            self.suffix_stripped,
            self.ngram_prefix,
            self.core_brand,
            self.phonetic,
        )


@dataclass(frozen=True)
class BusinessRules:
    """Customers excluded from automatic merging regardless of similarity."""

    protect_high_value_customers: bool = True
    high_value_threshold: float = 1_000_000
    protect_recent_customers: bool = True
    recent_days_threshold: int = 30

    def __post_init__(self) -> None:
        if self.high_value_threshold < 0:
            raise ConfigurationError("high_value_threshold must be non-negative")
        if self.recent_days_threshold < 0:
            raise ConfigurationError("recent_days_threshold must be non-negative")


@dataclass(frozen=True)
class EdgeCasePenalties:
    """Multiplicative confidence penalties for suspicious pairs."""

    enabled: bool = False
    single_word: float = 0.85
    short_name: float = 0.90
    length_mismatch: float = 0.85
    numeric_variance: float = 0.80

    def __post_init__(self) -> None:
        for name in ("single_word", "short_name", "length_mismatch", "numeric_variance"):
            _check_unit_interval(name, getattr(self, name))


@dataclass(frozen=True)
class MergeConfig:
    """Immutable scan configuration, validated on construction."""

    min_confidence_threshold: float = 0.65
    high_confidence_threshold: float = 0.90
    max_group_size: int = 5
    replacement_threshold: float = 0.70
    strip_locations: bool = False
    cache_size: int = 50_000
    core_brand_boost: float = 1.08
    weights: SignalWeights = field(default_factory=SignalWeights)
    business_rules: BusinessRules = field(default_factory=BusinessRules)
    edge_cases: EdgeCasePenalties = field(default_factory=EdgeCasePenalties)

    def __post_init__(self) -> None:
        _check_unit_interval("min_confidence_threshold", self.min_confidence_threshold)
        _check_unit_interval("high_confidence_threshold", self.high_confidence_threshold)
        _check_unit_interval("replacement_threshold", self.replacement_threshold)
        if self.max_group_size < 2:
            raise ConfigurationError(f"max_group_size must be at least 2, got {self.max_group_size}")
        if self.cache_size < 0:
            raise ConfigurationError("cache_size must be non-negative")
        if not 1.0 <= self.core_brand_boost <= _MAX_CORE_BRAND_BOOST:
            raise ConfigurationError(
                f"core_brand_boost must be within [1.0, {_MAX_CORE_BRAND_BOOST}], got {self.core_brand_boost}"
            )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "MergeConfig":
        return cls().with_overrides(mapping)

    def with_overrides(self, mapping: Mapping[str, Any]) -> "MergeConfig":
        if not isinstance(mapping, Mapping):
            raise ConfigurationError(f"configuration section must be a mapping, got {type(mapping).__name__}")
        values = _normalize_keys(mapping, cls_name="MergeConfig", allowed=_field_names(MergeConfig))
        nested = {
            "weights": SignalWeights,
            "business_rules": BusinessRules,
            "edge_cases": EdgeCasePenalties,
        }
        for key, nested_cls in nested.items():
            if key in values:
                raw = values[key]
                if not isinstance(raw, Mapping):
                    raise ConfigurationError(f"{key} must be a mapping")
                current = getattr(self, key)
                overrides = _normalize_keys(raw, cls_name=nested_cls.__name__, allowed=_field_names(nested_cls))
                values[key] = _build(replace, current, overrides)
        return _build(replace, self, values)


class StaticConfigSource:
    def __init__(self, config: MergeConfig | None = None) -> None:
        self._config = config or MergeConfig()

    def load(self, division: str) -> MergeConfig:
        return self._config


class YamlConfigSource:
    """Reads ``default`` and per-division sections from a YAML document.

    Division sections are merged over ``default``. An unreadable file falls back
    to the built-in defaults; an invalid document raises ConfigurationError.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self, division: str) -> MergeConfig:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Using default merge configuration (%s unreadable: %s)", self.path, exc)
            return MergeConfig()

        if not isinstance(raw, Mapping):
            raise ConfigurationError(f"{self.path} must contain a mapping")
        config = MergeConfig.from_mapping(raw.get("default") or {})
        divisions = raw.get("divisions") or {}
        if not isinstance(divisions, Mapping):
            raise ConfigurationError(f"{self.path}: divisions must be a mapping")
        override = divisions.get(division)
        if override:
            config = config.with_overrides(override)
            logger.info("Loaded merge configuration for division %s from %s", division, self.path)
        return config


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must be within [0, 1], got {value}")


def _field_names(cls: type) -> set[str]:
    return {f.name for f in fields(cls)}


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _normalize_keys(mapping: Mapping[str, Any], *, cls_name: str, allowed: set[str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key, value in mapping.items():
        name = _ALIASES.get(key, _snake_case(key))
        if name not in allowed:
            raise ConfigurationError(f"unknown {cls_name} option: {key!r}")
        values[name] = value
    return values


def _build(factory, base, values: dict[str, Any]):
    try:
        return factory(base, **values)
    except TypeError as exc:
        raise ConfigurationError(str(exc)) from exc
