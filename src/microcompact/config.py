"""Configuration loader: YAML file with environment variable fallbacks."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from .exceptions import ConfigurationError

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_MODEL_LIMIT = 200_000

_BUILTIN_MODEL_LIMITS: dict[str, int] = {
    "claude-3-opus-20240229": 200_000,
    "claude-3-sonnet-20240229": 200_000,
    "claude-3-5-sonnet-20241022": 200_000,
    "claude-3-haiku-20240307": 200_000,
    "claude-2.1": 200_000,
    "claude-2.0": 100_000,
    "claude-instant-1.2": 100_000,
}


@dataclass(frozen=True)
class ModelPricing:
    """USD per million tokens."""

    input: float
    output: float
    cache_write: float
    cache_read: float


_BUILTIN_MODEL_PRICING: dict[str, ModelPricing] = {
    "claude-3-opus-20240229": ModelPricing(input=15.00, output=75.00, cache_write=3.75, cache_read=1.88),
    "claude-3-5-sonnet-20241022": ModelPricing(input=3.00, output=15.00, cache_write=3.75, cache_read=0.30),
    "claude-3-haiku-20240307": ModelPricing(input=0.25, output=1.25, cache_write=0.30, cache_read=0.03),
}


@dataclass(frozen=True)
class ModelTables:
    """Read-only model limit and pricing lookups, injected wherever a model is resolved."""

    limits: Mapping[str, int] = field(default_factory=lambda: MappingProxyType(dict(_BUILTIN_MODEL_LIMITS)))
    pricing: Mapping[str, ModelPricing] = field(
        default_factory=lambda: MappingProxyType(dict(_BUILTIN_MODEL_PRICING))
    )
    default_limit: int = DEFAULT_MODEL_LIMIT

    def __post_init__(self) -> None:
        # Copy and freeze caller-supplied dicts.
        if not isinstance(self.limits, MappingProxyType):
            object.__setattr__(self, "limits", MappingProxyType(dict(self.limits)))
        if not isinstance(self.pricing, MappingProxyType):
            object.__setattr__(self, "pricing", MappingProxyType(dict(self.pricing)))
        if self.default_limit <= 0:
            raise ConfigurationError("default_limit must be positive", details={"default_limit": self.default_limit})
        for model, limit in self.limits.items():
            if limit <= 0:
                raise ConfigurationError(
                    f"Context limit for '{model}' must be positive", details={"model": model, "limit": limit}
                )

    def limit_for(self, model: str) -> int:
        return self.limits.get(model, self.default_limit)

    def pricing_for(self, model: str) -> ModelPricing | None:
        return self.pricing.get(model)

    def merged(
        self,
        limits: Mapping[str, int] | None = None,
        pricing: Mapping[str, ModelPricing] | None = None,
    ) -> ModelTables:
        return ModelTables(
            limits={**self.limits, **(limits or {})},
            pricing={**self.pricing, **(pricing or {})},
            default_limit=self.default_limit,
        )


DEFAULT_TABLES = ModelTables()


@dataclass(frozen=True)
class CompactionConfig:
    threshold: int = 150_000
    target_ratio: float = 0.5
    min_messages_to_compact: int = 10
    preserve_tool_calls: bool = True
    model: str = DEFAULT_MODEL
    search_radius: int = 5
    min_tail_messages: int = 5  # kept verbatim after the boundary
    approaching_limit_ratio: float = 0.75

    def __post_init__(self) -> None:
        if not self.model:
            raise ConfigurationError("A model identifier is required")
        if self.threshold <= 0:
            raise ConfigurationError("threshold must be positive", details={"threshold": self.threshold})
        if not 0 < self.target_ratio <= 1:
            raise ConfigurationError(
                "target_ratio must be in (0, 1]", details={"target_ratio": self.target_ratio}
            )
        if not 0 < self.approaching_limit_ratio <= 1:
            raise ConfigurationError(
                "approaching_limit_ratio must be in (0, 1]",
                details={"approaching_limit_ratio": self.approaching_limit_ratio},
            )
        if self.min_messages_to_compact < 1:
            raise ConfigurationError(
                "min_messages_to_compact must be at least 1",
                details={"min_messages_to_compact": self.min_messages_to_compact},
            )
        if self.min_tail_messages < 1:
            raise ConfigurationError(
                "min_tail_messages must be at least 1", details={"min_tail_messages": self.min_tail_messages}
            )
        if self.search_radius < 0:
            raise ConfigurationError(
                "search_radius must not be negative", details={"search_radius": self.search_radius}
            )


@dataclass
class AppConfig:
    compaction: CompactionConfig = field(default_factory=CompactionConfig)
    tables: ModelTables = field(default_factory=lambda: DEFAULT_TABLES)


def _get_config_path(data_dir: Path | None = None) -> Path:
    if data_dir:
        return data_dir / "config.yaml"
    return Path.home() / ".microcompact" / "config.yaml"


def _as_bool(raw: Any) -> bool:
    return str(raw).lower() not in ("false", "0", "no")


def _parse_models(raw_models: Any, path: Path) -> tuple[dict[str, int], dict[str, ModelPricing]]:
    if not isinstance(raw_models, dict):
        raise ConfigurationError(f"'models' in {path} must be a mapping of model name to settings")

    limits: dict[str, int] = {}
    pricing: dict[str, ModelPricing] = {}
    for name, entry in raw_models.items():
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Model entry '{name}' in {path} must be a mapping", details={"model": name})
        try:
            if "limit" in entry:
                limits[str(name)] = int(entry["limit"])
            price_raw = entry.get("pricing")
            if price_raw:
                pricing[str(name)] = ModelPricing(
                    input=float(price_raw["input"]),
                    output=float(price_raw["output"]),
                    cache_write=float(price_raw.get("cache_write", 0.0)),
                    cache_read=float(price_raw.get("cache_read", 0.0)),
                )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Model entry '{name}' in {path} is invalid: {e}", details={"model": name}
            ) from e
        if limits.get(str(name), 1) <= 0:
            raise ConfigurationError(
                f"Model entry '{name}' in {path} has a non-positive limit: {limits[str(name)]}",
                details={"model": name, "limit": limits[str(name)]},
            )
    return limits, pricing


def load_config(config_path: Path | None = None) -> AppConfig:
    raw: dict[str, Any] = {}
    path = config_path or _get_config_path()

    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

    comp_raw = raw.get("compaction", {}) or {}
    model = comp_raw.get("model") or os.environ.get("MICROCOMPACT_MODEL", DEFAULT_MODEL)
    preserve_raw = comp_raw.get("preserve_tool_calls", os.environ.get("MICROCOMPACT_PRESERVE_TOOL_CALLS", "true"))

    try:
        compaction = CompactionConfig(
            threshold=int(comp_raw.get("threshold") or os.environ.get("MICROCOMPACT_THRESHOLD", "150000")),
            target_ratio=float(comp_raw.get("target_ratio") or os.environ.get("MICROCOMPACT_TARGET_RATIO", "0.5")),
            min_messages_to_compact=int(
                comp_raw.get("min_messages_to_compact") or os.environ.get("MICROCOMPACT_MIN_MESSAGES", "10")
            ),
            preserve_tool_calls=_as_bool(preserve_raw),
            model=model,
            search_radius=int(comp_raw.get("search_radius", 5)),
            min_tail_messages=int(comp_raw.get("min_tail_messages", 5)),
            approaching_limit_ratio=float(comp_raw.get("approaching_limit_ratio", 0.75)),
        )
    except (TypeError, ValueError) as e:
        if isinstance(e, ConfigurationError):
            raise
        raise ConfigurationError(f"Invalid compaction settings in {path}: {e}") from e

    tables = DEFAULT_TABLES
    if "models" in raw:
        limits, pricing = _parse_models(raw["models"], path)
        tables = DEFAULT_TABLES.merged(limits=limits, pricing=pricing)

    return AppConfig(compaction=compaction, tables=tables)
