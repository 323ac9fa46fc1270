"""Session-level accounting of provider-reported token usage and cost."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any

from ..config import DEFAULT_MODEL, DEFAULT_TABLES, ModelTables
from ..models import Message
from .token_estimator import estimate_messages_token_count, estimate_token_count

logger = logging.getLogger(__name__)

_USAGE_FIELDS = (
    "input_tokens",
    "output_tokens",
    "cache_creation_input_tokens",
    "cache_read_input_tokens",
)
_CACHING_MODEL_PATTERNS = ("claude-3",)


@dataclass(frozen=True)
class UsageSnapshot:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        # Cache tokens are reported separately and never count toward the total.
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class UsageEntry:
    timestamp: int  # ms since epoch
    input: int
    output: int
    cache_creation: int
    cache_read: int


@dataclass(frozen=True)
class Cost:
    input: float
    output: float
    cache_write: float
    cache_read: float

    @property
    def total(self) -> float:
        return self.input + self.output + self.cache_write + self.cache_read


@dataclass(frozen=True)
class TokenUsage:
    input: int
    output: int
    total: int
    cache_creation: int = 0
    cache_read: int = 0


def _read_field(delta: Any, name: str) -> int:
    if isinstance(delta, dict):
        value = delta.get(name)
    else:
        value = getattr(delta, name, None)
    if value is None or isinstance(value, bool):
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric usage field %s=%r", name, value)
        return 0
    if count < 0:
        logger.debug("Ignoring negative usage field %s=%r", name, value)
        return 0
    return count


def _read_usage(delta: Any) -> dict[str, int]:
    return {name: _read_field(delta, name) for name in _USAGE_FIELDS}


def _format_usd(amount: float) -> str:
    return f"${amount:.4f}"


class UsageTracker:
    """Accumulates usage deltas for one session against one model.

    Mutating methods return immutable ``UsageSnapshot`` values; the running
    totals themselves are never handed out.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        *,
        tables: ModelTables | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.model = model
        self._tables = tables or DEFAULT_TABLES
        self._clock = clock
        self._usage = UsageSnapshot()
        self._session_usage: list[UsageEntry] = []

    @property
    def model_limit(self) -> int:
        return self._tables.limit_for(self.model)

    @property
    def usage(self) -> UsageSnapshot:
        return self._usage

    @property
    def session_usage(self) -> tuple[UsageEntry, ...]:
        return tuple(self._session_usage)

    def update_usage(self, usage_delta: Any) -> UsageSnapshot:
        if usage_delta is None:
            return self._usage

        fields = _read_usage(usage_delta)
        self._usage = replace(
            self._usage,
            input_tokens=self._usage.input_tokens + fields["input_tokens"],
            output_tokens=self._usage.output_tokens + fields["output_tokens"],
            cache_creation_tokens=self._usage.cache_creation_tokens + fields["cache_creation_input_tokens"],
            cache_read_tokens=self._usage.cache_read_tokens + fields["cache_read_input_tokens"],
        )
        self._session_usage.append(
            UsageEntry(
                timestamp=int(self._clock() * 1000),
                input=fields["input_tokens"],
                output=fields["output_tokens"],
                cache_creation=fields["cache_creation_input_tokens"],
                cache_read=fields["cache_read_input_tokens"],
            )
        )
        return self._usage

    def calculate_cost(self) -> Cost | None:
        pricing = self._tables.pricing_for(self.model)
        if pricing is None:
            return None
        return Cost(
            input=self._usage.input_tokens / 1_000_000 * pricing.input,
            output=self._usage.output_tokens / 1_000_000 * pricing.output,
            cache_write=self._usage.cache_creation_tokens / 1_000_000 * pricing.cache_write,
            cache_read=self._usage.cache_read_tokens / 1_000_000 * pricing.cache_read,
        )

    def get_usage_summary(self) -> dict[str, Any]:
        cost = self.calculate_cost()
        limit = self.model_limit
        used = self._usage.total_tokens
        return {
            "tokens": {
                "used": used,
                "limit": limit,
                "percentage": f"{used / limit * 100:.1f}%",
                "remaining": limit - used,
            },
            "breakdown": {
                "input": self._usage.input_tokens,
                "output": self._usage.output_tokens,
                "cache": self._usage.cache_creation_tokens + self._usage.cache_read_tokens,
            },
            "cost": (
                {
                    "total": _format_usd(cost.total),
                    "input": _format_usd(cost.input),
                    "output": _format_usd(cost.output),
                    "cache": _format_usd(cost.cache_write + cost.cache_read),
                }
                if cost
                else None
            ),
        }

    def reset(self) -> UsageSnapshot:
        self._usage = UsageSnapshot()
        self._session_usage = []
        return self._usage

    @staticmethod
    def get_model_limit(model: str, tables: ModelTables | None = None) -> int:
        return (tables or DEFAULT_TABLES).limit_for(model)

    @staticmethod
    def supports_caching(model: str) -> bool:
        return any(pattern in model for pattern in _CACHING_MODEL_PATTERNS)

    @staticmethod
    def format_token_count(count: int) -> str:
        if count < 1000:
            return str(count)
        if count < 1_000_000:
            return f"{count / 1000:.1f}k"
        return f"{count / 1_000_000:.2f}M"


def calculate_token_usage(messages: Sequence[Message | dict[str, Any]], response: Any) -> TokenUsage:
    """Usage for one call: the provider's own figures when reported, else an estimate."""
    usage = response.get("usage") if isinstance(response, dict) else getattr(response, "usage", None)
    if usage:
        fields = _read_usage(usage)
        return TokenUsage(
            input=fields["input_tokens"],
            output=fields["output_tokens"],
            total=fields["input_tokens"] + fields["output_tokens"],
            cache_creation=fields["cache_creation_input_tokens"],
            cache_read=fields["cache_read_input_tokens"],
        )

    input_tokens = estimate_messages_token_count(messages)
    content = response.get("content") if isinstance(response, dict) else getattr(response, "content", None)
    output_tokens = estimate_token_count(json.dumps(content if content is not None else response, default=str))
    return TokenUsage(input=input_tokens, output=output_tokens, total=input_tokens + output_tokens)
