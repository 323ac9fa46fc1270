"""Heuristic token estimation for strings and transcripts.

A string is estimated as the larger of a word-based and a character-based
count, so the figure errs high.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..config import DEFAULT_MODEL, DEFAULT_TABLES, ModelTables
from ..exceptions import InputShapeError
from ..models import ImageBlock, Message, TextBlock, ToolResultBlock, ToolUseBlock, coerce_messages

TOKENS_PER_WORD = 1.3
CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4
TOOL_USE_OVERHEAD_TOKENS = 50
IMAGE_TOKENS = 1500
DEFAULT_APPROACHING_RATIO = 0.75


def estimate_token_count(text: str | None) -> int:
    if not text:
        return 0
    if not isinstance(text, str):
        raise InputShapeError(f"Expected text to estimate, got {type(text).__name__}")
    word_estimate = math.ceil(len(re.split(r"\s+", text)) * TOKENS_PER_WORD)
    char_estimate = math.ceil(len(text) / CHARS_PER_TOKEN)
    return max(word_estimate, char_estimate)


def _serialize_tool_input(block: ToolUseBlock) -> str:
    try:
        return json.dumps(block.input, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise InputShapeError(
            f"tool_use block '{block.name}' has input that cannot be serialized to JSON",
            details={"tool": block.name, "tool_use_id": block.id},
        ) from e


def _estimate_block(block: Any) -> int:
    if isinstance(block, TextBlock):
        return estimate_token_count(block.text)
    if isinstance(block, ToolUseBlock):
        return TOOL_USE_OVERHEAD_TOKENS + estimate_token_count(_serialize_tool_input(block))
    if isinstance(block, ToolResultBlock):
        return estimate_token_count(block.text()) + IMAGE_TOKENS * block.image_count()
    if isinstance(block, ImageBlock):
        return IMAGE_TOKENS
    raise InputShapeError(f"Unsupported content block: {type(block).__name__}")


def estimate_messages_token_count(messages: Sequence[Message | dict[str, Any]]) -> int:
    total = 0
    for message in coerce_messages(messages):
        total += MESSAGE_OVERHEAD_TOKENS
        if isinstance(message.content, str):
            total += estimate_token_count(message.content)
            continue
        for block in message.content:
            total += _estimate_block(block)
    return total


def is_approaching_limit(
    messages: Sequence[Message | dict[str, Any]],
    model_limit: int,
    threshold_ratio: float = DEFAULT_APPROACHING_RATIO,
) -> bool:
    return estimate_messages_token_count(messages) > model_limit * threshold_ratio


def is_token_limit_exceeded(
    messages: Sequence[Message | dict[str, Any]],
    model: str = DEFAULT_MODEL,
    tables: ModelTables | None = None,
) -> bool:
    tables = tables or DEFAULT_TABLES
    return estimate_messages_token_count(messages) >= tables.limit_for(model)


def get_recommended_model(token_count: int) -> str:
    """Smallest model in the family that comfortably fits ``token_count``."""
    if token_count < 50_000:
        return "claude-3-haiku-20240307"
    if token_count < 150_000:
        return "claude-3-5-sonnet-20241022"
    return "claude-3-opus-20240229"


@dataclass(frozen=True)
class TokenEstimator:
    """Estimation functions bound to one model's context limit."""

    model: str = DEFAULT_MODEL
    tables: ModelTables = field(default=DEFAULT_TABLES)

    @property
    def model_limit(self) -> int:
        return self.tables.limit_for(self.model)

    def estimate_token_count(self, text: str | None) -> int:
        return estimate_token_count(text)

    def estimate_messages_token_count(self, messages: Sequence[Message | dict[str, Any]]) -> int:
        return estimate_messages_token_count(messages)

    def is_approaching_limit(
        self,
        messages: Sequence[Message | dict[str, Any]],
        threshold_ratio: float = DEFAULT_APPROACHING_RATIO,
    ) -> bool:
        return is_approaching_limit(messages, self.model_limit, threshold_ratio)
