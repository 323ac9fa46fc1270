"""Choosing where to cut a transcript for compaction.

Candidate cut points are scored from a base of 100. A cut right after a
completed tool round-trip or a finished assistant turn reads naturally; a cut
between a ``tool_use`` and its ``tool_result`` would orphan the result, so that
penalty is large enough to lose against any non-splitting neighbour.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from ..models import Message, ToolResultBlock, coerce_messages

BASE_SCORE = 100
AFTER_TOOL_RESULT_BONUS = 50
AFTER_ASSISTANT_BONUS = 30
TOOL_SEQUENCE_PENALTY = -100
CONVERSATION_BREAK_BONUS = 20
BREAK_GAP_MS = 300_000  # 5 minutes of inactivity


@dataclass(frozen=True)
class Boundary:
    index: int
    score: int
    timestamp: int  # ms since epoch, when the boundary was chosen


def is_in_tool_sequence(messages: Sequence[Message], index: int) -> bool:
    if index <= 0 or index >= len(messages):
        return False
    prev, nxt = messages[index - 1], messages[index]
    return (
        prev.role == "assistant"
        and prev.has_block("tool_use")
        and nxt.role == "user"
        and nxt.has_block("tool_result")
    )


def is_conversation_break(messages: Sequence[Message], index: int) -> bool:
    if index <= 0 or index >= len(messages):
        return False
    prev, nxt = messages[index - 1], messages[index]
    if prev.role == "user" and nxt.role == "user":
        return True
    if prev.timestamp and nxt.timestamp:
        return nxt.timestamp - prev.timestamp > BREAK_GAP_MS
    return False


def score_boundary(messages: Sequence[Message], index: int) -> int:
    score = BASE_SCORE
    prev = messages[index - 1] if 0 < index <= len(messages) else None

    if prev is not None and prev.role == "user" and isinstance(prev.first_block(), ToolResultBlock):
        score += AFTER_TOOL_RESULT_BONUS
    if prev is not None and prev.role == "assistant":
        score += AFTER_ASSISTANT_BONUS
    if is_in_tool_sequence(messages, index):
        score += TOOL_SEQUENCE_PENALTY
    if is_conversation_break(messages, index):
        score += CONVERSATION_BREAK_BONUS
    return score


def candidate_window(
    length: int,
    target_ratio: float,
    search_radius: int = 5,
    min_index: int = 10,
    min_tail: int | None = None,
) -> range:
    """Inclusive search window around ``floor(length * target_ratio)``.

    ``min_tail`` is how many messages must stay after the cut; it defaults to
    ``min_index``.
    """
    tail = min_index if min_tail is None else min_tail
    target = int(length * target_ratio)
    start = max(min_index, target - search_radius)
    stop = min(length - tail, target + search_radius)
    return range(start, stop + 1)


def find_boundary(
    messages: Sequence[Message | dict[str, Any]],
    target_ratio: float,
    search_radius: int = 5,
    min_index: int = 10,
    *,
    min_tail: int | None = None,
    clock: Callable[[], float] = time.time,
) -> Boundary | None:
    messages = coerce_messages(messages)
    best_index: int | None = None
    best_score = 0
    for i in candidate_window(len(messages), target_ratio, search_radius, min_index, min_tail):
        score = score_boundary(messages, i)
        # Strictly greater: ties keep the earliest candidate.
        if best_index is None or score > best_score:
            best_index, best_score = i, score

    if best_index is None:
        return None
    return Boundary(index=best_index, score=best_score, timestamp=int(clock() * 1000))
