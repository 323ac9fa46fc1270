"""Microcompaction: collapse an old transcript prefix into a short summary.

Flow for ``apply_microcompaction``::

    token gate -> message-count gate -> boundary search -> summarize prefix
    -> [boundary marker, *summary, *suffix]

Each gate that does not pass returns ``None``; callers carry on uncompacted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from ..config import DEFAULT_TABLES, CompactionConfig, ModelTables
from ..models import BOUNDARY_METADATA_KEY, Message, coerce_messages
from .boundary import Boundary, find_boundary
from .summarizer import ConversationSummarizer, Summarizer
from .token_estimator import TokenEstimator

logger = logging.getLogger(__name__)

COMPACTION_THRESHOLD = 150_000
TARGET_SIZE_RATIO = 0.5
MIN_MESSAGES_TO_COMPACT = 10

BOUNDARY_MARKER_TEXT = "--- Conversation Compacted ---"


@dataclass(frozen=True)
class CompactionResult:
    messages: tuple[Message, ...]
    original_count: int
    compacted_count: int
    boundary: Boundary
    token_savings: int  # may be negative when the summary outweighs the prefix
    pre_compact_token_count: int
    post_compact_token_count: int

    def message_dicts(self) -> list[dict[str, Any]]:
        return [m.to_dict() for m in self.messages]


@dataclass(frozen=True)
class CompactionStats:
    token_count: int
    threshold: int
    percentage_full: str
    needs_compaction: bool
    message_count: int
    estimated_savings: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "token_count": self.token_count,
            "threshold": self.threshold,
            "percentage_full": self.percentage_full,
            "needs_compaction": self.needs_compaction,
            "message_count": self.message_count,
            "estimated_savings": self.estimated_savings,
        }


def create_boundary_marker(boundary: Boundary) -> Message:
    return Message(
        role="system",
        content=BOUNDARY_MARKER_TEXT,
        metadata={
            BOUNDARY_METADATA_KEY: True,
            "timestamp": boundary.timestamp,
            "index": boundary.index,
        },
    )


class MicrocompactionManager:
    def __init__(
        self,
        config: CompactionConfig | None = None,
        *,
        tables: ModelTables | None = None,
        summarizer: Summarizer | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or CompactionConfig()
        self.estimator = TokenEstimator(model=self.config.model, tables=tables or DEFAULT_TABLES)
        self.summarizer = summarizer or ConversationSummarizer(
            preserve_tool_calls=self.config.preserve_tool_calls
        )
        self._clock = clock

    @property
    def threshold(self) -> int:
        return self.config.threshold

    def _passes_gates(self, messages: Sequence[Message], token_count: int) -> bool:
        if token_count < self.config.threshold:
            logger.debug("Compaction skipped: %d tokens below threshold %d", token_count, self.config.threshold)
            return False
        if len(messages) < self.config.min_messages_to_compact:
            logger.debug(
                "Compaction skipped: %d messages, need at least %d",
                len(messages),
                self.config.min_messages_to_compact,
            )
            return False
        return True

    def find_compaction_boundary(self, messages: Sequence[Message | dict[str, Any]]) -> Boundary | None:
        return find_boundary(
            messages,
            self.config.target_ratio,
            self.config.search_radius,
            self.config.min_messages_to_compact,
            min_tail=self.config.min_tail_messages,
            clock=self._clock,
        )

    async def apply_microcompaction(
        self, messages: Sequence[Message | dict[str, Any]]
    ) -> CompactionResult | None:
        transcript = coerce_messages(messages)
        token_count = self.estimator.estimate_messages_token_count(transcript)
        if not self._passes_gates(transcript, token_count):
            return None

        boundary = self.find_compaction_boundary(transcript)
        if boundary is None:
            logger.debug("Compaction skipped: no boundary in search window for %d messages", len(transcript))
            return None

        summary = await self.summarizer.summarize(transcript[: boundary.index], boundary)
        compacted = (
            create_boundary_marker(boundary),
            *summary.messages,
            *transcript[boundary.index :],
        )

        new_token_count = self.estimator.estimate_messages_token_count(compacted)
        result = CompactionResult(
            messages=compacted,
            original_count=len(transcript),
            compacted_count=len(compacted),
            boundary=boundary,
            token_savings=token_count - new_token_count,
            pre_compact_token_count=token_count,
            post_compact_token_count=new_token_count,
        )
        logger.info(
            "Compacted prefix of %d messages (boundary score %d): %d -> %d messages, ~%d -> ~%d tokens",
            boundary.index,
            boundary.score,
            result.original_count,
            result.compacted_count,
            token_count,
            new_token_count,
        )
        return result

    def needs_compaction(self, messages: Sequence[Message | dict[str, Any]]) -> bool:
        transcript = coerce_messages(messages)
        token_count = self.estimator.estimate_messages_token_count(transcript)
        return self._passes_gates(transcript, token_count)

    def is_approaching_limit(self, messages: Sequence[Message | dict[str, Any]]) -> bool:
        return self.estimator.is_approaching_limit(messages, self.config.approaching_limit_ratio)

    def get_compaction_stats(self, messages: Sequence[Message | dict[str, Any]]) -> CompactionStats:
        transcript = coerce_messages(messages)
        token_count = self.estimator.estimate_messages_token_count(transcript)
        needed = self._passes_gates(transcript, token_count)
        return CompactionStats(
            token_count=token_count,
            threshold=self.config.threshold,
            percentage_full=f"{token_count / self.config.threshold * 100:.1f}%",
            needs_compaction=needed,
            message_count=len(transcript),
            estimated_savings=int(token_count * (1 - self.config.target_ratio)) if needed else 0,
        )


def create_microcompaction_manager(config: CompactionConfig | None = None, **kwargs: Any) -> MicrocompactionManager:
    return MicrocompactionManager(config, **kwargs)


async def apply_microcompaction(
    messages: Sequence[Message | dict[str, Any]],
    config: CompactionConfig | None = None,
) -> CompactionResult | None:
    return await MicrocompactionManager(config).apply_microcompaction(messages)


def needs_compaction(
    messages: Sequence[Message | dict[str, Any]],
    threshold: int = COMPACTION_THRESHOLD,
) -> bool:
    return MicrocompactionManager(CompactionConfig(threshold=threshold)).needs_compaction(messages)
