"""Deterministic summaries of the transcript prefix being compacted away."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from ..models import Message, TextBlock, ToolResultBlock, ToolUseBlock
from .boundary import Boundary

MAX_LISTED_REQUESTS = 5
MAX_REQUEST_CHARS = 200

# Checked in order; the first matching keyword decides the category.
_TOOL_CATEGORIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Command execution", ("bash", "shell")),
    ("File creation", ("write", "create")),
    ("File modification", ("edit", "modify")),
    ("File reading", ("read", "view")),
    ("Searching", ("search", "grep")),
    ("Web access", ("web", "fetch")),
)
_OTHER_CATEGORY = "Other operations"


@dataclass(frozen=True)
class ToolCallRecord:
    name: str
    input: dict[str, Any]


@dataclass
class MessageGroups:
    user_inputs: list[str] = field(default_factory=list)
    assistant_responses: list[str] = field(default_factory=list)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SummaryResult:
    messages: list[Message]


class Summarizer(Protocol):
    async def summarize(self, messages: Sequence[Message], boundary: Boundary) -> SummaryResult: ...


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def _iso(ms: int) -> str:
    stamp = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def group_messages(messages: Sequence[Message]) -> MessageGroups:
    groups = MessageGroups()
    for message in messages:
        if message.role == "user":
            for block in message.blocks():
                if isinstance(block, TextBlock):
                    groups.user_inputs.append(block.text)
                elif isinstance(block, ToolResultBlock) and block.is_error:
                    groups.errors.append(block.text())
        elif message.role == "assistant":
            for block in message.blocks():
                if isinstance(block, TextBlock):
                    groups.assistant_responses.append(block.text)
                elif isinstance(block, ToolUseBlock):
                    groups.tool_calls.append(ToolCallRecord(name=block.name, input=dict(block.input)))
    return groups


def categorize_tool_call(call: ToolCallRecord) -> str:
    name = call.name.lower()
    for category, keywords in _TOOL_CATEGORIES:
        if any(keyword in name for keyword in keywords):
            return category
    return _OTHER_CATEGORY


def _count_in_order(keys: Sequence[str]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for key in keys:
        counts[key] = counts.get(key, 0) + 1
    return counts


def build_system_digest(groups: MessageGroups, boundary: Boundary) -> str:
    lines = [
        "# Previous Conversation Summary",
        f"Compacted {boundary.index} messages at {_iso(boundary.timestamp)}",
        "",
        f"User inputs: {len(groups.user_inputs)}",
        f"Assistant responses: {len(groups.assistant_responses)}",
        f"Tool calls: {len(groups.tool_calls)}",
        f"Errors: {len(groups.errors)}",
    ]
    return "\n".join(lines)


def build_tool_digest(tool_calls: Sequence[ToolCallRecord]) -> str | None:
    if not tool_calls:
        return None
    counts = _count_in_order([call.name for call in tool_calls])
    lines = ["## Tools Used"]
    lines.extend(f"- {name}: {_plural(count, 'time')}" for name, count in counts.items())
    return "\n".join(lines)


def build_conversation_summary(groups: MessageGroups) -> str:
    lines = ["## Summary of Previous Conversation\n"]

    if groups.user_inputs:
        lines.append("### User Requests")
        unique_requests = list(dict.fromkeys(groups.user_inputs))
        for request in unique_requests[:MAX_LISTED_REQUESTS]:
            if len(request) > MAX_REQUEST_CHARS:
                lines.append(f"- {request[:MAX_REQUEST_CHARS]}...")
            else:
                lines.append(f"- {request}")
        if len(unique_requests) > MAX_LISTED_REQUESTS:
            lines.append(f"- ...and {len(unique_requests) - MAX_LISTED_REQUESTS} more requests")
        lines.append("")

    if groups.tool_calls:
        lines.append("### Actions Taken")
        categories = _count_in_order([categorize_tool_call(call) for call in groups.tool_calls])
        for category, count in categories.items():
            lines.append(f"- {category}: {_plural(count, 'operation')}")
        lines.append("")

    if groups.errors:
        lines.append("### Issues Encountered")
        lines.append(f"- {_plural(len(groups.errors), 'error')} encountered and handled")
        lines.append("")

    return "\n".join(lines)


class ConversationSummarizer:
    """Builds the replacement messages for a compacted prefix.

    Output is always: a system digest, an optional tool-usage digest (when
    ``preserve_tool_calls`` is set and tools were called), and an assistant
    prose summary. ``summarize`` is a coroutine so a model-backed summarizer can
    stand in without changing callers.
    """

    def __init__(self, *, preserve_tool_calls: bool = True) -> None:
        self.preserve_tool_calls = preserve_tool_calls

    async def summarize(self, messages: Sequence[Message], boundary: Boundary) -> SummaryResult:
        groups = group_messages(messages)
        summary: list[Message] = [Message(role="system", content=build_system_digest(groups, boundary))]

        if self.preserve_tool_calls:
            tool_digest = build_tool_digest(groups.tool_calls)
            if tool_digest:
                summary.append(Message(role="system", content=tool_digest))

        summary.append(
            Message(role="assistant", content=[TextBlock(text=build_conversation_summary(groups))])
        )
        return SummaryResult(messages=summary)
