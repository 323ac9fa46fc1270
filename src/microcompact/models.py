"""Pydantic models for transcript messages and their content blocks."""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PrivateAttr, ValidationError

from .exceptions import InputShapeError

Role = Literal["user", "assistant", "system"]

BOUNDARY_METADATA_KEY = "compactionBoundary"


class _Block(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")


class TextBlock(_Block):
    type: Literal["text"] = "text"
    text: str = ""


class ImageBlock(_Block):
    type: Literal["image"] = "image"
    source: dict[str, Any] = Field(default_factory=dict)


class ToolUseBlock(_Block):
    type: Literal["tool_use"] = "tool_use"
    id: str = ""
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


ToolResultPart = Annotated[Union[TextBlock, ImageBlock], Field(discriminator="type")]


class ToolResultBlock(_Block):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = ""
    content: str | list[ToolResultPart] = ""
    is_error: bool = False

    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "\n".join(part.text for part in self.content if isinstance(part, TextBlock))

    def image_count(self) -> int:
        if isinstance(self.content, str):
            return 0
        return sum(1 for part in self.content if isinstance(part, ImageBlock))


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock, ImageBlock],
    Field(discriminator="type"),
]


class Message(BaseModel):
    """One transcript entry.

    ``role`` is also accepted under the key ``type``. ``timestamp`` is
    milliseconds since the epoch. Keys the model does not declare are kept.
    A message built with ``from_dict`` remembers its source mapping and
    ``to_dict`` returns that mapping unchanged.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    role: Role = Field(validation_alias=AliasChoices("role", "type"))
    content: str | list[ContentBlock] = ""
    timestamp: int | None = None
    metadata: dict[str, Any] | None = None

    _source: dict[str, Any] | None = PrivateAttr(default=None)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Message:
        message = cls.model_validate(data)
        message._source = copy.deepcopy(dict(data))
        return message

    def blocks(self) -> list[ContentBlock]:
        """Content as a block list; plain string content becomes one text block."""
        if isinstance(self.content, str):
            return [TextBlock(text=self.content)] if self.content else []
        return list(self.content)

    def first_block(self) -> ContentBlock | None:
        blocks = self.blocks()
        return blocks[0] if blocks else None

    def has_block(self, block_type: str) -> bool:
        return any(block.type == block_type for block in self.blocks())

    def to_dict(self) -> dict[str, Any]:
        if self._source is not None:
            return copy.deepcopy(self._source)
        return self.model_dump(exclude_none=True)


def is_compaction_boundary(message: Message) -> bool:
    return message.role == "system" and bool((message.metadata or {}).get(BOUNDARY_METADATA_KEY))


def coerce_messages(items: Sequence[Message | dict[str, Any]]) -> list[Message]:
    """Validate a transcript into ``Message`` models without touching the caller's list."""
    messages: list[Message] = []
    for index, item in enumerate(items):
        if isinstance(item, Message):
            messages.append(item)
            continue
        try:
            messages.append(Message.from_dict(item))
        except ValidationError as e:
            raise InputShapeError(
                f"Message at index {index} is malformed ({e.error_count()} validation errors)",
                details={"index": index, "errors": e.errors(include_url=False)},
            ) from e
    return messages
