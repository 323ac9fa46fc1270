"""Tests for message models and transcript coercion."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from microcompact.exceptions import InputShapeError
from microcompact.models import (
    Message,
    TextBlock,
    ToolResultBlock,
    coerce_messages,
    is_compaction_boundary,
)


def test_type_key_is_accepted_as_role() -> None:
    msg = Message.model_validate({"type": "assistant", "content": "hi"})
    assert msg.role == "assistant"


def test_string_content_presents_as_text_block() -> None:
    msg = Message(role="user", content="hello")
    assert msg.blocks() == [TextBlock(text="hello")]
    assert Message(role="user", content="").blocks() == []


def test_first_block_and_has_block() -> None:
    msg = Message.model_validate(
        {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}]}
    )
    assert isinstance(msg.first_block(), ToolResultBlock)
    assert msg.has_block("tool_result")
    assert not msg.has_block("tool_use")


def test_messages_are_frozen() -> None:
    msg = Message(role="user", content="hi")
    with pytest.raises(ValidationError):
        msg.role = "assistant"  # type: ignore[misc]


def test_to_dict_drops_unset_optionals() -> None:
    assert Message(role="user", content="hi").to_dict() == {"role": "user", "content": "hi"}


def test_from_dict_keeps_unknown_keys_and_role_key() -> None:
    raw = {
        "type": "user",
        "uuid": "abc",
        "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "ok", "cache_control": {"x": 1}}],
    }
    msg = Message.from_dict(raw)
    assert msg.role == "user"
    assert msg.to_dict() == raw
    assert msg.model_extra == {"uuid": "abc"}
    assert msg.blocks()[0].model_extra == {"cache_control": {"x": 1}}


def test_from_dict_copies_the_source() -> None:
    raw = {"role": "user", "content": "hi"}
    msg = Message.from_dict(raw)
    raw["content"] = "changed"
    assert msg.to_dict() == {"role": "user", "content": "hi"}


def test_tool_result_text_joins_nested_text() -> None:
    block = ToolResultBlock(content=[TextBlock(text="a"), TextBlock(text="b")])
    assert block.text() == "a\nb"
    assert block.image_count() == 0


def test_coerce_keeps_models_and_validates_dicts() -> None:
    existing = Message(role="system", content="sys")
    coerced = coerce_messages([existing, {"role": "user", "content": "hi"}])
    assert coerced[0] is existing
    assert coerced[1].role == "user"


def test_coerce_reports_offending_index() -> None:
    with pytest.raises(InputShapeError) as exc_info:
        coerce_messages([{"role": "user", "content": "ok"}, {"role": "robot", "content": "?"}])
    assert exc_info.value.details["index"] == 1


def test_coerce_rejects_non_mapping() -> None:
    with pytest.raises(InputShapeError):
        coerce_messages(["just a string"])  # type: ignore[list-item]


def test_is_compaction_boundary() -> None:
    marker = Message(role="system", content="---", metadata={"compactionBoundary": True, "index": 3})
    assert is_compaction_boundary(marker) is True
    assert is_compaction_boundary(Message(role="system", content="---")) is False
