"""Defensive decoding of log records into typed events.

Each line of an orchestrator or agent log is one JSON record. Records are
decoded into a closed set of variants; anything that can't be decoded
becomes an ``UnparseableEvent`` instead of raising, so one bad line never
stops processing of the rest of a file.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ThinkingBlock:
    thinking: str


@dataclass(frozen=True)
class ToolUseBlock:
    id: str | None
    name: str | None
    input: dict[str, Any]

    @property
    def file_path(self) -> str | None:
        """``file_path`` or ``path`` input, when it is a non-empty string."""
        value = self.input.get("file_path") or self.input.get("path")
        return value if isinstance(value, str) and value else None


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str | None
    content: Any
    is_error: bool = False

    def text(self) -> str | None:
        """Flatten the result content to text (string or joined text blocks)."""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            parts = [
                item.get("text", "")
                for item in self.content
                if isinstance(item, dict) and item.get("type") == "text"
            ]
            return " ".join(p for p in parts if isinstance(p, str))
        return None


@dataclass(frozen=True)
class UnknownBlock:
    type: str | None


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock, UnknownBlock]


@dataclass(frozen=True)
class UserEvent:
    """A user-role record (prompts and tool results).

    ``text`` is set when the message content is a plain string; ``blocks``
    when it is a list of content blocks.
    """

    session_id: str | None
    timestamp: str | None
    text: str | None
    blocks: tuple[ContentBlock, ...]
    is_meta: bool
    tool_use_result: dict[str, Any] | None
    agent_id: str | None = None


@dataclass(frozen=True)
class AssistantEvent:
    """An assistant-role record."""

    session_id: str | None
    timestamp: str | None
    blocks: tuple[ContentBlock, ...]
    stop_reason: str | None
    agent_id: str | None = None


@dataclass(frozen=True)
class OtherEvent:
    """A well-formed record of a type this package doesn't interpret."""

    type: str | None
    session_id: str | None
    timestamp: str | None
    agent_id: str | None = None


@dataclass(frozen=True)
class UnparseableEvent:
    """A line that could not be decoded. Always skipped."""

    reason: str


Event = Union[UserEvent, AssistantEvent, OtherEvent, UnparseableEvent]


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _decode_block(raw: Any) -> ContentBlock:
    if not isinstance(raw, dict):
        return UnknownBlock(type=None)
    block_type = raw.get("type")
    if block_type == "text" and isinstance(raw.get("text"), str):
        return TextBlock(text=raw["text"])
    if block_type == "thinking" and isinstance(raw.get("thinking"), str):
        return ThinkingBlock(thinking=raw["thinking"])
    if block_type == "tool_use":
        tool_input = raw.get("input")
        return ToolUseBlock(
            id=_str_or_none(raw.get("id")),
            name=_str_or_none(raw.get("name")),
            input=tool_input if isinstance(tool_input, dict) else {},
        )
    if block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=_str_or_none(raw.get("tool_use_id")),
            content=raw.get("content"),
            is_error=raw.get("is_error") is True,
        )
    return UnknownBlock(type=_str_or_none(block_type))


def _decode_blocks(content: Any) -> tuple[ContentBlock, ...]:
    if not isinstance(content, list):
        return ()
    return tuple(_decode_block(item) for item in content)


def decode_record(record: Any) -> Event:
    """Decode an already-parsed JSON value into an event variant."""
    if not isinstance(record, dict):
        return UnparseableEvent(reason="record is not an object")

    record_type = record.get("type")
    session_id = _str_or_none(record.get("sessionId"))
    timestamp = _str_or_none(record.get("timestamp"))
    agent_id = _str_or_none(record.get("agentId"))
    message = record.get("message")
    message = message if isinstance(message, dict) else {}

    if record_type == "user":
        content = message.get("content")
        tool_use_result = record.get("toolUseResult")
        return UserEvent(
            session_id=session_id,
            timestamp=timestamp,
            text=content if isinstance(content, str) else None,
            blocks=_decode_blocks(content),
            is_meta=bool(record.get("isMeta")),
            tool_use_result=tool_use_result if isinstance(tool_use_result, dict) else None,
            agent_id=agent_id,
        )

    if record_type == "assistant":
        return AssistantEvent(
            session_id=session_id,
            timestamp=timestamp,
            blocks=_decode_blocks(message.get("content")),
            stop_reason=_str_or_none(message.get("stop_reason")),
            agent_id=agent_id,
        )

    return OtherEvent(
        type=_str_or_none(record_type),
        session_id=session_id,
        timestamp=timestamp,
        agent_id=agent_id,
    )


def decode_line(line: str) -> Event:
    """Decode one log line. Never raises."""
    if not line or not line.strip():
        return UnparseableEvent(reason="blank line")
    try:
        record = json.loads(line)
    except (json.JSONDecodeError, RecursionError) as e:
        return UnparseableEvent(reason=f"invalid JSON: {e}")
    return decode_record(record)


def iter_events(lines: Iterable[str]) -> Iterator[Event]:
    """Yield decoded events, skipping unparseable lines."""
    skipped = 0
    for line in lines:
        event = decode_line(line)
        if isinstance(event, UnparseableEvent):
            skipped += 1
            continue
        yield event
    if skipped:
        logger.debug(f"Skipped {skipped} unparseable lines")
