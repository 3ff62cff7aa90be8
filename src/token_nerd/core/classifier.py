"""Classify transcript records into closed message variants.

// [LAW:single-enforcer] Role detection happens here once; everything
// downstream dispatches on the returned variant type.
"""

from __future__ import annotations

from typing import Any

from token_nerd.core.models import (
    AssistantMessage,
    Message,
    MessageKind,
    SystemMessage,
    ToolResultMessage,
    TranscriptRecord,
    UserMessage,
)


def _record_type(record: TranscriptRecord) -> str:
    value = record.content.get("type")
    return value if isinstance(value, str) else ""


def _record_role(record: TranscriptRecord) -> str:
    value = record.message.get("role")
    return value if isinstance(value, str) else ""


def _tool_result_blocks(message_content: Any) -> list[dict]:
    if isinstance(message_content, dict):
        message_content = [message_content]
    if not isinstance(message_content, list):
        return []
    return [
        block
        for block in message_content
        if isinstance(block, dict) and block.get("type") == "tool_result"
    ]


def is_user_role(record: TranscriptRecord) -> bool:
    """True for user-role records, tool results included."""
    return _record_role(record) == "user" or _record_type(record) == "user"


def classify_record(record: TranscriptRecord) -> MessageKind:
    """Label a record; rules are checked in order and the first match wins."""
    record_type = _record_type(record)
    role = _record_role(record)
    if record_type == "system" or role == "system":
        return MessageKind.SYSTEM
    if is_user_role(record):
        if _tool_result_blocks(record.message_content):
            return MessageKind.TOOL_RESULT
        return MessageKind.USER
    if role == "assistant" or record_type == "assistant":
        return MessageKind.ASSISTANT
    # Usage counters are only ever emitted for model responses.
    if not role and not record_type and record.usage is not None:
        return MessageKind.ASSISTANT
    return MessageKind.UNKNOWN


def user_text(message_content: Any) -> str:
    """Plain text of a user message: the string itself or its first text block."""
    if isinstance(message_content, str):
        return message_content
    if isinstance(message_content, list):
        for block in message_content:
            if isinstance(block, dict) and isinstance(block.get("text"), str):
                return block["text"]
            if isinstance(block, str):
                return block
    return "User message"


def to_message(record: TranscriptRecord) -> Message | None:
    """Resolve a record into its message variant; None for unknown records."""
    kind = classify_record(record)
    if kind is MessageKind.SYSTEM:
        tool_use_id = record.content.get("toolUseID")
        return SystemMessage(
            record=record,
            tool_use_id=tool_use_id if isinstance(tool_use_id, str) else None,
        )
    if kind is MessageKind.USER:
        return UserMessage(record=record, text=user_text(record.message_content))
    if kind is MessageKind.TOOL_RESULT:
        block = _tool_result_blocks(record.message_content)[0]
        tool_use_id = block.get("tool_use_id")
        return ToolResultMessage(
            record=record,
            tool_use_id=tool_use_id if isinstance(tool_use_id, str) else None,
            result=block.get("content", ""),
            is_error=bool(block.get("is_error", False)),
        )
    if kind is MessageKind.ASSISTANT:
        raw = record.message_content
        parts = tuple(raw) if isinstance(raw, list) else ()
        return AssistantMessage(record=record, parts=parts, raw_content=raw)
    return None
