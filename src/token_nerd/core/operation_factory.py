"""Build Operations from classified transcript messages.

Exact attribution comes from a usage block, either on the transcript record
itself or on a hook operation matched to it; everything else is estimated
from payload size.

Assistant turns count output tokens only. Cache creation is tracked
separately as context growth, not as the turn's cost.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from token_nerd.core.estimation import (
    cache_expired,
    cache_expiry_warning,
    calculate_cache_efficiency,
    estimate_tokens,
    format_operation_details,
    format_size_estimate,
    json_text,
    payload_size,
)
from token_nerd.core.models import (
    Allocation,
    AssistantMessage,
    Message,
    Operation,
    RawOperation,
    RawOperationIndex,
    SystemMessage,
    TokenUsage,
    ToolResultMessage,
    TranscriptRecord,
    UserMessage,
)

_WHITESPACE = re.compile(r"\s+")
_DEDUP_FINGERPRINT_CHARS = 50
_USER_DETAIL_CHARS = 50


def _usage_fields(usage: TokenUsage) -> dict:
    return {
        "tokens": usage.output_tokens,
        "generation_cost": usage.output_tokens,
        "context_growth": usage.cache_creation_input_tokens,
        "cache_read": usage.cache_read_input_tokens,
        "ephemeral_5m": usage.ephemeral_5m_input_tokens,
        "ephemeral_1h": usage.ephemeral_1h_input_tokens,
        "cache_efficiency": calculate_cache_efficiency(
            usage.cache_creation_input_tokens, usage.cache_read_input_tokens
        ),
        "usage": usage,
        "allocation": Allocation.EXACT,
    }


def _record_fields(record: TranscriptRecord, session_id: str, time_gap: float) -> dict:
    return {
        "timestamp": record.timestamp,
        "session_id": session_id,
        "message_id": record.id,
        "uuid": record.uuid,
        "parent_uuid": record.parent_uuid,
        "is_sidechain": record.is_sidechain,
        "time_gap": time_gap,
    }


def _first_with_usage(raw_ops: list[RawOperation]) -> TokenUsage | None:
    for raw in raw_ops:
        if raw.usage is not None:
            return raw.usage
    return None


def assistant_details(message: AssistantMessage, time_gap: float) -> tuple[str, dict]:
    """Details text and params for an assistant turn."""
    expired = cache_expired(time_gap)
    tool_uses = message.tool_uses
    if not tool_uses:
        return (cache_expiry_warning(time_gap) if expired else "message"), {}

    params: dict = {}
    if len(tool_uses) == 1:
        tool_use = tool_uses[0]
        name = tool_use.get("name") or "Unknown"
        tool_input = tool_use.get("input")
        params = tool_input if isinstance(tool_input, dict) else {}
        details = f"calls {name}: {format_operation_details(name, params)}"
    else:
        details = f"{len(tool_uses)} tool calls"
    if expired:
        details = f"⚠️ {details} (cache expired)"
    return details, params


def user_details(text: str) -> str:
    collapsed = _WHITESPACE.sub(" ", text)
    suffix = "..." if len(text) > _USER_DETAIL_CHARS else ""
    return collapsed[:_USER_DETAIL_CHARS] + suffix


def dedup_key(record: TranscriptRecord) -> str:
    """Record id plus a truncated fingerprint of its message content."""
    content = record.message_content
    fingerprint = json_text(content if content is not None else "")
    return f"{record.id}-{fingerprint[:_DEDUP_FINGERPRINT_CHARS]}"


class OperationFactory:
    """Turns one message at a time into an Operation for a single session.

    Holds the per-run state: assistant keys already processed and the
    content-part counter of each split assistant message.
    """

    def __init__(
        self,
        session_id: str,
        raw_index: RawOperationIndex | None = None,
        processed_keys: set[str] | None = None,
    ) -> None:
        self.session_id = session_id
        self.raw_index = raw_index if raw_index is not None else RawOperationIndex()
        self.processed_keys = processed_keys if processed_keys is not None else set()
        self._content_parts: dict[str, int] = {}
        # [LAW:dataflow-not-control-flow] Variant type → builder dispatch.
        self._builders: dict[type, Callable[[Message, float], Operation | None]] = {
            SystemMessage: self.create_system_operation,
            UserMessage: self.create_user_operation,
            ToolResultMessage: self.create_tool_response_operation,
            AssistantMessage: self.create_assistant_operation,
        }

    def create(self, message: Message | None, time_gap: float = 0.0) -> Operation | None:
        if message is None:
            return None
        return self._builders[type(message)](message, time_gap)

    def create_system_operation(self, message: SystemMessage, time_gap: float = 0.0) -> Operation:
        record = message.record
        text = json_text(record.content)
        return Operation(
            tool="System",
            tokens=estimate_tokens(text),
            allocation=Allocation.ESTIMATED,
            response=record.content or "System prompt",
            response_size=len(text),
            tool_use_id=message.tool_use_id,
            details="Hidden system prompt/context",
            **_record_fields(record, self.session_id, time_gap),
        )

    def create_user_operation(self, message: UserMessage, time_gap: float = 0.0) -> Operation:
        return Operation(
            tool="User",
            tokens=estimate_tokens(message.text),
            allocation=Allocation.ESTIMATED,
            response=message.text,
            response_size=len(message.text),
            details=user_details(message.text),
            **_record_fields(message.record, self.session_id, time_gap),
        )

    def create_tool_response_operation(
        self, message: ToolResultMessage, time_gap: float = 0.0
    ) -> Operation:
        record = message.record
        raw = self.raw_index.for_tool_use(message.tool_use_id)
        if raw is None:
            matches = self.raw_index.for_message(record.id)
            raw = matches[0] if matches else None

        size = payload_size(message.result)
        if raw is not None and raw.response_size:
            size = raw.response_size
        response = message.result
        if not response and raw is not None:
            response = raw.response

        if raw is not None and raw.usage is not None:
            fields = _usage_fields(raw.usage)
        else:
            fields = {"tokens": estimate_tokens(size), "allocation": Allocation.ESTIMATED}
        return Operation(
            tool="ToolResponse",
            response=response if response is not None else "",
            response_size=size,
            params={"tool_use_id": message.tool_use_id},
            tool_use_id=message.tool_use_id,
            details=format_size_estimate(
                size, fields["tokens"], exact=fields["allocation"] is Allocation.EXACT
            ),
            **fields,
            **_record_fields(record, self.session_id, time_gap),
        )

    def create_assistant_operation(
        self, message: AssistantMessage, time_gap: float = 0.0
    ) -> Operation | None:
        record = message.record
        key = dedup_key(record)
        if key in self.processed_keys:
            return None
        self.processed_keys.add(key)

        response = message.raw_content if message.raw_content is not None else record.content
        response_size = payload_size(response)
        usage = record.usage or _first_with_usage(self.raw_index.for_message(record.id))
        if usage is not None:
            fields = _usage_fields(usage)
        else:
            fields = {"tokens": estimate_tokens(response_size), "allocation": Allocation.ESTIMATED}

        details, params = assistant_details(message, time_gap)
        return Operation(
            tool="Assistant",
            response=response,
            response_size=response_size,
            params=params,
            details=details,
            content_part_index=self._next_content_part(message),
            **fields,
            **_record_fields(record, self.session_id, time_gap),
        )

    def _next_content_part(self, message: AssistantMessage) -> int | None:
        """Index of this part when an assistant message is split one part per record."""
        raw = message.raw_content
        if not isinstance(raw, list) or len(raw) != 1:
            return None
        message_id = message.record.id
        index = self._content_parts.get(message_id, -1) + 1
        self._content_parts[message_id] = index
        return index
