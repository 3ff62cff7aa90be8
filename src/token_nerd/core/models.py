"""Data model for transcript correlation.

// [LAW:one-source-of-truth] The message variant class IS the message kind;
// the operation factory dispatches on it and stamps Operation.tool from it.

Pure value types; no I/O and no dependencies on other token_nerd modules.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


JsonDict = dict[str, Any]


def as_count(value: Any) -> int:
    """Non-negative int from a JSON number; 0 for anything else, NaN and infinities included."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return max(0, int(value))


# ─── Usage ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TokenUsage:
    """Token usage counters reported for one model turn."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    ephemeral_5m_input_tokens: int = 0
    ephemeral_1h_input_tokens: int = 0

    @classmethod
    def from_dict(cls, raw: Any) -> TokenUsage | None:
        """Build from a raw `usage` mapping; None when raw is not a mapping."""
        if not isinstance(raw, Mapping):
            return None
        nested = raw.get("cache_creation")
        nested = nested if isinstance(nested, Mapping) else {}
        return cls(
            input_tokens=as_count(raw.get("input_tokens")),
            output_tokens=as_count(raw.get("output_tokens")),
            cache_creation_input_tokens=as_count(raw.get("cache_creation_input_tokens")),
            cache_read_input_tokens=as_count(raw.get("cache_read_input_tokens")),
            ephemeral_5m_input_tokens=as_count(nested.get("ephemeral_5m_input_tokens")),
            ephemeral_1h_input_tokens=as_count(nested.get("ephemeral_1h_input_tokens")),
        )

    @property
    def total(self) -> int:
        """Cumulative total of the four billed counters."""
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_input_tokens
            + self.cache_read_input_tokens
        )


# ─── Source records ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TranscriptRecord:
    """One parsed transcript line."""

    id: str
    timestamp: int
    content: JsonDict
    usage: TokenUsage | None = None
    uuid: str | None = None
    parent_uuid: str | None = None
    is_sidechain: bool = False
    line_number: int = 0

    @property
    def message(self) -> JsonDict:
        message = self.content.get("message")
        return message if isinstance(message, dict) else {}

    @property
    def message_content(self) -> Any:
        return self.message.get("content")


@dataclass(frozen=True)
class RawOperation:
    """One hook-captured tool invocation fetched from the operation store."""

    tool: str
    timestamp: int
    session_id: str
    params: JsonDict = field(default_factory=dict)
    response: Any = None
    response_size: int = 0
    message_id: str | None = None
    tool_use_id: str | None = None
    usage: TokenUsage | None = None


class RawOperationIndex:
    """Lookup of hook operations by message id and tool-use id."""

    def __init__(self, operations: Iterable[RawOperation] = ()) -> None:
        self.operations = sorted(operations, key=lambda op: op.timestamp)
        self._by_message_id: dict[str, list[RawOperation]] = {}
        self._by_tool_use_id: dict[str, RawOperation] = {}
        for op in self.operations:
            if op.message_id:
                self._by_message_id.setdefault(op.message_id, []).append(op)
            if op.tool_use_id:
                self._by_tool_use_id.setdefault(op.tool_use_id, op)

    def __len__(self) -> int:
        return len(self.operations)

    def for_message(self, message_id: str | None) -> list[RawOperation]:
        if not message_id:
            return []
        return list(self._by_message_id.get(message_id, ()))

    def for_tool_use(self, tool_use_id: str | None) -> RawOperation | None:
        if not tool_use_id:
            return None
        return self._by_tool_use_id.get(tool_use_id)


# ─── Message variants ─────────────────────────────────────────────────────────


class MessageKind(Enum):
    """Classification of a transcript record."""

    SYSTEM = "system"
    USER = "user"
    TOOL_RESULT = "toolResult"
    ASSISTANT = "assistant"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class SystemMessage:
    record: TranscriptRecord
    tool_use_id: str | None = None


@dataclass(frozen=True)
class UserMessage:
    record: TranscriptRecord
    text: str


@dataclass(frozen=True)
class ToolResultMessage:
    record: TranscriptRecord
    tool_use_id: str | None
    result: Any
    is_error: bool = False


@dataclass(frozen=True)
class AssistantMessage:
    record: TranscriptRecord
    parts: tuple[Any, ...]
    raw_content: Any = None

    @property
    def tool_uses(self) -> tuple[JsonDict, ...]:
        return tuple(
            part
            for part in self.parts
            if isinstance(part, dict) and part.get("type") == "tool_use"
        )


Message = Union[SystemMessage, UserMessage, ToolResultMessage, AssistantMessage]


# ─── Derived output ───────────────────────────────────────────────────────────


class Allocation(Enum):
    """Confidence of an Operation's token attribution."""

    EXACT = "exact"
    PROPORTIONAL = "proportional"
    ESTIMATED = "estimated"


@dataclass
class Operation:
    """A normalized message, response, or tool exchange with attributed cost."""

    tool: str
    tokens: int
    allocation: Allocation
    timestamp: int
    session_id: str
    response: Any = None
    response_size: int = 0
    generation_cost: int = 0
    context_growth: int = 0
    cache_read: int = 0
    ephemeral_5m: int = 0
    ephemeral_1h: int = 0
    cache_efficiency: float = 0.0
    time_gap: float = 0.0
    params: JsonDict = field(default_factory=dict)
    details: str = ""
    usage: TokenUsage | None = None
    message_id: str | None = None
    tool_use_id: str | None = None
    content_part_index: int | None = None
    uuid: str | None = None
    parent_uuid: str | None = None
    is_sidechain: bool = False
    parent_task_id: str | None = None
    sub_agent_type: str | None = None

    def __post_init__(self) -> None:
        if self.tokens < 0:
            self.tokens = 0


@dataclass
class Bundle:
    """One conversational turn or linked exchange."""

    id: str
    timestamp: int
    operations: list[Operation]
    total_tokens: int
    is_sub_agent: bool = False
    sub_agent_type: str | None = None
    parent_task_id: str | None = None
    operation_count: int | None = None
    duration: int | None = None

    @classmethod
    def from_operations(cls, bundle_id: str, operations: Iterable[Operation], **extra: Any) -> Bundle:
        """Build a bundle whose timestamp and total derive from its operations."""
        ops = list(operations)
        return cls(
            id=bundle_id,
            timestamp=min((op.timestamp for op in ops), default=0),
            operations=ops,
            total_tokens=sum(op.tokens for op in ops),
            **extra,
        )

    def recompute_total(self) -> None:
        self.total_tokens = sum(op.tokens for op in self.operations)

    @property
    def is_sidechain(self) -> bool:
        return bool(self.operations) and all(op.is_sidechain for op in self.operations)
