"""Client for the hook-populated operation store (Redis).

Hooks write one request and one response document per tool call:

    session:{session_id}:operations:{timestamp}:request   {tool, params, session_id}
    session:{session_id}:operations:{timestamp}:response  {tool?, response, responseSize,
                                                           message_id?, tool_use_id?, usage?}

The store is optional. When Redis is down or the session was recorded without
hooks, fetch_operations() returns [] and correlation degrades to transcript
estimates.

The caller constructs one store handle and passes it to the correlation
engine; liveness is an explicit is_available() call, not hidden global state.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

import redis
from redis.exceptions import RedisError

import token_nerd.settings
from token_nerd.core.models import RawOperation, TokenUsage, as_count
from token_nerd.io.sessions import sanitize_session_id
from token_nerd.io.transcript import parse_timestamp

logger = logging.getLogger(__name__)

_FILE_REFERENCE_PREFIX = "file://"
_SHORT_SESSION_ID_LENGTH = 8


class OperationStore(Protocol):
    """Anything that can list the hook operations of one session."""

    def is_available(self) -> bool: ...

    def fetch_operations(self, session_id: str) -> list[RawOperation]: ...


class NullOperationStore:
    """Store used when instrumentation is not active."""

    def is_available(self) -> bool:
        return False

    def fetch_operations(self, session_id: str) -> list[RawOperation]:
        return []


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _split_key(key: str) -> tuple[str, str, str] | None:
    """(session_id, timestamp, kind) from an operation key."""
    parts = key.split(":")
    if len(parts) != 5 or parts[0] != "session" or parts[2] != "operations":
        return None
    return parts[1], parts[3], parts[4]


def resolve_response(response: Any) -> Any:
    """Dereference a ``file://`` indirection used for oversized responses."""
    if not isinstance(response, str) or not response.startswith(_FILE_REFERENCE_PREFIX):
        return response
    file_path = response[len(_FILE_REFERENCE_PREFIX):]
    try:
        return json.loads(Path(file_path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.debug("large response unreadable %s: %s", file_path, exc)
        return f"[Large response stored in {file_path}]"


def _optional_string(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


class RedisOperationStore:
    """Operation store backed by redis-py.

    ``client`` may be any object with redis-py's ``scan_iter``/``get``/``ping``
    surface; by default one is created lazily from ``url``.
    """

    def __init__(
        self,
        client: Any = None,
        *,
        url: str | None = None,
        connect_timeout: float | None = None,
    ) -> None:
        self._client = client
        self._url = url
        self._connect_timeout = (
            connect_timeout
            if connect_timeout is not None
            else token_nerd.settings.REDIS_CONNECT_TIMEOUT_SECONDS
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self._url or token_nerd.settings.get_redis_url(),
                socket_connect_timeout=self._connect_timeout,
                socket_timeout=self._connect_timeout,
                decode_responses=True,
            )
        return self._client

    def is_available(self) -> bool:
        # ValueError: the configured URL is not a redis URL.
        try:
            return bool(self.client.ping())
        except (RedisError, OSError, ValueError) as exc:
            logger.debug("operation store ping failed: %s", exc)
            return False

    def fetch_operations(self, session_id: str) -> list[RawOperation]:
        """All hook operations recorded for a session, oldest first."""
        sanitized = sanitize_session_id(session_id)
        if not sanitized:
            return []
        try:
            return self._fetch(sanitized)
        except (RedisError, OSError, ValueError) as exc:
            logger.warning("operation store unavailable, falling back to estimates: %s", exc)
            return []

    def _keys(self, pattern: str) -> list[str]:
        return sorted(_text(key) for key in self.client.scan_iter(match=pattern))

    def _load(self, key: str) -> dict | None:
        raw = self.client.get(key)
        if raw is None:
            return None
        try:
            data = json.loads(_text(raw))
        except json.JSONDecodeError:
            logger.debug("skipping malformed operation document %s", key)
            return None
        return data if isinstance(data, dict) else None

    def _fetch(self, session_id: str) -> list[RawOperation]:
        request_keys = self._keys(f"session:{session_id}:operations:*:request")
        response_keys = self._keys(f"session:{session_id}:operations:*:response")
        # Hooks may record the full session id while callers pass its 8-char prefix.
        if not request_keys and not response_keys and len(session_id) == _SHORT_SESSION_ID_LENGTH:
            request_keys = self._keys(f"session:{session_id}*:operations:*:request")
            response_keys = self._keys(f"session:{session_id}*:operations:*:response")

        merged: dict[tuple[str, str], dict[str, Any]] = {}
        for key in request_keys + response_keys:
            parsed = _split_key(key)
            if parsed is None:
                continue
            key_session, timestamp, kind = parsed
            doc = self._load(key)
            if doc is None:
                continue
            entry = merged.setdefault((key_session, timestamp), {"session_id": key_session})
            if kind == "request":
                entry["tool"] = doc.get("tool") or entry.get("tool")
                entry["params"] = doc.get("params")
                if isinstance(doc.get("session_id"), str):
                    entry["session_id"] = doc["session_id"]
            elif kind == "response":
                entry["tool"] = entry.get("tool") or doc.get("tool")
                entry["response"] = resolve_response(doc.get("response"))
                entry["responseSize"] = doc.get("responseSize")
                entry["message_id"] = doc.get("message_id")
                entry["tool_use_id"] = doc.get("tool_use_id")
                entry["usage"] = doc.get("usage")

        operations: list[RawOperation] = []
        for (_session, timestamp), entry in merged.items():
            tool = entry.get("tool")
            ts = parse_timestamp(timestamp)
            if not isinstance(tool, str) or not tool or not ts:
                continue
            params = entry.get("params")
            operations.append(
                RawOperation(
                    tool=tool,
                    timestamp=ts,
                    session_id=entry.get("session_id") or session_id,
                    params=params if isinstance(params, dict) else {},
                    response=entry.get("response"),
                    response_size=as_count(entry.get("responseSize")),
                    message_id=_optional_string(entry.get("message_id")),
                    tool_use_id=_optional_string(entry.get("tool_use_id")),
                    usage=TokenUsage.from_dict(entry.get("usage")),
                )
            )
        operations.sort(key=lambda op: op.timestamp)
        logger.debug("fetched %d hook operation(s) for session %s", len(operations), session_id)
        return operations
