"""Streaming reader for line-delimited JSON session transcripts.

Accepts both the native Claude Code line shape (``type``/``uuid``/``message``
at top level) and the wrapped shape whose payload sits under ``content``.
Malformed or truncated lines are skipped; they never abort a read.
"""

from __future__ import annotations

import json
import logging
import math
import os
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, NamedTuple

from token_nerd.core.models import JsonDict, TokenUsage, TranscriptRecord

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


class JsonLine(NamedTuple):
    """One decoded transcript line and the byte offset just past it."""

    line_number: int
    end_offset: int
    complete: bool
    data: JsonDict


def expand_path(path: str | os.PathLike) -> Path:
    return Path(os.path.expanduser(os.fspath(path)))


def iter_json_lines(path: str | os.PathLike, start_offset: int = 0) -> Iterator[JsonLine]:
    """Yield every JSON-object line of a file, starting at a byte offset.

    ``complete`` is False only for a trailing line with no newline yet (it may
    still be mid-write). Raises OSError when the file cannot be opened.
    """
    skipped = 0
    line_number = 0
    offset = start_offset
    with open(expand_path(path), "rb") as f:
        if start_offset:
            f.seek(start_offset)
        for raw_line in f:
            line_number += 1
            offset += len(raw_line)
            complete = raw_line.endswith(b"\n")
            text = raw_line.strip()
            if not text:
                continue
            try:
                data = json.loads(text)
            except (json.JSONDecodeError, UnicodeDecodeError):
                skipped += 1
                continue
            if not isinstance(data, dict):
                skipped += 1
                continue
            yield JsonLine(line_number, offset, complete, data)
    if skipped:
        logger.debug("skipped %d malformed transcript line(s) in %s", skipped, path)


def parse_timestamp(value: Any) -> int:
    """Milliseconds since epoch from a number or an ISO-8601 string; 0 if unusable."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str) and value:
        try:
            number = float(value)
        except ValueError:
            pass
        else:
            return int(number) if math.isfinite(number) else 0
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return 0
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return (parsed - _EPOCH) // _ONE_MS
    return 0


def _first_string(*values: Any) -> str | None:
    for value in values:
        if isinstance(value, str) and value:
            return value
    return None


def record_payload(data: JsonDict) -> JsonDict:
    """The record's content payload: the ``content`` wrapper if present, else the line."""
    wrapped = data.get("content")
    return wrapped if isinstance(wrapped, dict) else data


def extract_usage(data: JsonDict) -> JsonDict | None:
    """Raw usage mapping from a line, top-level or nested under ``message``."""
    payload = record_payload(data)
    candidates = [data, payload]
    for holder in (data, payload):
        message = holder.get("message")
        if isinstance(message, dict):
            candidates.append(message)
    for holder in candidates:
        usage = holder.get("usage")
        if isinstance(usage, dict):
            return usage
    return None


def parse_record(data: JsonDict, line_number: int = 0) -> TranscriptRecord:
    """Build a TranscriptRecord from one decoded line."""
    payload = record_payload(data)
    message = payload.get("message")
    message = message if isinstance(message, dict) else {}

    uuid = _first_string(payload.get("uuid"), data.get("uuid"))
    record_id = _first_string(message.get("id"), data.get("id"), payload.get("id"), uuid)
    return TranscriptRecord(
        id=record_id or f"line-{line_number}",
        timestamp=parse_timestamp(data.get("timestamp", payload.get("timestamp"))),
        content=payload,
        usage=TokenUsage.from_dict(extract_usage(data)),
        uuid=uuid,
        parent_uuid=_first_string(payload.get("parentUuid"), data.get("parentUuid")),
        is_sidechain=bool(data.get("isSidechain") or payload.get("isSidechain")),
        line_number=line_number,
    )


def iter_records(path: str | os.PathLike) -> Iterator[TranscriptRecord]:
    """Stream TranscriptRecords in file order.

    A missing or unreadable file yields nothing.
    """
    try:
        for line in iter_json_lines(path):
            yield parse_record(line.data, line.line_number)
    except OSError as exc:
        logger.debug("transcript unreadable %s: %s", path, exc)


def read_transcript(path: str | os.PathLike | None) -> list[TranscriptRecord]:
    """Read a whole transcript; empty list for a missing path or file."""
    if not path:
        return []
    return list(iter_records(path))
