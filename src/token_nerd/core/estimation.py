"""Token estimation heuristics and human-readable operation details.

Pure computation module with no I/O.
"""

import json
import math
import os
from typing import Any

import token_nerd.settings


# ─── Token Estimation ─────────────────────────────────────────────────────────


def estimate_tokens(content: str | int) -> int:
    """Estimate tokens from text (or a size in characters/bytes).

    ceil(length / CHARS_PER_TOKEN_ESTIMATE). Empty input estimates as 0.
    """
    length = content if isinstance(content, int) else len(content)
    if length <= 0:
        return 0
    return math.ceil(length / token_nerd.settings.CHARS_PER_TOKEN_ESTIMATE)


def payload_size(payload: Any) -> int:
    """Character size of a payload: raw length for strings, JSON length otherwise."""
    if payload is None:
        return 0
    if isinstance(payload, str):
        return len(payload)
    return len(json_text(payload))


def json_text(payload: Any) -> str:
    """Compact JSON text of a payload, matching how transcripts serialize it."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def calculate_cache_efficiency(context_growth: int, cache_read: int) -> float:
    """Percentage of processed context that was served from cache."""
    total_processed = context_growth + cache_read
    if total_processed <= 0:
        return 0.0
    return (cache_read / total_processed) * 100


# ─── Details ──────────────────────────────────────────────────────────────────


def _basename_detail(params: dict, fallback: str) -> str:
    file_path = params.get("file_path")
    return os.path.basename(file_path) if isinstance(file_path, str) and file_path else fallback


def _command_detail(params: dict, fallback: str) -> str:
    cmd = params.get("command")
    cmd = cmd if isinstance(cmd, str) else ""
    return cmd[:30] + "..." if len(cmd) > 30 else cmd


def _pattern_detail(params: dict, fallback: str) -> str:
    pattern = params.get("pattern")
    return pattern if isinstance(pattern, str) and pattern else fallback


# [LAW:dataflow-not-control-flow] Tool name → detail formatter dispatch.
_DETAIL_FORMATTERS = {
    "read": (_basename_detail, "file"),
    "write": (_basename_detail, "file"),
    "edit": (_basename_detail, "file"),
    "multiedit": (_basename_detail, "file"),
    "bash": (_command_detail, ""),
    "glob": (_pattern_detail, "pattern"),
    "grep": (_pattern_detail, "pattern"),
}


def format_operation_details(tool: str, params: Any) -> str:
    """Short description of a tool call: file name, command, or pattern."""
    params = params if isinstance(params, dict) else {}
    entry = _DETAIL_FORMATTERS.get((tool or "").lower())
    if entry is None:
        return tool
    formatter, fallback = entry
    return formatter(params, fallback)


def format_size_estimate(size: int, tokens: int, exact: bool = False) -> str:
    """'2.1KB → ~580 est' description used for tool responses.

    Counts reported by the API drop the estimate marker: '2.1KB → 580 tokens'.
    """
    if exact:
        return f"{size / 1024:.1f}KB → {tokens:,} tokens"
    return f"{size / 1024:.1f}KB → ~{tokens:,} est"


def cache_expired(time_gap: float) -> bool:
    return time_gap > token_nerd.settings.CACHE_EXPIRY_SECONDS


def cache_expiry_warning(time_gap: float) -> str:
    return f"⚠️ Cache expired ({round(time_gap / 60)}min gap)"
