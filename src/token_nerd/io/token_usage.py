"""Session token totals read straight from a transcript.

Two numbers are derived:

* session maximum: the highest per-record usage total seen anywhere in the
  file (totals are not monotone in file order, so the running max is kept);
* current total: the usage total of the last record that carries usage.

// [LAW:single-enforcer] run_strategies() is the only place a fallback layer
// is chosen; each layer is a plain callable returning a result or None.

Layers for the current total: tail line → widened tail scan → forward scan →
file-size estimate. The session maximum cannot be recovered from the tail, so
it goes straight to the forward scan, which resumes from a per-file checkpoint
because transcripts are append-only. The estimate is reached only when the
scan itself fails; a transcript that reads cleanly but carries no usage
counts as 0.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import token_nerd.settings
from token_nerd.core.models import TokenUsage
from token_nerd.io.perf_logging import monitor_slow_path
from token_nerd.io.reverse_reader import iter_lines_reversed, read_last_line
from token_nerd.io.transcript import expand_path, extract_usage, iter_json_lines

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenCountResult:
    """A token count and the strategy that produced it."""

    value: int
    strategy: str
    low_confidence: bool = False


Strategy = Callable[[Path], "TokenCountResult | None"]


# ─── Usage arithmetic ─────────────────────────────────────────────────────────


def _as_usage(usage: TokenUsage | Mapping[str, Any] | None) -> TokenUsage:
    if isinstance(usage, TokenUsage):
        return usage
    return TokenUsage.from_dict(usage) or TokenUsage()


def calculate_cumulative_total(usage: TokenUsage | Mapping[str, Any] | None) -> int:
    """input + output + cache creation + cache read."""
    return _as_usage(usage).total


def calculate_conversation_growth(usage: TokenUsage | Mapping[str, Any] | None) -> int:
    """input + output only: context-window growth, ignoring cache traffic."""
    resolved = _as_usage(usage)
    return resolved.input_tokens + resolved.output_tokens


@dataclass(frozen=True)
class RemainingCapacity:
    remaining: int
    percentage: float
    is_near_limit: bool


def calculate_remaining_capacity(current_total: int, limit: int | None = None) -> RemainingCapacity:
    """Remaining context-window capacity for a current token total."""
    context_limit = limit if limit is not None else token_nerd.settings.get_token_limit()
    if context_limit <= 0:
        return RemainingCapacity(remaining=0, percentage=0.0, is_near_limit=True)
    remaining = max(0, context_limit - current_total)
    percentage = (remaining / context_limit) * 100
    return RemainingCapacity(
        remaining=remaining,
        percentage=percentage,
        is_near_limit=percentage < token_nerd.settings.NEAR_LIMIT_PERCENT,
    )


def _line_total(line: str) -> int | None:
    """Usage total carried by one raw line, or None when it has none."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    usage = extract_usage(data)
    return None if usage is None else calculate_cumulative_total(usage)


# ─── Forward scan with append-only checkpoint ─────────────────────────────────


@dataclass(frozen=True)
class _ScanCheckpoint:
    device: int
    inode: int
    offset: int
    maximum: int = 0
    last_total: int = 0


_SCAN_CACHE: dict[str, _ScanCheckpoint] = {}


def clear_scan_cache() -> None:
    _SCAN_CACHE.clear()


def _scan(path: Path) -> _ScanCheckpoint:
    """Forward pass tracking running max and last total, resumed when possible."""
    stat = path.stat()
    key = str(path.resolve())
    cached = _SCAN_CACHE.get(key)
    resumable = (
        cached is not None
        and cached.device == stat.st_dev
        and cached.inode == stat.st_ino
        and stat.st_size >= cached.offset
    )
    start = cached if resumable else _ScanCheckpoint(stat.st_dev, stat.st_ino, 0)

    maximum = start.maximum
    last_total = start.last_total
    offset = start.offset
    with monitor_slow_path(
        "token_usage.forward_scan",
        logger=logger,
        context=lambda: {"path": str(path), "resume_offset": start.offset},
    ):
        for line in iter_json_lines(path, start.offset):
            usage = extract_usage(line.data)
            if usage is not None:
                total = calculate_cumulative_total(usage)
                maximum = max(maximum, total)
                last_total = total
            if line.complete:
                offset = line.end_offset

    checkpoint = _ScanCheckpoint(stat.st_dev, stat.st_ino, offset, maximum, last_total)
    _SCAN_CACHE[key] = checkpoint
    return checkpoint


# ─── Strategies ───────────────────────────────────────────────────────────────


def tail_line_strategy(path: Path) -> TokenCountResult | None:
    """Last complete line only."""
    line = read_last_line(path)
    total = _line_total(line) if line else None
    return None if total is None else TokenCountResult(total, "tail_line")


def tail_scan_strategy(path: Path) -> TokenCountResult | None:
    """Most recent line with usage among the last TAIL_SCAN_MAX_LINES lines."""
    limit = token_nerd.settings.TAIL_SCAN_MAX_LINES
    for scanned, line in enumerate(iter_lines_reversed(path), start=1):
        total = _line_total(line)
        if total is not None:
            return TokenCountResult(total, "tail_scan")
        if scanned >= limit:
            break
    return None


def forward_current_strategy(path: Path) -> TokenCountResult | None:
    """Full pass; a readable file without usage counts as 0."""
    return TokenCountResult(_scan(path).last_total, "forward_scan")


def forward_maximum_strategy(path: Path) -> TokenCountResult | None:
    return TokenCountResult(_scan(path).maximum, "forward_scan")


def size_estimate_strategy(path: Path) -> TokenCountResult | None:
    """Last resort when the file cannot be scanned: bytes-per-token ratio over its size."""
    size = path.stat().st_size
    return TokenCountResult(
        round(size / token_nerd.settings.BYTES_PER_TOKEN_FALLBACK),
        "size_estimate",
        low_confidence=True,
    )


CURRENT_TOTAL_STRATEGIES: tuple[Strategy, ...] = (
    tail_line_strategy,
    tail_scan_strategy,
    forward_current_strategy,
    size_estimate_strategy,
)

SESSION_MAXIMUM_STRATEGIES: tuple[Strategy, ...] = (
    forward_maximum_strategy,
    size_estimate_strategy,
)


def run_strategies(path: Path, strategies: Sequence[Strategy]) -> TokenCountResult:
    """Try each strategy in order; the first non-None result wins."""
    for strategy in strategies:
        name = getattr(strategy, "__name__", repr(strategy))
        try:
            result = strategy(path)
        except (OSError, ValueError) as exc:
            logger.debug("token strategy %s failed for %s: %s", name, path, exc)
            continue
        if result is not None:
            if result.low_confidence:
                logger.debug("token count for %s is a low-confidence estimate", path)
            return result
        logger.debug("token strategy %s found no usage in %s", name, path)
    return TokenCountResult(0, "none", low_confidence=True)


def _existing_nonempty(transcript_path: str | os.PathLike | None) -> Path | None:
    if not transcript_path:
        return None
    path = expand_path(transcript_path)
    try:
        if path.stat().st_size == 0:
            return None
    except OSError:
        return None
    return path


# ─── Public entry points ──────────────────────────────────────────────────────


def count_session_maximum(transcript_path: str | os.PathLike | None) -> TokenCountResult:
    path = _existing_nonempty(transcript_path)
    if path is None:
        return TokenCountResult(0, "missing")
    return run_strategies(path, SESSION_MAXIMUM_STRATEGIES)


def count_current_total(transcript_path: str | os.PathLike | None) -> TokenCountResult:
    path = _existing_nonempty(transcript_path)
    if path is None:
        return TokenCountResult(0, "missing")
    return run_strategies(path, CURRENT_TOTAL_STRATEGIES)


def get_session_maximum_tokens(transcript_path: str | os.PathLike | None) -> int:
    """Highest usage total reached anywhere in the session; 0 if unavailable."""
    return count_session_maximum(transcript_path).value


def get_current_token_total(transcript_path: str | os.PathLike | None) -> int:
    """Usage total of the last record carrying usage; 0 if unavailable."""
    return count_current_total(transcript_path).value
