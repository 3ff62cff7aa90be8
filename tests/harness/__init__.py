"""Shared test helpers for token-nerd.

Re-exports all public API for convenient imports:
    from tests.harness import write_transcript, assistant_line, FakeRedis, ...
"""

from tests.harness.builders import (
    FakeRedis,
    assistant_line,
    iso,
    system_line,
    tool_result_line,
    tool_use,
    usage,
    usage_line,
    user_line,
    write_transcript,
)

__all__ = [
    "FakeRedis",
    "assistant_line",
    "iso",
    "system_line",
    "tool_result_line",
    "tool_use",
    "usage",
    "usage_line",
    "user_line",
    "write_transcript",
]
