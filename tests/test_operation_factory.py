"""Tests for Operation construction from classified messages."""

import pytest

from token_nerd.core.classifier import to_message
from token_nerd.core.estimation import json_text
from token_nerd.core.models import Allocation, RawOperation, RawOperationIndex, TokenUsage
from token_nerd.core.operation_factory import OperationFactory, dedup_key, user_details
from token_nerd.io.transcript import parse_record
from tests.harness import (
    assistant_line,
    system_line,
    tool_result_line,
    tool_use,
    usage,
    user_line,
)


def _message(line, line_number=1):
    return to_message(parse_record(line, line_number))


@pytest.fixture
def factory():
    return OperationFactory("sess-1")


# ─── System / User ────────────────────────────────────────────────────────────


def test_system_operation_is_estimated_from_json_content(factory):
    message = _message(system_line("s1", "Conversation compacted", 1000, tool_use_id="toolu_1"))
    op = factory.create(message)
    assert op.tool == "System"
    assert op.allocation is Allocation.ESTIMATED
    expected_size = len(json_text(message.record.content))
    assert op.response_size == expected_size
    assert op.tokens == -(-expected_size * 10 // 37)
    assert op.details == "Hidden system prompt/context"
    assert op.tool_use_id == "toolu_1"
    assert op.session_id == "sess-1"


def test_user_operation_estimates_from_text(factory):
    op = factory.create(_message(user_line("u1", "x" * 37, 1000)))
    assert op.tool == "User"
    assert op.tokens == 10
    assert op.allocation is Allocation.ESTIMATED
    assert op.response == "x" * 37
    assert op.uuid == "u1"


def test_user_details_collapse_whitespace_and_truncate():
    assert user_details("fix   the\n\nbug") == "fix the bug"
    long_text = "word " * 20
    assert user_details(long_text) == ("word " * 10)[:50] + "..."


# ─── Tool responses ───────────────────────────────────────────────────────────


def test_tool_response_without_hook_data_is_estimated(factory):
    op = factory.create(_message(tool_result_line("t1", "toolu_1", "a" * 370, 1000)))
    assert op.tool == "ToolResponse"
    assert op.allocation is Allocation.ESTIMATED
    assert op.tokens == 100
    assert op.response_size == 370
    assert op.tool_use_id == "toolu_1"
    assert op.details == "0.4KB → ~100 est"


def test_tool_response_paired_with_hook_usage_is_exact():
    raw = RawOperation(
        tool="Read",
        timestamp=990,
        session_id="sess-1",
        response_size=2048,
        tool_use_id="toolu_1",
        usage=TokenUsage(output_tokens=77, cache_creation_input_tokens=12),
    )
    factory = OperationFactory("sess-1", RawOperationIndex([raw]))
    op = factory.create(_message(tool_result_line("t1", "toolu_1", "short", 1000)))
    assert op.allocation is Allocation.EXACT
    assert op.tokens == 77
    assert op.context_growth == 12
    assert op.response_size == 2048
    assert op.details == "2.0KB → 77 tokens"


def test_tool_response_paired_without_usage_uses_hook_size():
    raw = RawOperation(tool="Bash", timestamp=990, session_id="sess-1",
                       response_size=3700, tool_use_id="toolu_2")
    factory = OperationFactory("sess-1", RawOperationIndex([raw]))
    op = factory.create(_message(tool_result_line("t1", "toolu_2", "tiny", 1000)))
    assert op.allocation is Allocation.ESTIMATED
    assert op.tokens == 1000


# ─── Assistant turns ──────────────────────────────────────────────────────────


def test_assistant_with_usage_counts_output_tokens_only(factory):
    line = assistant_line("a1", "msg_1", "hello", 1000, usage_data=usage(
        input_tokens=4, output_tokens=25, cache_creation=300, cache_read=900))
    op = factory.create(_message(line))
    assert op.tool == "Assistant"
    assert op.allocation is Allocation.EXACT
    assert op.tokens == 25
    assert op.generation_cost == 25
    assert op.context_growth == 300
    assert op.cache_read == 900
    assert op.cache_efficiency == pytest.approx(75.0)
    assert op.details == "message"
    assert op.message_id == "msg_1"


def test_assistant_falls_back_to_hook_usage_by_message_id():
    raw = RawOperation(tool="Edit", timestamp=990, session_id="sess-1",
                       message_id="msg_1", usage=TokenUsage(output_tokens=40))
    factory = OperationFactory("sess-1", RawOperationIndex([raw]))
    op = factory.create(_message(assistant_line("a1", "msg_1", "done", 1000)))
    assert op.allocation is Allocation.EXACT
    assert op.tokens == 40


def test_assistant_without_any_usage_is_estimated(factory):
    message = _message(assistant_line("a1", "msg_1", "z" * 100, 1000))
    op = factory.create(message)
    size = len(json_text(message.raw_content))
    assert op.allocation is Allocation.ESTIMATED
    assert op.response_size == size
    assert op.tokens == -(-size * 10 // 37)


def test_assistant_details_name_the_tool_call(factory):
    blocks = [tool_use("toolu_1", "Read", {"file_path": "/src/pkg/module.py"})]
    op = factory.create(_message(assistant_line("a1", "msg_1", blocks, 1000)))
    assert op.details == "calls Read: module.py"
    assert op.params == {"file_path": "/src/pkg/module.py"}


def test_assistant_details_count_several_tool_calls(factory):
    blocks = [tool_use("toolu_1", "Grep", {"pattern": "TODO"}), tool_use("toolu_2", "Glob", {"pattern": "*.py"})]
    op = factory.create(_message(assistant_line("a1", "msg_1", blocks, 1000)))
    assert op.details == "2 tool calls"


def test_cache_expiry_is_flagged_after_long_gap():
    plain = OperationFactory("sess-1").create(
        _message(assistant_line("a1", "msg_1", "back again", 1000)), time_gap=600)
    assert plain.details == "⚠️ Cache expired (10min gap)"
    assert plain.time_gap == 600

    blocks = [tool_use("toolu_1", "Bash", {"command": "ls"})]
    with_tool = OperationFactory("sess-1").create(
        _message(assistant_line("a2", "msg_2", blocks, 1000)), time_gap=301)
    assert with_tool.details == "⚠️ calls Bash: ls (cache expired)"


def test_no_warning_at_exactly_the_expiry_threshold(factory):
    op = factory.create(_message(assistant_line("a1", "msg_1", "hi", 1000)), time_gap=300)
    assert op.details == "message"


def test_repeated_assistant_record_is_dropped(factory):
    line = assistant_line("a1", "msg_1", "same", 1000, usage_data=usage(output_tokens=5))
    assert factory.create(_message(line)) is not None
    assert factory.create(_message(line)) is None


def test_dedup_key_uses_id_and_content_prefix():
    record = parse_record(assistant_line("a1", "msg_1", "q" * 200, 1000))
    key = dedup_key(record)
    assert key.startswith("msg_1-")
    assert len(key) == len("msg_1-") + 50


def test_content_part_index_counts_single_part_records(factory):
    first = factory.create(_message(assistant_line("a1", "msg_1", "part one", 1000)))
    second = factory.create(_message(assistant_line("a2", "msg_1", [tool_use("toolu_1", "Bash")], 1001)))
    multi = factory.create(_message(assistant_line(
        "a3", "msg_2", [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}], 1002)))
    assert (first.content_part_index, second.content_part_index) == (0, 1)
    assert multi.content_part_index is None


def test_sidechain_and_graph_fields_are_carried(factory):
    line = user_line("u2", "sub task", 1000, parent="u1", sidechain=True)
    op = factory.create(_message(line))
    assert op.is_sidechain
    assert op.uuid == "u2"
    assert op.parent_uuid == "u1"


def test_create_none_is_none(factory):
    assert factory.create(None) is None
