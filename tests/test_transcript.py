"""Tests for transcript line parsing."""

import logging

from token_nerd.io.transcript import (
    iter_json_lines,
    parse_record,
    parse_timestamp,
    read_transcript,
)
from tests.harness import assistant_line, iso, usage, usage_line, user_line


def test_parse_timestamp_accepts_numbers_and_iso_strings():
    assert parse_timestamp(1_700_000_000_123) == 1_700_000_000_123
    assert parse_timestamp("1500") == 1500
    assert parse_timestamp(iso(1_700_000_000_000)) == 1_700_000_000_000
    assert parse_timestamp("2025-01-01T00:00:00.000Z") == 1_735_689_600_000


def test_parse_timestamp_unusable_is_zero():
    assert parse_timestamp(None) == 0
    assert parse_timestamp("yesterday") == 0
    assert parse_timestamp(True) == 0
    assert parse_timestamp({"ms": 1}) == 0


def test_wrapped_line_shape():
    record = parse_record(
        {
            "id": "r1",
            "timestamp": 100,
            "usage": usage(input_tokens=4),
            "isSidechain": True,
            "content": {"type": "assistant", "uuid": "u-1", "parentUuid": "u-0"},
        },
        line_number=3,
    )
    assert record.id == "r1"
    assert record.timestamp == 100
    assert record.usage.input_tokens == 4
    assert record.uuid == "u-1"
    assert record.parent_uuid == "u-0"
    assert record.is_sidechain
    assert record.line_number == 3
    assert record.content["type"] == "assistant"


def test_native_line_shape_prefers_message_id():
    line = assistant_line("uuid-a", "msg_7", "hi", 5000, parent="uuid-u",
                          usage_data=usage(output_tokens=9))
    record = parse_record(line, line_number=1)
    assert record.id == "msg_7"
    assert record.uuid == "uuid-a"
    assert record.parent_uuid == "uuid-u"
    assert record.timestamp == 5000
    assert record.usage.output_tokens == 9
    assert record.message["role"] == "assistant"


def test_record_id_falls_back_to_uuid_then_line_number():
    assert parse_record(user_line("uuid-u", "hello", 1)).id == "uuid-u"
    assert parse_record({"timestamp": 1}, line_number=12).id == "line-12"


def test_ephemeral_cache_counters_are_read():
    raw = usage(cache_creation=30)
    raw["cache_creation"] = {"ephemeral_5m_input_tokens": 10, "ephemeral_1h_input_tokens": 20}
    record = parse_record({"id": "x", "usage": raw})
    assert record.usage.ephemeral_5m_input_tokens == 10
    assert record.usage.ephemeral_1h_input_tokens == 20


def test_read_transcript_skips_malformed_lines(transcript, caplog):
    path = transcript([
        usage_line("m1", 1, input_tokens=1),
        "not json at all",
        "",
        "42",
        usage_line("m2", 2, input_tokens=2),
    ])
    with caplog.at_level(logging.DEBUG, logger="token_nerd.io.transcript"):
        records = read_transcript(path)
    assert [r.id for r in records] == ["m1", "m2"]
    assert [r.line_number for r in records] == [1, 5]
    assert "skipped 2 malformed transcript line(s)" in caplog.text


def test_read_transcript_missing_or_falsy_is_empty(tmp_path):
    assert read_transcript(tmp_path / "absent.jsonl") == []
    assert read_transcript(None) == []
    assert read_transcript("") == []


def test_iter_json_lines_marks_unterminated_last_line(transcript):
    path = transcript([usage_line("m1", 1), usage_line("m2", 2)], trailing_newline=False)
    lines = list(iter_json_lines(path))
    assert [line.complete for line in lines] == [True, False]
    assert lines[-1].end_offset == path.stat().st_size


def test_iter_json_lines_resumes_from_offset(transcript):
    path = transcript([usage_line("m1", 1), usage_line("m2", 2)])
    first = next(iter(iter_json_lines(path)))
    rest = list(iter_json_lines(path, first.end_offset))
    assert [line.data["id"] for line in rest] == ["m2"]


def test_parse_timestamp_non_finite_is_zero():
    assert parse_timestamp(float("nan")) == 0
    assert parse_timestamp(float("inf")) == 0
    assert parse_timestamp("NaN") == 0
    assert parse_timestamp("-Infinity") == 0
    assert parse_timestamp(1e999) == 0
