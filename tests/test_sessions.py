"""Tests for session transcript discovery."""

import os
import time

import pytest

from token_nerd.io.sessions import (
    extract_project_name,
    find_transcript_path,
    get_claude_projects_dir,
    is_session_active,
    list_sessions,
    sanitize_session_id,
)
from tests.harness import usage_line, write_transcript


def _session(project_dir, session_id, tokens, mtime=None):
    project_dir.mkdir(parents=True, exist_ok=True)
    path = write_transcript(project_dir / f"{session_id}.jsonl",
                            [usage_line("m1", 1, input_tokens=tokens)])
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def test_projects_dir_follows_claude_config_dir(tmp_path):
    assert get_claude_projects_dir() == tmp_path / "claude" / "projects"


@pytest.mark.parametrize(
    ("raw", "clean"),
    [("abc-123_x", "abc-123_x"), ("../../etc/passwd", "etcpasswd"), ("a b;c", "abc"), ("", "")],
)
def test_sanitize_session_id(raw, clean):
    assert sanitize_session_id(raw) == clean


def test_extract_project_name():
    assert extract_project_name("-Users-me-code-widgets") == "widgets"
    assert extract_project_name("-") == "unknown"


def test_is_session_active_window():
    assert is_session_active(1_000.0, now=1_000.0 + 299)
    assert not is_session_active(1_000.0, now=1_000.0 + 301)


def test_find_transcript_path(projects_dir):
    path = _session(projects_dir / "-home-me-app", "abc123", 10)
    assert find_transcript_path("abc123") == str(path)
    assert find_transcript_path("abc123", projects_dir=projects_dir) == str(path)
    assert find_transcript_path("missing") is None
    assert find_transcript_path("../abc123") == str(path)


def test_list_sessions_newest_first_with_totals(projects_dir):
    now = time.time()
    _session(projects_dir / "-home-me-old", "old", 50, mtime=now - 3_600)
    _session(projects_dir / "-home-me-new", "new", 70, mtime=now)

    sessions = list_sessions()

    assert [s["id"] for s in sessions] == ["new", "old"]
    assert [s["tokens"] for s in sessions] == [70, 50]
    assert [s["project"] for s in sessions] == ["new", "old"]
    assert sessions[0]["is_active"]
    assert not sessions[1]["is_active"]


def test_list_sessions_skips_backups_and_odd_directories(projects_dir):
    _session(projects_dir / "-home-me-app", "keep", 1)
    (projects_dir / "-home-me-app" / "keep.jsonl.save").write_text("{}\n", encoding="utf-8")
    _session(projects_dir / "weird dir!", "hidden", 1)

    assert [s["id"] for s in list_sessions(projects_dir)] == ["keep"]


def test_list_sessions_missing_root_is_empty(tmp_path):
    assert list_sessions(tmp_path / "nothing-here") == []
