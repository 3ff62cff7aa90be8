"""Pytest configuration and shared fixtures for token-nerd tests."""

import pytest

from token_nerd.io import logging_setup, token_usage
from tests.harness import FakeRedis, write_transcript


# ---------------------------------------------------------------------------
# Isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Point every config location at tmp_path and drop process-local caches."""
    monkeypatch.setenv("CLAUDE_CONFIG_DIR", str(tmp_path / "claude"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.delenv("TOKEN_NERD_REDIS_URL", raising=False)
    monkeypatch.delenv("TOKEN_NERD_LOG_FILE", raising=False)
    monkeypatch.delenv("TOKEN_NERD_LOG_LEVEL", raising=False)
    token_usage.clear_scan_cache()
    yield
    token_usage.clear_scan_cache()
    logging_setup.reset()


# ---------------------------------------------------------------------------
# Transcript + store fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def transcript(tmp_path):
    """Factory fixture: write lines to a fresh .jsonl file and return its path."""
    counter = {"n": 0}

    def _write(lines, name=None, trailing_newline=True):
        counter["n"] += 1
        path = tmp_path / (name or f"transcript-{counter['n']}.jsonl")
        return write_transcript(path, lines, trailing_newline=trailing_newline)

    return _write


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def projects_dir(tmp_path):
    """The Claude projects directory under the isolated CLAUDE_CONFIG_DIR."""
    path = tmp_path / "claude" / "projects"
    path.mkdir(parents=True)
    return path
