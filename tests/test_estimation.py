"""Tests for estimation heuristics and detail formatting."""

import pytest

from token_nerd.core.estimation import (
    cache_expired,
    cache_expiry_warning,
    calculate_cache_efficiency,
    estimate_tokens,
    format_operation_details,
    format_size_estimate,
    payload_size,
)


@pytest.mark.parametrize(
    ("content", "tokens"),
    [("", 0), ("a", 1), ("a" * 37, 10), ("a" * 38, 11), (0, 0), (3700, 1000), (-5, 0)],
)
def test_estimate_tokens(content, tokens):
    assert estimate_tokens(content) == tokens


def test_payload_size():
    assert payload_size(None) == 0
    assert payload_size("héllo") == 5
    assert payload_size({"a": [1, 2]}) == len('{"a":[1,2]}')


def test_cache_efficiency():
    assert calculate_cache_efficiency(0, 0) == 0.0
    assert calculate_cache_efficiency(100, 300) == pytest.approx(75.0)
    assert calculate_cache_efficiency(50, 0) == 0.0


@pytest.mark.parametrize(
    ("tool", "params", "details"),
    [
        ("Read", {"file_path": "/a/b/c.py"}, "c.py"),
        ("Write", {}, "file"),
        ("MultiEdit", {"file_path": "/x/y.txt"}, "y.txt"),
        ("Bash", {"command": "ls -la"}, "ls -la"),
        ("Bash", {"command": "x" * 40}, "x" * 30 + "..."),
        ("Grep", {"pattern": "def main"}, "def main"),
        ("Glob", {}, "pattern"),
        ("WebFetch", {"url": "https://example.com"}, "WebFetch"),
        ("Read", None, "file"),
    ],
)
def test_format_operation_details(tool, params, details):
    assert format_operation_details(tool, params) == details


def test_size_estimate_formatting():
    assert format_size_estimate(2150, 581) == "2.1KB → ~581 est"
    assert format_size_estimate(5_000_000, 1_351_352) == "4882.8KB → ~1,351,352 est"
    assert format_size_estimate(2150, 1_204, exact=True) == "2.1KB → 1,204 tokens"


def test_cache_expiry_threshold():
    assert not cache_expired(300)
    assert cache_expired(300.5)
    assert cache_expiry_warning(1_500) == "⚠️ Cache expired (25min gap)"
