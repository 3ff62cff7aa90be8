"""Settings and tunables for token-nerd.

Module-level constants hold the heuristics shared by the token calculator and
the operation factory. A general-purpose JSON settings file lives at
XDG_CONFIG_HOME/token-nerd/settings.json; the Claude config file is consulted
only for the auto-compact flag that decides the context-window limit.

Import as: import token_nerd.settings
"""

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


# ─── Heuristics ───────────────────────────────────────────────────────────────

# [LAW:one-source-of-truth] All estimation ratios live here.
CHARS_PER_TOKEN_ESTIMATE = 3.7
BYTES_PER_TOKEN_FALLBACK = 100

CACHE_EXPIRY_SECONDS = 300
SESSION_ACTIVE_SECONDS = 5 * 60

TAIL_SCAN_MAX_LINES = 100
REVERSE_CHUNK_BYTES = 64 * 1024

# Context-window limits keyed by Claude's autoCompactEnabled setting.
TOKEN_LIMIT_AUTO_COMPACT = 156_000
TOKEN_LIMIT_NO_AUTO_COMPACT = 190_000

NEAR_LIMIT_PERCENT = 10.0

# ─── Operation store ──────────────────────────────────────────────────────────

DEFAULT_REDIS_URL = "redis://localhost:6379"
REDIS_CONNECT_TIMEOUT_SECONDS = 1.0


def get_redis_url() -> str:
    """Redis URL for the hook operation store (TOKEN_NERD_REDIS_URL overrides)."""
    return os.environ.get("TOKEN_NERD_REDIS_URL", "") or load_setting("redis_url", DEFAULT_REDIS_URL)


# ─── Claude locations ─────────────────────────────────────────────────────────


def get_claude_dir() -> Path:
    """Return the Claude configuration directory (CLAUDE_CONFIG_DIR or ~/.claude)."""
    override = os.environ.get("CLAUDE_CONFIG_DIR", "")
    if override:
        return Path(os.path.expanduser(override))
    return Path(os.path.expanduser("~/.claude"))


def get_claude_config_file() -> Path:
    """Return path to ~/.claude.json, the file carrying autoCompactEnabled."""
    return Path(os.path.expanduser("~/.claude.json"))


def is_auto_compact_enabled(config_path: Path | None = None) -> bool:
    """True unless the Claude config explicitly sets autoCompactEnabled to false.

    A missing or unreadable config file keeps Claude's default (enabled).
    """
    path = config_path if config_path is not None else get_claude_config_file()
    try:
        config = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return True
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
        logger.debug("unreadable claude config %s: %s", path, exc)
        return True
    if not isinstance(config, dict):
        return True
    return config.get("autoCompactEnabled") is not False


def get_token_limit(config_path: Path | None = None) -> int:
    """Context-window limit matching the user's auto-compact setting."""
    if is_auto_compact_enabled(config_path):
        return TOKEN_LIMIT_AUTO_COMPACT
    return TOKEN_LIMIT_NO_AUTO_COMPACT


# ─── Settings file ────────────────────────────────────────────────────────────


def get_config_path() -> Path:
    """Return path to settings file.

    Uses XDG_CONFIG_HOME (default ~/.config) / token-nerd / settings.json.
    """
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "token-nerd" / "settings.json"


def load_settings() -> dict:
    """Load settings from JSON file. Returns empty dict on missing/corrupt file."""
    path = get_config_path()
    # [LAW:dataflow-not-control-flow] Always attempt read; empty dict is the "no data" value.
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def load_setting(key: str, default=None):
    """Load a single setting by key. Returns default if absent."""
    return load_settings().get(key, default)
