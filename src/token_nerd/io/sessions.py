"""Discovery of Claude Code session transcripts.

Transcripts live at <claude dir>/projects/<project-dir>/<session-id>.jsonl.
Provides listing, path lookup, and the session-id sanitizing shared by the
operation store client.
"""

import logging
import re
import time
from pathlib import Path
from typing import Optional, TypedDict

import token_nerd.settings
from token_nerd.io.token_usage import get_current_token_total

logger = logging.getLogger(__name__)

_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


class SessionInfo(TypedDict):
    id: str
    project: str
    tokens: int
    last_modified: float
    is_active: bool
    path: str


def sanitize_session_id(session_id: str) -> str:
    """Keep only alphanumerics, underscores, and hyphens."""
    return _UNSAFE_ID_CHARS.sub("", session_id or "")


def get_claude_projects_dir() -> Path:
    """Return the directory holding per-project transcript folders."""
    return token_nerd.settings.get_claude_dir() / "projects"


def extract_project_name(project_dir: str) -> str:
    """Last dash-separated segment of an encoded project directory name."""
    project = project_dir.lstrip("-").split("-")[-1]
    return project or "unknown"


def is_session_active(last_modified: float, now: Optional[float] = None) -> bool:
    """True when the transcript was written within SESSION_ACTIVE_SECONDS."""
    current = time.time() if now is None else now
    return (current - last_modified) < token_nerd.settings.SESSION_ACTIVE_SECONDS


def _project_dirs(projects_dir: Path) -> list[Path]:
    try:
        return sorted(path for path in projects_dir.iterdir() if path.is_dir())
    except OSError:
        return []


def find_transcript_path(session_id: str, projects_dir: Optional[Path] = None) -> Optional[str]:
    """Locate ``<session_id>.jsonl`` under any project directory.

    Returns:
        Absolute path to the transcript, or None when no project holds it
    """
    sanitized = sanitize_session_id(session_id)
    if not sanitized:
        return None
    root = projects_dir if projects_dir is not None else get_claude_projects_dir()
    target = f"{sanitized}.jsonl"
    for project in _project_dirs(root):
        candidate = project / target
        if candidate.is_file():
            return str(candidate)
    return None


def list_sessions(projects_dir: Optional[Path] = None) -> list[SessionInfo]:
    """List every session transcript with its current token total.

    Project directories whose names carry anything beyond the sanitized
    alphabet are skipped, as are ``.save`` backups.

    Returns:
        Session metadata dicts, most recently modified first
    """
    root = projects_dir if projects_dir is not None else get_claude_projects_dir()
    sessions: list[SessionInfo] = []
    if not root.exists():
        return sessions

    for project in _project_dirs(root):
        if sanitize_session_id(project.name) != project.name:
            logger.debug("skipping project dir with unexpected name %r", project.name)
            continue
        try:
            transcripts = sorted(project.glob("*.jsonl"))
        except OSError as e:
            logger.warning("skipping unreadable project %s: %s", project.name, e)
            continue
        for path in transcripts:
            try:
                last_modified = path.stat().st_mtime
            except OSError as e:
                logger.warning("skipping unreadable transcript %s: %s", path.name, e)
                continue
            sessions.append(
                {
                    "id": sanitize_session_id(path.stem),
                    "project": extract_project_name(project.name),
                    "tokens": get_current_token_total(path),
                    "last_modified": last_modified,
                    "is_active": is_session_active(last_modified),
                    "path": str(path),
                }
            )

    sessions.sort(key=lambda s: s["last_modified"], reverse=True)
    return sessions
