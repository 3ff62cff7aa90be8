"""Read lines from the end of a file without loading the whole file.

Chunks of REVERSE_CHUNK_BYTES are read backward from EOF; the partial line at
the front of each chunk is carried into the next (earlier) chunk. Splitting
happens on bytes so a multi-byte character straddling a chunk boundary is
decoded intact.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator

import token_nerd.settings
from token_nerd.io.transcript import expand_path


def iter_lines_reversed(path: str | os.PathLike, chunk_size: int | None = None) -> Iterator[str]:
    """Yield non-empty stripped lines, last line first.

    Raises OSError when the file cannot be opened or read.
    """
    size = chunk_size or token_nerd.settings.REVERSE_CHUNK_BYTES
    with open(expand_path(path), "rb") as f:
        f.seek(0, os.SEEK_END)
        position = f.tell()
        remainder = b""
        while position > 0:
            read_size = min(size, position)
            position -= read_size
            f.seek(position)
            chunk = f.read(read_size) + remainder
            pieces = chunk.split(b"\n")
            # First piece may be an incomplete line; keep it for the next chunk.
            remainder = pieces.pop(0)
            for piece in reversed(pieces):
                line = piece.decode("utf-8", errors="replace").strip()
                if line:
                    yield line
        line = remainder.decode("utf-8", errors="replace").strip()
        if line:
            yield line


def read_last_lines(path: str | os.PathLike, max_lines: int = 1) -> list[str]:
    """Last ``max_lines`` non-empty lines, most recent first."""
    lines: list[str] = []
    if max_lines <= 0:
        return lines
    for line in iter_lines_reversed(path):
        lines.append(line)
        if len(lines) >= max_lines:
            break
    return lines


def read_last_line(path: str | os.PathLike) -> str | None:
    lines = read_last_lines(path, max_lines=1)
    return lines[0] if lines else None


def find_last_line_matching(
    path: str | os.PathLike,
    condition: Callable[[str], bool],
    max_lines_to_scan: int = 100,
) -> str | None:
    """Most recent line satisfying ``condition`` within the last N lines."""
    for scanned, line in enumerate(iter_lines_reversed(path), start=1):
        if condition(line):
            return line
        if scanned >= max_lines_to_scan:
            break
    return None
