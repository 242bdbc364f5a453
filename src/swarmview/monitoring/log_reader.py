"""Incremental reading of append-only log files.

Reads only the bytes appended since a remembered offset and detects
truncation or replacement by comparing the file size with that offset.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from .models import TailResult

logger = logging.getLogger(__name__)

# Chunk size for reading backwards from the end of a file
_TAIL_CHUNK_BYTES = 64 * 1024


def _is_complete_record(fragment: bytes) -> bool:
    """Whether an unterminated trailing fragment is already a full JSON record."""
    if not fragment.strip():
        return True
    try:
        json.loads(fragment.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError):
        return False
    return True


def _split_lines(data: bytes) -> list[str]:
    text = data.decode("utf-8", errors="replace")
    return [line for line in text.split("\n") if line.strip()]


def read_new_lines(file_path: str | Path, last_offset: int) -> TailResult:
    """Read lines appended to a file since ``last_offset``.

    Only the byte range ``[last_offset, size)`` is read. A trailing fragment
    without a newline is consumed only if it is already a complete JSON
    record; otherwise the returned offset stops before it so the next read
    picks it up once the writer finishes the line.

    Args:
        file_path: Path to the append-only file.
        last_offset: Byte offset consumed by the previous read.

    Returns:
        TailResult with the new lines and the offset to resume from. If the
        file is smaller than ``last_offset`` (truncated or replaced) or has
        vanished, ``needs_full_reparse`` is True and ``new_offset`` is 0.
    """
    path = Path(file_path)

    try:
        file_size = path.stat().st_size
    except FileNotFoundError:
        if last_offset > 0:
            logger.warning(f"Log file {path} disappeared after offset {last_offset}")
            return TailResult(lines=[], new_offset=0, needs_full_reparse=True)
        logger.debug(f"Log file does not exist: {path}")
        return TailResult(lines=[], new_offset=0)

    if file_size < last_offset:
        logger.warning(
            f"Log file {path} was truncated (offset {last_offset} > size {file_size})"
        )
        return TailResult(lines=[], new_offset=0, needs_full_reparse=True)

    if file_size == last_offset:
        return TailResult(lines=[], new_offset=last_offset)

    with path.open("rb") as f:
        f.seek(last_offset)
        data = f.read(file_size - last_offset)

    consumed = len(data)
    if not data.endswith(b"\n"):
        cut = data.rfind(b"\n") + 1
        if not _is_complete_record(data[cut:]):
            data = data[:cut]
            consumed = cut

    lines = _split_lines(data)
    new_offset = last_offset + consumed
    if lines:
        logger.debug(
            f"Read {len(lines)} new lines from {path} (offset {last_offset} -> {new_offset})"
        )
    return TailResult(lines=lines, new_offset=new_offset)


def _read_tail_lines(f, file_size: int, n: int) -> list[tuple[int, str]]:
    """Read the last ``n`` lines of an open binary file, with their start offsets."""
    if n <= 0 or file_size == 0:
        return []

    position = file_size
    buffer = b""
    # Need one newline beyond the n lines we keep to know the first is whole
    while position > 0 and buffer.count(b"\n") <= n:
        step = min(_TAIL_CHUNK_BYTES, position)
        position -= step
        f.seek(position)
        buffer = f.read(step) + buffer

    results: list[tuple[int, str]] = []
    offset = position
    for raw in buffer.split(b"\n"):
        start = offset
        offset += len(raw) + 1
        results.append((start, raw.decode("utf-8", errors="replace")))

    # The first piece is partial unless we reached the start of the file
    if position > 0:
        results = results[1:]
    results = [(start, line) for start, line in results if line.strip()]
    return results[-n:]


def read_head_tail_lines(file_path: str | Path, head: int = 50, tail: int = 20) -> list[str]:
    """Read the first ``head`` and last ``tail`` lines of a file.

    Lines present in both samples are returned once. The tail is read
    backwards in bounded chunks so the cost doesn't grow with file size.

    Args:
        file_path: Path to the file.
        head: Number of leading lines.
        tail: Number of trailing lines.

    Returns:
        Non-blank lines in file order. Empty list if the file doesn't exist.
    """
    path = Path(file_path)
    try:
        with path.open("rb") as f:
            file_size = os.fstat(f.fileno()).st_size

            head_lines: list[str] = []
            head_end = 0
            while len(head_lines) < head:
                raw = f.readline()
                if not raw:
                    break
                head_end += len(raw)
                line = raw.decode("utf-8", errors="replace").rstrip("\n")
                if line.strip():
                    head_lines.append(line)

            tail_lines = [
                line for start, line in _read_tail_lines(f, file_size, tail) if start >= head_end
            ]
    except FileNotFoundError:
        return []

    return head_lines + tail_lines
