"""
Atomic file persistence utilities.

This module provides utilities for safely writing files using the
write-to-temp-then-rename pattern, which ensures atomicity on POSIX systems.

Each write attempt gets its own temp file in the target directory, so two
concurrent writers of the same path never share a temp file. The rename is
the only step that makes new content visible.
"""

import os
import secrets
from pathlib import Path
from typing import Callable, Iterator, Optional

TEMP_SUFFIX = '.tmp'


def temp_path_for(path: Path) -> Path:
    """
    Build a temp path unique to one write attempt.

    The temp file is hidden (leading dot) and lives next to the target so the
    final rename never crosses a filesystem boundary.
    """
    path = Path(path)
    token = secrets.token_hex(4)
    return path.parent / f".{path.name}.{token}{TEMP_SUFFIX}"


def iter_temp_files(directory: Path) -> Iterator[Path]:
    """Yield leftover temp files from interrupted writes in a directory."""
    directory = Path(directory)
    if not directory.exists():
        return
    for candidate in directory.iterdir():
        if candidate.name.startswith('.') and candidate.name.endswith(TEMP_SUFFIX):
            yield candidate


def fsync_directory(directory: Path) -> None:
    """Flush a directory entry so a completed rename survives power loss."""
    fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write_bytes(
    path: Path,
    content: bytes,
    fsync: bool = True,
    fsync_dir: bool = False,
    before_replace: Optional[Callable[[Path], None]] = None,
) -> None:
    """
    Write bytes to a file atomically.

    Args:
        path: Target file path
        content: Bytes to write
        fsync: Flush the temp file to disk before renaming
        fsync_dir: Also flush the parent directory after renaming
        before_replace: Called with the temp path after the content is on
            disk and before the rename. Raising from it aborts the write and
            leaves the target untouched.

    Raises:
        OSError: If write or rename fails
    """
    path = Path(path)
    temp_path = temp_path_for(path)

    try:
        with open(temp_path, 'wb') as f:
            f.write(content)
            f.flush()
            if fsync:
                os.fsync(f.fileno())

        if before_replace is not None:
            before_replace(temp_path)

        os.replace(temp_path, path)
    except Exception:
        # Clean up temp file on failure
        if temp_path.exists():
            temp_path.unlink()
        raise

    if fsync_dir:
        fsync_directory(path.parent)
