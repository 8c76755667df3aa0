# apidoc_hub/utils/atomic_io.py
# @ai-rules:
# 1. [Constraint]: Readers must never see a partially written file. Write temp -> fsync -> os.replace -> fsync dir.
# 2. [Gotcha]: Temp file lives in the SAME directory as the target (os.replace is only atomic within a filesystem).
# 3. [Pattern]: Temp file is unlinked in finally on ANY failure. Async callers run this in an executor thread,
#    so cancelling the caller never stops a write halfway.
"""Atomic file replacement helpers."""
from __future__ import annotations

import os
import uuid
from pathlib import Path

TEMP_SUFFIX = ".tmp"


def temp_path_for(dest: Path) -> Path:
    """Hidden, unique temp sibling of *dest*."""
    return dest.with_name(f".{dest.name}.{os.getpid()}-{uuid.uuid4().hex[:8]}{TEMP_SUFFIX}")


def fsync_dir(directory: Path) -> None:
    """Flush a directory entry so a completed rename survives a crash."""
    fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write_bytes(dest: Path, data: bytes) -> None:
    """Replace *dest* with *data* atomically. Raises OSError on failure."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = temp_path_for(dest)
    try:
        with open(tmp, "wb") as wf:
            wf.write(data)
            wf.flush()
            os.fsync(wf.fileno())
        os.replace(tmp, dest)
    finally:
        # No-op after a successful replace
        tmp.unlink(missing_ok=True)
    fsync_dir(dest.parent)


def purge_temp_files(directory: Path) -> int:
    """Remove temp files left behind by a crashed writer. Returns the count removed."""
    if not directory.is_dir():
        return 0
    removed = 0
    for path in directory.glob(f".*{TEMP_SUFFIX}"):
        path.unlink(missing_ok=True)
        removed += 1
    return removed
