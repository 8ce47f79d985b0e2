"""Atomic file replacement helpers"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def atomic_write_bytes(path: Path, data: bytes, mode: Optional[int] = None) -> None:
    """Replace path with data atomically

    Writes to a temp file in the same directory, flushes and fsyncs it, then
    renames it over the target. Readers see either the old or the new file,
    never a partial one. On failure the temp file is removed and the
    original file is left untouched.

    Args:
        path: Target file
        data: Full new contents
        mode: Optional permission bits for the new file (e.g. 0o600)

    Raises:
        OSError: Write, fsync or rename failed
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp_file:
            tmp_path = Path(tmp_file.name)
            tmp_file.write(data)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())

        if mode is not None:
            os.chmod(tmp_path, mode)

        os.replace(tmp_path, path)
        tmp_path = None
        _fsync_dir(path.parent)
    finally:
        if tmp_path is not None and tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError as e:
                logger.warning(f"Failed to remove temp file {tmp_path}: {e}")


def backup_file(path: Path) -> Optional[Path]:
    """Copy path to <path>.bak, returning the backup path (None if path is absent)"""
    if not path.exists():
        return None
    backup = path.with_name(path.name + ".bak")
    shutil.copy2(path, backup)
    return backup


def _fsync_dir(directory: Path) -> None:
    # Directory fsync makes the rename itself durable; not supported on Windows
    if os.name == "nt":
        return
    fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
