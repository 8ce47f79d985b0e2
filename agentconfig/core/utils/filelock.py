"""
Cross-platform file locks

Gives every persisted file an exclusive, OS-level lock so that writers in
different threads or processes never interleave.

- Unix/Linux/macOS: fcntl.flock
- Windows: msvcrt.locking

Usage:
    from agentconfig.core.utils.filelock import file_lock

    with file_lock(Path("config.yaml.lock"), timeout=10.0):
        # ... critical section ...
"""

import logging
import platform
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


class FileLockError(Exception):
    """File lock operation failed"""
    pass


class LockAcquisitionError(FileLockError):
    """Lock is held by another process"""
    pass


class LockTimeout(FileLockError):
    """Lock could not be acquired before the deadline"""
    pass


def acquire_lock(file_handle, non_blocking: bool = True):
    """
    Acquire an exclusive lock on an open file

    Args:
        file_handle: Open file object
        non_blocking: Fail immediately when the lock is taken (True) or wait (False)

    Raises:
        LockAcquisitionError: Lock already held (non_blocking=True only)
        FileLockError: Any other lock failure
    """
    if platform.system() == "Windows":
        _acquire_lock_windows(file_handle, non_blocking)
    else:
        _acquire_lock_unix(file_handle, non_blocking)

    logger.debug(f"Acquired lock on {file_handle.name}")


def release_lock(file_handle):
    """
    Release a lock taken with acquire_lock

    Raises:
        FileLockError: Unlock failed
    """
    if platform.system() == "Windows":
        _release_lock_windows(file_handle)
    else:
        _release_lock_unix(file_handle)

    logger.debug(f"Released lock on {file_handle.name}")


@contextmanager
def file_lock(lock_path: Path, timeout: float = 10.0) -> Iterator[None]:
    """
    Hold an exclusive lock on lock_path for the duration of the block

    The lock file is created if needed and left in place afterwards.

    Args:
        lock_path: Sidecar lock file
        timeout: Seconds to wait before giving up

    Raises:
        LockTimeout: Lock still held by someone else after timeout
        FileLockError: Lock file could not be opened or locked
    """
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(lock_path, "a+", encoding="utf-8")
    except OSError as e:
        raise FileLockError(f"Cannot open lock file {lock_path}: {e}") from e

    deadline = time.monotonic() + timeout
    try:
        while True:
            try:
                acquire_lock(handle, non_blocking=True)
                break
            except LockAcquisitionError:
                if time.monotonic() >= deadline:
                    raise LockTimeout(
                        f"Timed out after {timeout}s waiting for {lock_path}"
                    )
                time.sleep(POLL_INTERVAL)

        try:
            yield
        finally:
            release_lock(handle)
    finally:
        handle.close()


# Unix/Linux/macOS

def _acquire_lock_unix(file_handle, non_blocking: bool):
    import fcntl

    try:
        flags = fcntl.LOCK_EX
        if non_blocking:
            flags |= fcntl.LOCK_NB

        fcntl.flock(file_handle.fileno(), flags)

    except BlockingIOError as e:
        raise LockAcquisitionError(
            f"Lock is held by another process: {file_handle.name}"
        ) from e
    except OSError as e:
        raise FileLockError(f"fcntl.flock failed: {e}") from e


def _release_lock_unix(file_handle):
    import fcntl

    try:
        fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)
    except OSError as e:
        raise FileLockError(f"fcntl.flock unlock failed: {e}") from e


# Windows

def _acquire_lock_windows(file_handle, non_blocking: bool):
    import msvcrt

    try:
        # msvcrt locks byte ranges; lock the first byte of the file
        file_handle.seek(0)
        mode = msvcrt.LK_NBLCK if non_blocking else msvcrt.LK_LOCK
        msvcrt.locking(file_handle.fileno(), mode, 1)

    except OSError as e:
        # errno 13 (EACCES) / 36 (EDEADLOCK): held by someone else
        if e.errno in (13, 36):
            raise LockAcquisitionError(
                f"Lock is held by another process: {file_handle.name}"
            ) from e
        raise FileLockError(f"msvcrt.locking failed: {e}") from e


def _release_lock_windows(file_handle):
    import msvcrt

    try:
        file_handle.seek(0)
        msvcrt.locking(file_handle.fileno(), msvcrt.LK_UNLCK, 1)
    except OSError as e:
        raise FileLockError(f"msvcrt.locking unlock failed: {e}") from e
