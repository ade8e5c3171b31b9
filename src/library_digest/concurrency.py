"""File locking and disk space checks."""

import shutil
import sys
from pathlib import Path

from loguru import logger

log = logger.bind(stage="concurrency")


class LockError(Exception):
    """Raised when lock cannot be acquired."""


def acquire_global_lock(lock_dir: Path, skip: bool = False) -> object | None:
    """Acquire a global file lock so only one poller owns the progress store.

    Returns the lock file handle (keep reference to maintain lock),
    or None if locking was skipped.
    Raises LockError if another instance holds the lock.
    """
    log.debug(f"acquire_global_lock(lock_dir={lock_dir}, skip={skip})")

    if skip:
        log.debug("Skipping lock acquisition")
        return None

    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / "library-digest.lock"

    fh = open(lock_file, "w")
    try:
        if sys.platform == "win32":
            import msvcrt

            msvcrt.locking(fh.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl

            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fh.close()
        log.warning(f"Failed to acquire lock at {lock_file}")
        raise LockError("Another library-digest instance is running")
    log.info(f"Lock acquired at {lock_file}")
    return fh


def check_disk_space(required_bytes: int, target_dir: Path, multiplier: int = 2) -> bool:
    """Check that target_dir has room for a download.

    Requires at least multiplier * required_bytes available (the .part file
    and the final file can briefly coexist on some filesystems).
    Returns True if sufficient, False otherwise.
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    required = required_bytes * multiplier
    usage = shutil.disk_usage(target_dir)
    result = usage.free >= required

    log.debug(
        f"Disk space check: required={required:,} bytes, "
        f"free={usage.free:,} bytes, sufficient={result}"
    )

    return result
