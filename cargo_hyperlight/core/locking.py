"""
Concurrent access control for the sysroot cache.

Several cargo-hyperlight processes may build guests at the same time (two
terminals, a CI matrix sharing a cache directory). Rebuilding a sysroot
entry is guarded by a per-key file lease so that only one process builds
while the others wait for it and then reuse the published result.

Usage:
    from cargo_hyperlight.core.locking import LockManager

    lock_manager = LockManager(cache_dir / "lock")
    with lock_manager.sysroot_lock(key.slug, timeout=600):
        # Safely build and publish the sysroot entry
        pass
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout as LockTimeout

from cargo_hyperlight.core.exceptions import SysrootLockTimeout

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 600


class LockManager:
    """
    Manages file leases for sysroot cache entries.

    Uses file-based locking with the `filelock` library for cross-platform,
    cross-process exclusion and automatic release on process death.

    Attributes:
        lock_dir: Directory where lock files are stored
    """

    def __init__(self, lock_dir: Path):
        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    def lock_path(self, key: str) -> Path:
        """Lock file used for a given cache key."""
        safe_key = key.replace("/", "-").replace("\\", "-").replace(":", "-")
        return self.lock_dir / f"sysroot-{safe_key}.lock"

    @contextmanager
    def sysroot_lock(self, key: str, timeout: float = DEFAULT_LOCK_TIMEOUT):
        """
        Acquire the exclusive lease for one sysroot cache key.

        Building the standard library takes minutes, so the default timeout
        is generous. The lease is scoped to a single key; builds of other
        keys proceed in parallel.

        Args:
            key: Filesystem-safe cache key
            timeout: Maximum wait time in seconds

        Yields:
            None

        Raises:
            SysrootLockTimeout: If the lease can't be acquired within timeout
        """
        lock_path = self.lock_path(key)
        lock = FileLock(lock_path, timeout=timeout)

        try:
            with lock:
                logger.debug(f"Acquired sysroot lock: {lock_path}")
                yield
                logger.debug(f"Released sysroot lock: {lock_path}")
        except LockTimeout as e:
            logger.error(
                f"Could not acquire sysroot lock for {key} after {timeout}s. "
                "Another cargo-hyperlight process may be building this sysroot."
            )
            raise SysrootLockTimeout(
                f"Could not acquire sysroot lock for {key} after {timeout}s. "
                "Another cargo-hyperlight process may be building this sysroot."
            ) from e

    def cleanup_stale_locks(self, max_age_hours: float = 24) -> int:
        """
        Remove lock files older than max_age_hours.

        Args:
            max_age_hours: Maximum age in hours before a lock is considered stale

        Returns:
            Number of stale locks removed
        """
        if not self.lock_dir.exists():
            return 0

        current_time = time.time()
        removed_count = 0

        for lock_file in self.lock_dir.glob("*.lock"):
            try:
                age_hours = (current_time - lock_file.stat().st_mtime) / 3600

                if age_hours > max_age_hours:
                    lock_file.unlink()
                    logger.info(f"Removed stale lock file: {lock_file}")
                    removed_count += 1
            except OSError as e:
                # Lock may be in use or already deleted
                logger.debug(f"Could not remove lock {lock_file}: {e}")

        return removed_count
