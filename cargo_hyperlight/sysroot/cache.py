"""
On-disk cache of prebuilt guest sysroots.

Each entry is keyed by the Rust toolchain version and the target descriptor
digest. Entries are built in a private staging directory and published with
a single rename, so a reader never observes a partially-written sysroot.
Rebuilds of one key are serialized by a file lease; readers of a published
entry never take the lease.

Layout::

    <cache-dir>/
        sysroots/
            <slug>/
                sysroot.json                      manifest (the key)
                lib/rustlib/<triple>/target.json
                lib/rustlib/<triple>/lib/*.rlib
        lock/
            sysroot-<slug>.lock
"""

import hashlib
import json
import logging
import re
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from cargo_hyperlight.core.directory import get_lock_dir, get_sysroots_dir
from cargo_hyperlight.core.filesystem import (
    atomic_write,
    directory_size,
    publish_directory,
    safe_rmtree,
)
from cargo_hyperlight.core.locking import DEFAULT_LOCK_TIMEOUT, LockManager

logger = logging.getLogger(__name__)

MANIFEST_NAME = "sysroot.json"
MANIFEST_VERSION = 1


@dataclass(frozen=True)
class SysrootKey:
    """
    Identity of a sysroot cache entry.

    Attributes:
        toolchain: Toolchain version string (release and commit hash)
        target_digest: TargetDescriptor digest
        triple: Target triple the sysroot is built for
    """

    toolchain: str
    target_digest: str
    triple: str

    @property
    def slug(self) -> str:
        """Filesystem-safe directory name for this key."""
        release = self.toolchain.split(" ", 1)[0]
        release = re.sub(r"[^A-Za-z0-9._-]", "_", release)
        digest = hashlib.sha256(
            f"{self.toolchain}\0{self.target_digest}\0{self.triple}".encode("utf-8")
        ).hexdigest()
        return f"{self.triple}-{release}-{digest[:16]}"


@dataclass(frozen=True)
class SysrootEntry:
    """A published cache entry, as listed by SysrootCache.entries()."""

    path: Path
    toolchain: Optional[str]
    target_digest: Optional[str]
    triple: Optional[str]
    created: Optional[str]
    size: int


def sysroot_target_dir(sysroot: Path, triple: str) -> Path:
    """``lib/rustlib/<triple>`` inside a sysroot."""
    return sysroot / "lib" / "rustlib" / triple


class SysrootCache:
    """
    Keyed, lease-guarded store of prebuilt sysroots.

    Args:
        cache_dir: Root cache directory (e.g. ~/.cargo-hyperlight)
        lock_timeout: Seconds to wait for another process's rebuild
    """

    def __init__(self, cache_dir: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.cache_dir = Path(cache_dir)
        self.root = get_sysroots_dir(self.cache_dir)
        self.lock_timeout = lock_timeout
        self._lock_manager: Optional[LockManager] = None

    @property
    def lock_manager(self) -> LockManager:
        if self._lock_manager is None:
            self._lock_manager = LockManager(get_lock_dir(self.cache_dir))
        return self._lock_manager

    def entry_path(self, key: SysrootKey) -> Path:
        return self.root / key.slug

    def _read_manifest(self, path: Path) -> Optional[dict]:
        try:
            with open(path / MANIFEST_NAME, "r", encoding="utf-8") as f:
                manifest = json.load(f)
        except (OSError, json.JSONDecodeError):
            return None
        return manifest if isinstance(manifest, dict) else None

    def is_valid(self, path: Path, key: SysrootKey) -> bool:
        """
        Whether the directory holds a complete sysroot for exactly this key.

        Any mismatch of toolchain, descriptor digest or triple, or a missing
        library directory, invalidates the entry.
        """
        manifest = self._read_manifest(path)
        if manifest is None:
            return False

        if (
            manifest.get("toolchain") != key.toolchain
            or manifest.get("target_digest") != key.target_digest
            or manifest.get("triple") != key.triple
        ):
            logger.debug(f"Sysroot manifest mismatch at {path}: {manifest}")
            return False

        return (sysroot_target_dir(path, key.triple) / "lib").is_dir()

    def lookup(self, key: SysrootKey) -> Optional[Path]:
        """Return the published entry for key if it is valid, else None."""
        path = self.entry_path(key)
        if path.is_dir() and self.is_valid(path, key):
            return path
        return None

    @contextmanager
    def lease(self, key: SysrootKey):
        """Exclusive lease on one key for the duration of a rebuild."""
        with self.lock_manager.sysroot_lock(key.slug, timeout=self.lock_timeout):
            yield

    @contextmanager
    def staging(self, key: SysrootKey) -> Iterator[Path]:
        """
        Private directory to build a new entry in.

        The directory lives beside the published entries so that publishing
        is a same-filesystem rename. It is removed if the build fails or is
        never published.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".staging-{key.slug}-", dir=self.root))
        try:
            yield staging
        finally:
            if staging.exists():
                safe_rmtree(staging, require_prefix=self.root)

    def publish(self, key: SysrootKey, staging: Path) -> Path:
        """
        Write the manifest and atomically move staging into place.

        An existing (invalid) entry for the same key is replaced wholesale.

        Returns:
            Path of the published entry
        """
        manifest = {
            "version": MANIFEST_VERSION,
            "toolchain": key.toolchain,
            "target_digest": key.target_digest,
            "triple": key.triple,
            "created": datetime.now(timezone.utc).isoformat(),
        }
        atomic_write(staging / MANIFEST_NAME, json.dumps(manifest, indent=2) + "\n")

        destination = self.entry_path(key)
        publish_directory(staging, destination)
        logger.debug(f"Published sysroot {destination}")
        return destination

    def entries(self) -> List[SysrootEntry]:
        """List published entries, including ones with unreadable manifests."""
        if not self.root.is_dir():
            return []

        entries = []
        for path in sorted(self.root.iterdir()):
            if not path.is_dir() or path.name.startswith("."):
                continue
            manifest = self._read_manifest(path) or {}
            entries.append(
                SysrootEntry(
                    path=path,
                    toolchain=manifest.get("toolchain"),
                    target_digest=manifest.get("target_digest"),
                    triple=manifest.get("triple"),
                    created=manifest.get("created"),
                    size=directory_size(path),
                )
            )
        return entries

    def remove(self, key: SysrootKey) -> bool:
        """Remove the entry for key under its lease. Returns True if removed."""
        path = self.entry_path(key)
        with self.lease(key):
            if not path.exists():
                return False
            safe_rmtree(path, require_prefix=self.root)
        return True

    def clear(self) -> int:
        """
        Remove every published entry.

        Staging and work directories of builds that may still be running are left
        alone; they remove themselves when their build ends.

        Returns:
            Number of published entries removed
        """
        if not self.root.is_dir():
            return 0

        count = 0
        for path in list(self.root.iterdir()):
            if not path.is_dir() or path.name.startswith((".staging-", ".work-")):
                continue
            safe_rmtree(path, require_prefix=self.root)
            if not path.name.startswith("."):
                count += 1

        self.lock_manager.cleanup_stale_locks()
        return count
