"""
Directory layout for cargo-hyperlight.

Global Cache (~/.cargo-hyperlight/ or %USERPROFILE%\\.cargo-hyperlight\\):
    - sysroots/   : Prebuilt core/alloc sysroots keyed by toolchain and target
    - lock/       : Per-key lease files guarding sysroot rebuilds

The location can be overridden with the CARGO_HYPERLIGHT_CACHE_DIR
environment variable.
"""

import os
from pathlib import Path
from typing import Mapping, Optional

from cargo_hyperlight.core.exceptions import ConfigError

CACHE_DIR_ENV = "CARGO_HYPERLIGHT_CACHE_DIR"


def get_global_cache_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    """
    Get the global cache directory path.

    Args:
        env: Environment to consult (default: os.environ)

    Returns:
        Path: The global cache directory path.
            - CARGO_HYPERLIGHT_CACHE_DIR if set
            - Windows: %USERPROFILE%\\.cargo-hyperlight
            - Linux/macOS: ~/.cargo-hyperlight/

    Example:
        >>> get_global_cache_dir()
        PosixPath('/home/user/.cargo-hyperlight')
    """
    env = os.environ if env is None else env

    override = env.get(CACHE_DIR_ENV)
    if override:
        return Path(override).expanduser()

    if os.name == "nt":  # Windows
        user_profile = env.get("USERPROFILE")
        if not user_profile:
            raise ConfigError(
                "USERPROFILE environment variable is not set. "
                "Cannot determine global cache directory."
            )
        return Path(user_profile) / ".cargo-hyperlight"
    return Path.home() / ".cargo-hyperlight"


def get_sysroots_dir(cache_dir: Path) -> Path:
    """Directory holding published sysroot cache entries."""
    return cache_dir / "sysroots"


def get_lock_dir(cache_dir: Path) -> Path:
    """Directory holding lease files for the sysroot cache."""
    return cache_dir / "lock"
