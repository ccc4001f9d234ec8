"""
Core infrastructure for cargo-hyperlight.

Exceptions, cache directory layout, file leases and filesystem helpers
shared by the sysroot, toolchain and build layers.
"""

from cargo_hyperlight.core.exceptions import HyperlightCargoError
from cargo_hyperlight.core.locking import LockManager

__all__ = ["HyperlightCargoError", "LockManager"]
