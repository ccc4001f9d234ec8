"""
Sysroot building and caching for the guest target.
"""

from cargo_hyperlight.sysroot.builder import SysrootBuilder, sysroot_key
from cargo_hyperlight.sysroot.cache import SysrootCache, SysrootEntry, SysrootKey

__all__ = [
    "SysrootBuilder",
    "SysrootCache",
    "SysrootEntry",
    "SysrootKey",
    "sysroot_key",
]
