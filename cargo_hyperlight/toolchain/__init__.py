"""
Rust and native toolchain discovery.

The guest toolchain environment lives in
``cargo_hyperlight.toolchain.environment``.
"""

from cargo_hyperlight.toolchain.cargo import (
    CargoBinary,
    ToolchainInfo,
    find_cargo,
    query_toolchain,
)
from cargo_hyperlight.toolchain.compilers import NativeCompilers, discover_compilers

__all__ = [
    "CargoBinary",
    "ToolchainInfo",
    "find_cargo",
    "query_toolchain",
    "NativeCompilers",
    "discover_compilers",
]
