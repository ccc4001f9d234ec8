"""
cargo workspace metadata and the guest runtime dependency check.
"""

from cargo_hyperlight.cargo.graph import Crate, DependencyGraph
from cargo_hyperlight.cargo.metadata import (
    BinTarget,
    CargoMetadata,
    DependencyValidator,
    load_metadata,
)

__all__ = [
    "BinTarget",
    "CargoMetadata",
    "Crate",
    "DependencyGraph",
    "DependencyValidator",
    "load_metadata",
]
