"""
Custom rustc target for Hyperlight guests.
"""

from cargo_hyperlight.target.descriptor import (
    TARGET_TRIPLE,
    TargetDescriptor,
    TargetDescriptorResolver,
    is_hyperlight_target,
)

__all__ = [
    "TARGET_TRIPLE",
    "TargetDescriptor",
    "TargetDescriptorResolver",
    "is_hyperlight_target",
]
