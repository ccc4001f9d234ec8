"""
Locate the guest binary produced by a build.
"""

import logging
from pathlib import Path
from typing import Optional

from cargo_hyperlight.cargo.metadata import CargoMetadata

logger = logging.getLogger(__name__)

# cargo's built-in profiles and the directory they write to
PROFILE_DIRS = {
    "dev": "debug",
    "debug": "debug",
    "test": "debug",
    "release": "release",
    "bench": "release",
}


def profile_dir(profile: Optional[str]) -> str:
    """Output directory name for a cargo profile (None means dev)."""
    if not profile:
        return "debug"
    return PROFILE_DIRS.get(profile, profile)


class ArtifactLocator:
    """
    Compute where cargo places the guest binary.

    Args:
        metadata: Workspace metadata used to pick the default binary name
    """

    def __init__(self, metadata: Optional[CargoMetadata] = None):
        self.metadata = metadata

    def binary_name(self, binary: Optional[str] = None) -> Optional[str]:
        """
        Binary name: explicit --bin, else the root package's first bin
        target, else the root package name.
        """
        if binary:
            return binary
        if self.metadata is None:
            return None

        package = self.metadata.root_package
        if package is None:
            return None

        bins = self.metadata.bin_targets(package)
        if bins:
            return bins[0].name
        return package.get("name")

    def locate(
        self,
        target_dir: Path,
        triple: str,
        profile: Optional[str] = None,
        binary: Optional[str] = None,
    ) -> Optional[Path]:
        """
        Path of the binary: ``<target-dir>/<triple>/<profile-dir>/<binary>``.

        Returns:
            The path (whether or not it exists), or None when no binary
            name can be determined (e.g. a virtual workspace without --bin)
        """
        name = self.binary_name(binary)
        if name is None:
            logger.debug("No binary name for artifact lookup")
            return None
        return Path(target_dir) / triple / profile_dir(profile) / name
