"""
Guest build orchestration: pipeline, cargo driver and artifact lookup.
"""

from cargo_hyperlight.build.artifacts import ArtifactLocator, profile_dir
from cargo_hyperlight.build.driver import BuildDriver, BuildRequest, BuildResult
from cargo_hyperlight.build.pipeline import BuildPipeline, resolve_target

__all__ = [
    "ArtifactLocator",
    "BuildDriver",
    "BuildPipeline",
    "BuildRequest",
    "BuildResult",
    "profile_dir",
    "resolve_target",
]
