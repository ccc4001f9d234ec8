"""
Run the user's cargo command for the guest target.

cargo runs in the foreground with the terminal's stdin, stdout and stderr,
so diagnostics stream unmodified. The wrapper adds nothing to the output
except its own log lines before and after.
"""

import logging
import os
import signal
import subprocess
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Mapping, Optional, Tuple

from cargo_hyperlight.build.artifacts import ArtifactLocator
from cargo_hyperlight.core.exceptions import (
    EXIT_INTERRUPTED,
    BuildInterrupted,
    CargoNotFoundError,
)
from cargo_hyperlight.core.process import format_command
from cargo_hyperlight.target.descriptor import TargetDescriptor
from cargo_hyperlight.toolchain.cargo import CargoBinary
from cargo_hyperlight.toolchain.environment import ToolchainEnvironment

logger = logging.getLogger(__name__)

SUBCOMMANDS = ("build", "check", "clippy", "doc", "rustc")

# Subcommands that link a guest binary
LINKING_SUBCOMMANDS = ("build", "rustc")

# cargo rejects --profile debug; "debug" is the dev profile's output directory
PROFILE_ALIASES = {"debug": "dev"}


@dataclass(frozen=True)
class BuildRequest:
    """
    One cargo invocation for the guest target.

    Attributes:
        subcommand: cargo subcommand (build, check, clippy, doc, rustc)
        manifest_path: Cargo.toml to build (default: cargo's own lookup)
        profile: cargo profile name; None means dev
        target_dir: Target directory override
        cargo_args: Arguments passed to cargo verbatim
        bin: Binary to build and locate
    """

    subcommand: str = "build"
    manifest_path: Optional[Path] = None
    profile: Optional[str] = None
    target_dir: Optional[Path] = None
    cargo_args: Tuple[str, ...] = field(default_factory=tuple)
    bin: Optional[str] = None

    def __post_init__(self):
        if self.subcommand not in SUBCOMMANDS:
            raise ValueError(f"Unsupported cargo subcommand: {self.subcommand}")

    @property
    def profile_name(self) -> str:
        profile = self.profile or "dev"
        return PROFILE_ALIASES.get(profile, profile)

    def with_target_dir(self, target_dir: Path) -> "BuildRequest":
        return replace(self, target_dir=target_dir)


@dataclass(frozen=True)
class BuildResult:
    """
    Outcome of a build.

    Attributes:
        returncode: cargo's exit status (signal deaths as 128 + signal)
        artifact: Expected guest binary path, when applicable
        artifact_exists: Whether the artifact was found on disk
    """

    returncode: int
    artifact: Optional[Path] = None
    artifact_exists: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0


def normalize_returncode(returncode: int) -> int:
    """Map a POSIX signal death (-N) to the shell convention 128 + N."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class BuildDriver:
    """
    Invoke cargo for a BuildRequest with the guest toolchain environment.

    Args:
        cargo: cargo executable
        locator: Artifact locator for the build's binary
        base_env: Environment the build starts from (default: os.environ)
    """

    def __init__(
        self,
        cargo: CargoBinary,
        locator: Optional[ArtifactLocator] = None,
        base_env: Optional[Mapping[str, str]] = None,
    ):
        self.cargo = cargo
        self.locator = locator or ArtifactLocator()
        self.base_env = dict(os.environ if base_env is None else base_env)

    def command(self, request: BuildRequest) -> List[str]:
        """cargo command line for a request."""
        cmd = [str(self.cargo.path), request.subcommand]
        if request.manifest_path is not None:
            cmd += ["--manifest-path", str(request.manifest_path)]
        if request.profile_name == "release":
            cmd.append("--release")
        elif request.profile_name != "dev":
            cmd += ["--profile", request.profile_name]
        if request.target_dir is not None:
            cmd += ["--target-dir", str(request.target_dir)]
        if request.bin is not None:
            cmd += ["--bin", request.bin]
        cmd.extend(request.cargo_args)
        return cmd

    def run(
        self,
        request: BuildRequest,
        descriptor: TargetDescriptor,
        sysroot: Path,
        environment: ToolchainEnvironment,
    ) -> BuildResult:
        """
        Run cargo and report its exit status.

        Args:
            request: What to build
            descriptor: Guest target
            sysroot: Published sysroot the build links against
            environment: Guest toolchain environment

        Returns:
            BuildResult whose returncode is exactly cargo's

        Raises:
            CargoNotFoundError: If cargo cannot be started
            BuildInterrupted: If the user interrupts the build
        """
        cmd = self.command(request)
        env = self.cargo.environment(environment.to_env(self.base_env))
        logger.debug(f"Running: {format_command(cmd)}")
        logger.debug(f"Using sysroot {sysroot}")

        try:
            process = subprocess.Popen(cmd, env=env)
        except FileNotFoundError as e:
            raise CargoNotFoundError(f"cargo not found: {self.cargo.path}") from e
        except OSError as e:
            raise CargoNotFoundError(f"Failed to start cargo ({self.cargo.path}): {e}") from e

        try:
            returncode = process.wait()
        except KeyboardInterrupt:
            self._interrupt(process)
            raise BuildInterrupted(f"cargo {request.subcommand} interrupted")

        returncode = normalize_returncode(returncode)
        if returncode == EXIT_INTERRUPTED:
            raise BuildInterrupted(f"cargo {request.subcommand} interrupted")

        if returncode != 0:
            self._report_failure(request, returncode, environment)
            return BuildResult(returncode=returncode)

        return self._result(request, descriptor)

    def _interrupt(self, process: subprocess.Popen) -> None:
        # cargo shares our process group and usually got the SIGINT too
        if process.poll() is None:
            try:
                process.send_signal(signal.SIGINT)
            except OSError as e:
                logger.debug(f"Could not forward interrupt to cargo: {e}")
        try:
            process.wait(timeout=30)
        except subprocess.TimeoutExpired:
            logger.warning("cargo did not exit after interrupt, killing it")
            process.kill()
            process.wait()

    def _report_failure(
        self, request: BuildRequest, returncode: int, environment: ToolchainEnvironment
    ) -> None:
        logger.error(f"cargo {request.subcommand} failed with exit code {returncode}")
        logger.error("Guest toolchain environment:")
        for name, value in sorted(environment.scoped().items()):
            logger.error(f"  {name}={value}")

    def _result(self, request: BuildRequest, descriptor: TargetDescriptor) -> BuildResult:
        if request.subcommand not in LINKING_SUBCOMMANDS or request.target_dir is None:
            return BuildResult(returncode=0)

        artifact = self.locator.locate(
            request.target_dir, descriptor.triple, request.profile, request.bin
        )
        if artifact is None:
            return BuildResult(returncode=0)

        exists = artifact.is_file()
        if exists:
            logger.info(f"Guest binary: {artifact}")
        else:
            logger.debug(f"Expected guest binary not found at {artifact}")
        return BuildResult(returncode=0, artifact=artifact, artifact_exists=exists)
