"""
Guest C toolchain exported by the guest runtime provider crate.

The provider crate ships a clang wrapper and libc headers for the guest.
When built with HYPERLIGHT_GUEST_TOOLCHAIN_ROOT set, its build script
copies them into that directory. Doing this once per target directory
lets every other crate's build script compile C against the guest headers.
"""

import logging
import subprocess
from pathlib import Path
from typing import Mapping, Optional

from cargo_hyperlight.core.exceptions import NativeToolchainError
from cargo_hyperlight.core.filesystem import find_executable
from cargo_hyperlight.core.process import format_command
from cargo_hyperlight.toolchain.cargo import CargoBinary

logger = logging.getLogger(__name__)

TOOLCHAIN_ROOT_ENV = "HYPERLIGHT_GUEST_TOOLCHAIN_ROOT"
TOOLCHAIN_DIR_NAME = "hyperlight-toolchain"


def guest_toolchain_dir(target_dir: Path) -> Path:
    return target_dir / TOOLCHAIN_DIR_NAME


def prepare_guest_toolchain(
    cargo: CargoBinary,
    provider_crate: str,
    target_dir: Path,
    triple: str,
    env: Mapping[str, str],
    manifest_path: Optional[Path] = None,
    scoped_env: Optional[Mapping[str, str]] = None,
) -> Optional[Path]:
    """
    Build the provider package once to export its guest C toolchain.

    Args:
        cargo: cargo executable
        provider_crate: Package name of the guest runtime provider
        target_dir: cargo target directory of the guest crate
        triple: Guest target triple
        env: Environment already carrying the sysroot/target settings
        manifest_path: Guest crate manifest
        scoped_env: Guest toolchain variables reported if the build fails

    Returns:
        The toolchain directory if it holds a clang. None when the provider
        builds but exports no clang; the system clang is used then.

    Raises:
        NativeToolchainError: If cargo cannot be started or the provider
            build fails
    """
    toolchain_dir = guest_toolchain_dir(target_dir)

    if find_executable("clang", search_paths=[toolchain_dir]) is not None:
        logger.debug(f"Reusing guest toolchain at {toolchain_dir}")
        return toolchain_dir

    cmd = [str(cargo.path), "build", "--release", "--package", provider_crate]
    cmd += ["--target", triple, "--target-dir", str(target_dir)]
    if manifest_path is not None:
        cmd += ["--manifest-path", str(manifest_path)]

    child_env = cargo.environment(env)
    child_env[TOOLCHAIN_ROOT_ENV] = str(toolchain_dir)

    logger.info(f"Preparing guest C toolchain from {provider_crate}")
    logger.debug(f"Running: {format_command(cmd)}")

    try:
        result = subprocess.run(cmd, env=child_env)
    except OSError as e:
        raise NativeToolchainError(
            f"Failed to run cargo to prepare the guest toolchain: {e}"
        ) from e

    if result.returncode != 0:
        raise NativeToolchainError(
            f"Failed to prepare the guest toolchain: building {provider_crate} "
            f"exited with code {result.returncode}",
            environment=dict(scoped_env or {}),
            returncode=result.returncode,
        )

    if find_executable("clang", search_paths=[toolchain_dir]) is None:
        logger.debug(f"{provider_crate} did not export a clang into {toolchain_dir}")
        return None

    return toolchain_dir
