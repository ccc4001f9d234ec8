"""
Build the freestanding standard library subset for the guest target.

There is no prebuilt standard library for ``x86_64-hyperlight-none``. The
builder compiles ``core``, ``alloc`` and ``compiler_builtins`` from the
toolchain's ``rust-src`` through a throwaway crate built with
``-Zbuild-std`` and lays the resulting rlibs out as a sysroot that rustc
accepts through ``--sysroot``. Results are cached in SysrootCache.
"""

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, Mapping, Optional

from cargo_hyperlight.core.exceptions import SysrootBuildError
from cargo_hyperlight.core.filesystem import atomic_write
from cargo_hyperlight.core.process import format_command
from cargo_hyperlight.sysroot.cache import SysrootCache, SysrootKey, sysroot_target_dir
from cargo_hyperlight.target.descriptor import TargetDescriptor
from cargo_hyperlight.toolchain.cargo import (
    CargoBinary,
    ToolchainInfo,
    encoded_flags,
    ensure_rust_src,
)

logger = logging.getLogger(__name__)

BUILD_STD_CRATES = "core,alloc"
BUILD_STD_FEATURES = "compiler_builtins/mem"

SYSROOT_CARGO_TOML = """\
[package]
name = "hyperlight-sysroot"
version = "0.0.0"
edition = "2021"
publish = false

[lib]
path = "lib.rs"

[workspace]
"""

SYSROOT_LIB_RS = """\
#![no_std]

extern crate alloc;
"""

# Environment that must not leak into the standard library build
SCRUBBED_ENV = (
    "RUSTC_WORKSPACE_WRAPPER",
    "CARGO_BUILD_TARGET",
    "CARGO_TARGET_DIR",
    "CARGO_BUILD_TARGET_DIR",
)


def sysroot_key(descriptor: TargetDescriptor, toolchain: ToolchainInfo) -> SysrootKey:
    """Cache key for a descriptor built with a toolchain."""
    return SysrootKey(
        toolchain=toolchain.version_string,
        target_digest=descriptor.digest,
        triple=descriptor.triple,
    )


class SysrootBuilder:
    """
    Ensure a cached sysroot exists for a descriptor and toolchain.

    Args:
        cache: Sysroot cache
        cargo: cargo executable used for the standard library build
        env: Base environment (default: os.environ)
    """

    def __init__(
        self,
        cache: SysrootCache,
        cargo: CargoBinary,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.cache = cache
        self.cargo = cargo
        self.env = dict(os.environ if env is None else env)

    def ensure(self, descriptor: TargetDescriptor, toolchain: ToolchainInfo) -> Path:
        """
        Return the sysroot for descriptor and toolchain, building it if needed.

        A published, valid entry is returned without locking or rebuilding.
        Otherwise the key's lease is taken, the cache re-checked (another
        process may have finished meanwhile) and the sysroot built and
        published atomically.

        Raises:
            SysrootBuildError: If the standard library build fails
            SysrootLockTimeout: If another build holds the lease too long
        """
        key = sysroot_key(descriptor, toolchain)

        cached = self.cache.lookup(key)
        if cached is not None:
            logger.debug(f"Sysroot cache hit: {cached}")
            return cached

        with self.cache.lease(key):
            cached = self.cache.lookup(key)
            if cached is not None:
                logger.info(f"Sysroot built by another process: {cached}")
                return cached

            logger.info(
                f"Building sysroot for {descriptor.triple} with rustc {toolchain.release}"
            )
            ensure_rust_src(toolchain, self.cargo.environment(self.env))

            with self.cache.staging(key) as staging:
                self.build_into(staging, descriptor)
                return self.cache.publish(key, staging)

    def sysroot_env(self, sysroot: Path) -> Dict[str, str]:
        """Environment for the standard library build."""
        env = self.cargo.environment(self.env)
        for name in SCRUBBED_ENV:
            env.pop(name, None)
        env["RUSTC_BOOTSTRAP"] = "1"
        env["CARGO_ENCODED_RUSTFLAGS"] = encoded_flags(
            env, "RUSTFLAGS", "--sysroot", str(sysroot)
        )
        env.pop("RUSTFLAGS", None)
        return env

    def build_into(self, sysroot: Path, descriptor: TargetDescriptor) -> None:
        """
        Build core and alloc for descriptor and lay them out under sysroot.

        Args:
            sysroot: Empty staging directory
            descriptor: Target to build for

        Raises:
            SysrootBuildError: If cargo fails or produces no libraries
        """
        triple_dir = sysroot_target_dir(sysroot, descriptor.triple)
        lib_dir = triple_dir / "lib"
        lib_dir.mkdir(parents=True, exist_ok=True)
        atomic_write(triple_dir / "target.json", descriptor.to_json())

        with tempfile.TemporaryDirectory(prefix=".work-", dir=sysroot.parent) as work:
            work_dir = Path(work)
            crate_dir = work_dir / "crate"
            build_dir = work_dir / "target"
            crate_dir.mkdir()
            (crate_dir / "Cargo.toml").write_text(SYSROOT_CARGO_TOML, encoding="utf-8")
            (crate_dir / "lib.rs").write_text(SYSROOT_LIB_RS, encoding="utf-8")

            cmd = [
                str(self.cargo.path),
                "rustc",
                f"-Zbuild-std={BUILD_STD_CRATES}",
                f"-Zbuild-std-features={BUILD_STD_FEATURES}",
                "--target",
                descriptor.triple,
                "--release",
                "--target-dir",
                str(build_dir),
                "--manifest-path",
                str(crate_dir / "Cargo.toml"),
            ]
            logger.debug(f"Running: {format_command(cmd)}")

            # Diagnostics stream straight to the terminal, unmodified
            try:
                result = subprocess.run(cmd, env=self.sysroot_env(sysroot))
            except OSError as e:
                raise SysrootBuildError(f"Failed to run cargo for the sysroot build: {e}") from e

            if result.returncode != 0:
                raise SysrootBuildError(
                    f"Building core/alloc for {descriptor.triple} failed "
                    f"(cargo exited with code {result.returncode})",
                    returncode=result.returncode,
                )

            deps_dir = build_dir / descriptor.triple / "release" / "deps"
            copied = self._copy_libraries(deps_dir, lib_dir)

        if copied == 0:
            raise SysrootBuildError(f"Sysroot build produced no libraries in {deps_dir}")

        logger.debug(f"Copied {copied} sysroot libraries into {lib_dir}")

    def _copy_libraries(self, deps_dir: Path, lib_dir: Path) -> int:
        if not deps_dir.is_dir():
            return 0

        copied = 0
        for artifact in sorted(deps_dir.iterdir()):
            if not artifact.is_file() or not artifact.name.startswith("lib"):
                continue
            shutil.copy2(artifact, lib_dir / artifact.name)
            copied += 1
        return copied
