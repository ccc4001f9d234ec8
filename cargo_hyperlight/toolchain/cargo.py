"""
Rust toolchain discovery.

Locates cargo and rustc, reads the toolchain identity used as part of the
sysroot cache key, and makes sure the standard library sources needed by
``-Zbuild-std`` are installed.
"""

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from packaging.version import InvalidVersion, Version

from cargo_hyperlight.core.exceptions import (
    CargoNotFoundError,
    ToolchainVersionError,
)
from cargo_hyperlight.core.filesystem import find_executable
from cargo_hyperlight.core.process import checked_output

logger = logging.getLogger(__name__)

RUSTUP_TOOLCHAIN_ENV = "RUSTUP_TOOLCHAIN"

# Argument separator of CARGO_ENCODED_RUSTFLAGS and CARGO_ENCODED_RUSTDOCFLAGS
ENCODED_SEPARATOR = "\x1f"


@dataclass(frozen=True)
class CargoBinary:
    """A cargo executable plus the rustup toolchain it should run under."""

    path: Path
    rustup_toolchain: Optional[str] = None

    def environment(self, base: Mapping[str, str]) -> Dict[str, str]:
        """Base environment with RUSTUP_TOOLCHAIN propagated."""
        env = dict(base)
        if self.rustup_toolchain:
            env[RUSTUP_TOOLCHAIN_ENV] = self.rustup_toolchain
        return env


@dataclass(frozen=True)
class ToolchainInfo:
    """
    Identity of the Rust toolchain, as reported by ``rustc -vV``.

    Attributes:
        release: Release string (e.g. '1.89.0-nightly')
        commit_hash: Commit the compiler was built from ('unknown' if absent)
        host: Host target triple
        llvm_version: Bundled LLVM version, if reported
        rustc: Path to the rustc executable
        rustup_toolchain: Active rustup toolchain override, if any
    """

    release: str
    commit_hash: str
    host: str
    llvm_version: Optional[str] = None
    rustc: Optional[Path] = None
    rustup_toolchain: Optional[str] = None

    @property
    def version_string(self) -> str:
        """Toolchain part of the sysroot cache key."""
        return f"{self.release} ({self.commit_hash})"

    @property
    def numeric_version(self) -> Version:
        """Release without channel suffix, for version comparisons."""
        match = re.match(r"(\d+(?:\.\d+)*)", self.release)
        if not match:
            raise ToolchainVersionError(f"Unrecognised rustc release: {self.release}")
        try:
            return Version(match.group(1))
        except InvalidVersion as e:
            raise ToolchainVersionError(
                f"Unrecognised rustc release: {self.release}"
            ) from e

    @property
    def is_nightly(self) -> bool:
        return "nightly" in self.release or "dev" in self.release


def encoded_flags(env: Mapping[str, str], name: str, *flags: str) -> str:
    """
    Extend the flags cargo reads from ``name`` in its encoded form.

    ``CARGO_ENCODED_<name>`` separates arguments with 0x1f, so an argument
    may contain spaces. cargo prefers it over the plain variable, which is
    split on whitespace; existing flags are taken from whichever cargo
    would have used.

    Args:
        env: Environment the flags are read from
        name: Plain variable name, e.g. ``RUSTFLAGS``
        *flags: Arguments appended after the existing flags

    Returns:
        Value for ``CARGO_ENCODED_<name>``
    """
    encoded = env.get(f"CARGO_ENCODED_{name}")
    if encoded:
        existing = encoded.split(ENCODED_SEPARATOR)
    else:
        existing = env.get(name, "").split()
    return ENCODED_SEPARATOR.join(existing + list(flags))


def find_cargo(env: Optional[Mapping[str, str]] = None) -> CargoBinary:
    """
    Locate the cargo executable.

    The CARGO environment variable is used if set (cargo sets it for
    plugins); otherwise ``cargo`` from PATH.

    Raises:
        CargoNotFoundError: If no usable cargo can be found
    """
    env = os.environ if env is None else env

    cargo = env.get("CARGO")
    if cargo:
        path = Path(cargo)
        if not path.exists():
            raise CargoNotFoundError(f"CARGO points to a missing file: {cargo}")
    else:
        found = find_executable("cargo", env=env)
        if found is None:
            raise CargoNotFoundError(
                "Could not find 'cargo' in PATH. Install Rust from https://rustup.rs"
            )
        path = found

    return CargoBinary(path=path.resolve(), rustup_toolchain=env.get(RUSTUP_TOOLCHAIN_ENV))


def find_rustc(env: Optional[Mapping[str, str]] = None) -> Path:
    """
    Locate rustc: the RUSTC environment variable, else ``rustc`` on PATH.

    Raises:
        ToolchainVersionError: If rustc cannot be found
    """
    env = os.environ if env is None else env

    rustc = env.get("RUSTC")
    if rustc:
        return Path(rustc)

    found = find_executable("rustc", env=env)
    if found is None:
        raise ToolchainVersionError("Could not find 'rustc' in PATH")
    return found


def parse_rustc_version(output: str) -> Dict[str, str]:
    """
    Parse the verbose ``rustc -vV`` output.

    Example input::

        rustc 1.89.0-nightly (abc123 2025-06-01)
        binary: rustc
        commit-hash: abc123...
        host: x86_64-unknown-linux-gnu
        release: 1.89.0-nightly
        LLVM version: 20.1.5
    """
    fields = {}
    for line in output.splitlines():
        if ":" not in line:
            continue
        key, _, value = line.partition(":")
        fields[key.strip()] = value.strip()
    return fields


def query_toolchain(
    env: Optional[Mapping[str, str]] = None,
    min_version: Optional[str] = None,
) -> ToolchainInfo:
    """
    Query the active Rust toolchain.

    Args:
        env: Environment for the rustc child (honours RUSTUP_TOOLCHAIN)
        min_version: Minimum accepted release (PEP 440 comparison)

    Returns:
        ToolchainInfo describing the compiler

    Raises:
        ToolchainVersionError: If rustc is missing, unparsable, or too old
    """
    env = dict(os.environ if env is None else env)
    rustc = find_rustc(env)

    output = checked_output([rustc, "-vV"], ToolchainVersionError, env=env)
    fields = parse_rustc_version(output)

    if "release" not in fields or "host" not in fields:
        raise ToolchainVersionError(f"Unexpected output from '{rustc} -vV':\n{output}")

    info = ToolchainInfo(
        release=fields["release"],
        commit_hash=fields.get("commit-hash", "unknown"),
        host=fields["host"],
        llvm_version=fields.get("LLVM version"),
        rustc=rustc,
        rustup_toolchain=env.get(RUSTUP_TOOLCHAIN_ENV),
    )
    logger.debug(f"Rust toolchain: {info.version_string} on {info.host}")

    if min_version is not None and info.numeric_version < Version(min_version):
        raise ToolchainVersionError(
            f"rustc {info.release} is too old; cargo-hyperlight needs {min_version} or newer"
        )

    return info


def rust_src_dir(toolchain: ToolchainInfo, env: Mapping[str, str]) -> Path:
    """Location of the standard library sources inside the toolchain sysroot."""
    sysroot = checked_output(
        [toolchain.rustc or "rustc", "--print", "sysroot"],
        ToolchainVersionError,
        env=env,
    ).strip()
    return Path(sysroot) / "lib" / "rustlib" / "src" / "rust" / "library"


def ensure_rust_src(toolchain: ToolchainInfo, env: Mapping[str, str]) -> None:
    """
    Make sure the rust-src component is installed.

    Building core and alloc from source needs the standard library sources.
    Under rustup the component is installed on demand.

    Raises:
        ToolchainVersionError: If the sources are missing and cannot be installed
    """
    src = rust_src_dir(toolchain, env)
    if src.is_dir():
        return

    rustup_toolchain = toolchain.rustup_toolchain or env.get(RUSTUP_TOOLCHAIN_ENV)
    rustup = find_executable("rustup", env=env)
    if rustup_toolchain and rustup is not None:
        logger.info(f"Installing rust-src component for toolchain {rustup_toolchain}")
        result = subprocess.run(
            [
                str(rustup),
                "component",
                "add",
                "rust-src",
                "--toolchain",
                rustup_toolchain,
            ],
            env=dict(env),
        )
        if result.returncode == 0 and src.is_dir():
            return

    raise ToolchainVersionError(
        f"Standard library sources not found at {src}. "
        "Install them with 'rustup component add rust-src'."
    )
