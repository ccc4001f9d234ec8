"""
Toolchain environment shim for guest builds.

A guest build graph mixes two kinds of native compilation:

- build scripts and proc macros, compiled and run on the host;
- C code that those build scripts compile, through the ``cc`` crate, or
  parse, through ``bindgen``, on behalf of the guest crate.

The ``cc`` crate looks up ``CC_<target>``, ``CFLAGS_<target>`` and
``AR_<target>`` before the unscoped ``CC``/``CFLAGS``/``AR``, and bindgen
looks up ``BINDGEN_EXTRA_CLANG_ARGS_<target>`` before the unscoped
variable. Setting only the target-scoped names redirects guest C code to
the cross configuration while host compilation keeps its defaults. No
crate in the graph needs to know the target is non-standard.

The environment is kept as a typed record (ToolchainEnvironment keyed by
EnvVar) and only rendered to ``NAME=value`` strings by ``to_env()`` at
the process boundary.
"""

import enum
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence

from cargo_hyperlight.sysroot.cache import sysroot_target_dir
from cargo_hyperlight.target.descriptor import TargetDescriptor
from cargo_hyperlight.toolchain.cargo import encoded_flags
from cargo_hyperlight.toolchain.compilers import NativeCompilers

logger = logging.getLogger(__name__)


class Scope(enum.Enum):
    """How far a variable's effect reaches."""

    TARGET = "target"  # read only for the guest triple
    INVOCATION = "invocation"  # configures this cargo invocation
    FALLBACK = "fallback"  # global, written only when the user left it unset


class EnvVar(enum.Enum):
    """Environment variables recognised and written by the shim."""

    CC = ("CC_{triple}", Scope.TARGET, "C compiler the cc crate uses for guest code")
    AR = ("AR_{triple}", Scope.TARGET, "archiver the cc crate uses for guest code")
    CFLAGS = (
        "CFLAGS_{triple}",
        Scope.TARGET,
        "flags for guest C code: cross target, freestanding, sysroot includes",
    )
    BINDGEN_EXTRA_CLANG_ARGS = (
        "BINDGEN_EXTRA_CLANG_ARGS_{triple}",
        Scope.TARGET,
        "clang arguments bindgen uses when parsing headers for the guest",
    )
    CLANG_PATH = (
        "CLANG_PATH",
        Scope.FALLBACK,
        "clang executable clang-sys reports to bindgen",
    )
    ENCODED_RUSTFLAGS = (
        "CARGO_ENCODED_RUSTFLAGS",
        Scope.INVOCATION,
        "rustc flags for target crates: user flags, guest sysroot and entry point",
    )
    ENCODED_RUSTDOCFLAGS = (
        "CARGO_ENCODED_RUSTDOCFLAGS",
        Scope.INVOCATION,
        "rustdoc flags for target crates: user flags and guest sysroot",
    )
    CARGO_BUILD_TARGET = ("CARGO_BUILD_TARGET", Scope.INVOCATION, "guest target triple")
    RUSTC_BOOTSTRAP = (
        "RUSTC_BOOTSTRAP",
        Scope.INVOCATION,
        "enables the unstable flags needed for a custom sysroot",
    )

    def __init__(self, template: str, scope: Scope, description: str):
        self.template = template
        self.scope = scope
        self.description = description

    def name_for(self, triple: str) -> str:
        """Concrete variable name for the guest triple."""
        return self.template.format(triple=triple)


# Names that configure host compilation; the shim never writes these
HOST_SCOPED_VARIABLES = (
    "CC",
    "CXX",
    "AR",
    "CFLAGS",
    "CXXFLAGS",
    "HOST_CC",
    "HOST_CXX",
    "HOST_AR",
    "HOST_CFLAGS",
    "HOST_CXXFLAGS",
    "TARGET_CC",
    "TARGET_AR",
    "TARGET_CFLAGS",
    "BINDGEN_EXTRA_CLANG_ARGS",
)


def host_scoped_variables(host_triple: Optional[str] = None) -> Sequence[str]:
    """Host-side compiler variables, including ones scoped to the host triple."""
    names = list(HOST_SCOPED_VARIABLES)
    if host_triple:
        underscored = host_triple.replace("-", "_")
        for prefix in ("CC", "CXX", "AR", "CFLAGS", "CXXFLAGS"):
            names.append(f"{prefix}_{host_triple}")
            names.append(f"{prefix}_{underscored}")
        names.append(f"BINDGEN_EXTRA_CLANG_ARGS_{host_triple}")
        names.append(f"BINDGEN_EXTRA_CLANG_ARGS_{underscored}")
    return names


def cflags_search_keys(triple: str) -> Sequence[str]:
    """Where existing user cflags for the guest are looked up, in order."""
    underscored = triple.replace("-", "_")
    return (
        f"CFLAGS_{triple}",
        f"CFLAGS_{underscored}",
        f"CFLAGS_{underscored.upper()}",
        "HYPERLIGHT_CFLAGS",
        "TARGET_CFLAGS",
        "CFLAGS",
    )


def bindgen_search_keys(triple: str) -> Sequence[str]:
    """Where existing bindgen clang arguments are looked up, in order."""
    underscored = triple.replace("-", "_")
    return (
        f"BINDGEN_EXTRA_CLANG_ARGS_{triple}",
        f"BINDGEN_EXTRA_CLANG_ARGS_{underscored}",
        "BINDGEN_EXTRA_CLANG_ARGS",
    )


def _first_set(env: Mapping[str, str], keys: Sequence[str]) -> str:
    for key in keys:
        value = env.get(key)
        if value:
            return value
    return ""


def _join(*parts: str) -> str:
    return " ".join(part for part in parts if part)


@dataclass
class ToolchainEnvironment:
    """
    Typed environment for one guest build.

    Attributes:
        triple: Guest target triple the scoped names are derived from
        values: Value for each recognised variable that is set
    """

    triple: str
    values: Dict[EnvVar, str] = field(default_factory=dict)

    def get(self, var: EnvVar) -> Optional[str]:
        return self.values.get(var)

    def names(self) -> Dict[EnvVar, str]:
        """Concrete variable name for each set variable."""
        return {var: var.name_for(self.triple) for var in self.values}

    def to_env(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """
        Render into a process environment.

        Args:
            base: Environment to merge into (default: os.environ)

        Returns:
            New mapping; base is not modified. FALLBACK variables already
            present in base are left untouched.
        """
        env = dict(os.environ if base is None else base)
        for var, value in self.values.items():
            name = var.name_for(self.triple)
            if var.scope is Scope.FALLBACK and env.get(name):
                continue
            env[name] = value
        return env

    def describe(self) -> Dict[str, str]:
        """Variables as NAME -> value, for diagnostics and ``env`` output."""
        return {var.name_for(self.triple): value for var, value in self.values.items()}

    def scoped(self) -> Dict[str, str]:
        """Only the native-toolchain variables, for failure diagnostics."""
        return {
            var.name_for(self.triple): value
            for var, value in self.values.items()
            if var.scope is not Scope.INVOCATION
        }


def guest_c_flags(
    descriptor: TargetDescriptor, sysroot: Path, compilers: NativeCompilers
) -> str:
    """Flags that make clang compile freestanding C for the guest."""
    flags = [
        f"--target={descriptor.clang_target}",
        "-ffreestanding",
        "-nostdlibinc",
        "-fPIC",
    ]
    include_dirs = [sysroot_target_dir(sysroot, descriptor.triple) / "include"]
    include_dirs.extend(compilers.include_dirs)
    for include in include_dirs:
        flags += ["-isystem", str(include)]
    return " ".join(flags)


def compute_environment(
    descriptor: TargetDescriptor,
    sysroot: Path,
    compilers: NativeCompilers,
    base_env: Optional[Mapping[str, str]] = None,
) -> ToolchainEnvironment:
    """
    Compute the toolchain environment for a guest build.

    User-provided flags found in base_env are kept and the guest flags are
    appended after them.

    Args:
        descriptor: Guest target
        sysroot: Published sysroot for descriptor
        compilers: Native compilers for guest C code
        base_env: Environment the build starts from (default: os.environ)

    Returns:
        ToolchainEnvironment ready for the Build Driver
    """
    base_env = os.environ if base_env is None else base_env
    triple = descriptor.triple
    values: Dict[EnvVar, str] = {}

    values[EnvVar.CC] = str(compilers.clang)
    if compilers.ar is not None:
        values[EnvVar.AR] = str(compilers.ar)
    values[EnvVar.CLANG_PATH] = str(compilers.clang)

    c_flags = guest_c_flags(descriptor, sysroot, compilers)
    values[EnvVar.CFLAGS] = _join(_first_set(base_env, cflags_search_keys(triple)), c_flags)

    bindgen_flags = c_flags
    if compilers.resource_dir is not None:
        bindgen_flags = _join(bindgen_flags, f"-resource-dir={compilers.resource_dir}")
    values[EnvVar.BINDGEN_EXTRA_CLANG_ARGS] = _join(
        _first_set(base_env, bindgen_search_keys(triple)), bindgen_flags
    )

    rust_flags = ["--sysroot", str(sysroot)]
    if descriptor.entry_name:
        rust_flags.append(f"-Clink-args=-e{descriptor.entry_name}")

    values[EnvVar.ENCODED_RUSTFLAGS] = encoded_flags(base_env, "RUSTFLAGS", *rust_flags)
    values[EnvVar.ENCODED_RUSTDOCFLAGS] = encoded_flags(
        base_env, "RUSTDOCFLAGS", "--sysroot", str(sysroot)
    )

    values[EnvVar.CARGO_BUILD_TARGET] = triple
    values[EnvVar.RUSTC_BOOTSTRAP] = "1"

    environment = ToolchainEnvironment(triple=triple, values=values)
    logger.debug(f"Toolchain environment: {environment.describe()}")
    return environment
