"""
Target descriptor for Hyperlight guests.

The guest target ``x86_64-hyperlight-none`` has no builtin rustc target, so
cargo-hyperlight supplies a custom JSON target specification. The
specification is an immutable value whose SHA-256 over its canonical
serialization identifies it in the sysroot cache.

Two sources are supported:

- the bundled ``x86_64-hyperlight-none.json`` (or a user-supplied file in
  its place), used as-is;
- the installed compiler's own ``x86_64-unknown-none`` specification with
  the Hyperlight fields of the bundled file laid on top. This keeps fields
  such as the LLVM data layout in step with the compiler in use.
"""

import hashlib
import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from cargo_hyperlight.core.exceptions import TargetSpecError
from cargo_hyperlight.core.process import checked_output
from cargo_hyperlight.toolchain.cargo import ToolchainInfo

logger = logging.getLogger(__name__)

TARGET_TRIPLE = "x86_64-hyperlight-none"
BASE_TARGET = "x86_64-unknown-none"
TARGET_SUFFIX = "-hyperlight-none"
BUNDLED_SPEC = f"{TARGET_TRIPLE}.json"

# Fields that define a Hyperlight guest regardless of the compiler's base spec
OVERLAY_KEYS = (
    "code-model",
    "dynamic-linking",
    "entry-name",
    "linker",
    "linker-flavor",
    "os",
    "panic-strategy",
    "pre-link-args",
)

# Fields whose values are fixed for every Hyperlight guest
FIXED_FIELDS = {
    "arch": "x86_64",
    "os": "none",
    "panic-strategy": "abort",
}

REQUIRED_FIELDS = ("arch", "data-layout", "llvm-target", "target-pointer-width")


@dataclass(frozen=True)
class TargetDescriptor:
    """
    Immutable custom target specification.

    Attributes:
        triple: Target name cargo and rustc know the target by
        canonical_json: Canonical serialization (sorted keys, compact)
    """

    triple: str
    canonical_json: str

    @classmethod
    def from_spec(cls, triple: str, spec: Mapping[str, Any]) -> "TargetDescriptor":
        validate_spec(spec, origin=triple)
        canonical = json.dumps(spec, sort_keys=True, separators=(",", ":"))
        return cls(triple=triple, canonical_json=canonical)

    @property
    def spec(self) -> Dict[str, Any]:
        """A fresh copy of the specification mapping."""
        return json.loads(self.canonical_json)

    @property
    def digest(self) -> str:
        """SHA-256 of the canonical form; the descriptor's identity."""
        return hashlib.sha256(self.canonical_json.encode("utf-8")).hexdigest()

    @property
    def arch(self) -> str:
        return self.spec["arch"]

    @property
    def os(self) -> str:
        return self.spec.get("os", "none")

    @property
    def llvm_target(self) -> str:
        return self.spec["llvm-target"]

    @property
    def code_model(self) -> Optional[str]:
        return self.spec.get("code-model")

    @property
    def entry_name(self) -> Optional[str]:
        return self.spec.get("entry-name")

    @property
    def panic_strategy(self) -> str:
        return self.spec.get("panic-strategy", "unwind")

    @property
    def linker(self) -> Optional[str]:
        return self.spec.get("linker")

    @property
    def linker_flavor(self) -> Optional[str]:
        return self.spec.get("linker-flavor")

    @property
    def dynamic_linking(self) -> bool:
        return bool(self.spec.get("dynamic-linking", False))

    @property
    def pre_link_args(self) -> Dict[str, List[str]]:
        return self.spec.get("pre-link-args", {})

    @property
    def clang_target(self) -> str:
        """Triple handed to clang for guest C code."""
        return f"{self.arch}-unknown-none"

    def to_json(self) -> str:
        """Pretty, deterministic form written as ``target.json``."""
        return json.dumps(self.spec, sort_keys=True, indent=2) + "\n"


def validate_spec(spec: Any, origin: str) -> None:
    """
    Check a target specification against the fixed Hyperlight fields.

    Raises:
        TargetSpecError: If the target spec is not a mapping, misses required
            fields, or contradicts a fixed field
    """
    if not isinstance(spec, dict):
        raise TargetSpecError(f"Target specification {origin} must be a JSON object")

    missing = [key for key in REQUIRED_FIELDS if key not in spec]
    if missing:
        raise TargetSpecError(
            f"Target specification {origin} is missing: {', '.join(missing)}"
        )

    for key, expected in FIXED_FIELDS.items():
        if spec.get(key, expected) != expected:
            raise TargetSpecError(
                f"Target specification {origin} has {key}={spec[key]!r}, "
                f"Hyperlight guests require {expected!r}"
            )

    if spec.get("dynamic-linking", False):
        raise TargetSpecError(
            f"Target specification {origin} enables dynamic linking; "
            "Hyperlight guests are linked statically"
        )


def is_hyperlight_target(triple: str) -> bool:
    return triple.endswith(TARGET_SUFFIX)


def load_spec_file(path: Path) -> Dict[str, Any]:
    """Read and parse a JSON target specification file."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise TargetSpecError(f"Cannot read target specification {path}: {e}") from e
    return _parse_spec(text, origin=str(path))


def load_bundled_spec() -> Dict[str, Any]:
    """Read the target specification shipped with cargo-hyperlight."""
    text = (
        resources.files("cargo_hyperlight.target")
        .joinpath(BUNDLED_SPEC)
        .read_text(encoding="utf-8")
    )
    return _parse_spec(text, origin=f"bundled {BUNDLED_SPEC}")


def _parse_spec(text: str, origin: str) -> Dict[str, Any]:
    try:
        spec = json.loads(text)
    except json.JSONDecodeError as e:
        raise TargetSpecError(f"Malformed target specification {origin}: {e}") from e
    validate_spec(spec, origin)
    return spec


def query_base_spec(
    toolchain: ToolchainInfo, env: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """
    Ask rustc for its builtin ``x86_64-unknown-none`` specification.

    Raises:
        TargetSpecError: If rustc fails or prints something unparsable
    """
    child_env = dict(os.environ if env is None else env)
    child_env["RUSTC_BOOTSTRAP"] = "1"

    output = checked_output(
        [
            toolchain.rustc or "rustc",
            "-Zunstable-options",
            "--print=target-spec-json",
            "--target",
            BASE_TARGET,
        ],
        TargetSpecError,
        env=child_env,
    )

    try:
        spec = json.loads(output.strip())
    except json.JSONDecodeError as e:
        raise TargetSpecError(f"Failed to parse base target spec JSON: {e}") from e

    # Builtin marker is rejected in custom target files
    spec.pop("is-builtin", None)
    return spec


class TargetDescriptorResolver:
    """
    Resolve the TargetDescriptor for this invocation.

    Args:
        spec_path: User-supplied spec replacing the bundled one
        derive_base_spec: Overlay onto the compiler's base spec (ignored
            when spec_path is given)
        env: Environment for rustc queries
    """

    def __init__(
        self,
        spec_path: Optional[Path] = None,
        derive_base_spec: bool = True,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.spec_path = spec_path
        self.derive_base_spec = derive_base_spec
        self.env = env

    def resolve(self, toolchain: Optional[ToolchainInfo] = None) -> TargetDescriptor:
        """
        Produce the canonical descriptor.

        Args:
            toolchain: Active toolchain; needed to derive from the base spec

        Returns:
            TargetDescriptor for x86_64-hyperlight-none

        Raises:
            TargetSpecError: If any specification involved is malformed
        """
        if self.spec_path is not None:
            logger.debug(f"Using target specification {self.spec_path}")
            return TargetDescriptor.from_spec(TARGET_TRIPLE, load_spec_file(self.spec_path))

        bundled = load_bundled_spec()

        if not self.derive_base_spec or toolchain is None:
            return TargetDescriptor.from_spec(TARGET_TRIPLE, bundled)

        spec = query_base_spec(toolchain, self.env)
        for key in OVERLAY_KEYS:
            if key in bundled:
                spec[key] = bundled[key]

        descriptor = TargetDescriptor.from_spec(TARGET_TRIPLE, spec)
        logger.debug(f"Target descriptor {descriptor.triple} digest {descriptor.digest[:16]}")
        return descriptor
