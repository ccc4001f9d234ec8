"""
cargo metadata access and guest runtime dependency validation.

``cargo metadata --format-version=1`` describes the workspace (packages,
targets, default members, target directory) and the full resolve graph. It
is queried once per invocation and shared by the validator, the artifact
locator and the pipeline.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from cargo_hyperlight.cargo.graph import Crate, DependencyGraph
from cargo_hyperlight.config.parser import DEFAULT_PROVIDER_CRATE
from cargo_hyperlight.core.exceptions import (
    CargoMetadataError,
    MissingGuestRuntimeError,
)
from cargo_hyperlight.core.process import checked_output
from cargo_hyperlight.toolchain.cargo import CargoBinary

logger = logging.getLogger(__name__)

METADATA_FORMAT_VERSION = 1


@dataclass(frozen=True)
class BinTarget:
    """A ``bin`` target of a package."""

    name: str
    src_path: Optional[str] = None


def is_normal_dependency(dep: Mapping[str, Any]) -> bool:
    """
    Whether a resolved dependency is linked into the dependent.

    Only normal dependencies (``kind: null``) end up in the final binary;
    dev-dependencies serve tests and build-dependencies serve build scripts.
    Entries from cargo older than 1.41 carry no dep_kinds and are treated
    as normal.
    """
    kinds = dep.get("dep_kinds")
    if kinds is None:
        return True
    return any(kind.get("kind") is None for kind in kinds)


def linked_dependencies(node: Mapping[str, Any]) -> List[str]:
    """Package ids of the normal dependencies of a resolve node."""
    deps = node.get("deps")
    if deps is None:
        # Pre-1.30 resolve nodes only list ids, without kinds
        return list(node.get("dependencies", []))
    return [dep["pkg"] for dep in deps if is_normal_dependency(dep)]


class CargoMetadata:
    """
    Parsed ``cargo metadata`` output.

    Args:
        data: Decoded JSON document
    """

    def __init__(self, data: Dict[str, Any]):
        if not isinstance(data, dict) or "packages" not in data:
            raise CargoMetadataError("cargo metadata output has no 'packages' list")
        self.data = data
        self._packages = {p["id"]: p for p in data.get("packages", []) if "id" in p}

    @classmethod
    def from_json(cls, text: str) -> "CargoMetadata":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise CargoMetadataError(f"cargo metadata printed invalid JSON: {e}") from e
        return cls(data)

    @property
    def target_directory(self) -> Optional[Path]:
        value = self.data.get("target_directory")
        return Path(value) if value else None

    @property
    def workspace_root(self) -> Optional[Path]:
        value = self.data.get("workspace_root")
        return Path(value) if value else None

    @property
    def resolve(self) -> Optional[Dict[str, Any]]:
        return self.data.get("resolve")

    @property
    def root_id(self) -> Optional[str]:
        """Package id of the root package; None for a virtual workspace."""
        resolve = self.resolve or {}
        return resolve.get("root")

    @property
    def default_member_ids(self) -> List[str]:
        """Default workspace members (falls back to all members on old cargo)."""
        members = self.data.get("workspace_default_members")
        if members is None:
            members = self.data.get("workspace_members", [])
        return list(members)

    def package(self, package_id: str) -> Optional[Dict[str, Any]]:
        return self._packages.get(package_id)

    def packages(self) -> List[Dict[str, Any]]:
        return list(self._packages.values())

    @property
    def root_package(self) -> Optional[Dict[str, Any]]:
        root = self.root_id
        return self.package(root) if root else None

    def bin_targets(self, package: Mapping[str, Any]) -> List[BinTarget]:
        """``bin`` targets of a package, in manifest order."""
        return [
            BinTarget(name=t["name"], src_path=t.get("src_path"))
            for t in package.get("targets", [])
            if "bin" in t.get("kind", [])
        ]

    def to_graph(self) -> DependencyGraph:
        """
        Build the resolved dependency graph.

        Raises:
            CargoMetadataError: If the output has no resolve section
        """
        resolve = self.resolve
        if resolve is None:
            raise CargoMetadataError(
                "cargo metadata output has no resolve graph (was --no-deps used?)"
            )

        graph = DependencyGraph()
        for package in self._packages.values():
            graph.add_crate(
                Crate(
                    id=package["id"],
                    name=package.get("name", package["id"]),
                    version=package.get("version", "0.0.0"),
                )
            )

        for node in resolve.get("nodes", []):
            node_id = node.get("id")
            if node_id not in graph.crates:
                continue
            for dependency in linked_dependencies(node):
                if dependency in graph.crates:
                    graph.add_dependency(node_id, dependency)

        root = self.root_id
        graph.roots = [root] if root else self.default_member_ids
        return graph


def load_metadata(
    cargo: CargoBinary,
    manifest_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Path] = None,
) -> CargoMetadata:
    """
    Run ``cargo metadata`` with the full resolve.

    Args:
        cargo: cargo executable
        manifest_path: Cargo.toml to describe (default: cargo's own lookup)
        env: Environment for cargo
        cwd: Working directory

    Raises:
        CargoMetadataError: If cargo fails or prints unusable output
    """
    cmd = [str(cargo.path), "metadata", f"--format-version={METADATA_FORMAT_VERSION}"]
    if manifest_path is not None:
        cmd += ["--manifest-path", str(manifest_path)]

    output = checked_output(
        cmd,
        CargoMetadataError,
        env=cargo.environment(os.environ if env is None else env),
        cwd=cwd,
    )
    metadata = CargoMetadata.from_json(output)
    logger.debug(
        f"cargo metadata: {len(metadata.packages())} packages, "
        f"target directory {metadata.target_directory}"
    )
    return metadata


class DependencyValidator:
    """
    Check that a guest build links the guest runtime provider.

    Without the provider crate the guest has no entry point, allocator or
    panic handler, and the build would only fail late at link time with an
    obscure error.

    Args:
        cargo: cargo executable
        provider_crate: Package that provides the guest runtime
        env: Environment for cargo
    """

    def __init__(
        self,
        cargo: CargoBinary,
        provider_crate: str = DEFAULT_PROVIDER_CRATE,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.cargo = cargo
        self.provider_crate = provider_crate
        self.env = env

    def validate(self, manifest_path: Optional[Path] = None) -> DependencyGraph:
        """
        Load metadata for manifest_path and check the provider is reachable.

        Raises:
            CargoMetadataError: If cargo metadata fails
            MissingGuestRuntimeError: If a root does not reach the provider
        """
        metadata = load_metadata(self.cargo, manifest_path, env=self.env)
        return self.check(metadata)

    def check(self, metadata: CargoMetadata) -> DependencyGraph:
        """
        Check already-loaded metadata.

        The root package must reach the provider. In a virtual workspace
        every default member must.
        """
        graph = metadata.to_graph()
        if not graph.roots:
            raise CargoMetadataError("cargo metadata reports no root package or members")

        for root_id in graph.roots:
            root = graph.crates.get(root_id)
            if root is None:
                raise CargoMetadataError(f"Root package {root_id} missing from metadata")

            # The provider itself is its own runtime
            if root.name.replace("_", "-") == self.provider_crate.replace("_", "-"):
                continue

            chain = graph.path_to(root_id, self.provider_crate)
            if chain is None:
                raise MissingGuestRuntimeError(root.name, self.provider_crate)
            logger.debug(
                "Guest runtime reachable: " + " -> ".join(str(crate) for crate in chain)
            )

        return graph
