"""
End-to-end guest build pipeline.

Stages run strictly in order and any failure aborts the invocation:

1. locate cargo and read workspace metadata;
2. check the guest runtime provider is in the dependency graph (before
   any sysroot or compile work);
3. query the Rust toolchain and resolve the target descriptor;
4. ensure the sysroot (cache hit, or build and publish);
5. discover native compilers and compute the toolchain environment;
6. run cargo and locate the guest binary.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from cargo_hyperlight.build.artifacts import ArtifactLocator
from cargo_hyperlight.build.driver import BuildDriver, BuildRequest, BuildResult
from cargo_hyperlight.cargo.metadata import CargoMetadata, DependencyValidator, load_metadata
from cargo_hyperlight.config.parser import HyperlightConfig
from cargo_hyperlight.sysroot.builder import SysrootBuilder
from cargo_hyperlight.sysroot.cache import SysrootCache
from cargo_hyperlight.target.descriptor import (
    TARGET_TRIPLE,
    TargetDescriptor,
    TargetDescriptorResolver,
    is_hyperlight_target,
)
from cargo_hyperlight.toolchain.cargo import (
    CargoBinary,
    ToolchainInfo,
    find_cargo,
    query_toolchain,
)
from cargo_hyperlight.toolchain.compilers import discover_compilers
from cargo_hyperlight.toolchain.environment import ToolchainEnvironment, compute_environment
from cargo_hyperlight.toolchain.provider import prepare_guest_toolchain

logger = logging.getLogger(__name__)


def resolve_target(requested: Optional[str]) -> str:
    """
    Target triple for this invocation.

    Only the Hyperlight guest target can be built; any other requested
    target is replaced with a warning.
    """
    if requested is None or requested == TARGET_TRIPLE:
        return TARGET_TRIPLE

    if is_hyperlight_target(requested):
        logger.warning(
            f"Target {requested} is not supported, building for {TARGET_TRIPLE} instead"
        )
    else:
        logger.warning(
            f"Target {requested} is not a Hyperlight target, "
            f"building for {TARGET_TRIPLE} instead"
        )
    return TARGET_TRIPLE


class BuildPipeline:
    """
    Orchestrates a guest build from configuration to finished binary.

    The individual stages are public so that the ``sysroot`` and ``env``
    commands can run a prefix of the pipeline.

    Args:
        config: Resolved configuration
        env: Environment the invocation starts from (default: os.environ)
        skip_dependency_check: Skip the guest runtime provider check
    """

    def __init__(
        self,
        config: HyperlightConfig,
        env: Optional[Mapping[str, str]] = None,
        skip_dependency_check: bool = False,
    ):
        self.config = config
        self.env: Dict[str, str] = dict(os.environ if env is None else env)
        self.skip_dependency_check = skip_dependency_check
        self._cargo: Optional[CargoBinary] = None
        self._toolchain: Optional[ToolchainInfo] = None

    @property
    def cargo(self) -> CargoBinary:
        if self._cargo is None:
            self._cargo = find_cargo(self.env)
        return self._cargo

    @property
    def cache(self) -> SysrootCache:
        return SysrootCache(self.config.cache_dir, lock_timeout=self.config.lock_timeout)

    def toolchain(self) -> ToolchainInfo:
        """Query (once) the active Rust toolchain."""
        if self._toolchain is None:
            self._toolchain = query_toolchain(
                self.cargo.environment(self.env), self.config.min_rust_version
            )
            logger.debug(f"Rust toolchain: {self._toolchain.version_string}")
        return self._toolchain

    def metadata(self, manifest_path: Optional[Path] = None) -> CargoMetadata:
        return load_metadata(self.cargo, manifest_path, env=self.env)

    def validate(self, metadata: CargoMetadata) -> None:
        """
        Check the guest runtime provider is reachable.

        Raises:
            MissingGuestRuntimeError: If it is not
        """
        if self.skip_dependency_check:
            logger.debug("Skipping guest runtime dependency check")
            return
        DependencyValidator(self.cargo, self.config.provider_crate, self.env).check(metadata)

    def descriptor(self, toolchain: Optional[ToolchainInfo] = None) -> TargetDescriptor:
        resolver = TargetDescriptorResolver(
            spec_path=self.config.target_spec,
            derive_base_spec=self.config.derive_base_spec,
            env=self.cargo.environment(self.env),
        )
        return resolver.resolve(toolchain)

    def sysroot(self, descriptor: TargetDescriptor, toolchain: ToolchainInfo) -> Path:
        """Cached sysroot for descriptor, built if needed."""
        builder = SysrootBuilder(self.cache, self.cargo, self.env)
        return builder.ensure(descriptor, toolchain)

    def toolchain_environment(
        self,
        descriptor: TargetDescriptor,
        sysroot: Path,
        target_dir: Optional[Path] = None,
        manifest_path: Optional[Path] = None,
    ) -> ToolchainEnvironment:
        """
        Compute the toolchain environment, preparing the guest C toolchain
        first when possible.
        """
        compilers = discover_compilers(self.config.clang, self.config.ar, env=self.env)
        environment = compute_environment(descriptor, sysroot, compilers, self.env)

        if (
            self.config.clang is not None
            or not self.config.prepare_guest_toolchain
            or target_dir is None
        ):
            return environment

        toolchain_dir = prepare_guest_toolchain(
            self.cargo,
            self.config.provider_crate,
            target_dir,
            descriptor.triple,
            environment.to_env(self.env),
            manifest_path,
            scoped_env=environment.scoped(),
        )
        if toolchain_dir is None:
            return environment

        compilers = discover_compilers(
            None, self.config.ar, toolchain_dir=toolchain_dir, env=self.env
        )
        return compute_environment(descriptor, sysroot, compilers, self.env)

    def run(self, request: BuildRequest, target: Optional[str] = None) -> BuildResult:
        """
        Run every stage for a build request.

        Args:
            request: What to build
            target: Target triple requested on the command line

        Returns:
            BuildResult with cargo's exit status

        Raises:
            HyperlightCargoError: If any stage before cargo fails
        """
        resolve_target(target)

        metadata = self.metadata(request.manifest_path)
        self.validate(metadata)

        if request.target_dir is None and metadata.target_directory is not None:
            request = request.with_target_dir(metadata.target_directory)

        toolchain = self.toolchain()
        descriptor = self.descriptor(toolchain)
        sysroot = self.sysroot(descriptor, toolchain)
        environment = self.toolchain_environment(
            descriptor, sysroot, request.target_dir, request.manifest_path
        )

        driver = BuildDriver(self.cargo, ArtifactLocator(metadata), self.env)
        return driver.run(request, descriptor, sysroot, environment)
