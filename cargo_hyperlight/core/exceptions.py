"""
Centralized exception hierarchy for cargo-hyperlight.

Every error raised by the orchestration pipeline derives from
HyperlightCargoError and carries the process exit code the CLI reports
for it.
"""

from typing import Dict, Optional

# Exit codes
EXIT_SUCCESS = 0
EXIT_USAGE = 1
EXIT_MISSING_DEPENDENCY = 3
EXIT_FAILURE = 101
EXIT_INTERRUPTED = 130


# ============================================================================
# Base Exceptions
# ============================================================================


class HyperlightCargoError(Exception):
    """Base exception for all cargo-hyperlight errors."""

    exit_code = EXIT_FAILURE


class ConfigError(HyperlightCargoError):
    """Configuration parsing or validation error."""

    pass


# ============================================================================
# Target Specification Exceptions
# ============================================================================


class TargetSpecError(HyperlightCargoError):
    """Raised when a target specification is malformed or inconsistent."""

    pass


# ============================================================================
# Toolchain Exceptions
# ============================================================================


class ToolchainError(HyperlightCargoError):
    """Base exception for toolchain-related errors."""

    pass


class CargoNotFoundError(ToolchainError):
    """Raised when the cargo executable cannot be located."""

    pass


class ToolchainVersionError(ToolchainError):
    """Raised when the Rust toolchain is missing or too old."""

    pass


class NativeToolchainError(ToolchainError):
    """Raised when the C compiler or archiver is misconfigured or cannot be prepared."""

    def __init__(
        self,
        message: str,
        environment: Optional[Dict[str, str]] = None,
        returncode: Optional[int] = None,
    ):
        self.environment = dict(environment or {})
        self.returncode = returncode
        if self.environment:
            details = "\n".join(
                f"  {key}={value}" for key, value in sorted(self.environment.items())
            )
            message = f"{message}\nToolchain environment:\n{details}"
        super().__init__(message)


# ============================================================================
# Dependency Graph Exceptions
# ============================================================================


class CargoMetadataError(HyperlightCargoError):
    """Raised when `cargo metadata` fails or returns unusable output."""

    pass


class DependencyValidationError(HyperlightCargoError):
    """Base exception for pre-flight dependency validation failures."""

    exit_code = EXIT_MISSING_DEPENDENCY


class MissingGuestRuntimeError(DependencyValidationError):
    """Raised when the guest runtime provider crate is not reachable."""

    def __init__(self, root: str, provider: str):
        self.root = root
        self.provider = provider
        super().__init__(
            f"Crate '{root}' does not depend on '{provider}'. "
            f"Hyperlight guests must link against '{provider}' (directly or "
            f"through another dependency) to provide the guest entry points."
        )


# ============================================================================
# Sysroot Exceptions
# ============================================================================


class SysrootError(HyperlightCargoError):
    """Base exception for sysroot cache and build errors."""

    pass


class SysrootBuildError(SysrootError):
    """Raised when building the standard library for the target fails."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        self.returncode = returncode
        super().__init__(message)


class SysrootLockTimeout(SysrootError):
    """Raised when the sysroot cache lease cannot be acquired in time."""

    pass


# ============================================================================
# Build Exceptions
# ============================================================================


class BuildError(HyperlightCargoError):
    """Base exception for build driver errors."""

    pass


class BuildInterrupted(BuildError):
    """Raised when the user interrupts the running build."""

    exit_code = EXIT_INTERRUPTED


__all__ = [
    "EXIT_SUCCESS",
    "EXIT_USAGE",
    "EXIT_MISSING_DEPENDENCY",
    "EXIT_FAILURE",
    "EXIT_INTERRUPTED",
    "HyperlightCargoError",
    "ConfigError",
    "TargetSpecError",
    "ToolchainError",
    "CargoNotFoundError",
    "ToolchainVersionError",
    "NativeToolchainError",
    "CargoMetadataError",
    "DependencyValidationError",
    "MissingGuestRuntimeError",
    "SysrootError",
    "SysrootBuildError",
    "SysrootLockTimeout",
    "BuildError",
    "BuildInterrupted",
]
