"""
Native C toolchain discovery for guest-targeted C code.

Build scripts in the dependency graph compile C through the ``cc`` crate and
parse headers through ``bindgen``. Both need a clang that can target the
freestanding guest, and ``cc`` additionally needs an archiver.
"""

import logging
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from cargo_hyperlight.core.exceptions import NativeToolchainError
from cargo_hyperlight.core.filesystem import find_executable, find_executables_matching

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NativeCompilers:
    """
    C compiler and archiver used for guest-targeted native code.

    Attributes:
        clang: clang executable (may be a bare name if nothing was found)
        ar: archiver, or None to let the cc crate pick one itself
        resource_dir: clang resource directory (builtin headers), if known
        include_dirs: extra system include directories for the guest
    """

    clang: Path
    ar: Optional[Path] = None
    resource_dir: Optional[Path] = None
    include_dirs: List[Path] = field(default_factory=list)

    @property
    def clang_found(self) -> bool:
        return self.clang.is_absolute() and self.clang.exists()


def resolve_explicit_tool(
    tool: Path, role: str, env: Optional[Mapping[str, str]] = None
) -> Path:
    """
    Resolve a configured compiler or archiver.

    A bare name is looked up on PATH; anything else must exist.

    Raises:
        NativeToolchainError: If the configured tool does not exist
    """
    if len(tool.parts) == 1:
        found = find_executable(str(tool), env=env)
        if found is not None:
            return found
    elif tool.is_file():
        return tool
    raise NativeToolchainError(
        f"Configured {role} not found: {tool}", environment={role.upper(): str(tool)}
    )


def find_clang(
    explicit: Optional[Path] = None,
    toolchain_dir: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[Path]:
    """
    Locate the clang used for guest C code.

    Order: explicit path, the guest toolchain's clang wrapper, then clang
    on PATH.

    Returns:
        Path to clang, or None if none was found
    """
    if explicit is not None:
        return resolve_explicit_tool(explicit, "clang", env)

    if toolchain_dir is not None:
        clang = find_executable("clang", search_paths=[toolchain_dir])
        if clang is not None:
            return clang

    return find_executable("clang", env=env)


def _llvm_ar_version(path: Path) -> int:
    match = re.match(r"llvm-ar-(\d+)", path.name)
    return int(match.group(1)) if match else 0


def find_ar(
    explicit: Optional[Path] = None, env: Optional[Mapping[str, str]] = None
) -> Optional[Path]:
    """
    Locate an archiver: ``ar``, ``llvm-ar``, then versioned ``llvm-ar-N``.

    Returns:
        Path to the archiver, or None to leave the choice to the cc crate
    """
    if explicit is not None:
        return resolve_explicit_tool(explicit, "ar", env)

    for name in ("ar", "llvm-ar"):
        found = find_executable(name, env=env)
        if found is not None:
            return found

    # e.g. llvm-ar-20 on Debian/Ubuntu, newest first
    versioned = find_executables_matching(r"llvm-ar-\d+(\.exe)?", env=env)
    if versioned:
        return max(versioned, key=_llvm_ar_version)

    return None


def clang_resource_dir(
    clang: Path, env: Optional[Mapping[str, str]] = None
) -> Optional[Path]:
    """
    Ask clang for its resource directory (location of stddef.h and friends).

    Returns:
        Resource directory, or None if clang could not be queried
    """
    try:
        result = subprocess.run(
            [str(clang), "-print-resource-dir"],
            env=dict(env) if env is not None else None,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Could not query clang resource dir: {e}")
        return None

    if result.returncode != 0 or not result.stdout.strip():
        logger.debug(f"clang -print-resource-dir failed: {result.stderr.strip()}")
        return None

    return Path(result.stdout.strip())


def discover_compilers(
    clang: Optional[Path] = None,
    ar: Optional[Path] = None,
    toolchain_dir: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> NativeCompilers:
    """
    Resolve the native compilers for guest C code.

    A missing clang is not fatal here: crates without C dependencies build
    fine. The bare name ``clang`` is used instead and any build script that
    needs it fails later with the environment printed alongside.
    """
    found_clang = find_clang(clang, toolchain_dir, env)
    if found_clang is None:
        logger.warning(
            "Could not find clang; C dependencies of the guest will fail to build"
        )
        found_clang = Path("clang")

    include_dirs = []
    if toolchain_dir is not None and (toolchain_dir / "include").is_dir():
        include_dirs.append(toolchain_dir / "include")

    resource_dir = None
    if found_clang.is_absolute():
        resource_dir = clang_resource_dir(found_clang, env)

    compilers = NativeCompilers(
        clang=found_clang,
        ar=find_ar(ar, env),
        resource_dir=resource_dir,
        include_dirs=include_dirs,
    )
    logger.debug(f"Native compilers: {compilers}")
    return compilers
