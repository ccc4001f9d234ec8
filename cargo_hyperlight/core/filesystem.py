"""
File system utilities for cargo-hyperlight.

Provides the primitives the sysroot cache relies on:
- atomic file writes (temp file + rename)
- atomic directory publication (staging directory + rename)
- safe recursive deletion confined to a prefix
- executable lookup on PATH
"""

import os
import re
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Union

IS_WINDOWS = os.name == "nt"


class FilesystemError(Exception):
    """Base exception for filesystem operations."""

    pass


# ============================================================================
# Path Utilities
# ============================================================================


def is_relative_to(path: Path, parent: Path) -> bool:
    """
    Check if path is relative to parent.

    Args:
        path: Path to check
        parent: Potential parent path

    Returns:
        True if path is under parent
    """
    try:
        path.resolve().relative_to(parent.resolve())
        return True
    except ValueError:
        return False


def search_path(env: Optional[Mapping[str, str]] = None) -> List[Path]:
    """Directories listed in PATH, in order."""
    env = os.environ if env is None else env
    path_env = env.get("PATH", "")
    return [Path(p) for p in path_env.split(os.pathsep) if p]


def find_executable(
    name: str,
    search_paths: Optional[Iterable[Path]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[Path]:
    """
    Find an executable in the system PATH or provided search paths.

    Args:
        name: Executable name (e.g., 'cargo', 'clang')
        search_paths: Optional list of directories to search
        env: Environment whose PATH is searched when search_paths is None

    Returns:
        Path to executable if found, None otherwise

    Example:
        >>> find_executable('cargo')
        PosixPath('/home/user/.cargo/bin/cargo')
    """
    extensions = [""] if not IS_WINDOWS else ["", ".exe", ".bat", ".cmd"]

    if search_paths is None:
        search_paths = search_path(env)

    for directory in search_paths:
        for ext in extensions:
            exe_path = Path(directory) / f"{name}{ext}"
            if exe_path.is_file() and os.access(exe_path, os.X_OK):
                return exe_path

    return None


def find_executables_matching(
    pattern: str, env: Optional[Mapping[str, str]] = None
) -> List[Path]:
    """
    Find every executable on PATH whose file name fully matches a regex.

    Args:
        pattern: Regular expression matched against the file name
        env: Environment whose PATH is searched

    Returns:
        Matching executables, in PATH order
    """
    regex = re.compile(pattern)
    found = []
    for directory in search_path(env):
        if not directory.is_dir():
            continue
        try:
            entries = sorted(directory.iterdir())
        except OSError:
            continue
        for entry in entries:
            if (
                regex.fullmatch(entry.name)
                and entry.is_file()
                and os.access(entry, os.X_OK)
            ):
                found.append(entry)
    return found


# ============================================================================
# Safe File Operations
# ============================================================================


def atomic_write(
    file_path: Union[str, Path], content: Union[str, bytes], encoding: str = "utf-8"
) -> None:
    """
    Write file atomically using temp file + rename.

    This ensures the file is never in a partially-written state.
    If the write fails, the original file (if any) remains unchanged.

    Args:
        file_path: Path to write to
        content: Content to write (string or bytes)
        encoding: Text encoding (used only for string content)
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    # Create temp file in same directory (ensures same filesystem)
    temp_fd, temp_path_str = tempfile.mkstemp(
        dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
    )
    temp_path = Path(temp_path_str)

    try:
        if isinstance(content, str):
            with open(temp_fd, "w", encoding=encoding) as f:
                f.write(content)
        else:
            with open(temp_fd, "wb") as f:
                f.write(content)

        temp_path.replace(file_path)

    except Exception:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise


def publish_directory(staging: Path, destination: Path) -> None:
    """
    Atomically move a fully-populated staging directory into place.

    The staging directory must live on the same filesystem as the
    destination. If the destination already exists it is first renamed
    aside, then deleted once the new directory is in place, so a reader
    sees either the old complete tree or the new complete tree.

    Args:
        staging: Populated directory to publish
        destination: Final location

    Raises:
        FilesystemError: If the rename fails
    """
    staging = Path(staging)
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    retired = None
    if destination.exists():
        retired = destination.with_name(
            f".retired-{destination.name}-{uuid.uuid4().hex[:8]}"
        )
        try:
            os.replace(destination, retired)
        except OSError as e:
            raise FilesystemError(
                f"Failed to retire existing directory '{destination}': {e}"
            ) from e

    try:
        os.replace(staging, destination)
    except OSError as e:
        if retired is not None and not destination.exists():
            os.replace(retired, destination)
        raise FilesystemError(
            f"Failed to publish '{staging}' to '{destination}': {e}"
        ) from e

    if retired is not None:
        safe_rmtree(retired, require_prefix=destination.parent)


def safe_rmtree(
    path: Union[str, Path], require_prefix: Optional[Union[str, Path]] = None
) -> None:
    """
    Safely remove a directory tree with safeguards.

    Args:
        path: Directory to remove
        require_prefix: If specified, path must be under this directory

    Raises:
        ValueError: If path is not under require_prefix
        FilesystemError: If deletion fails
    """
    path = Path(path).resolve()

    if require_prefix is not None:
        require_prefix = Path(require_prefix).resolve()
        if not is_relative_to(path, require_prefix):
            raise ValueError(
                f"Refusing to delete '{path}': not under required prefix '{require_prefix}'"
            )

    if not path.exists():
        return

    if not path.is_dir():
        raise FilesystemError(f"Path is not a directory: {path}")

    try:
        shutil.rmtree(path)
    except Exception as e:
        raise FilesystemError(f"Failed to remove directory '{path}': {e}")


def directory_size(path: Union[str, Path]) -> int:
    """
    Calculate total size of a directory in bytes.

    Args:
        path: Directory path

    Returns:
        Total size in bytes
    """
    path = Path(path)
    total_size = 0

    for item in path.rglob("*"):
        if item.is_file():
            total_size += item.stat().st_size

    return total_size


__all__ = [
    "FilesystemError",
    "is_relative_to",
    "search_path",
    "find_executable",
    "find_executables_matching",
    "atomic_write",
    "publish_directory",
    "safe_rmtree",
    "directory_size",
]
