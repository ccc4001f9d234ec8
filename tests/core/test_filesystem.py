"""
Unit tests for filesystem helpers.
"""

import os
import stat
from unittest.mock import patch

import pytest

from cargo_hyperlight.core.filesystem import (
    FilesystemError,
    atomic_write,
    directory_size,
    find_executable,
    find_executables_matching,
    publish_directory,
    safe_rmtree,
)


def make_executable(path):
    path.write_text("#!/bin/sh\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class TestAtomicWrite:
    """Tests for atomic_write."""

    def test_writes_text(self, temp_dir):
        """Test text content is written and parents are created."""
        target = temp_dir / "nested" / "file.json"

        atomic_write(target, "{}\n")

        assert target.read_text() == "{}\n"

    def test_replaces_existing(self, temp_dir):
        """Test an existing file is replaced."""
        target = temp_dir / "file.txt"
        target.write_text("old")

        atomic_write(target, b"new")

        assert target.read_bytes() == b"new"

    def test_no_temp_files_left(self, temp_dir):
        """Test no temporary files remain after writing."""
        atomic_write(temp_dir / "file.txt", "content")

        assert [p.name for p in temp_dir.iterdir()] == ["file.txt"]


class TestPublishDirectory:
    """Tests for publish_directory."""

    def test_publish_new(self, temp_dir):
        """Test publishing into an empty location."""
        staging = temp_dir / ".staging"
        staging.mkdir()
        (staging / "marker").write_text("new")
        destination = temp_dir / "entry"

        publish_directory(staging, destination)

        assert (destination / "marker").read_text() == "new"
        assert not staging.exists()

    def test_publish_replaces_wholesale(self, temp_dir):
        """Test an existing entry is replaced, not merged."""
        destination = temp_dir / "entry"
        destination.mkdir()
        (destination / "stale").write_text("old")
        staging = temp_dir / ".staging"
        staging.mkdir()
        (staging / "marker").write_text("new")

        publish_directory(staging, destination)

        assert (destination / "marker").exists()
        assert not (destination / "stale").exists()
        assert sorted(p.name for p in temp_dir.iterdir()) == ["entry"]

    def test_failed_publish_restores_previous(self, temp_dir):
        """Test the previous entry survives a failed rename."""
        destination = temp_dir / "entry"
        destination.mkdir()
        (destination / "stale").write_text("old")
        staging = temp_dir / ".staging"
        staging.mkdir()

        real_replace = os.replace

        def failing_replace(src, dst):
            if str(src) == str(staging):
                raise OSError("disk full")
            return real_replace(src, dst)

        with patch("cargo_hyperlight.core.filesystem.os.replace", side_effect=failing_replace):
            with pytest.raises(FilesystemError):
                publish_directory(staging, destination)

        assert (destination / "stale").read_text() == "old"


class TestSafeRmtree:
    """Tests for safe_rmtree."""

    def test_removes_tree(self, temp_dir):
        """Test a directory tree is removed."""
        tree = temp_dir / "tree"
        (tree / "sub").mkdir(parents=True)
        (tree / "sub" / "file").write_text("x")

        safe_rmtree(tree, require_prefix=temp_dir)

        assert not tree.exists()

    def test_refuses_outside_prefix(self, temp_dir):
        """Test paths outside the required prefix are refused."""
        outside = temp_dir / "outside"
        outside.mkdir()

        with pytest.raises(ValueError, match="Refusing to delete"):
            safe_rmtree(outside, require_prefix=temp_dir / "cache")

        assert outside.exists()

    def test_missing_path_is_noop(self, temp_dir):
        """Test removing a missing path does nothing."""
        safe_rmtree(temp_dir / "missing")


class TestFindExecutable:
    """Tests for executable lookup."""

    def test_finds_in_search_paths(self, temp_dir):
        """Test lookup in explicit directories."""
        clang = make_executable(temp_dir / "clang")

        assert find_executable("clang", search_paths=[temp_dir]) == clang

    def test_uses_env_path(self, temp_dir):
        """Test PATH is taken from the given environment."""
        cargo = make_executable(temp_dir / "cargo")

        assert find_executable("cargo", env={"PATH": str(temp_dir)}) == cargo

    def test_not_found(self, temp_dir):
        """Test None is returned when nothing matches."""
        assert find_executable("clang", env={"PATH": str(temp_dir)}) is None

    def test_find_matching(self, temp_dir):
        """Test regex matching of executable names on PATH."""
        make_executable(temp_dir / "llvm-ar-18")
        make_executable(temp_dir / "llvm-ar-20")
        (temp_dir / "llvm-ar-19").write_text("not executable")

        found = find_executables_matching(r"llvm-ar-\d+", env={"PATH": str(temp_dir)})

        assert sorted(p.name for p in found) == ["llvm-ar-18", "llvm-ar-20"]


def test_directory_size(temp_dir):
    """Test sizes of nested files are summed."""
    (temp_dir / "a").write_bytes(b"12345")
    (temp_dir / "sub").mkdir()
    (temp_dir / "sub" / "b").write_bytes(b"123")

    assert directory_size(temp_dir) == 8
