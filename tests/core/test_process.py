"""
Tests for subprocess helpers and the cache directory layout.
"""

import os
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from cargo_hyperlight.core.directory import get_global_cache_dir, get_sysroots_dir
from cargo_hyperlight.core.exceptions import CargoMetadataError
from cargo_hyperlight.core.process import checked_output, format_command


def test_format_command_quotes():
    assert format_command(["cargo", Path("/a b/Cargo.toml")]) == "cargo '/a b/Cargo.toml'"


@patch("cargo_hyperlight.core.process.subprocess.run")
class TestCheckedOutput:
    """Tests for checked_output."""

    def test_stdout_returned(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout="ok\n", stderr="")

        assert checked_output(["cargo", "metadata"], CargoMetadataError) == "ok\n"

    def test_failure_includes_stderr(self, mock_run):
        """Test the raised error names the command and cargo's stderr."""
        mock_run.return_value = subprocess.CompletedProcess(
            [], 101, stdout="", stderr="error: failed to parse manifest"
        )

        with pytest.raises(CargoMetadataError) as exc_info:
            checked_output(["cargo", "metadata"], CargoMetadataError)

        message = str(exc_info.value)
        assert "exited with code 101" in message
        assert "cargo metadata" in message
        assert "failed to parse manifest" in message

    def test_not_found(self, mock_run):
        mock_run.side_effect = FileNotFoundError("cargo")

        with pytest.raises(CargoMetadataError, match="not found"):
            checked_output(["cargo"], CargoMetadataError)


class TestCacheDirectory:
    """Tests for the cache directory layout."""

    def test_env_override(self, temp_dir):
        env = {"CARGO_HYPERLIGHT_CACHE_DIR": str(temp_dir / "cache")}

        assert get_global_cache_dir(env) == temp_dir / "cache"

    def test_default_under_home(self, isolated_env):
        if os.name == "nt":
            pytest.skip("POSIX home layout")
        assert get_global_cache_dir({}) == isolated_env / ".cargo-hyperlight"

    def test_sysroots_dir(self, temp_dir):
        assert get_sysroots_dir(temp_dir) == temp_dir / "sysroots"
