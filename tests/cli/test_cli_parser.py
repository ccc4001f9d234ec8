"""
Tests for the command-line interface.
"""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cargo_hyperlight.build.driver import BuildResult
from cargo_hyperlight.cli.commands.build import build_request
from cargo_hyperlight.cli.parser import CLI
from cargo_hyperlight.cli.utils import format_size, split_passthrough, strip_cargo_subcommand
from cargo_hyperlight.core.exceptions import (
    BuildInterrupted,
    ConfigError,
    MissingGuestRuntimeError,
)
from cargo_hyperlight.sysroot.cache import SysrootCache, SysrootKey, sysroot_target_dir


class TestArgumentHelpers:
    """Tests for the argv helpers."""

    def test_strip_cargo_subcommand(self):
        assert strip_cargo_subcommand(["hyperlight", "build"]) == ["build"]
        assert strip_cargo_subcommand(["build"]) == ["build"]

    def test_split_passthrough(self):
        assert split_passthrough(["build", "--", "-Cfoo", "--"]) == (
            ["build"],
            ["--", "-Cfoo", "--"],
        )
        assert split_passthrough(["build"]) == (["build"], [])

    def test_format_size(self):
        assert format_size(512) == "512 B"
        assert format_size(2048) == "2.0 KiB"
        assert format_size(3 * 1024**3) == "3.0 GiB"


class TestParseArgs:
    """Tests for CLI.parse_args."""

    def test_invoked_by_cargo(self):
        """Test the 'hyperlight' argument cargo inserts is dropped."""
        args = CLI().parse_args(["hyperlight", "build", "--release"])

        assert args.command == "build"
        assert args.release
        assert args.cargo_args == []

    def test_unknown_arguments_go_to_cargo(self):
        args = CLI().parse_args(
            ["build", "--features", "alloc", "--locked", "--bin", "guest"]
        )

        assert args.bin == "guest"
        assert args.cargo_args == ["--features", "alloc", "--locked"]

    def test_double_dash_passthrough(self):
        """Test everything after -- reaches cargo untouched, -- included."""
        args = CLI().parse_args(["rustc", "--profile", "guest-opt", "--", "-Cdebuginfo=2"])

        assert args.profile == "guest-opt"
        assert args.cargo_args == ["--", "-Cdebuginfo=2"]

    def test_target_spec_not_forwarded(self):
        """Test --target-spec is consumed here and never reaches cargo."""
        args = CLI().parse_args(["build", "--target-spec", "guest.json", "--locked"])

        assert args.target_spec == Path("guest.json")
        assert args.cargo_args == ["--locked"]

    def test_release_and_profile_exclusive(self):
        with pytest.raises(SystemExit):
            CLI().parse_args(["build", "--release", "--profile", "dev"])

    def test_unknown_arguments_rejected_elsewhere(self):
        with pytest.raises(SystemExit):
            CLI().parse_args(["sysroot", "list", "--features", "x"])

    def test_build_request(self):
        args = CLI().parse_args(
            ["check", "-r", "--manifest-path", "guest/Cargo.toml", "--", "-Dwarnings"]
        )

        request = build_request(args)

        assert request.subcommand == "check"
        assert request.profile == "release"
        assert request.manifest_path == Path("guest/Cargo.toml")
        assert request.cargo_args == ("--", "-Dwarnings")


class TestRun:
    """Tests for CLI.run exit codes."""

    def test_no_command(self, capsys):
        assert CLI().run([]) == 1

    @patch("cargo_hyperlight.cli.commands.build.run", return_value=101)
    def test_cargo_exit_code_mirrored(self, mock_run):
        """Test cargo's own exit code is the process exit code."""
        assert CLI().run(["hyperlight", "build"]) == 101
        assert mock_run.call_args[0][0].command == "build"

    @pytest.mark.parametrize(
        "error, exit_code",
        [
            (MissingGuestRuntimeError("mycrate", "hyperlight-guest-bin"), 3),
            (ConfigError("bad key"), 101),
            (BuildInterrupted("interrupted"), 130),
            (RuntimeError("unexpected"), 101),
        ],
    )
    def test_error_exit_codes(self, error, exit_code):
        with patch("cargo_hyperlight.cli.commands.build.run", side_effect=error):
            assert CLI().run(["build"]) == exit_code

    def test_keyboard_interrupt(self):
        with patch("cargo_hyperlight.cli.commands.build.run", side_effect=KeyboardInterrupt):
            assert CLI().run(["build"]) == 130

    def test_missing_sysroot_action(self, capsys):
        with pytest.raises(SystemExit):
            CLI().run(["sysroot"])


class TestBuildCommand:
    """Tests for the build command module."""

    @patch("cargo_hyperlight.cli.commands.build.BuildPipeline")
    def test_pipeline_invoked(self, mock_pipeline, temp_dir, isolated_env, monkeypatch):
        monkeypatch.chdir(temp_dir)
        mock_pipeline.return_value.run.return_value = BuildResult(returncode=0)

        code = CLI().run(
            ["build", "--cache-dir", str(temp_dir / "cache"), "--target", "x86_64-hyperlight-none"]
        )

        assert code == 0
        config = mock_pipeline.call_args[0][0]
        assert config.cache_dir == temp_dir / "cache"
        assert mock_pipeline.return_value.run.call_args[1]["target"] == "x86_64-hyperlight-none"

    @patch("cargo_hyperlight.cli.commands.build.BuildPipeline")
    def test_target_spec_option(self, mock_pipeline, temp_dir, isolated_env, monkeypatch):
        """Test --target-spec wins over CARGO_HYPERLIGHT_TARGET_SPEC."""
        monkeypatch.chdir(temp_dir)
        monkeypatch.setenv("CARGO_HYPERLIGHT_TARGET_SPEC", str(temp_dir / "from-env.json"))
        mock_pipeline.return_value.run.return_value = BuildResult(returncode=0)

        code = CLI().run(["build", "--target-spec", str(temp_dir / "guest.json")])

        assert code == 0
        config = mock_pipeline.call_args[0][0]
        assert config.target_spec == temp_dir / "guest.json"
        assert "--target-spec" not in mock_pipeline.return_value.run.call_args[0][0].cargo_args


def publish_entry(cache, digest):
    key = SysrootKey(
        toolchain="1.89.0-nightly (60dabef95)",
        target_digest=digest,
        triple="x86_64-hyperlight-none",
    )
    with cache.staging(key) as staging:
        lib_dir = sysroot_target_dir(staging, key.triple) / "lib"
        lib_dir.mkdir(parents=True)
        (lib_dir / "libcore-1234.rlib").write_bytes(b"rlib")
        cache.publish(key, staging)
    return key


class TestSysrootCommands:
    """Tests for the sysroot list and clear commands."""

    def test_list_empty(self, temp_dir, isolated_env, monkeypatch, capsys):
        monkeypatch.chdir(temp_dir)

        assert CLI().run(["sysroot", "list", "--cache-dir", str(temp_dir / "cache")]) == 0
        assert "No cached sysroots" in capsys.readouterr().out

    def test_list_and_clear(self, temp_dir, isolated_env, monkeypatch, capsys):
        monkeypatch.chdir(temp_dir)
        cache = SysrootCache(temp_dir / "cache")
        key = publish_entry(cache, "a" * 64)

        assert CLI().run(["sysroot", "list", "--cache-dir", str(cache.root.parent)]) == 0
        out = capsys.readouterr().out
        assert key.slug in out
        assert "1.89.0-nightly (60dabef95)" in out

        assert CLI().run(["sysroot", "clear", "--cache-dir", str(cache.root.parent)]) == 0
        assert cache.entries() == []


class TestEnvCommand:
    """Tests for the env command."""

    @patch("cargo_hyperlight.cli.commands.env.BuildPipeline")
    def test_json_output(self, mock_pipeline, temp_dir, isolated_env, monkeypatch, capsys):
        monkeypatch.chdir(temp_dir)
        environment = MagicMock()
        environment.describe.return_value = {
            "CC_x86_64-hyperlight-none": "/usr/bin/clang",
            "CARGO_BUILD_TARGET": "x86_64-hyperlight-none",
        }
        mock_pipeline.return_value.toolchain_environment.return_value = environment

        assert CLI().run(["env", "--json"]) == 0

        printed = json.loads(capsys.readouterr().out)
        assert printed["CC_x86_64-hyperlight-none"] == "/usr/bin/clang"

    @patch("cargo_hyperlight.cli.commands.env.BuildPipeline")
    def test_lines_output(self, mock_pipeline, temp_dir, isolated_env, monkeypatch, capsys):
        monkeypatch.chdir(temp_dir)
        environment = MagicMock()
        environment.describe.return_value = {"RUSTC_BOOTSTRAP": "1", "AR_x86_64-hyperlight-none": "ar"}
        mock_pipeline.return_value.toolchain_environment.return_value = environment

        CLI().run(["env"])

        assert capsys.readouterr().out.splitlines() == [
            "AR_x86_64-hyperlight-none=ar",
            "RUSTC_BOOTSTRAP=1",
        ]
