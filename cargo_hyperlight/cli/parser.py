"""
cargo-hyperlight CLI argument parser.

This module implements the command-line interface using argparse. It is
installed as ``cargo-hyperlight`` so cargo runs it for ``cargo hyperlight``.
"""

import argparse
import importlib
import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import List, Optional

from cargo_hyperlight.cli.utils import split_passthrough, strip_cargo_subcommand
from cargo_hyperlight.core.exceptions import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_USAGE,
    HyperlightCargoError,
)

try:
    __version__ = version("cargo-hyperlight")
except PackageNotFoundError:
    __version__ = "0.1.0"

logger = logging.getLogger(__name__)

# cargo subcommands run against the guest target
CARGO_COMMANDS = {
    "build": "Compile the guest crate for x86_64-hyperlight-none",
    "check": "Check the guest crate for errors without producing a binary",
    "clippy": "Run clippy on the guest crate",
    "doc": "Build documentation for the guest crate",
    "rustc": "Compile the guest crate, passing extra flags to rustc",
}


class CLI:
    """cargo-hyperlight command-line interface."""

    def __init__(self):
        """Initialize CLI with argument parser."""
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """
        Create argument parser with all subcommands.

        Returns:
            Configured ArgumentParser instance
        """
        parser = argparse.ArgumentParser(
            prog="cargo hyperlight",
            description="Build Rust crates as Hyperlight guests (x86_64-hyperlight-none)",
            epilog='Use "cargo hyperlight COMMAND --help" for command-specific help',
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        # Global options
        parser.add_argument(
            "--version", action="version", version=f"cargo-hyperlight {__version__}"
        )
        parser.add_argument(
            "--verbose", "-v", action="store_true", help="Enable verbose output"
        )
        parser.add_argument(
            "--quiet",
            "-q",
            action="store_true",
            help="Enable minimal output (errors only)",
        )
        parser.add_argument(
            "--config",
            type=Path,
            metavar="PATH",
            help="Path to configuration file (default: hyperlight.yaml next to Cargo.toml)",
        )

        # Subcommands
        subparsers = parser.add_subparsers(
            dest="command", help="Available commands", metavar="COMMAND"
        )

        for name, help_text in CARGO_COMMANDS.items():
            self._add_cargo_command(subparsers, name, help_text)
        self._add_sysroot_command(subparsers)
        self._add_env_command(subparsers)

        return parser

    def _add_common_options(self, parser: argparse.ArgumentParser):
        parser.add_argument(
            "--manifest-path",
            type=Path,
            metavar="PATH",
            help="Path to the guest crate's Cargo.toml",
        )
        parser.add_argument(
            "--cache-dir",
            type=Path,
            metavar="DIR",
            help="Sysroot cache directory (default: ~/.cargo-hyperlight)",
        )
        parser.add_argument(
            "--target-spec",
            type=Path,
            metavar="PATH",
            help="Target specification JSON to use instead of the built-in one",
        )

    def _add_cargo_command(self, subparsers, name: str, help_text: str):
        """Add a cargo subcommand (build, check, clippy, doc, rustc)."""
        parser = subparsers.add_parser(
            name,
            help=help_text,
            description=(
                f"{help_text}.\n\n"
                "Arguments not listed here, and everything after '--', are "
                "passed to cargo unchanged."
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
            allow_abbrev=False,
        )
        profile = parser.add_mutually_exclusive_group()
        profile.add_argument(
            "--release", "-r", action="store_true", help="Build with the release profile"
        )
        profile.add_argument(
            "--profile", metavar="NAME", help="Build with the named cargo profile"
        )
        self._add_common_options(parser)
        parser.add_argument(
            "--target-dir", type=Path, metavar="DIR", help="cargo target directory"
        )
        parser.add_argument(
            "--target",
            metavar="TRIPLE",
            help="Target triple (only x86_64-hyperlight-none is supported)",
        )
        parser.add_argument("--bin", metavar="NAME", help="Binary to build")
        parser.add_argument(
            "--skip-dependency-check",
            action="store_true",
            help="Do not check that the guest runtime crate is a dependency",
        )

    def _add_sysroot_command(self, subparsers):
        """Add 'sysroot' subcommand."""
        parser = subparsers.add_parser(
            "sysroot",
            help="Manage the cached guest sysroots",
            description="Build, locate, list or remove cached guest sysroots",
        )
        sysroot_subparsers = parser.add_subparsers(
            dest="sysroot_command", metavar="ACTION"
        )

        build = sysroot_subparsers.add_parser(
            "build", help="Build the sysroot for the active toolchain if missing"
        )
        self._add_common_options(build)

        path = sysroot_subparsers.add_parser(
            "path", help="Print the sysroot path for the active toolchain"
        )
        self._add_common_options(path)

        listing = sysroot_subparsers.add_parser("list", help="List cached sysroots")
        self._add_common_options(listing)

        clear = sysroot_subparsers.add_parser("clear", help="Remove every cached sysroot")
        self._add_common_options(clear)

    def _add_env_command(self, subparsers):
        """Add 'env' subcommand."""
        parser = subparsers.add_parser(
            "env",
            help="Print the guest toolchain environment",
            description=(
                "Print the environment a guest build runs with, building the "
                "sysroot first if needed"
            ),
        )
        self._add_common_options(parser)
        parser.add_argument(
            "--json", action="store_true", help="Print a JSON object instead of KEY=VALUE lines"
        )

    def parse_args(self, args: Optional[List[str]] = None):
        """
        Parse command-line arguments.

        Arguments cargo does not know about are not an error for the cargo
        subcommands: they are collected into ``args.cargo_args``.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Parsed arguments namespace
        """
        argv = strip_cargo_subcommand(list(sys.argv[1:] if args is None else args))
        own, passthrough = split_passthrough(argv)

        parsed, unknown = self.parser.parse_known_args(own)
        if parsed.command not in CARGO_COMMANDS and (unknown or passthrough):
            self.parser.error(f"unrecognized arguments: {' '.join(unknown + passthrough)}")

        parsed.cargo_args = unknown + passthrough
        return parsed

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Run CLI with given arguments.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Exit code (cargo's own code for cargo commands)
        """
        parsed_args = self.parse_args(args)

        # Configure logging
        self._configure_logging(parsed_args)

        # Check if command specified
        if not parsed_args.command:
            self.parser.print_help()
            return EXIT_USAGE

        # Dispatch to command handler
        try:
            return self._dispatch_command(parsed_args)
        except KeyboardInterrupt:
            logger.info("Operation cancelled by user")
            return EXIT_INTERRUPTED
        except HyperlightCargoError as e:
            logger.error(f"error: {e}")
            return e.exit_code
        except Exception as e:
            logger.error(f"error: {e}")
            if parsed_args.verbose:
                import traceback

                traceback.print_exc()
            return EXIT_FAILURE

    def _configure_logging(self, args):
        """
        Configure logging based on verbose/quiet flags.

        Args:
            args: Parsed arguments with verbose/quiet flags
        """
        if args.verbose:
            level = logging.DEBUG
            format_str = "%(levelname)s [%(name)s] %(message)s"
        elif args.quiet:
            level = logging.ERROR
            format_str = "%(levelname)s: %(message)s"
        else:
            level = logging.INFO
            format_str = "%(message)s"

        logging.basicConfig(
            level=level,
            format=format_str,
            force=True,  # Reconfigure if already configured
        )

    def _dispatch_command(self, args) -> int:
        """
        Dispatch to appropriate command handler.

        Args:
            args: Parsed arguments with command field

        Returns:
            Exit code from command handler
        """
        if args.command == "sysroot":
            return self._dispatch_sysroot_command(args)

        if args.command in CARGO_COMMANDS:
            module_name = "cargo_hyperlight.cli.commands.build"
        elif args.command == "env":
            module_name = "cargo_hyperlight.cli.commands.env"
        else:
            logger.error(f"Unknown command: {args.command}")
            return EXIT_USAGE

        module = importlib.import_module(module_name)
        return module.run(args)

    def _dispatch_sysroot_command(self, args) -> int:
        """
        Dispatch sysroot sub-commands.

        Args:
            args: Parsed arguments with sysroot_command field

        Returns:
            Exit code from command handler
        """
        if not getattr(args, "sysroot_command", None):
            logger.error("No sysroot action specified")
            self.parser.parse_args(["sysroot", "--help"])
            return EXIT_USAGE

        from cargo_hyperlight.cli.commands import sysroot

        sysroot_command_map = {
            "build": sysroot.run_build,
            "path": sysroot.run_path,
            "list": sysroot.run_list,
            "clear": sysroot.run_clear,
        }

        handler = sysroot_command_map.get(args.sysroot_command)
        if not handler:
            logger.error(f"Unknown sysroot command: {args.sysroot_command}")
            return EXIT_USAGE

        return handler(args)


def main():
    """Main entry point for CLI."""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
