"""
Build command implementation.

Runs build, check, clippy, doc and rustc for the guest target.
"""

import logging

from cargo_hyperlight.build.driver import BuildRequest
from cargo_hyperlight.build.pipeline import BuildPipeline
from cargo_hyperlight.cli.utils import load_command_config

logger = logging.getLogger(__name__)


def build_request(args) -> BuildRequest:
    """BuildRequest for parsed cargo command arguments."""
    profile = "release" if args.release else args.profile
    return BuildRequest(
        subcommand=args.command,
        manifest_path=args.manifest_path,
        profile=profile,
        target_dir=args.target_dir,
        cargo_args=tuple(args.cargo_args),
        bin=args.bin,
    )


def run(args) -> int:
    """
    Run a cargo command for the guest target.

    Args:
        args: Parsed command-line arguments

    Returns:
        cargo's exit code
    """
    logger.debug(f"Arguments: {args}")

    config = load_command_config(args)
    pipeline = BuildPipeline(config, skip_dependency_check=args.skip_dependency_check)
    result = pipeline.run(build_request(args), target=args.target)
    return result.returncode
