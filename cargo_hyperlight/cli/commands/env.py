"""
Env command implementation.

Prints the toolchain environment a guest build would run with, so that
other build tools can reuse it.
"""

import json
import logging

from cargo_hyperlight.build.pipeline import BuildPipeline
from cargo_hyperlight.cli.utils import load_command_config

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the env command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    pipeline = BuildPipeline(load_command_config(args))
    toolchain = pipeline.toolchain()
    descriptor = pipeline.descriptor(toolchain)
    sysroot = pipeline.sysroot(descriptor, toolchain)
    values = pipeline.toolchain_environment(descriptor, sysroot).describe()

    if args.json:
        print(json.dumps(values, indent=2, sort_keys=True))
    else:
        for name, value in sorted(values.items()):
            print(f"{name}={value}")
    return 0
