"""
Shared utilities for CLI commands.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from cargo_hyperlight.config.parser import HyperlightConfig, load_config

logger = logging.getLogger(__name__)

# cargo runs external subcommands as `cargo-hyperlight hyperlight ...`
CARGO_SUBCOMMAND_NAME = "hyperlight"


# ============================================================================
# Argument Handling
# ============================================================================


def strip_cargo_subcommand(argv: List[str]) -> List[str]:
    """Drop the subcommand name cargo inserts when running us as a plugin."""
    if argv and argv[0] == CARGO_SUBCOMMAND_NAME:
        return argv[1:]
    return argv


def split_passthrough(argv: List[str]) -> Tuple[List[str], List[str]]:
    """
    Split argv at the first ``--``.

    Returns:
        (arguments for our parser, ``--`` plus everything after it)
    """
    if "--" in argv:
        index = argv.index("--")
        return argv[:index], argv[index:]
    return argv, []


# ============================================================================
# Configuration
# ============================================================================


def load_command_config(args) -> HyperlightConfig:
    """
    Load the layered configuration for a command.

    Command-line values (``--cache-dir``, ``--target-spec``) override the
    file and environment.

    Raises:
        ConfigError: If the configuration is invalid
    """
    manifest_path: Optional[Path] = getattr(args, "manifest_path", None)
    config = load_config(config_path=getattr(args, "config", None), manifest_path=manifest_path)
    return config.with_overrides(
        cache_dir=getattr(args, "cache_dir", None),
        target_spec=getattr(args, "target_spec", None),
    )


# ============================================================================
# User Interface / Output Formatting
# ============================================================================


def format_size(size: int) -> str:
    """Human-readable byte count."""
    value = float(size)
    for unit in ("B", "KiB", "MiB"):
        if value < 1024:
            return f"{value:.0f} B" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GiB"

