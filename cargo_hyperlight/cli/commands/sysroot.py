"""
Sysroot command implementation.

Builds, locates, lists and clears cached guest sysroots.
"""

import logging

from cargo_hyperlight.build.pipeline import BuildPipeline
from cargo_hyperlight.cli.utils import format_size, load_command_config
from cargo_hyperlight.core.exceptions import EXIT_FAILURE
from cargo_hyperlight.sysroot.builder import sysroot_key

logger = logging.getLogger(__name__)


def run_build(args) -> int:
    """
    Build the sysroot for the active toolchain unless it is already cached.

    Prints the sysroot path.
    """
    pipeline = BuildPipeline(load_command_config(args))
    toolchain = pipeline.toolchain()
    sysroot = pipeline.sysroot(pipeline.descriptor(toolchain), toolchain)
    print(sysroot)
    return 0


def run_path(args) -> int:
    """
    Print where the sysroot for the active toolchain lives.

    Returns non-zero when it has not been built yet.
    """
    pipeline = BuildPipeline(load_command_config(args))
    toolchain = pipeline.toolchain()
    key = sysroot_key(pipeline.descriptor(toolchain), toolchain)
    cache = pipeline.cache

    print(cache.entry_path(key))
    if cache.lookup(key) is None:
        logger.warning("Sysroot not built yet; run 'cargo hyperlight sysroot build'")
        return EXIT_FAILURE
    return 0


def run_list(args) -> int:
    """List cached sysroots with their toolchain and size."""
    cache = BuildPipeline(load_command_config(args)).cache
    entries = cache.entries()

    if not entries:
        print(f"No cached sysroots in {cache.root}")
        return 0

    for entry in entries:
        toolchain = entry.toolchain or "<unreadable manifest>"
        print(f"{entry.path.name}")
        print(f"  toolchain: {toolchain}")
        if entry.target_digest:
            print(f"  target:    {entry.triple} ({entry.target_digest[:16]})")
        if entry.created:
            print(f"  created:   {entry.created}")
        print(f"  size:      {format_size(entry.size)}")
    return 0


def run_clear(args) -> int:
    """Remove every cached sysroot."""
    cache = BuildPipeline(load_command_config(args)).cache
    removed = cache.clear()
    logger.info(f"Removed {removed} cached sysroot(s) from {cache.root}")
    return 0
