"""
Entry point for running the cargo-hyperlight CLI as a module.

Usage: python -m cargo_hyperlight.cli [command] [options]
"""

from .parser import main

if __name__ == "__main__":
    main()
