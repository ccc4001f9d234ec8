"""
Entry point for running cargo-hyperlight as a module.

Usage: python -m cargo_hyperlight [command] [options]
"""

from cargo_hyperlight.cli.parser import main

if __name__ == "__main__":
    main()
