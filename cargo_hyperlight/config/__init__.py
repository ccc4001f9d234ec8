"""Configuration for cargo-hyperlight."""

from cargo_hyperlight.config.parser import (
    CONFIG_FILE_NAME,
    DEFAULT_PROVIDER_CRATE,
    HyperlightConfig,
    load_config,
    parse_config_file,
)

__all__ = [
    "CONFIG_FILE_NAME",
    "DEFAULT_PROVIDER_CRATE",
    "HyperlightConfig",
    "load_config",
    "parse_config_file",
]
