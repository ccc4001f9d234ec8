"""YAML configuration parser for cargo-hyperlight.

Configuration is layered, lowest precedence first:

1. built-in defaults
2. ``hyperlight.yaml`` next to the crate manifest (or ``--config PATH``)
3. environment variables
4. command-line flags

Example ``hyperlight.yaml``::

    cache_dir: ~/.cache/hyperlight
    provider_crate: hyperlight-guest-bin
    lock_timeout: 900
    clang: /usr/bin/clang-18
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from cargo_hyperlight.core.directory import CACHE_DIR_ENV, get_global_cache_dir
from cargo_hyperlight.core.exceptions import ConfigError
from cargo_hyperlight.core.locking import DEFAULT_LOCK_TIMEOUT

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "hyperlight.yaml"
DEFAULT_PROVIDER_CRATE = "hyperlight-guest-bin"
DEFAULT_MIN_RUST_VERSION = "1.85"

# Environment variable -> config key
ENV_OVERRIDES = {
    CACHE_DIR_ENV: "cache_dir",
    "CARGO_HYPERLIGHT_PROVIDER": "provider_crate",
    "CARGO_HYPERLIGHT_LOCK_TIMEOUT": "lock_timeout",
    "CARGO_HYPERLIGHT_TARGET_SPEC": "target_spec",
    "CARGO_HYPERLIGHT_CLANG": "clang",
    "CARGO_HYPERLIGHT_AR": "ar",
}


@dataclass(frozen=True)
class HyperlightConfig:
    """Resolved cargo-hyperlight configuration."""

    cache_dir: Path
    provider_crate: str = DEFAULT_PROVIDER_CRATE
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    target_spec: Optional[Path] = None  # replaces the bundled target spec
    derive_base_spec: bool = True  # overlay onto rustc's x86_64-unknown-none
    clang: Optional[Path] = None
    ar: Optional[Path] = None
    min_rust_version: str = DEFAULT_MIN_RUST_VERSION
    prepare_guest_toolchain: bool = True
    source: Optional[Path] = field(default=None, compare=False)

    def with_overrides(self, **overrides: Any) -> "HyperlightConfig":
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        if not values:
            return self
        return replace(self, **_coerce(values, origin="command line"))


_PATH_KEYS = {"cache_dir", "target_spec", "clang", "ar"}
_BOOL_KEYS = {"derive_base_spec", "prepare_guest_toolchain"}
_KNOWN_KEYS = {f.name for f in fields(HyperlightConfig)} - {"source"}


def _coerce(values: Dict[str, Any], origin: str) -> Dict[str, Any]:
    """Validate keys and convert raw values to their field types."""
    result = {}
    for key, value in values.items():
        if key not in _KNOWN_KEYS:
            raise ConfigError(f"Unknown configuration key '{key}' in {origin}")

        if key in _PATH_KEYS:
            if not isinstance(value, (str, os.PathLike)):
                raise ConfigError(f"'{key}' must be a path in {origin}")
            result[key] = Path(value).expanduser()
        elif key == "lock_timeout":
            try:
                result[key] = float(value)
            except (TypeError, ValueError):
                raise ConfigError(f"'lock_timeout' must be a number in {origin}")
            if result[key] < 0:
                raise ConfigError(f"'lock_timeout' must not be negative in {origin}")
        elif key in _BOOL_KEYS:
            if isinstance(value, str):
                value = value.strip().lower() in ("1", "true", "yes", "on")
            if not isinstance(value, bool):
                raise ConfigError(f"'{key}' must be a boolean in {origin}")
            result[key] = value
        else:
            if not isinstance(value, (str, int, float)):
                raise ConfigError(f"'{key}' must be a string in {origin}")
            result[key] = str(value)
    return result


def parse_config_file(config_path: Path) -> Dict[str, Any]:
    """
    Parse a hyperlight.yaml configuration file.

    Args:
        config_path: Path to hyperlight.yaml

    Returns:
        Validated mapping of configuration keys to typed values

    Raises:
        ConfigError: If the file is missing, not valid YAML or has bad keys
    """
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}")

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration in {config_path} must be a mapping")

    values = _coerce(data, origin=str(config_path))

    # Relative paths in the file are relative to the file itself
    for key in _PATH_KEYS & values.keys():
        if not values[key].is_absolute():
            values[key] = (config_path.parent / values[key]).resolve()

    return values


def find_config_file(manifest_path: Optional[Path], cwd: Path) -> Optional[Path]:
    """Locate hyperlight.yaml beside the manifest, or in the working directory."""
    base = manifest_path.parent if manifest_path else cwd
    candidate = base / CONFIG_FILE_NAME
    return candidate if candidate.is_file() else None


def load_config(
    config_path: Optional[Path] = None,
    manifest_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Path] = None,
) -> HyperlightConfig:
    """
    Load the layered configuration.

    Args:
        config_path: Explicit configuration file (must exist when given)
        manifest_path: Crate manifest used to locate hyperlight.yaml
        env: Environment variables (default: os.environ)
        cwd: Working directory (default: current directory)

    Returns:
        Resolved configuration; command-line overrides are applied
        afterwards with HyperlightConfig.with_overrides()

    Raises:
        ConfigError: If any layer is invalid
    """
    env = os.environ if env is None else env
    cwd = Path.cwd() if cwd is None else cwd

    values: Dict[str, Any] = {"cache_dir": get_global_cache_dir(env)}

    if config_path is None:
        config_path = find_config_file(manifest_path, cwd)
    if config_path is not None:
        logger.debug(f"Loading configuration from {config_path}")
        values.update(parse_config_file(config_path))

    env_values = {
        key: env[var] for var, key in ENV_OVERRIDES.items() if env.get(var)
    }
    if env_values:
        logger.debug(f"Configuration from environment: {sorted(env_values)}")
        values.update(_coerce(env_values, origin="environment"))

    return HyperlightConfig(source=config_path, **values)
