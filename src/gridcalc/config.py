"""Workbook configuration: defaults merged with an optional ``gridcalc.yaml``."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from gridcalc.errors import ConfigError

CONFIG_FILENAME = "gridcalc.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "formula_sigil": "=",
    "cycle_sentinel": "#ERROR#",
    "logging_path": None,  # None: events kept in memory only
    "logging_fsync": False,
    "logging_buffer_size": 1000,
    "logging_tail_bytes": 2_097_152,  # 2 MB
}

# Expected types for known keys (None is allowed where the default is None)
_TYPES: dict[str, tuple[type, ...]] = {
    "formula_sigil": (str,),
    "cycle_sentinel": (str,),
    "logging_path": (str, Path),
    "logging_fsync": (bool,),
    "logging_buffer_size": (int,),
    "logging_tail_bytes": (int,),
}


def merge_config(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Merge *overrides* over :data:`DEFAULT_CONFIG` and validate the result.

    Unknown keys are kept as-is.

    Raises:
        ConfigError: If a known key has the wrong type or an empty sigil.
    """
    config = dict(DEFAULT_CONFIG)
    config.update(overrides or {})

    for key, types in _TYPES.items():
        value = config.get(key)
        if value is None and DEFAULT_CONFIG.get(key) is None:
            continue
        # bool is an int subclass; reject it for integer settings
        if not isinstance(value, types) or (bool not in types and isinstance(value, bool)):
            raise ConfigError(
                f"Config key {key!r} must be {'/'.join(t.__name__ for t in types)}, "
                f"got {value!r}"
            )

    if not config["formula_sigil"]:
        raise ConfigError("Config key 'formula_sigil' must not be empty")
    if config["logging_buffer_size"] < 1:
        raise ConfigError("Config key 'logging_buffer_size' must be positive")
    return config


def load_config(config_dir: Path | None = None) -> dict[str, Any]:
    """Load configuration from ``gridcalc.yaml`` in *config_dir*, with defaults.

    Args:
        config_dir: Directory holding ``gridcalc.yaml``.  ``None`` or a
            directory without the file yields the defaults.

    Returns:
        Merged configuration dict.
    """
    user_config: dict[str, Any] = {}
    if config_dir is not None:
        config_path = Path(config_dir) / CONFIG_FILENAME
        if config_path.exists():
            loaded = yaml.safe_load(config_path.read_text()) or {}
            if not isinstance(loaded, dict):
                raise ConfigError(f"{config_path} must contain a mapping")
            user_config = loaded
    return merge_config(user_config)
