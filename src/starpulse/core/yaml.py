"""YAML configuration loading.

Used by [EventStore.from_yaml()][starpulse.core.event_store.EventStore.from_yaml]
and [BaseService.from_yaml()][starpulse.core.base_service.BaseService.from_yaml]
to read their configuration files. Only ``yaml.safe_load`` is used, so YAML
tags cannot instantiate Python objects.

Examples:
    ```python
    from starpulse.core.yaml import load_yaml

    config = load_yaml("config/services/relay.yaml")
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str) -> dict[str, Any]:
    """Load and parse a YAML configuration file.

    Args:
        config_path: Path to the YAML file (absolute or relative).

    Returns:
        Parsed configuration as a dictionary, empty if the file holds no data.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file contains invalid YAML syntax.
        ConfigurationError: If the top-level document is not a mapping.

    Warning:
        The structure of the returned dictionary is not validated here;
        pass it to a Pydantic model for that.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping, got {type(data).__name__}"
        )
    return data
