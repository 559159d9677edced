"""
Layered YAML configuration.

``base.yaml`` is read first, then ``<environment>.yaml``, then an
optional ``local.yaml`` for machine-specific overrides; the merged
mapping is validated by the Settings model.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ConfigurationError
from .settings import Environment, Settings

LOCAL_OVERRIDES = "local.yaml"


class ConfigLoader:
    """Reads and merges the YAML files of one configuration directory."""

    def __init__(self, config_dir: Union[str, Path] = "config") -> None:
        self.config_dir = Path(config_dir)

    def load_yaml(self, file_path: Union[str, Path]) -> Dict[str, Any]:
        """
        Load one YAML file.

        Returns:
            The top-level mapping; empty for a missing or empty file

        Raises:
            ConfigurationError: Unreadable file, invalid YAML, or a top level that is not a mapping
        """
        path = Path(file_path)
        if not path.exists():
            return {}

        try:
            with path.open("r", encoding="utf-8") as file:
                content = yaml.safe_load(file)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing YAML file {path}: {e}", cause=e) from e
        except OSError as e:
            raise ConfigurationError(f"Error reading file {path}: {e}", cause=e) from e

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigurationError(
                f"Configuration file {path} must contain a mapping, got {type(content).__name__}",
                context={"file": str(path)},
            )
        return content

    def merge_configs(self, *configs: Dict[str, Any]) -> Dict[str, Any]:
        """Deep-merge mappings; later ones win, nested sections are merged key by key."""
        merged: Dict[str, Any] = {}
        for config in configs:
            if not isinstance(config, dict):
                continue
            for key, value in config.items():
                if isinstance(merged.get(key), dict) and isinstance(value, dict):
                    merged[key] = self.merge_configs(merged[key], value)
                else:
                    merged[key] = value
        return merged

    def load_environment_config(self, environment: Union[str, Environment]) -> Dict[str, Any]:
        env_name = environment.value if isinstance(environment, Environment) else str(environment).lower()
        return self.merge_configs(
            self.load_yaml(self.config_dir / "base.yaml"),
            self.load_yaml(self.config_dir / f"{env_name}.yaml"),
            self.load_yaml(self.config_dir / LOCAL_OVERRIDES),
        )


def load_settings(
    environment: Optional[Union[str, Environment]] = None,
    config_dir: Union[str, Path] = "config",
) -> Settings:
    """
    Build Settings from the YAML layers of ``config_dir``.

    YAML values are passed to the model as init values, so they take
    precedence; environment variables (``BACKTEST__DEFAULT_LIMIT=50``) and
    ``.env`` fill in whatever the files leave unset.

    Args:
        environment: Environment to load (defaults to the ENVIRONMENT variable)
        config_dir: Directory containing the YAML files

    Raises:
        ConfigurationError: If the merged configuration does not validate
    """
    if environment is None:
        environment = Settings().environment

    config = ConfigLoader(config_dir).load_environment_config(environment)
    config["environment"] = environment.value if isinstance(environment, Environment) else str(environment).lower()

    try:
        return Settings(**config)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_dir}: {e}", cause=e) from e
