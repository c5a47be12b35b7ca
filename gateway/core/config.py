import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from gateway.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "gateway.json"

# Compiled defaults, user config is merged on top of these
DEFAULTS: Dict[str, Any] = {
    "default_datasource": None,
    "datasources": {},
    "table_config_path": "tables",
    "log": False,
}


class Settings(BaseSettings):
    GATEWAY_CONFIG_FILE: Optional[str] = None
    GATEWAY_LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class DatasourceConfig(BaseModel):
    """One entry of the `datasources` map. Unknown keys are pool properties."""

    type: Optional[str] = None
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    @property
    def properties(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class GatewayConfig(BaseModel):
    default_datasource: Optional[str] = None
    datasources: Dict[str, DatasourceConfig] = Field(default_factory=dict)
    table_config_path: str = DEFAULTS["table_config_path"]
    log: bool = False

    model_config = ConfigDict(extra="ignore")

    @property
    def default_database(self) -> Optional[str]:
        """Explicit value, else the first datasource in declaration order."""
        if self.default_datasource:
            return self.default_datasource
        return next(iter(self.datasources), None)


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Merge `override` onto `base` key by key and return a new dict.

    Nested mappings merge recursively; anything else in `override` replaces
    the base value. Keys keep `base` order, new keys are appended in
    `override` order.

    Example:
        deep_merge({"a": {"x": 1}, "b": 2}, {"a": {"y": 3}})
        -> {"a": {"x": 1, "y": 3}, "b": 2}
    """
    merged: Dict[str, Any] = {}
    for key, value in base.items():
        merged[key] = deep_merge(value, {}) if isinstance(value, Mapping) else value

    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        elif isinstance(value, Mapping):
            merged[key] = deep_merge({}, value)
        else:
            merged[key] = value
    return merged


def read_json_object(path: Path) -> Dict[str, Any]:
    try:
        with path.open(encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as error:
        raise ConfigurationError(f"Cannot read {path}: {error}") from error
    except json.JSONDecodeError as error:
        raise ConfigurationError(f"Invalid JSON in {path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    return data


def read_user_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Read the user config file.

    A file requested by name must exist. The default file is optional:
    when it is missing we carry on with the compiled defaults.
    """
    if config_file is not None:
        path = Path(config_file)
        if not path.is_file():
            raise ConfigurationError(f"Config file {config_file} does not exist")
        logger.info(f"Loading gateway config from {path}")
        return read_json_object(path)

    path = Path(DEFAULT_CONFIG_FILE)
    if not path.is_file():
        logger.info(f"No {DEFAULT_CONFIG_FILE} found, using compiled defaults")
        return {}
    logger.info(f"Loading gateway config from {path}")
    return read_json_object(path)


def load_config(
    config_file: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None
) -> GatewayConfig:
    """
    Build the typed config: compiled defaults <- user file <- overrides.

    Args:
        config_file: Explicit config path, None falls back to gateway.json.
        overrides: Already decoded config merged last (used by embedders).

    Returns:
        GatewayConfig with datasources in declaration order.
    """
    merged = deep_merge(DEFAULTS, read_user_config(config_file))
    if overrides:
        merged = deep_merge(merged, overrides)

    try:
        return GatewayConfig.model_validate(merged)
    except ValidationError as error:
        raise ConfigurationError(f"Invalid gateway config: {error}") from error


# Create a single instance of the settings to use everywhere
settings = Settings()
