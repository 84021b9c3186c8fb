"""Config - Process-wide request defaults.

RequestConfig holds the tunables that every request reads at construction
time (default timeout, API version, custom-properties byte cap). It can be
built from environment variables or loaded from a YAML file with ${ENV_VAR}
substitution, and is passed explicitly to Request/KinveyRequest.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ConfigError(Exception):
    """Raised when configuration loading fails."""


DEFAULT_TIMEOUT_MS = 10000
DEFAULT_API_VERSION = 3
DEFAULT_MAX_HEADER_BYTES = 2000

# Environment variable -> RequestConfig field
ENV_VARS = {
    "KINVEY_DEFAULT_TIMEOUT": "default_timeout",
    "KINVEY_API_VERSION": "api_version",
    "KINVEY_MAX_HEADER_BYTES": "max_header_bytes",
}


class RequestConfig(BaseModel):
    """Defaults applied to every request built with this config."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    default_timeout: int = Field(
        default=DEFAULT_TIMEOUT_MS, ge=0, description="Request timeout in milliseconds"
    )
    api_version: int = Field(
        default=DEFAULT_API_VERSION, description="Value of X-Kinvey-Api-Version"
    )
    max_header_bytes: int = Field(
        default=DEFAULT_MAX_HEADER_BYTES,
        gt=0,
        description="Exclusive byte cap for X-Kinvey-Custom-Request-Properties",
    )


def config_from_env(environ: Mapping[str, str] | None = None) -> RequestConfig:
    """Build a RequestConfig from KINVEY_* environment variables.

    Unset variables fall back to the documented defaults.
    """
    environ = os.environ if environ is None else environ

    raw_config: dict[str, Any] = {}
    for var_name, field_name in ENV_VARS.items():
        value = environ.get(var_name)
        if value is not None and value != "":
            raw_config[field_name] = value

    try:
        return RequestConfig.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid environment configuration: {e}") from e


def load_config(config_path: Path, environ: Mapping[str, str] | None = None) -> RequestConfig:
    """Load a RequestConfig from YAML.

    ``${NAME}`` inside any string value is replaced with environ[NAME]
    (os.environ by default). A reference to an unset variable is a
    ConfigError naming the variable.
    """
    environ = os.environ if environ is None else environ

    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {config_path}") from e

    try:
        raw_config = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    # An empty file means "all defaults"
    raw_config = {} if raw_config is None else raw_config
    if not isinstance(raw_config, Mapping):
        raise ConfigError("Config file must be a YAML mapping")

    expanded = {key: _expand(value, environ) for key, value in raw_config.items()}

    try:
        return RequestConfig.model_validate(expanded)
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")


def _expand(value: Any, environ: Mapping[str, str]) -> Any:
    """Resolve ${NAME} references in value, descending into lists and mappings."""
    if isinstance(value, Mapping):
        return {key: _expand(item, environ) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand(item, environ) for item in value]
    if not isinstance(value, str):
        return value

    def lookup(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in environ:
            raise ConfigError(f"Environment variable '{name}' is not set")
        return environ[name]

    return _ENV_REFERENCE.sub(lookup, value)
