"""Collection configuration loading and validation.

Reads a ``mirror.toml``-style file, resolves ``${VAR}`` references against
the environment, and returns validated pydantic models.

Example::

    [collection]
    host = "http://api.example.com"
    path = "v1"
    type = "articles"
    realtime = true
    inclusive = true

    [logging]
    level = "DEBUG"
    format = "json"
"""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from resource_mirror.errors import ConfigurationError

# Matches ${VAR_NAME}; names are alphanumeric plus underscore.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class CollectionConfig(BaseModel):
    """Configuration for a single synchronized collection.

    Attributes
    ----------
    host:
        Server host, optionally with scheme (e.g. ``http://api.example.com``).
    path:
        Base path under the host (e.g. ``v1``).
    type:
        Resource type; the last segment of the collection endpoint.
    realtime:
        Open a live WebSocket channel at ``{host}/{path}/{type}/realtime``.
    inclusive:
        Pull unseen identifiers announced by ``create`` events into the
        collection.
    verify_ssl:
        Verify TLS certificates for HTTP and WebSocket connections.
    request_timeout:
        Seconds before an HTTP request is abandoned.
    receive_timeout:
        Seconds the live-channel reader waits per receive before re-checking
        for shutdown.
    """

    host: str
    path: str
    type: str
    realtime: bool = False
    inclusive: bool = False
    verify_ssl: bool = True
    request_timeout: float = Field(default=20.0, gt=0)
    receive_timeout: float = Field(default=5.0, gt=0)

    model_config = ConfigDict(extra="forbid")

    @field_validator("host", "path", "type")
    @classmethod
    def _strip_slashes(cls, value: str) -> str:
        normalized = value.strip().strip("/")
        if not normalized:
            raise ValueError("must be a non-empty string")
        return normalized


class LoggingConfig(BaseModel):
    """Logging configuration from the optional ``[logging]`` table."""

    level: str = "INFO"
    format: Literal["text", "json"] = "text"
    log_file: Path | None = None

    model_config = ConfigDict(extra="forbid")


class MirrorConfig(BaseModel):
    """Top-level configuration file contents."""

    collection: CollectionConfig
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(extra="forbid")


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigurationError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigurationError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def load_config(config_path: Path) -> MirrorConfig:
    """Load and validate a collection config file.

    Parameters
    ----------
    config_path:
        Path to a TOML file with a ``[collection]`` table.

    Raises
    ------
    ConfigurationError
        If the file is missing, contains invalid TOML, references unset
        environment variables, or fails validation.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        data = tomllib.loads(config_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid TOML in {config_path}: {exc}") from exc

    data = resolve_env_vars(data)

    if not isinstance(data.get("collection"), dict):
        raise ConfigurationError(f"Missing [collection] section in {config_path}")

    try:
        return MirrorConfig(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid config in {config_path}: {exc}") from exc
