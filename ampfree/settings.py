"""Proxy settings: YAML config file merged over command-line defaults."""

import logging
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ampfree.config import DEFAULT_PROXY_PORT, DEFAULT_UPSTREAM

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when the config file or the resulting settings are unusable."""


class ModelMapping(BaseModel):
    """Redirect requests naming one model to another."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: str = Field(alias="from")
    target: str = Field(alias="to")

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: str) -> str:
        if not v:
            raise ValueError("model mapping 'from' must not be empty")
        return v

    def __str__(self) -> str:
        return f"{self.source} -> {self.target}"


class ProxySettings(BaseModel):
    """Immutable process-wide settings, built once at startup."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    port: int = DEFAULT_PROXY_PORT
    upstream: str = DEFAULT_UPSTREAM
    enable_free_search: bool = Field(default=True, alias="enable-free-search")
    enable_model_mapping: bool = Field(default=True, alias="enable-model-mapping")
    model_mappings: tuple[ModelMapping, ...] = Field(default=(), alias="model-mappings")

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 <= v <= 65535:
            raise ValueError(f"port must be between 0 and 65535, got: {v}")
        return v

    @field_validator("upstream")
    @classmethod
    def validate_upstream(cls, v: str) -> str:
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError(f"upstream must be an absolute http(s) URL, got: {v!r}")
        # mitmproxy reverse mode only takes scheme://host[:port]
        if parts.path not in ("", "/") or parts.query or parts.fragment or parts.username is not None:
            raise ValueError(f"upstream must not carry a path, query or credentials, got: {v!r}")
        return v.rstrip("/")

    @field_validator("model_mappings", mode="before")
    @classmethod
    def validate_model_mappings(cls, v: Any) -> Any:
        # YAML "model-mappings:" with nothing under it
        if v is None:
            return ()
        return v

    @field_validator("model_mappings")
    @classmethod
    def drop_duplicate_sources(cls, v: tuple[ModelMapping, ...]) -> tuple[ModelMapping, ...]:
        """Keep the first mapping registered for each source model."""
        seen: dict[str, ModelMapping] = {}
        for mapping in v:
            first = seen.get(mapping.source)
            if first is not None:
                logger.warning(
                    "Duplicate model mapping for %s: keeping %s, ignoring %s",
                    mapping.source, first, mapping,
                )
                continue
            seen[mapping.source] = mapping
        return tuple(seen.values())


def _read_yaml(path: Path) -> dict:
    """Read a YAML mapping from disk; an empty file is an empty mapping."""
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def load_settings(
    config_path: str | Path,
    port: int = DEFAULT_PROXY_PORT,
    upstream: str = DEFAULT_UPSTREAM,
) -> ProxySettings:
    """Build settings from flag values and an optional config file.

    A nonzero ``port`` and a non-empty ``upstream`` in the file override the
    flag values. The feature switches and the mapping list come from the file
    when it exists; keys it leaves out keep their defaults. A missing file
    means defaults all round.

    Raises:
        ConfigError: unreadable file, bad YAML, or invalid values.
    """
    path = Path(config_path)
    data: dict[str, Any] = {}

    if path.exists():
        logger.info("Loading config from %s", path)
        data = _read_yaml(path)
    else:
        logger.debug("No config file at %s, using defaults", path)

    if not data.get("port"):
        data["port"] = port
    if not data.get("upstream"):
        data["upstream"] = upstream

    try:
        return ProxySettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
