"""Layered configuration loader for docbridge.

Settings are merged from, lowest priority first: YAML files in the user's
config directory, ``config.yaml`` / ``docbridge.yaml`` in the working
directory, a ``.env`` file, and the process environment.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Literal, Mapping, Sequence

import yaml
from dotenv import dotenv_values
from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import GatewayConfigurationError

APP_NAME = "docbridge"

logger = logging.getLogger(__name__)


class DocbridgeSettings(BaseSettings):
    """Schema describing all supported configuration options."""

    model_config = SettingsConfigDict(case_sensitive=True, extra="ignore")

    DOCBRIDGE_GATEWAY: str = Field(
        default="openai",
        description="Translation gateway used when none is given on the command line.",
    )
    DOCBRIDGE_MAX_ITEMS: int | None = Field(default=None, gt=0)
    DOCBRIDGE_MAX_REQUEST_SIZE: int | None = Field(default=None, gt=0)
    DOCBRIDGE_REQUEST_TIMEOUT: float = Field(default=60.0, gt=0)
    DOCBRIDGE_TRANSPORT_RETRIES: int = Field(default=2, ge=0)
    DOCBRIDGE_LOG_LEVEL: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = Field(
        default="WARNING"
    )
    DOCBRIDGE_PROVIDER_DEBUG: bool = Field(default=False)

    LLM_PROVIDER: Literal["azure_openai", "openai"] = Field(
        default="openai",
        description="Large language model provider selection.",
    )
    OPENAI_API_KEY: str | None = Field(default=None, repr=False)
    OPENAI_MODEL: str | None = Field(default=None)
    AZURE_OPENAI_API_KEY: str | None = Field(default=None, repr=False)
    AZURE_OPENAI_ENDPOINT: str | None = Field(default=None)
    AZURE_OPENAI_API_VERSION: str | None = Field(default=None)
    AZURE_OPENAI_DEPLOYMENT_NAME: str | None = Field(default=None)
    GOOGLE_APPLICATION_CREDENTIALS: str | None = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def _normalise_provider(cls, data: Any) -> Any:
        if isinstance(data, dict):
            raw_value = data.get("LLM_PROVIDER")
            if isinstance(raw_value, str):
                normalized = raw_value.strip().lower().replace("-", "_")
                synonyms = {
                    "azure_open_ai": "azure_openai",
                    "azureopenai": "azure_openai",
                }
                normalized = synonyms.get(normalized, normalized)
                if normalized not in {"openai", "azure_openai"}:
                    normalized = "openai"
                data["LLM_PROVIDER"] = normalized
            level = data.get("DOCBRIDGE_LOG_LEVEL")
            if isinstance(level, str):
                level = level.strip().upper()
                data["DOCBRIDGE_LOG_LEVEL"] = "WARNING" if level == "WARN" else level
        return data


def discover_yaml_paths(app_dir: Path) -> List[Path]:
    """Return candidate YAML files in increasing order of priority."""

    home = Path.home()
    candidates = [
        home / ".config" / APP_NAME / "config.yaml",
        home / f".{APP_NAME}.yaml",
        app_dir / "config.yaml",
        app_dir / f"{APP_NAME}.yaml",
    ]
    return [path for path in candidates if path.is_file()]


def _load_discovered_yaml(*, app_dir: Path) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for path in discover_yaml_paths(app_dir):
        try:
            with open(path, encoding="utf-8") as handle:
                parsed = yaml.safe_load(handle) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise GatewayConfigurationError(
                f"Configuration file {path} could not be read: {exc}"
            ) from exc
        if not isinstance(parsed, Mapping):
            raise GatewayConfigurationError(
                f"Invalid configuration file {path}: expected a mapping at the root."
            )
        logger.debug("Loaded configuration file %s", path)
        result.update({str(key): value for key, value in parsed.items()})
    return result


def _merge_env_sources(target: dict[str, Any], *, app_dir: Path) -> None:
    """Merge .env and process environment variables into the target mapping."""

    allowed = set(DocbridgeSettings.model_fields)

    def merge_values(values: Mapping[str, str | None], *, source: str) -> None:
        for key, value in sorted(values.items()):
            if key not in allowed or value is None or value == "":
                continue
            target[key] = value
            logger.debug("Configuration %s taken from %s", key, source)

    dotenv_path = app_dir / ".env"
    if dotenv_path.exists():
        merge_values(dotenv_values(dotenv_path), source=".env")

    merge_values(dict(os.environ), source="environment")


def _format_validation_errors(entries: Sequence[Mapping[str, Any]]) -> str:
    details: list[str] = []
    for entry in entries:
        path = entry.get("loc") or ()
        location = ".".join(str(part) for part in path if part not in {None, ""})
        message = str(entry.get("msg") or "Invalid value")
        prefix = f"{location}: " if location else ""
        details.append(f"- {prefix}{message}")
    return "Configuration validation errors detected:\n" + "\n".join(details)


def load_settings(app_dir: Path | None = None) -> DocbridgeSettings:
    """Load and validate settings without caching."""

    base_dir = app_dir or Path.cwd()
    combined = _load_discovered_yaml(app_dir=base_dir)
    _merge_env_sources(combined, app_dir=base_dir)
    try:
        return DocbridgeSettings(**combined)
    except ValidationError as exc:
        raise GatewayConfigurationError(
            _format_validation_errors(exc.errors())
        ) from exc


@lru_cache(maxsize=None)
def _cached_settings(app_dir: Path) -> DocbridgeSettings:
    return load_settings(app_dir)


def get_settings(app_dir: Path | None = None) -> DocbridgeSettings:
    """Return the validated settings, loaded once per directory."""

    return _cached_settings((app_dir or Path.cwd()).resolve())


def clear_settings_cache() -> None:
    _cached_settings.cache_clear()
