"""Configuration helpers for the lead import orchestrator."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

LOGGER = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when configuration files are missing or malformed."""


_SUPPORTED_EXTENSIONS = {".json", ".yaml", ".yml"}


def load_configuration(path: str | Path) -> Dict[str, Any]:
    """Load configuration data from a JSON or YAML file."""

    file_path = Path(path)
    if not file_path.exists():
        raise ConfigurationError(f"Configuration file '{file_path}' was not found")

    if file_path.suffix.lower() not in _SUPPORTED_EXTENSIONS:
        raise ConfigurationError(
            f"Unsupported configuration format '{file_path.suffix}'. Supported extensions: {sorted(_SUPPORTED_EXTENSIONS)}"
        )

    text = file_path.read_text(encoding="utf-8")
    try:
        data = json.loads(text) if file_path.suffix.lower() == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Configuration file '{file_path}' could not be parsed: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file '{file_path}' must contain a mapping at the top level")
    return data


@dataclass
class StoreSettings:
    """Where aggregates are persisted; defaults to an in-memory store."""

    database_url: Optional[str] = None
    class_path: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "StoreSettings":
        data = data or {}
        options = data.get("options") or {}
        if not isinstance(options, Mapping):
            raise ConfigurationError("Store 'options' must be a mapping")
        return cls(
            database_url=data.get("database_url") or None,
            class_path=data.get("class") or None,
            options=dict(options),
        )


@dataclass
class ImportSettings:
    batch_size: int = 500
    concurrent: bool = False
    max_workers: Optional[int] = None
    retention_seconds: float = 3600.0
    max_reported_errors: int = 100
    raise_on_error: bool = False
    store: StoreSettings = field(default_factory=StoreSettings)

    @classmethod
    def from_mapping(cls, config: Optional[Mapping[str, Any]]) -> "ImportSettings":
        """Build settings from a loaded configuration with ``import`` and ``store`` sections."""

        config = config or {}
        section = config.get("import") or {}
        if not isinstance(section, Mapping):
            raise ConfigurationError("The 'import' section must be a mapping")

        unknown = set(section) - {
            "batch_size",
            "concurrent",
            "max_workers",
            "retention_seconds",
            "max_reported_errors",
            "raise_on_error",
        }
        for key in sorted(unknown):
            LOGGER.warning("Ignoring unknown import setting '%s'", key)

        try:
            settings = cls(
                batch_size=int(section.get("batch_size", 500)),
                concurrent=bool(section.get("concurrent", False)),
                max_workers=int(section["max_workers"]) if section.get("max_workers") else None,
                retention_seconds=float(section.get("retention_seconds", 3600.0)),
                max_reported_errors=int(section.get("max_reported_errors", 100)),
                raise_on_error=bool(section.get("raise_on_error", False)),
                store=StoreSettings.from_mapping(config.get("store")),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid import setting: {exc}") from exc

        if settings.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        if settings.max_reported_errors < 0:
            raise ConfigurationError("max_reported_errors must not be negative")
        return settings


__all__ = ["ConfigurationError", "ImportSettings", "StoreSettings", "load_configuration"]
