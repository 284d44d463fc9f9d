"""Factory helpers for constructing stores and orchestrators from configuration."""
from __future__ import annotations

import importlib
from typing import Any, Dict, Optional

from .config import ConfigurationError, ImportSettings, StoreSettings
from .orchestrator import ImportOrchestrator
from .progress import ProgressRegistry
from .store import InMemoryLeadStore, LeadStore, SQLAlchemyLeadStore


def _load_class(path: str):
    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise ConfigurationError(f"Invalid store class path '{path}'")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ConfigurationError(f"Module '{module_name}' does not define '{attr}'") from exc


def build_store(settings: StoreSettings) -> LeadStore:
    """Instantiate the lead store described by ``settings``."""

    if settings.class_path:
        store_cls = _load_class(settings.class_path)
        return store_cls(**settings.options)
    if settings.database_url:
        return SQLAlchemyLeadStore.from_url(settings.database_url, **settings.options)
    return InMemoryLeadStore()


def build_orchestrator(
    config: Optional[Dict[str, Any]] = None,
    *,
    store: Optional[LeadStore] = None,
    registry: Optional[ProgressRegistry] = None,
    **overrides: Any,
) -> ImportOrchestrator:
    """Create an :class:`ImportOrchestrator` from a loaded configuration.

    Keyword ``overrides`` replace individual import settings, which is how the
    CLI applies its flags on top of the configuration file.
    """

    settings = ImportSettings.from_mapping(config)
    for name, value in overrides.items():
        if not hasattr(settings, name):
            raise ConfigurationError(f"Unknown import setting '{name}'")
        if value is not None:
            setattr(settings, name, value)

    return ImportOrchestrator(
        store if store is not None else build_store(settings.store),
        registry=registry or ProgressRegistry(retention_seconds=settings.retention_seconds),
        batch_size=settings.batch_size,
        concurrent=settings.concurrent,
        max_workers=settings.max_workers,
        raise_on_error=settings.raise_on_error,
        max_reported_errors=settings.max_reported_errors,
    )


__all__ = ["build_orchestrator", "build_store"]
