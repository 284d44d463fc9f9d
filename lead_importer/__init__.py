"""Top-level package for the lead spreadsheet import pipeline."""

from . import models  # noqa: F401
from .errors import (
    CorruptFile,
    ImportCancelled,
    LeadImportError,
    ProcessingError,
    SchemaValidationError,
    StoreError,
    UnsupportedFormat,
)
from .models import (
    ContactPerson,
    ImportAccepted,
    ImportFailed,
    ImportOptions,
    ImportResult,
    ImportStage,
    LeadAggregate,
    SchemaRejected,
)
from .orchestrator import ImportOrchestrator, ImportTask
from .progress import ProgressRegistry, ProgressSnapshot
from .store import InMemoryLeadStore, SQLAlchemyLeadStore

__all__ = [
    "ContactPerson",
    "CorruptFile",
    "ImportAccepted",
    "ImportCancelled",
    "ImportFailed",
    "ImportOptions",
    "ImportOrchestrator",
    "ImportResult",
    "ImportStage",
    "ImportTask",
    "InMemoryLeadStore",
    "LeadAggregate",
    "LeadImportError",
    "ProcessingError",
    "ProgressRegistry",
    "ProgressSnapshot",
    "SQLAlchemyLeadStore",
    "SchemaRejected",
    "SchemaValidationError",
    "StoreError",
    "UnsupportedFormat",
    "ingestion",
    "orchestrator",
    "store",
]
