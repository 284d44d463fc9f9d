"""Exception hierarchy shared by the import pipeline."""
from __future__ import annotations

from typing import List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .models import SchemaIssue


class LeadImportError(RuntimeError):
    """Base class for every error raised by the import pipeline."""


class UnsupportedFormat(LeadImportError, ValueError):
    """Raised when an upload is neither a CSV nor a supported spreadsheet."""


class CorruptFile(LeadImportError, ValueError):
    """Raised when no header row can be recovered from an upload."""


class SchemaValidationError(LeadImportError):
    """Raised when the uploaded columns do not satisfy the template contract."""

    def __init__(self, issues: Sequence["SchemaIssue"], detected_columns: Sequence[str] = ()) -> None:
        self.issues: List["SchemaIssue"] = list(issues)
        self.detected_columns: List[str] = list(detected_columns)
        summary = "; ".join(issue.message for issue in self.issues) or "schema mismatch"
        super().__init__(f"File does not match the import template: {summary}")


class RowValidationError(LeadImportError, ValueError):
    """Raised by a row check; converted into a :class:`RowError` by the validator."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(message)


class ProcessingError(LeadImportError):
    """Persistence or transient failure.

    ``job_fatal`` distinguishes failures that abort the whole job from failures
    confined to a single row.
    """

    def __init__(self, message: str, *, job_fatal: bool = True, row: Optional[int] = None) -> None:
        self.job_fatal = job_fatal
        self.row = row
        super().__init__(message)


class StoreError(ProcessingError):
    """Raised by lead stores when a read or write cannot be completed."""


class ImportCancelled(ProcessingError):
    """Raised when a cooperative cancellation request is observed."""

    def __init__(self, message: str = "cancelled") -> None:
        super().__init__(message, job_fatal=True)


class UnknownJobError(LeadImportError, KeyError):
    """Raised when the progress registry has no record for a job identifier."""


class InvalidStageTransition(LeadImportError, ValueError):
    """Raised when a job is moved backwards or out of a terminal stage."""


__all__ = [
    "CorruptFile",
    "ImportCancelled",
    "InvalidStageTransition",
    "LeadImportError",
    "ProcessingError",
    "RowValidationError",
    "SchemaValidationError",
    "StoreError",
    "UnknownJobError",
    "UnsupportedFormat",
]
