"""Unified data models for the lead import pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

DedupKey = Tuple[str, str]

LEAD_STATUSES = (
    "new",
    "answering-machine",
    "interested",
    "not-interested",
    "test-trial",
    "call-back",
    "on-board",
    "language-barrier",
    "invalid-number",
)


class ImportStage(str, Enum):
    """Ordered phases an import job passes through."""

    PARSING = "parsing"
    DEDUPING = "deduping"
    INSERTING = "inserting"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStage.DONE, ImportStage.FAILED)

    @property
    def order(self) -> int:
        return _STAGE_ORDER[self]


_STAGE_ORDER = {
    ImportStage.PARSING: 0,
    ImportStage.DEDUPING: 1,
    ImportStage.INSERTING: 2,
    ImportStage.DONE: 3,
    ImportStage.FAILED: 4,
}


# --- Lead Aggregate Models ---

@dataclass
class ContactPerson:
    """A person attached to a lead, reachable by email and/or phone."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    designation: Optional[str] = None
    emails: List[str] = field(default_factory=list)
    phones: List[str] = field(default_factory=list)

    @property
    def has_contact_method(self) -> bool:
        return bool(self.emails or self.phones)

    @property
    def primary_email(self) -> Optional[str]:
        return self.emails[0] if self.emails else None

    def display_name(self) -> str:
        return " ".join(filter(None, [self.first_name, self.last_name])).strip() or "(Unnamed Contact)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "designation": self.designation,
            "emails": list(self.emails),
            "phones": list(self.phones),
        }


@dataclass
class ImportBatch:
    """Provenance recorded on every aggregate created by an import."""

    batch_id: str
    imported_at: datetime
    imported_by: Optional[str] = None
    file_name: Optional[str] = None
    total_count: Optional[int] = None


@dataclass
class LeadAggregate:
    """Persisted company lead owning a list of contact persons."""

    company_name: str
    website: str = ""
    country: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    status: str = "new"
    contact_persons: List[ContactPerson] = field(default_factory=list)
    owner: Optional[str] = None
    group_id: Optional[str] = None
    source: str = "imported"
    import_batch: Optional[ImportBatch] = None
    id: Optional[str] = None


# --- Row Models ---

@dataclass(slots=True)
class NormalizedRecord:
    """A row that passed validation, ready for deduplication."""

    position: int
    company_name: str
    country: str
    website: str = ""
    address: Optional[str] = None
    notes: Optional[str] = None
    status: str = "new"
    contacts: List[ContactPerson] = field(default_factory=list)
    source: Optional[str] = None

    @property
    def primary_email(self) -> Optional[str]:
        for contact in self.contacts:
            if contact.emails:
                return contact.emails[0]
        return None


# --- Error Payloads ---

SchemaIssueKind = Literal["missing_required_column", "missing_contact_column", "invalid_column"]


@dataclass(frozen=True)
class SchemaIssue:
    """Column-level problem detected before any row is processed."""

    kind: SchemaIssueKind
    column: str
    message: str
    category: Literal["schema"] = "schema"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "column": self.column, "message": self.message}


@dataclass(frozen=True)
class RowError:
    """First failing check for a single row."""

    position: int
    field: str
    message: str
    source: Optional[str] = None
    category: Literal["row"] = "row"

    def describe(self) -> str:
        return f"Row {self.position}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {"row": self.position, "field": self.field, "message": self.message}


@dataclass(frozen=True)
class ProcessingIssue:
    """Row-local persistence or normalisation failure."""

    position: int
    message: str
    source: Optional[str] = None
    category: Literal["processing"] = "processing"

    def describe(self) -> str:
        return f"Row {self.position}: {self.message}"


ErrorPayload = Union[SchemaIssue, RowError, ProcessingIssue]
ValidatedRow = Union[NormalizedRecord, RowError]


@dataclass(slots=True)
class ErrorDetail:
    """Exportable description of a row that was not ingested."""

    row_number: int
    error_type: Literal["validation", "duplicate", "processing"]
    error_message: str
    company_name: Optional[str] = None
    website: Optional[str] = None
    contact_email: Optional[str] = None
    country: Optional[str] = None
    source: Optional[str] = None

    def as_row(self) -> Dict[str, Any]:
        return {
            "rowNumber": self.row_number,
            "companyName": self.company_name or "",
            "website": self.website or "",
            "contactEmail": self.contact_email or "",
            "country": self.country or "",
            "errorType": self.error_type,
            "errorMessage": self.error_message,
        }


# --- Submission Models ---

@dataclass(slots=True)
class ImportOptions:
    """Caller supplied switches for a single submission."""

    group_id: Optional[str] = None
    require_email: bool = False
    require_phone: bool = False
    owner: Optional[str] = None


@dataclass
class ImportResult:
    """Final (or partial, on failure) per-bucket counts for an import."""

    total: int = 0
    valid_rows: int = 0
    successful: int = 0
    merged: int = 0
    duplicates_in_file: int = 0
    duplicates_in_db: int = 0
    skipped_rows: int = 0
    errors: List[str] = field(default_factory=list)
    total_errors: int = 0
    error_details: Optional[List[ErrorDetail]] = None

    @property
    def duplicates(self) -> int:
        return self.duplicates_in_file + self.duplicates_in_db

    @property
    def classified(self) -> int:
        return self.successful + self.merged + self.duplicates_in_file + self.duplicates_in_db + self.skipped_rows

    def to_dict(self, *, include_details: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "total": self.total,
            "validRows": self.valid_rows,
            "successful": self.successful,
            "merged": self.merged,
            "duplicates": self.duplicates,
            "duplicatesInFile": self.duplicates_in_file,
            "duplicatesInDb": self.duplicates_in_db,
            "skippedRows": self.skipped_rows,
            "errors": list(self.errors),
            "totalErrors": self.total_errors,
        }
        if include_details and self.error_details is not None:
            payload["errorDetails"] = [detail.as_row() for detail in self.error_details]
        return payload


@dataclass
class SchemaRejected:
    """Submission refused at the schema gate; no job was created."""

    message: str
    issues: List[SchemaIssue]
    detected_columns: List[str]
    expected_columns: Dict[str, List[str]]
    warnings: List[str] = field(default_factory=list)
    kind: Literal["schema_rejected"] = "schema_rejected"
    success: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "message": self.message,
            "validationErrors": [issue.to_dict() for issue in self.issues],
            "detectedColumns": list(self.detected_columns),
            "expectedColumns": {key: list(value) for key, value in self.expected_columns.items()},
            "warnings": list(self.warnings),
        }


@dataclass
class ImportAccepted:
    """Submission processed to completion."""

    message: str
    results: ImportResult
    upload_id: str
    warnings: List[str] = field(default_factory=list)
    kind: Literal["accepted"] = "accepted"
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "message": self.message,
            "results": self.results.to_dict(),
            "uploadId": self.upload_id,
            "warnings": list(self.warnings),
        }


@dataclass
class ImportFailed:
    """Job-fatal processing failure; ``results`` holds the partial counts."""

    message: str
    results: ImportResult
    upload_id: str
    processed: int = 0
    kind: Literal["failed"] = "failed"
    success: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "message": self.message,
            "results": self.results.to_dict(),
            "uploadId": self.upload_id,
            "processed": self.processed,
        }


ImportOutcome = Union[SchemaRejected, ImportAccepted, ImportFailed]


__all__ = [
    "ContactPerson",
    "DedupKey",
    "ErrorDetail",
    "ErrorPayload",
    "ImportAccepted",
    "ImportBatch",
    "ImportFailed",
    "ImportOptions",
    "ImportOutcome",
    "ImportResult",
    "ImportStage",
    "LEAD_STATUSES",
    "LeadAggregate",
    "NormalizedRecord",
    "ProcessingIssue",
    "RowError",
    "SchemaIssue",
    "SchemaRejected",
    "ValidatedRow",
]
