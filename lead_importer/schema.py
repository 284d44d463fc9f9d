"""Template contract and the column-level schema gate."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import SchemaValidationError
from .models import SchemaIssue

TEMPLATE_VERSION = "1"

_HEADER_STRIP = re.compile(r"[\s_\-.]+")


def normalise_header(value: str) -> str:
    """Collapse a header to lowercase text without spaces, dashes or underscores."""

    return _HEADER_STRIP.sub("", str(value or "")).lower()


@dataclass(frozen=True)
class ColumnSpec:
    """A template column and the alternative header spellings accepted for it."""

    name: str
    aliases: Tuple[str, ...] = ()

    def matches(self, header: str) -> bool:
        token = normalise_header(header)
        return bool(token) and token in {normalise_header(name) for name in (self.name, *self.aliases)}


@dataclass(frozen=True)
class TemplateContract:
    """Versioned header set consumed by the schema gate.

    Changing ``required`` or ``contact_required`` is a breaking change for
    every caller that produces import files.
    """

    required: Tuple[ColumnSpec, ...]
    contact_required: Tuple[ColumnSpec, ...]
    optional: Tuple[ColumnSpec, ...] = ()
    version: str = TEMPLATE_VERSION

    @property
    def all_columns(self) -> Tuple[ColumnSpec, ...]:
        return self.required + self.contact_required + self.optional

    def expected_columns(self) -> Dict[str, List[str]]:
        return {
            "required": [spec.name for spec in self.required],
            "contactRequired": [spec.name for spec in self.contact_required],
            "optional": [spec.name for spec in self.optional],
        }

    def template_columns(self) -> List[str]:
        ordered = ["companyName", "website", "country", "address", "notes", "status"]
        names = [spec.name for spec in self.all_columns]
        head = [name for name in ordered if name in names]
        return head + [name for name in names if name not in head]


DEFAULT_CONTRACT = TemplateContract(
    required=(
        ColumnSpec("companyName", ("company", "company name", "company_name", "organization", "organisation")),
        ColumnSpec("country", ("country name",)),
    ),
    contact_required=(
        ColumnSpec("contactEmail", ("email", "emails", "contact_email", "email address", "e-mail")),
        ColumnSpec("contactPhone", ("phone", "phones", "contact_phone", "phone number", "mobile", "telephone")),
    ),
    optional=(
        ColumnSpec("website", ("url", "company website", "web", "domain")),
        ColumnSpec("address",),
        ColumnSpec("notes", ("note", "comments")),
        ColumnSpec("status", ("lead status",)),
        ColumnSpec("contactFirstName", ("first name", "firstname", "first_name")),
        ColumnSpec("contactLastName", ("last name", "lastname", "last_name")),
        ColumnSpec("contactDesignation", ("designation", "title", "job title", "position")),
        ColumnSpec("additionalContacts", ("additional contacts", "other contacts")),
    ),
)

TEMPLATE_SAMPLE_ROW = {
    "companyName": "Acme Corp",
    "website": "https://acme.com",
    "country": "United States",
    "address": "123 Main St, NY",
    "notes": "Potential client",
    "status": "new",
    "contactFirstName": "John",
    "contactLastName": "Doe",
    "contactDesignation": "CEO",
    "contactEmail": "john@acme.com",
    "contactPhone": "+1234567890",
    "additionalContacts": "",
}


@dataclass
class ColumnMapping:
    """Template field name mapped to the header that supplies it."""

    fields: Dict[str, str] = field(default_factory=dict)

    def column_for(self, name: str) -> Optional[str]:
        return self.fields.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.fields


def resolve_columns(columns: Iterable[str], contract: TemplateContract = DEFAULT_CONTRACT) -> ColumnMapping:
    """Map every template field to the first header matching it."""

    mapping = ColumnMapping()
    for column in columns:
        for spec in contract.all_columns:
            if spec.name not in mapping.fields and spec.matches(column):
                mapping.fields[spec.name] = column
                break
    return mapping


def unknown_columns(columns: Iterable[str], contract: TemplateContract = DEFAULT_CONTRACT) -> List[str]:
    return [
        column
        for column in columns
        if column and not any(spec.matches(column) for spec in contract.all_columns)
    ]


def validate_columns(columns: Sequence[str], contract: TemplateContract = DEFAULT_CONTRACT) -> List[SchemaIssue]:
    """Return every schema problem with the observed header; empty means valid."""

    issues: List[SchemaIssue] = []
    seen_headers: Dict[str, str] = {}
    claimed: Dict[str, str] = {}

    for index, column in enumerate(columns, start=1):
        if not column:
            issues.append(SchemaIssue("invalid_column", f"#{index}", f"Column {index} has an empty header"))
            continue
        token = normalise_header(column)
        if token in seen_headers:
            issues.append(
                SchemaIssue("invalid_column", column, f"Column '{column}' appears more than once")
            )
            continue
        seen_headers[token] = column
        spec = next((spec for spec in contract.all_columns if spec.matches(column)), None)
        if spec is None:
            continue
        if spec.name in claimed:
            issues.append(
                SchemaIssue(
                    "invalid_column",
                    column,
                    f"Columns '{claimed[spec.name]}' and '{column}' both map to '{spec.name}'",
                )
            )
            continue
        claimed[spec.name] = column

    for spec in contract.required:
        if spec.name not in claimed:
            issues.append(
                SchemaIssue("missing_required_column", spec.name, f"Missing required column: {spec.name}")
            )

    if contract.contact_required and not any(spec.name in claimed for spec in contract.contact_required):
        names = " or ".join(spec.name for spec in contract.contact_required)
        issues.append(
            SchemaIssue("missing_contact_column", names, f"At least one contact column is required: {names}")
        )

    return issues


def ensure_schema(columns: Sequence[str], contract: TemplateContract = DEFAULT_CONTRACT) -> ColumnMapping:
    """Raise :class:`SchemaValidationError` unless the header satisfies the contract."""

    issues = validate_columns(columns, contract)
    if issues:
        raise SchemaValidationError(issues, detected_columns=columns)
    return resolve_columns(columns, contract)


__all__ = [
    "ColumnMapping",
    "ColumnSpec",
    "DEFAULT_CONTRACT",
    "TEMPLATE_SAMPLE_ROW",
    "TEMPLATE_VERSION",
    "TemplateContract",
    "ensure_schema",
    "normalise_header",
    "resolve_columns",
    "unknown_columns",
    "validate_columns",
]
