"""Per-row validation of extracted spreadsheet rows."""
from __future__ import annotations

import re
from typing import List

from .errors import RowValidationError
from .ingestion.models import RawRow
from .models import LEAD_STATUSES, ContactPerson, NormalizedRecord, RowError, ValidatedRow
from .schema import ColumnMapping

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s.]+$")
PHONE_PATTERN = re.compile(r"^\+?\d{7,15}$")
_PHONE_FORMATTING = re.compile(r"[\s\-().]")
_MULTI_VALUE_SPLIT = re.compile(r"[;,]")
_CONTACT_ENTRY_SPLIT = re.compile(r"[;\n]")
_CONTACT_FIELDS = ("first_name", "last_name", "designation", "email", "phone")


def split_values(value: str) -> List[str]:
    return [part.strip() for part in _MULTI_VALUE_SPLIT.split(value or "") if part.strip()]


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value.strip()))


def is_valid_phone(value: str) -> bool:
    return bool(PHONE_PATTERN.match(_PHONE_FORMATTING.sub("", value.strip())))


def parse_additional_contacts(value: str) -> List[ContactPerson]:
    """Parse ``first|last|designation|email|phone`` entries separated by ``;``.

    Trailing fields may be omitted; every entry needs an email or a phone.
    """

    contacts: List[ContactPerson] = []
    for index, entry in enumerate(_CONTACT_ENTRY_SPLIT.split(value or ""), start=1):
        if not entry.strip():
            continue
        parts = [part.strip() for part in entry.split("|")]
        if len(parts) > len(_CONTACT_FIELDS):
            raise RowValidationError(
                "additionalContacts",
                f"Additional contact {index} has too many fields (expected first|last|designation|email|phone)",
            )
        values = dict(zip(_CONTACT_FIELDS, parts))
        email = values.get("email") or ""
        phone = values.get("phone") or ""
        if not email and not phone:
            raise RowValidationError("additionalContacts", f"Additional contact {index} has no email or phone")
        if email and not is_valid_email(email):
            raise RowValidationError("additionalContacts", f"Additional contact {index} has an invalid email: {email}")
        if phone and not is_valid_phone(phone):
            raise RowValidationError("additionalContacts", f"Additional contact {index} has an invalid phone: {phone}")
        contacts.append(
            ContactPerson(
                first_name=values.get("first_name") or None,
                last_name=values.get("last_name") or None,
                designation=values.get("designation") or None,
                emails=[email] if email else [],
                phones=[phone] if phone else [],
            )
        )
    return contacts


class RowValidator:
    """Validate raw rows against the resolved column mapping.

    Checks run in a fixed order and the first failure wins, so every invalid
    row yields exactly one :class:`RowError`:

    1. required text fields (``companyName`` then ``country``)
    2. contact-method presence according to ``require_email``/``require_phone``
    3. formats (email shape, phone digits, status, additional contacts)
    """

    REQUIRED_FIELDS = (("companyName", "Company name"), ("country", "Country"))

    def __init__(self, mapping: ColumnMapping, *, require_email: bool = False, require_phone: bool = False) -> None:
        self._mapping = mapping
        self._require_email = require_email
        self._require_phone = require_phone

    @property
    def mapping(self) -> ColumnMapping:
        return self._mapping

    def validate(self, row: RawRow) -> ValidatedRow:
        try:
            return self._normalise(row)
        except RowValidationError as exc:
            return RowError(position=row.position, field=exc.field, message=exc.message, source=row.source)

    def _value(self, row: RawRow, name: str) -> str:
        return row.get(self._mapping.column_for(name)).strip()

    def _normalise(self, row: RawRow) -> NormalizedRecord:
        for name, label in self.REQUIRED_FIELDS:
            if not self._value(row, name):
                raise RowValidationError(name, f"{label} is required")

        emails = split_values(self._value(row, "contactEmail"))
        phones = split_values(self._value(row, "contactPhone"))
        if self._require_email and not emails:
            raise RowValidationError("contactEmail", "Contact email is required")
        if self._require_phone and not phones:
            raise RowValidationError("contactPhone", "Contact phone is required")

        for email in emails:
            if not is_valid_email(email):
                raise RowValidationError("contactEmail", f"Invalid email format: {email}")
        for phone in phones:
            if not is_valid_phone(phone):
                raise RowValidationError("contactPhone", f"Invalid phone format: {phone}")

        status = self._status(self._value(row, "status"))
        additional = parse_additional_contacts(self._value(row, "additionalContacts"))

        contacts: List[ContactPerson] = []
        primary = ContactPerson(
            first_name=self._value(row, "contactFirstName") or None,
            last_name=self._value(row, "contactLastName") or None,
            designation=self._value(row, "contactDesignation") or None,
            emails=emails,
            phones=phones,
        )
        if primary.has_contact_method or primary.first_name or primary.last_name or primary.designation:
            contacts.append(primary)
        contacts.extend(additional)

        return NormalizedRecord(
            position=row.position,
            company_name=self._value(row, "companyName"),
            country=self._value(row, "country"),
            website=self._value(row, "website"),
            address=self._value(row, "address") or None,
            notes=self._value(row, "notes") or None,
            status=status,
            contacts=contacts,
            source=row.source,
        )

    @staticmethod
    def _status(value: str) -> str:
        if not value:
            return "new"
        token = re.sub(r"[\s_]+", "-", value.strip().lower())
        if token not in LEAD_STATUSES:
            raise RowValidationError("status", f"Unknown status '{value}'")
        return token


__all__ = [
    "RowValidator",
    "is_valid_email",
    "is_valid_phone",
    "parse_additional_contacts",
    "split_values",
]
