"""Helpers for identifying companies and merging contact persons into lead aggregates."""
from __future__ import annotations

import re
from typing import Iterable, List, Set
from urllib.parse import urlsplit

from .models import ContactPerson, DedupKey

_SCHEME = re.compile(r"^[a-z][a-z0-9+.\-]*://")


def normalise_company(value: str) -> str:
    return " ".join((value or "").split()).lower()


def normalise_website(value: str) -> str:
    """Lowercase a website and strip protocol, ``www.``, query and trailing ``/``.

    Raises ``ValueError`` for URLs that cannot be split (e.g. a broken IPv6 host).
    """

    token = (value or "").strip().lower()
    if not token:
        return ""
    token = _SCHEME.sub("", token)
    parts = urlsplit(f"//{token}")
    host = parts.netloc
    if host.startswith("www."):
        host = host[4:]
    return f"{host}{parts.path.rstrip('/')}"


def dedup_key(company_name: str, website: str) -> DedupKey:
    """Normalised ``(company, website)`` pair identifying one real-world company."""

    return normalise_company(company_name), normalise_website(website)


def normalise_email(value: str) -> str:
    return value.strip().lower()


def normalise_phone(value: str) -> str:
    digits = [c for c in value if c.isdigit()]
    return "".join(digits)


def contact_keys(contact: ContactPerson) -> Set[str]:
    """Return the normalised ``email::``/``phone::`` identifiers of a contact."""

    keys: Set[str] = set()
    for email in contact.emails:
        token = normalise_email(email)
        if token:
            keys.add(f"email::{token}")
    for phone in contact.phones:
        token = normalise_phone(phone)
        if token:
            keys.add(f"phone::{token}")
    return keys


def known_contact_keys(contacts: Iterable[ContactPerson]) -> Set[str]:
    keys: Set[str] = set()
    for contact in contacts:
        keys |= contact_keys(contact)
    return keys


def new_contacts(existing: Iterable[ContactPerson], incoming: Iterable[ContactPerson]) -> List[ContactPerson]:
    """Return the incoming contacts that share no email or phone with ``existing``.

    A contact without any email or phone never counts as new information.
    Incoming contacts are also checked against each other so the same person
    listed twice is only returned once.
    """

    known = known_contact_keys(existing)
    fresh: List[ContactPerson] = []
    for contact in incoming:
        keys = contact_keys(contact)
        if not keys or keys & known:
            continue
        fresh.append(contact)
        known |= keys
    return fresh


def merge_contacts(target: List[ContactPerson], incoming: Iterable[ContactPerson]) -> List[ContactPerson]:
    """Append new incoming contacts to ``target`` in place and return the ones added."""

    added = new_contacts(target, incoming)
    target.extend(added)
    return added


__all__ = [
    "contact_keys",
    "dedup_key",
    "known_contact_keys",
    "merge_contacts",
    "new_contacts",
    "normalise_company",
    "normalise_email",
    "normalise_phone",
    "normalise_website",
]
