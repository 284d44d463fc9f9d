import pytest

from lead_importer.merge import (
    contact_keys,
    dedup_key,
    merge_contacts,
    new_contacts,
    normalise_company,
    normalise_website,
)
from lead_importer.models import ContactPerson


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://www.Acme.com/", "acme.com"),
        ("http://acme.com", "acme.com"),
        ("  WWW.ACME.COM  ", "acme.com"),
        ("acme.com/about/?ref=ad", "acme.com/about"),
        ("", ""),
    ],
)
def test_normalise_website(raw, expected):
    assert normalise_website(raw) == expected


def test_normalise_company_collapses_whitespace():
    assert normalise_company("  ACME   Corp ") == "acme corp"


def test_dedup_key_matches_spelling_variants():
    assert dedup_key("Acme", "acme.com") == dedup_key("ACME", "https://www.acme.com/")
    assert dedup_key("Acme", "acme.com") != dedup_key("Acme", "")


def test_malformed_website_raises_value_error():
    with pytest.raises(ValueError):
        normalise_website("http://[::1")


def test_contact_keys_normalise_email_and_phone():
    contact = ContactPerson(emails=[" A@Acme.com "], phones=["+1 (555) 123-4567"])

    assert contact_keys(contact) == {"email::a@acme.com", "phone::15551234567"}


def test_new_contacts_skips_known_and_empty_contacts():
    existing = [ContactPerson(first_name="Ann", emails=["a@acme.com"], phones=["15551234567"])]
    incoming = [
        ContactPerson(first_name="Ann again", emails=["A@ACME.COM"]),
        ContactPerson(first_name="Same phone", phones=["+1 555 123 4567"]),
        ContactPerson(first_name="No contact method"),
        ContactPerson(first_name="Bob", emails=["b@acme.com"]),
        ContactPerson(first_name="Bob twice", emails=["b@acme.com"]),
    ]

    fresh = new_contacts(existing, incoming)

    assert [contact.first_name for contact in fresh] == ["Bob"]


def test_merge_contacts_appends_in_place():
    target = [ContactPerson(emails=["a@acme.com"])]

    added = merge_contacts(target, [ContactPerson(emails=["b@acme.com"]), ContactPerson(emails=["a@acme.com"])])

    assert [contact.emails for contact in added] == [["b@acme.com"]]
    assert [contact.emails for contact in target] == [["a@acme.com"], ["b@acme.com"]]
