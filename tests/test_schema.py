import pytest

from lead_importer.errors import SchemaValidationError
from lead_importer.schema import (
    DEFAULT_CONTRACT,
    ensure_schema,
    normalise_header,
    resolve_columns,
    unknown_columns,
    validate_columns,
)


def _kinds(issues):
    return [issue.kind for issue in issues]


def test_normalise_header_ignores_case_spaces_and_separators():
    assert normalise_header(" Company_Name ") == "companyname"
    assert normalise_header("E-mail") == "email"
    assert normalise_header("Contact.Phone") == "contactphone"


def test_aliases_resolve_to_template_fields():
    columns = ["Company Name", "Country", "E-mail", "Phone Number", "URL"]

    assert validate_columns(columns) == []
    mapping = resolve_columns(columns)
    assert mapping.column_for("companyName") == "Company Name"
    assert mapping.column_for("contactEmail") == "E-mail"
    assert mapping.column_for("contactPhone") == "Phone Number"
    assert mapping.column_for("website") == "URL"
    assert "notes" not in mapping


def test_missing_required_columns_are_reported_in_order():
    issues = validate_columns(["contactEmail"])

    assert _kinds(issues) == ["missing_required_column", "missing_required_column"]
    assert [issue.column for issue in issues] == ["companyName", "country"]


def test_one_contact_column_is_enough():
    assert validate_columns(["companyName", "country", "contactPhone"]) == []


def test_missing_contact_columns():
    issues = validate_columns(["companyName", "country", "website"])

    assert _kinds(issues) == ["missing_contact_column"]
    assert issues[0].to_dict()["type"] == "missing_contact_column"


def test_blank_and_duplicate_headers_are_invalid():
    issues = validate_columns(["companyName", "", "country", "email", "Email"])

    assert _kinds(issues) == ["invalid_column", "invalid_column"]
    assert issues[0].column == "#2"
    assert issues[1].column == "Email"


def test_two_headers_for_the_same_field_are_invalid():
    issues = validate_columns(["company", "Company Name", "country", "phone"])

    assert _kinds(issues) == ["invalid_column"]
    assert "both map to 'companyName'" in issues[0].message


def test_unknown_columns_are_not_schema_issues():
    columns = ["companyName", "country", "email", "Favourite Colour"]

    assert validate_columns(columns) == []
    assert unknown_columns(columns) == ["Favourite Colour"]


def test_ensure_schema_raises_with_all_issues():
    with pytest.raises(SchemaValidationError) as excinfo:
        ensure_schema(["website"])

    assert _kinds(excinfo.value.issues) == [
        "missing_required_column",
        "missing_required_column",
        "missing_contact_column",
    ]
    assert excinfo.value.detected_columns == ["website"]


def test_expected_columns_describe_the_contract():
    expected = DEFAULT_CONTRACT.expected_columns()

    assert expected["required"] == ["companyName", "country"]
    assert expected["contactRequired"] == ["contactEmail", "contactPhone"]
    assert "additionalContacts" in expected["optional"]
    assert DEFAULT_CONTRACT.template_columns()[0] == "companyName"
