import pandas as pd
import pytest

from lead_importer.errors import CorruptFile, UnsupportedFormat
from lead_importer.ingestion import Upload, detect_format, extract_rows, extract_uploads


@pytest.fixture()
def sample_dataframe():
    return pd.DataFrame(
        [
            {"companyName": "Acme", "country": "US", "contactEmail": "a@acme.com", "contactPhone": "5551234567"},
            {"companyName": "Globex", "country": "DE", "contactEmail": "", "contactPhone": "+49 30 1234567"},
        ]
    )


def test_extract_rows_from_csv_keeps_header_and_positions(sample_dataframe, tmp_path):
    csv_path = tmp_path / "leads.csv"
    sample_dataframe.to_csv(csv_path, index=False)

    extracted = extract_rows(csv_path)

    assert extracted.name == "leads.csv"
    assert extracted.columns == ["companyName", "country", "contactEmail", "contactPhone"]
    assert extracted.total == 2
    first, second = extracted.rows
    assert first.position == 1
    assert first.get("companyName") == "Acme"
    assert first.get("contactPhone") == "5551234567"
    assert second.position == 2
    assert second.get("contactEmail") == ""
    assert second.source == "leads.csv"


def test_blank_rows_are_dropped_but_positions_preserved(tmp_path):
    csv_path = tmp_path / "gaps.csv"
    csv_path.write_text(
        "companyName,country,contactEmail\nAcme,US,a@acme.com\n,,\nBeta,DE,b@beta.com\n",
        encoding="utf-8",
    )

    extracted = extract_rows(csv_path)

    assert [row.position for row in extracted.rows] == [1, 3]
    assert extracted.rows[1].get("companyName") == "Beta"


def test_extract_rows_from_excel(sample_dataframe, tmp_path):
    excel_path = tmp_path / "leads.xlsx"
    sample_dataframe.to_excel(excel_path, index=False)

    extracted = extract_rows(excel_path)

    assert extracted.columns == ["companyName", "country", "contactEmail", "contactPhone"]
    assert extracted.total == 2
    assert extracted.rows[1].get("companyName") == "Globex"
    assert extracted.rows[1].get("contactPhone") == "+49 30 1234567"


def test_bytes_upload_uses_declared_media_type():
    upload = Upload(
        content=b"companyName,country,contactEmail\nAcme,US,a@acme.com\n",
        name="export",
        media_type="text/csv; charset=utf-8",
    )

    extracted = extract_rows(upload)

    assert extracted.name == "export"
    assert extracted.rows[0].get("contactEmail") == "a@acme.com"


def test_media_type_takes_precedence_over_suffix():
    assert detect_format(Upload(content=b"", name="leads.xlsx", media_type="text/csv")) == "csv"
    assert detect_format(Upload(content=b"", name="leads.csv", media_type="application/vnd.ms-excel")) == "csv"
    assert detect_format(Upload(content=b"", name="leads.XLSX", media_type="application/octet-stream")) == "xlsx"


def test_unsupported_file_extension(tmp_path):
    bad_path = tmp_path / "leads.json"
    bad_path.write_text("{}", encoding="utf-8")

    with pytest.raises(UnsupportedFormat):
        extract_rows(bad_path)


@pytest.mark.parametrize("media_type", [None, "application/vnd.ms-excel"])
def test_legacy_xls_is_rejected(media_type):
    upload = Upload(content=b"\xd0\xcf\x11\xe0", name="leads.xls", media_type=media_type)

    with pytest.raises(UnsupportedFormat, match="xls"):
        extract_rows(upload)


def test_unsupported_media_type():
    with pytest.raises(UnsupportedFormat):
        detect_format(Upload(content=b"{}", name="leads.csv", media_type="application/json"))


def test_empty_csv_is_corrupt():
    with pytest.raises(CorruptFile):
        extract_rows(Upload(content=b"", name="empty.csv"))


def test_unreadable_workbook_is_corrupt():
    with pytest.raises(CorruptFile):
        extract_rows(Upload(content=b"this is not a workbook", name="broken.xlsx"))


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        extract_rows(tmp_path / "missing.csv")


def test_extract_uploads_preserves_submission_order(sample_dataframe, tmp_path):
    first = tmp_path / "b.csv"
    second = tmp_path / "a.csv"
    sample_dataframe.to_csv(first, index=False)
    sample_dataframe.head(1).to_csv(second, index=False)

    extracted = extract_uploads([first, second])

    assert [item.name for item in extracted] == ["b.csv", "a.csv"]
    assert [item.total for item in extracted] == [2, 1]
