"""Utilities for extracting raw rows from uploaded spreadsheets."""
from __future__ import annotations

import io
import logging
import zipfile
from pathlib import Path
from typing import Any, Iterable, List, MutableMapping, Optional, Sequence, Union

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import CorruptFile, UnsupportedFormat
from .models import ExtractedFile, RawRow, Upload

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]

CSV_MEDIA_TYPES = {"text/csv", "application/csv", "text/x-csv"}
TSV_MEDIA_TYPES = {"text/tab-separated-values"}
XLSX_MEDIA_TYPES = {"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"}
# Browsers also send this type for CSV files, so the suffix decides.
_GENERIC_MEDIA_TYPES = {"", "application/octet-stream", "application/vnd.ms-excel"}

_SUFFIX_FORMATS = {
    ".csv": "csv",
    ".tsv": "tsv",
    ".xlsx": "xlsx",
    ".xlsm": "xlsx",
}


def detect_format(upload: Upload) -> str:
    """Return ``csv``, ``tsv`` or ``xlsx`` for an upload.

    The declared media type wins; generic or missing media types fall back to
    the file suffix.
    """

    media_type = (upload.media_type or "").split(";", 1)[0].strip().lower()
    if media_type in CSV_MEDIA_TYPES:
        return "csv"
    if media_type in TSV_MEDIA_TYPES:
        return "tsv"
    if media_type in XLSX_MEDIA_TYPES:
        return "xlsx"
    if media_type not in _GENERIC_MEDIA_TYPES:
        raise UnsupportedFormat(f"Unsupported media type '{upload.media_type}'. Upload a CSV or XLSX file")

    if upload.suffix == ".xls":
        raise UnsupportedFormat("Legacy .xls workbooks are not supported. Save the file as XLSX or CSV")
    file_format = _SUFFIX_FORMATS.get(upload.suffix)
    if file_format is None:
        raise UnsupportedFormat(f"Unsupported file extension: {upload.suffix or '(none)'}")
    return file_format


def extract_rows(
    upload: Union[Upload, PathLike],
    *,
    loader_kwargs: Optional[MutableMapping[str, Any]] = None,
) -> ExtractedFile:
    """Read an upload fully and return its header and non-blank rows.

    Row positions are 1-based and count every data line after the header,
    including blank ones, so that they match what the user sees in the file.
    """

    if not isinstance(upload, Upload):
        upload = Upload(content=upload)

    file_format = detect_format(upload)
    dataframe = _read_dataframe(upload, file_format, loader_kwargs=loader_kwargs)

    records = [[_clean_text(value) for value in row] for row in dataframe.itertuples(index=False, name=None)]
    header_index = next((index for index, values in enumerate(records) if any(values)), None)
    if header_index is None:
        raise CorruptFile(f"No header row found in '{upload.display_name}'")

    columns = _trim_trailing_blanks(records[header_index])
    rows: List[RawRow] = []
    for offset, values in enumerate(records[header_index + 1 :], start=1):
        if not any(values):
            continue
        mapped = {column: values[idx] if idx < len(values) else "" for idx, column in enumerate(columns) if column}
        rows.append(RawRow(position=offset, values=mapped, source=upload.display_name))

    LOGGER.debug("Extracted %s rows with %s columns from %s", len(rows), len(columns), upload.display_name)
    return ExtractedFile(name=upload.display_name, columns=columns, rows=rows)


def extract_uploads(uploads: Iterable[Union[Upload, PathLike]]) -> List[ExtractedFile]:
    """Extract every upload in submission order."""

    return [extract_rows(upload) for upload in uploads]


def _read_dataframe(
    upload: Upload,
    file_format: str,
    *,
    loader_kwargs: Optional[MutableMapping[str, Any]] = None,
) -> pd.DataFrame:
    loader_kwargs = dict(loader_kwargs or {})
    source = _open_source(upload)

    try:
        if file_format in {"csv", "tsv"}:
            if file_format == "tsv":
                loader_kwargs.setdefault("sep", "\t")
            loader_kwargs.setdefault("encoding", "utf-8-sig")
            return pd.read_csv(
                source,
                header=None,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=False,
                **loader_kwargs,
            )

        engine = loader_kwargs.pop("engine", None) or "openpyxl"
        return pd.read_excel(source, sheet_name=0, header=None, dtype=str, engine=engine, **loader_kwargs)
    except pd.errors.EmptyDataError as exc:
        raise CorruptFile(f"'{upload.display_name}' is empty") from exc
    except (ValueError, KeyError, zipfile.BadZipFile, InvalidFileException) as exc:
        raise CorruptFile(f"Could not read '{upload.display_name}': {exc}") from exc


def _open_source(upload: Upload):
    if isinstance(upload.content, bytes):
        return io.BytesIO(upload.content)
    path = Path(upload.content)
    if not path.exists():
        raise FileNotFoundError(path)
    return path


def _trim_trailing_blanks(values: Sequence[str]) -> List[str]:
    columns = list(values)
    while columns and not columns[-1]:
        columns.pop()
    return columns


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str) and pd.isna(value):
        return ""
    return str(value).strip()


__all__ = ["detect_format", "extract_rows", "extract_uploads"]
