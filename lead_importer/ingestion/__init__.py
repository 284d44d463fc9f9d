"""Spreadsheet ingestion: raw row extraction plus error report and template export."""
from __future__ import annotations

from .exporters import error_details_to_dataframe, export_error_details, write_template
from .loaders import detect_format, extract_rows, extract_uploads
from .models import ExtractedFile, RawRow, Upload

__all__ = [
    "ExtractedFile",
    "RawRow",
    "Upload",
    "detect_format",
    "error_details_to_dataframe",
    "export_error_details",
    "extract_rows",
    "extract_uploads",
    "write_template",
]
