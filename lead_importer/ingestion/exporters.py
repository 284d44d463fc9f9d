"""Export utilities for import error reports and the import template."""
from __future__ import annotations

from pathlib import Path
from typing import MutableMapping, Optional, Sequence, Union

import pandas as pd

from ..models import ErrorDetail
from ..schema import DEFAULT_CONTRACT, TEMPLATE_SAMPLE_ROW, TemplateContract

PathLike = Union[str, Path]

ERROR_REPORT_COLUMNS = [
    "rowNumber",
    "companyName",
    "website",
    "contactEmail",
    "country",
    "errorType",
    "errorMessage",
]


def export_error_details(
    details: Sequence[ErrorDetail],
    path: PathLike,
    *,
    include_source: bool = False,
    sheet_name: str = "Errors",
    exporter_kwargs: Optional[MutableMapping[str, object]] = None,
) -> Path:
    """Write the per-row error list to a CSV or Excel file."""

    dataframe = error_details_to_dataframe(details, include_source=include_source)
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    _write_dataframe(dataframe, output_path, sheet_name=sheet_name, exporter_kwargs=exporter_kwargs)
    return output_path


def error_details_to_dataframe(details: Sequence[ErrorDetail], *, include_source: bool = False) -> pd.DataFrame:
    """Convert error details into a :class:`pandas.DataFrame` with stable columns."""

    columns = list(ERROR_REPORT_COLUMNS)
    records = []
    for detail in details:
        row = detail.as_row()
        if include_source:
            row["file"] = detail.source or ""
        records.append(row)
    if include_source:
        columns.append("file")
    return pd.DataFrame(records, columns=columns)


def write_template(
    path: PathLike,
    *,
    contract: TemplateContract = DEFAULT_CONTRACT,
    include_sample: bool = True,
) -> Path:
    """Write an empty import template (header plus an optional sample row)."""

    header = contract.template_columns()
    rows = [[TEMPLATE_SAMPLE_ROW.get(column, "") for column in header]] if include_sample else []
    dataframe = pd.DataFrame(rows, columns=header)
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    _write_dataframe(dataframe, output_path, sheet_name="Leads", exporter_kwargs=None)
    return output_path


def _write_dataframe(
    dataframe: pd.DataFrame,
    path: Path,
    *,
    sheet_name: str,
    exporter_kwargs: Optional[MutableMapping[str, object]],
) -> None:
    exporter_kwargs = dict(exporter_kwargs or {})
    suffix = path.suffix.lower()

    if suffix in {".csv", ".tsv"}:
        if suffix == ".tsv":
            exporter_kwargs.setdefault("sep", "\t")
        dataframe.to_csv(path, index=False, **exporter_kwargs)
        return

    if suffix in {".xlsx", ".xlsm"}:
        engine = exporter_kwargs.pop("engine", None) or "openpyxl"
        dataframe.to_excel(path, index=False, sheet_name=sheet_name, engine=engine, **exporter_kwargs)
        return

    raise ValueError(f"Unsupported export file extension: {suffix}")


__all__ = ["ERROR_REPORT_COLUMNS", "error_details_to_dataframe", "export_error_details", "write_template"]
