"""Data models used by the spreadsheet ingestion utilities."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union


@dataclass(slots=True)
class Upload:
    """A submitted file: either a path on disk or raw bytes with a name."""

    content: Union[str, Path, bytes]
    name: Optional[str] = None
    media_type: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if isinstance(self.content, (str, Path)):
            return Path(self.content).name
        return "(upload)"

    @property
    def suffix(self) -> str:
        return Path(self.display_name).suffix.lower()


@dataclass(slots=True)
class RawRow:
    """One data row of a spreadsheet, keyed by header text."""

    position: int
    values: Dict[str, str] = field(default_factory=dict)
    source: Optional[str] = None

    def get(self, column: Optional[str]) -> str:
        if not column:
            return ""
        return self.values.get(column, "")


@dataclass(slots=True)
class ExtractedFile:
    """Rows and header of a fully read upload."""

    name: str
    columns: List[str]
    rows: List[RawRow] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.rows)


__all__ = ["ExtractedFile", "RawRow", "Upload"]
