from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence


@dataclass(frozen=True)
class SheetInfo:
    title: str
    sheet_id: int
    column_count: int


@dataclass(frozen=True)
class FormatOp:
    """Cosmetic change over a 1-based inclusive cell rectangle of one tab."""

    sheet_id: int
    start_row: int
    end_row: int
    start_col: int
    end_col: int
    bold: bool = False
    background: str | None = None
    wrap: bool = False
    row_height: int | None = None
    note: str | None = None


class TabularStore(Protocol):
    """Capabilities the projector needs from a spreadsheet backend.

    Ranges are A1 expressions with a quoted tab name (see ``merch_reports.columns``).
    ``get_values`` follows the Sheets values API: trailing blank rows and trailing
    blank cells within a row are omitted. Implementations raise ``StoreError``.
    """

    def get_values(self, document_id: str, a1_range: str) -> list[list[Any]]: ...

    def update_values(self, document_id: str, a1_range: str, values: Sequence[Sequence[Any]]) -> None: ...

    def get_sheets(self, document_id: str) -> list[SheetInfo]: ...

    def duplicate_sheet(self, document_id: str, source_sheet_id: int, new_title: str) -> SheetInfo: ...

    def append_columns(self, document_id: str, sheet_id: int, count: int) -> None: ...

    def batch_format(self, document_id: str, ops: Sequence[FormatOp]) -> None: ...


def hex_to_rgb(color: str) -> tuple[int, int, int]:
    cleaned = color.strip().lstrip("#")
    if len(cleaned) != 6:
        raise ValueError(f"Expected a #RRGGBB colour, got '{color}'")
    return int(cleaned[0:2], 16), int(cleaned[2:4], 16), int(cleaned[4:6], 16)
