from __future__ import annotations

import logging
import threading
import zipfile
from pathlib import Path
from typing import Any, Sequence

from openpyxl import load_workbook
from openpyxl.comments import Comment
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from merch_reports.columns import parse_a1_range
from merch_reports.errors import StoreError
from merch_reports.store import FormatOp, SheetInfo

logger = logging.getLogger(__name__)

# Excel's hard column limit (XFD); workbooks never need columns appended.
MAX_COLUMNS = 16384
POINTS_PER_PIXEL = 0.75
COMMENT_AUTHOR = "merch_reports"


def _sheet_by_exact(workbook: Workbook, wanted: str) -> Worksheet:
    for name in workbook.sheetnames:
        if name == wanted:
            return workbook[name]
    raise StoreError(f'Sheet "{wanted}" not found')


def _trim(grid: list[list[Any]]) -> list[list[Any]]:
    rows = []
    for row in grid:
        cells = ["" if value is None else value for value in row]
        while cells and cells[-1] == "":
            cells.pop()
        rows.append(cells)
    while rows and not rows[-1]:
        rows.pop()
    return rows


class WorkbookStore:
    """Keeps each document as ``<document_id>.xlsx`` inside one directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self._lock = threading.RLock()

    def _path(self, document_id: str) -> Path:
        return self.directory / f"{document_id}.xlsx"

    def _open(self, document_id: str) -> Workbook:
        path = self._path(document_id)
        if not path.exists():
            raise StoreError(f"Workbook not found for document {document_id}")
        try:
            return load_workbook(path)
        except (OSError, InvalidFileException, zipfile.BadZipFile) as exc:
            raise StoreError(f"Could not read workbook {path.name}: {exc}") from exc

    def _save(self, document_id: str, workbook: Workbook) -> None:
        try:
            workbook.save(self._path(document_id))
        except OSError as exc:
            raise StoreError(f"Could not save workbook for document {document_id}: {exc}") from exc

    def _sheet_info(self, workbook: Workbook, sheet: Worksheet) -> SheetInfo:
        return SheetInfo(title=sheet.title, sheet_id=workbook.worksheets.index(sheet), column_count=MAX_COLUMNS)

    def _sheet_by_id(self, workbook: Workbook, sheet_id: int) -> Worksheet:
        if sheet_id < 0 or sheet_id >= len(workbook.worksheets):
            raise StoreError(f"Sheet id {sheet_id} not found")
        return workbook.worksheets[sheet_id]

    def get_values(self, document_id: str, a1_range: str) -> list[list[Any]]:
        parsed = parse_a1_range(a1_range)
        with self._lock:
            sheet = _sheet_by_exact(self._open(document_id), parsed.sheet)
            min_row = parsed.start_row or 1
            max_row = parsed.end_row or sheet.max_row
            min_col = parsed.start_col or 1
            max_col = parsed.end_col or sheet.max_column
            grid = [
                list(row)
                for row in sheet.iter_rows(
                    min_row=min_row, max_row=max_row, min_col=min_col, max_col=max_col, values_only=True
                )
            ]
        return _trim(grid)

    def update_values(self, document_id: str, a1_range: str, values: Sequence[Sequence[Any]]) -> None:
        parsed = parse_a1_range(a1_range)
        with self._lock:
            workbook = self._open(document_id)
            sheet = _sheet_by_exact(workbook, parsed.sheet)
            first_row = parsed.start_row or 1
            first_col = parsed.start_col or 1
            for row_offset, row in enumerate(values):
                for col_offset, value in enumerate(row):
                    sheet.cell(row=first_row + row_offset, column=first_col + col_offset).value = (
                        None if value == "" else value
                    )
            self._save(document_id, workbook)

    def get_sheets(self, document_id: str) -> list[SheetInfo]:
        with self._lock:
            workbook = self._open(document_id)
            return [self._sheet_info(workbook, sheet) for sheet in workbook.worksheets]

    def duplicate_sheet(self, document_id: str, source_sheet_id: int, new_title: str) -> SheetInfo:
        with self._lock:
            workbook = self._open(document_id)
            source = self._sheet_by_id(workbook, source_sheet_id)
            copy = workbook.copy_worksheet(source)
            try:
                copy.title = new_title
            except ValueError as exc:
                raise StoreError(f'Cannot name a sheet "{new_title}": {exc}') from exc
            self._save(document_id, workbook)
            logger.debug("Copied %r to %r in %s", source.title, new_title, self._path(document_id))
            return self._sheet_info(workbook, copy)

    def append_columns(self, document_id: str, sheet_id: int, count: int) -> None:
        logger.debug("Workbook sheets grow on write; ignoring request for %d columns", count)

    def batch_format(self, document_id: str, ops: Sequence[FormatOp]) -> None:
        with self._lock:
            workbook = self._open(document_id)
            for op in ops:
                sheet = self._sheet_by_id(workbook, op.sheet_id)
                for row in range(op.start_row, op.end_row + 1):
                    if op.row_height:
                        sheet.row_dimensions[row].height = op.row_height * POINTS_PER_PIXEL
                    for col in range(op.start_col, op.end_col + 1):
                        cell = sheet.cell(row=row, column=col)
                        if op.bold:
                            cell.font = Font(bold=True)
                        if op.background:
                            color = op.background.lstrip("#").upper()
                            cell.fill = PatternFill(fill_type="solid", start_color=color, end_color=color)
                        if op.wrap:
                            cell.alignment = Alignment(wrap_text=True, vertical="top")
                        if op.note:
                            cell.comment = Comment(op.note, COMMENT_AUTHOR)
            self._save(document_id, workbook)
