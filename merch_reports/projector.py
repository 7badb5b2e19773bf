from __future__ import annotations

import logging
import threading
import weakref
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from merch_reports.columns import cell_ref, column_letter, column_range, row_range
from merch_reports.config import ProjectorConfig
from merch_reports.errors import (
    NoItemsMatchedError,
    ReportValidationError,
    StoreError,
    TemplateTabNotFoundError,
    UnknownMerchandiserError,
)
from merch_reports.models import Report, ReportItem, normalize_name
from merch_reports.store import FormatOp, SheetInfo, TabularStore

logger = logging.getLogger(__name__)

EXPIRY_HEADER = "Expiry"
NOTES_HEADER = "Notes"
DATE_HEADER_COLOR = "#D9EAD3"
FIELD_HEADER_COLOR = "#EFEFEF"

_locks_guard = threading.Lock()
_tab_locks: weakref.WeakValueDictionary[tuple[str, str], threading.Lock] = weakref.WeakValueDictionary()


def tab_lock(document_id: str, tab: str) -> threading.Lock:
    """One lock per (document, tab) so column allocation cannot race in-process.

    Locks are dropped once no caller holds them.
    """
    key = (document_id, tab)
    with _locks_guard:
        lock = _tab_locks.get(key)
        if lock is None:
            lock = _tab_locks[key] = threading.Lock()
        return lock


def _first_cell(row: Sequence[Any] | None) -> str:
    if not row or row[0] is None:
        return ""
    return str(row[0])


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


@dataclass(frozen=True)
class RowIndex:
    rows: dict[str, int]
    last_row: int
    seeded: bool = False


def build_row_index(column_a: Sequence[Sequence[Any]]) -> dict[str, int]:
    rows: dict[str, int] = {}
    for row_number, row in enumerate(column_a, start=1):
        name = normalize_name(_first_cell(row))
        if name:
            # Later duplicates overwrite earlier ones.
            rows[name] = row_number
    return rows


@dataclass(frozen=True)
class MatchedItem:
    item: ReportItem
    row: int


def match_items(
    row_index: RowIndex, items: Sequence[ReportItem], data_start_row: int
) -> tuple[list[MatchedItem], list[ReportItem]]:
    matched: list[MatchedItem] = []
    unmatched: list[ReportItem] = []
    for item in items:
        row = row_index.rows.get(item.normalized)
        if row is None or row < data_start_row:
            unmatched.append(item)
        else:
            matched.append(MatchedItem(item=item, row=row))
    if not matched:
        raise NoItemsMatchedError(len(items))
    return matched, unmatched


def next_column_after(header_row: Sequence[Any]) -> int:
    last_col = 0
    for index, value in enumerate(header_row, start=1):
        if not _is_blank(value):
            last_col = index
    return last_col + 1


@dataclass(frozen=True)
class WriteBlock:
    qty_col: int
    expiry_col: int
    notes_col: int | None = None

    @classmethod
    def at(cls, first_col: int, per_item_notes: bool) -> "WriteBlock":
        return cls(
            qty_col=first_col,
            expiry_col=first_col + 1,
            notes_col=first_col + 2 if per_item_notes else None,
        )

    @property
    def last_col(self) -> int:
        return self.notes_col or self.expiry_col

    @property
    def letters(self) -> list[str]:
        return [column_letter(col) for col in (self.qty_col, self.expiry_col, self.notes_col) if col is not None]


def column_values(
    matched: Sequence[MatchedItem], first_row: int, last_row: int, value_of: Callable[[ReportItem], Any]
) -> list[list[Any]]:
    values: list[list[Any]] = [[""] for _ in range(last_row - first_row + 1)]
    for entry in matched:
        values[entry.row - first_row] = [value_of(entry.item)]
    return values


def build_format_ops(
    sheet: SheetInfo,
    block: WriteBlock,
    report: Report,
    config: ProjectorConfig,
    last_row: int,
) -> list[FormatOp]:
    ops = [
        FormatOp(
            sheet_id=sheet.sheet_id,
            start_row=1,
            end_row=1,
            start_col=block.qty_col,
            end_col=block.qty_col,
            bold=True,
            background=DATE_HEADER_COLOR,
            note=f"Submitted by {report.merchandiser} for {report.outlet}",
        ),
        FormatOp(
            sheet_id=sheet.sheet_id,
            start_row=1,
            end_row=1,
            start_col=block.expiry_col,
            end_col=block.last_col,
            bold=True,
            background=FIELD_HEADER_COLOR,
        ),
    ]
    if block.notes_col is None:
        ops.append(
            FormatOp(
                sheet_id=sheet.sheet_id,
                start_row=2,
                end_row=2,
                start_col=block.qty_col,
                end_col=block.qty_col,
                wrap=True,
                row_height=config.notes_row_height,
            )
        )
    else:
        ops.append(
            FormatOp(
                sheet_id=sheet.sheet_id,
                start_row=config.data_start_row,
                end_row=last_row,
                start_col=block.notes_col,
                end_col=block.notes_col,
                wrap=True,
            )
        )
    return ops


@dataclass(frozen=True)
class ProjectionResult:
    document_id: str
    sheet: str
    created_sheet: bool
    columns: list[str]
    matched: int
    unmatched: list[str]
    rows_written: int
    formatted: bool


class SheetProjector:
    """Writes one report into its merchandiser's document as a new column block."""

    def __init__(self, store: TabularStore, config: ProjectorConfig):
        self.store = store
        self.config = config

    def resolve_document(self, merchandiser: str) -> str:
        document_id = self.config.spreadsheet_ids.get(merchandiser)
        if not document_id:
            raise UnknownMerchandiserError(merchandiser)
        return document_id

    def ensure_sheet(
        self, document_id: str, outlet: str, sheets: Sequence[SheetInfo] | None = None
    ) -> tuple[SheetInfo, bool]:
        tab = outlet.strip()
        if sheets is None:
            sheets = self.store.get_sheets(document_id)
        for sheet in sheets:
            if sheet.title == tab:
                return sheet, False

        template = next((s for s in sheets if s.title == self.config.template_tab), None)
        if template is None:
            raise TemplateTabNotFoundError(self.config.template_tab)

        created = self.store.duplicate_sheet(document_id, template.sheet_id, tab)
        logger.info("Created new tab %r from template %r in %s", tab, self.config.template_tab, document_id)
        return created, True

    def load_row_index(self, document_id: str, tab: str) -> RowIndex:
        column_a = self.store.get_values(document_id, column_range(tab, 1))
        seeded = False

        if all(_is_blank(_first_cell(row)) for row in column_a):
            template_rows = self.store.get_values(document_id, column_range(self.config.template_tab, 1))
            if template_rows:
                self.store.update_values(
                    document_id,
                    column_range(tab, 1, 1, len(template_rows)),
                    [[_first_cell(row)] for row in template_rows],
                )
                column_a = template_rows
                seeded = True
                logger.info("Seeded item list of %r from template (%d rows)", tab, len(template_rows))
            else:
                logger.warning("Template tab %r has no items; %r stays unindexed", self.config.template_tab, tab)

        return RowIndex(rows=build_row_index(column_a), last_row=len(column_a), seeded=seeded)

    def preview_row_index(self, document_id: str, tab: str | None) -> RowIndex:
        """Read-only index for a tab, falling back to the template when it is missing or blank."""
        column_a = self.store.get_values(document_id, column_range(tab, 1)) if tab is not None else []
        if all(_is_blank(_first_cell(row)) for row in column_a):
            column_a = self.store.get_values(document_id, column_range(self.config.template_tab, 1))
        return RowIndex(rows=build_row_index(column_a), last_row=len(column_a))

    def next_empty_column(self, document_id: str, tab: str) -> int:
        header = self.store.get_values(document_id, row_range(tab, 1))
        return next_column_after(header[0] if header else [])

    def ensure_column_capacity(self, document_id: str, sheet: SheetInfo, last_col: int) -> int:
        shortfall = last_col - sheet.column_count
        if shortfall <= 0:
            return 0
        self.store.append_columns(document_id, sheet.sheet_id, shortfall)
        logger.info("Appended %d columns to %r", shortfall, sheet.title)
        return shortfall

    def resolve_notes(self, document_id: str, tab: str, block: WriteBlock, report: Report) -> str:
        if report.notes:
            return report.notes
        existing = self.store.get_values(document_id, cell_ref(tab, block.qty_col, 2))
        existing_text = _first_cell(existing[0]).strip() if existing else ""
        return existing_text or self.config.notes_placeholder

    def write_record(
        self,
        document_id: str,
        tab: str,
        block: WriteBlock,
        report: Report,
        matched: Sequence[MatchedItem],
        row_index: RowIndex,
    ) -> int:
        first_row = self.config.data_start_row
        last_row = row_index.last_row

        self.store.update_values(document_id, cell_ref(tab, block.qty_col, 1), [[report.date]])

        if block.notes_col is None:
            notes = self.resolve_notes(document_id, tab, block, report)
            self.store.update_values(document_id, cell_ref(tab, block.qty_col, 2), [[notes]])

        self.store.update_values(
            document_id,
            column_range(tab, block.qty_col, first_row, last_row),
            column_values(matched, first_row, last_row, lambda item: item.qty),
        )

        self.store.update_values(document_id, cell_ref(tab, block.expiry_col, 1), [[EXPIRY_HEADER]])
        self.store.update_values(
            document_id,
            column_range(tab, block.expiry_col, first_row, last_row),
            column_values(matched, first_row, last_row, lambda item: item.expiry or self.config.expiry_placeholder),
        )

        if block.notes_col is not None:
            self.store.update_values(document_id, cell_ref(tab, block.notes_col, 1), [[NOTES_HEADER]])
            self.store.update_values(
                document_id,
                column_range(tab, block.notes_col, first_row, last_row),
                column_values(matched, first_row, last_row, lambda item: item.notes or ""),
            )

        return last_row - first_row + 1

    def apply_formatting(
        self, document_id: str, sheet: SheetInfo, block: WriteBlock, report: Report, row_index: RowIndex
    ) -> bool:
        ops = build_format_ops(sheet, block, report, self.config, row_index.last_row)
        try:
            self.store.batch_format(document_id, ops)
        except StoreError as exc:
            logger.warning("Formatting skipped for %r in %s: %s", sheet.title, document_id, exc)
            return False
        return True

    def project(self, report: Report) -> ProjectionResult:
        document_id = self.resolve_document(report.merchandiser)
        tab = report.outlet.strip()
        if tab == self.config.template_tab:
            raise ReportValidationError(f'Outlet "{tab}" is reserved for the template tab')
        if not report.items:
            raise NoItemsMatchedError(0)

        with tab_lock(document_id, tab):
            sheets = self.store.get_sheets(document_id)
            titles = {sheet.title for sheet in sheets}
            if tab not in titles and self.config.template_tab not in titles:
                raise TemplateTabNotFoundError(self.config.template_tab)
            # Nothing is created or seeded for a report that cannot match.
            match_items(
                self.preview_row_index(document_id, tab if tab in titles else None),
                report.items,
                self.config.data_start_row,
            )

            sheet, created = self.ensure_sheet(document_id, tab, sheets)
            row_index = self.load_row_index(document_id, sheet.title)
            matched, unmatched = match_items(row_index, report.items, self.config.data_start_row)
            if unmatched:
                logger.info(
                    "Unmatched items for %r: %s", sheet.title, ", ".join(item.name.strip() for item in unmatched)
                )

            block = WriteBlock.at(self.next_empty_column(document_id, sheet.title), report.per_item_notes)
            self.ensure_column_capacity(document_id, sheet, block.last_col)
            rows_written = self.write_record(document_id, sheet.title, block, report, matched, row_index)
            formatted = (
                self.apply_formatting(document_id, sheet, block, report, row_index)
                if self.config.apply_formatting
                else False
            )

        logger.info("Report saved: %s > %s (columns %s)", report.merchandiser, sheet.title, "-".join(block.letters))
        return ProjectionResult(
            document_id=document_id,
            sheet=sheet.title,
            created_sheet=created,
            columns=block.letters,
            matched=len(matched),
            unmatched=[item.name for item in unmatched],
            rows_written=rows_written,
            formatted=formatted,
        )
