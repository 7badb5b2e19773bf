from pathlib import Path
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from merch_reports import main
from merch_reports.columns import parse_a1_range
from merch_reports.config import ProjectorConfig
from merch_reports.errors import StoreError
from merch_reports.store import SheetInfo

DOC_ID = "doc-solomon"
TEMPLATE_COLUMN_A = ["Item", "", "", "", "", "Tomato", "Onion"]
WRITE_METHODS = {"update_values", "duplicate_sheet", "append_columns", "batch_format"}


class MemoryStore:
    """Single-document stand-in for a spreadsheet backend that records every call."""

    def __init__(self):
        self.cells: dict[str, dict[tuple[int, int], object]] = {}
        self.infos: list[SheetInfo] = []
        self.calls: list[tuple] = []
        self.fail_format = False
        self.fail_update_after: int | None = None

    def add_sheet(self, title, column_a=(), header=(), column_count=26):
        cells = {}
        for row, value in enumerate(column_a, start=1):
            cells[(row, 1)] = value
        for col, value in enumerate(header, start=1):
            if value != "":
                cells[(1, col)] = value
        self.cells[title] = cells
        info = SheetInfo(title=title, sheet_id=len(self.infos) * 100, column_count=column_count)
        self.infos.append(info)
        return info

    def cell(self, title, row, col):
        return self.cells[title].get((row, col), "")

    def column(self, title, col):
        rows = [row for (row, c) in self.cells[title] if c == col]
        return [self.cell(title, row, col) for row in range(1, max(rows, default=0) + 1)]

    @property
    def writes(self):
        return [call for call in self.calls if call[0] in WRITE_METHODS]

    def _tab(self, title):
        if title not in self.cells:
            raise StoreError(f'Unable to parse range: sheet "{title}" not found')
        return self.cells[title]

    def get_values(self, document_id, a1_range):
        self.calls.append(("get_values", document_id, a1_range))
        parsed = parse_a1_range(a1_range)
        cells = self._tab(parsed.sheet)
        max_row = max((row for row, _ in cells), default=0)
        max_col = max((col for _, col in cells), default=0)
        grid = []
        for row in range(parsed.start_row or 1, (parsed.end_row or max_row) + 1):
            values = [cells.get((row, col), "") for col in range(parsed.start_col or 1, (parsed.end_col or max_col) + 1)]
            while values and values[-1] in ("", None):
                values.pop()
            grid.append(values)
        while grid and not grid[-1]:
            grid.pop()
        return grid

    def update_values(self, document_id, a1_range, values):
        if self.fail_update_after is not None:
            done = sum(1 for call in self.calls if call[0] == "update_values")
            if done >= self.fail_update_after:
                raise StoreError("Google Sheets API 503 during values.update")
        self.calls.append(("update_values", document_id, a1_range, [list(row) for row in values]))
        parsed = parse_a1_range(a1_range)
        cells = self._tab(parsed.sheet)
        for row_offset, row in enumerate(values):
            for col_offset, value in enumerate(row):
                cells[((parsed.start_row or 1) + row_offset, (parsed.start_col or 1) + col_offset)] = value

    def get_sheets(self, document_id):
        self.calls.append(("get_sheets", document_id))
        return list(self.infos)

    def duplicate_sheet(self, document_id, source_sheet_id, new_title):
        self.calls.append(("duplicate_sheet", document_id, source_sheet_id, new_title))
        source = next(info for info in self.infos if info.sheet_id == source_sheet_id)
        self.cells[new_title] = dict(self.cells[source.title])
        info = SheetInfo(title=new_title, sheet_id=len(self.infos) * 100, column_count=source.column_count)
        self.infos.append(info)
        return info

    def append_columns(self, document_id, sheet_id, count):
        self.calls.append(("append_columns", document_id, sheet_id, count))
        self.infos = [
            SheetInfo(info.title, info.sheet_id, info.column_count + count) if info.sheet_id == sheet_id else info
            for info in self.infos
        ]

    def batch_format(self, document_id, ops):
        if self.fail_format:
            raise StoreError("Google Sheets API 400 during batchUpdate[format]")
        self.calls.append(("batch_format", document_id, list(ops)))


@pytest.fixture()
def store():
    memory = MemoryStore()
    memory.add_sheet("Acacia", column_a=TEMPLATE_COLUMN_A)
    return memory


@pytest.fixture()
def config():
    return ProjectorConfig(spreadsheet_ids={"Solomon": DOC_ID})


@pytest.fixture()
def strict_items():
    return {"value": False}


@pytest.fixture()
def client(store, config, strict_items):
    main.app.dependency_overrides[main.get_store] = lambda: store
    main.app.dependency_overrides[main.get_projector_config] = lambda: config
    main.app.dependency_overrides[main.get_strict_items] = lambda: strict_items["value"]

    test_client = TestClient(main.app)
    try:
        yield test_client
    finally:
        test_client.close()
        main.app.dependency_overrides.clear()
