from __future__ import annotations

import re
from dataclasses import dataclass

_CELL_RE = re.compile(r"^([A-Za-z]*)(\d*)$")


def column_letter(col_num: int) -> str:
    if col_num < 1:
        raise ValueError(f"Column numbers start at 1, got {col_num}")
    letters = ""
    n = int(col_num)
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def column_index(letters: str) -> int:
    cleaned = letters.strip().upper()
    if not cleaned or not cleaned.isalpha() or not cleaned.isascii():
        raise ValueError(f"Invalid column label '{letters}'")
    n = 0
    for ch in cleaned:
        n = n * 26 + (ord(ch) - 64)
    return n


def quote_sheet_title(title: str) -> str:
    # Ranges must single-quote titles with spaces or punctuation.
    return "'" + str(title).replace("'", "''") + "'"


def cell_ref(tab: str, col: int, row: int) -> str:
    return f"{quote_sheet_title(tab)}!{column_letter(col)}{row}"


def column_range(tab: str, col: int, first_row: int | None = None, last_row: int | None = None) -> str:
    letter = column_letter(col)
    if first_row is None:
        return f"{quote_sheet_title(tab)}!{letter}:{letter}"
    return f"{quote_sheet_title(tab)}!{letter}{first_row}:{letter}{last_row or first_row}"


def row_range(tab: str, row: int) -> str:
    return f"{quote_sheet_title(tab)}!{row}:{row}"


@dataclass(frozen=True)
class A1Range:
    """A parsed A1 range. ``None`` bounds are open (whole column or whole row)."""

    sheet: str
    start_col: int | None
    start_row: int | None
    end_col: int | None
    end_row: int | None


def _split_cell(ref: str) -> tuple[int | None, int | None]:
    match = _CELL_RE.match(ref.strip())
    if match is None or not (match.group(1) or match.group(2)):
        raise ValueError(f"Invalid cell reference '{ref}'")
    col = column_index(match.group(1)) if match.group(1) else None
    row = int(match.group(2)) if match.group(2) else None
    if row is not None and row < 1:
        raise ValueError(f"Invalid cell reference '{ref}'")
    return col, row


def parse_a1_range(expr: str) -> A1Range:
    if "!" not in expr:
        raise ValueError(f"Range '{expr}' has no sheet name")
    sheet_part, _, cells = expr.rpartition("!")
    if sheet_part.startswith("'") and sheet_part.endswith("'") and len(sheet_part) >= 2:
        sheet = sheet_part[1:-1].replace("''", "'")
    else:
        sheet = sheet_part
    start, _, end = cells.partition(":")
    start_col, start_row = _split_cell(start)
    if end:
        end_col, end_row = _split_cell(end)
    else:
        end_col, end_row = start_col, start_row
    return A1Range(sheet=sheet, start_col=start_col, start_row=start_row, end_col=end_col, end_row=end_row)
