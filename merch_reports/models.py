from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

from merch_reports.errors import ReportValidationError

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")
_NULL_STRINGS = {"null", "undefined"}


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).replace("\xa0", " ").strip()


def _is_null(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip().lower() in _NULL_STRINGS)


def normalize_name(name: Any) -> str:
    return _clean_text(name).lower()


def coerce_qty(value: Any) -> int:
    """Quantities behave like a lenient integer parse; anything unusable is 0."""
    if _is_null(value) or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    match = _LEADING_INT_RE.match(str(value))
    if match is None:
        return 0
    try:
        return int(match.group(1))
    except ValueError:
        # Digit runs past the interpreter's int conversion limit.
        return 0


def coerce_optional_text(value: Any) -> str:
    if _is_null(value):
        return ""
    return str(value)


@dataclass(frozen=True)
class ReportItem:
    name: str
    qty: int = 0
    expiry: str = ""
    notes: str | None = None

    @property
    def normalized(self) -> str:
        return normalize_name(self.name)


@dataclass(frozen=True)
class Report:
    merchandiser: str
    outlet: str
    date: str
    items: tuple[ReportItem, ...]
    notes: str | None = None
    per_item_notes: bool = False


def _build_item(name: Any, fields: Any, position: str) -> ReportItem:
    if not _clean_text(name):
        raise ReportValidationError(f"Item {position} is missing a name")
    if isinstance(fields, dict):
        raw_notes = fields.get("notes")
        return ReportItem(
            name=str(name),
            qty=coerce_qty(fields.get("qty")),
            expiry=coerce_optional_text(fields.get("expiry")),
            notes=None if raw_notes is None else coerce_optional_text(raw_notes),
        )
    # Oldest clients sent {name: qty}.
    return ReportItem(name=str(name), qty=coerce_qty(fields))


def parse_items(raw_items: Any, *, strict: bool = False) -> tuple[ReportItem, ...]:
    if isinstance(raw_items, list):
        items = []
        for index, entry in enumerate(raw_items):
            if not isinstance(entry, dict):
                raise ReportValidationError(f"Item at position {index} must be an object")
            items.append(_build_item(entry.get("name"), entry, f"at position {index}"))
        return tuple(items)

    if isinstance(raw_items, dict) and not strict:
        return tuple(_build_item(name, fields, f"'{name}'") for name, fields in raw_items.items())

    if strict:
        raise ReportValidationError("Invalid payload format: items must be an array")
    raise ReportValidationError("Invalid payload format: items must be an array or an object")


def parse_report(payload: Any, *, strict: bool = False) -> Report:
    """Normalize any accepted payload shape into a ``Report``."""
    if not isinstance(payload, dict):
        raise ReportValidationError("Invalid payload format: expected a JSON object")

    missing = [
        field_name
        for field_name in ("merchandiser", "outlet", "date")
        if _is_null(payload.get(field_name)) or not _clean_text(payload.get(field_name))
    ]
    if payload.get("items") is None:
        missing.append("items")
    if missing:
        raise ReportValidationError(f"Invalid payload format: missing {', '.join(missing)}")

    items = parse_items(payload.get("items"), strict=strict)
    notes = _clean_text(coerce_optional_text(payload.get("notes")))

    return Report(
        merchandiser=_clean_text(payload["merchandiser"]),
        outlet=_clean_text(payload["outlet"]),
        date=str(payload["date"]),
        items=items,
        notes=notes or None,
        per_item_notes=any(item.notes is not None for item in items),
    )
