from __future__ import annotations

import json
import logging
import os
import random
import time
from typing import Any, Sequence

import httplib2
from google.auth.exceptions import GoogleAuthError, TransportError
from google.oauth2.service_account import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from merch_reports.config import Settings
from merch_reports.errors import ConfigurationError, StoreError
from merch_reports.store import FormatOp, SheetInfo, hex_to_rgb

logger = logging.getLogger(__name__)

SPREADSHEET_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
RETRY_STATUSES = {408, 429, 500, 502, 503, 504}


def _status_of(error: HttpError) -> int | None:
    return getattr(error, "status_code", None) or getattr(getattr(error, "resp", None), "status", None)


def _grid_range(op: FormatOp) -> dict[str, int]:
    return {
        "sheetId": op.sheet_id,
        "startRowIndex": op.start_row - 1,
        "endRowIndex": op.end_row,
        "startColumnIndex": op.start_col - 1,
        "endColumnIndex": op.end_col,
    }


def _color(hex_color: str) -> dict[str, float]:
    red, green, blue = hex_to_rgb(hex_color)
    return {"red": red / 255, "green": green / 255, "blue": blue / 255}


def format_requests(ops: Sequence[FormatOp]) -> list[dict[str, Any]]:
    requests: list[dict[str, Any]] = []
    for op in ops:
        cell_format: dict[str, Any] = {}
        fields = []
        if op.bold:
            cell_format["textFormat"] = {"bold": True}
            fields.append("userEnteredFormat.textFormat.bold")
        if op.background:
            cell_format["backgroundColor"] = _color(op.background)
            fields.append("userEnteredFormat.backgroundColor")
        if op.wrap:
            cell_format["wrapStrategy"] = "WRAP"
            fields.append("userEnteredFormat.wrapStrategy")
        if cell_format:
            requests.append(
                {
                    "repeatCell": {
                        "range": _grid_range(op),
                        "cell": {"userEnteredFormat": cell_format},
                        "fields": ",".join(fields),
                    }
                }
            )
        if op.row_height:
            requests.append(
                {
                    "updateDimensionProperties": {
                        "range": {
                            "sheetId": op.sheet_id,
                            "dimension": "ROWS",
                            "startIndex": op.start_row - 1,
                            "endIndex": op.end_row,
                        },
                        "properties": {"pixelSize": op.row_height},
                        "fields": "pixelSize",
                    }
                }
            )
        if op.note:
            requests.append(
                {
                    "repeatCell": {
                        "range": _grid_range(op),
                        "cell": {"note": op.note},
                        "fields": "note",
                    }
                }
            )
    return requests


def _sheet_info(properties: dict[str, Any]) -> SheetInfo:
    grid = properties.get("gridProperties") or {}
    return SheetInfo(
        title=str(properties.get("title") or ""),
        sheet_id=int(properties.get("sheetId") or 0),
        column_count=int(grid.get("columnCount") or 0),
    )


def load_credentials(source: Settings) -> Credentials:
    raw = source.google_credentials_json.strip()
    try:
        if raw:
            return Credentials.from_service_account_info(json.loads(raw), scopes=[SPREADSHEET_SCOPE])
        if not os.path.exists(source.google_credentials_file):
            raise ConfigurationError(f"Google credentials file not found at: {source.google_credentials_file}")
        return Credentials.from_service_account_file(source.google_credentials_file, scopes=[SPREADSHEET_SCOPE])
    except (ValueError, GoogleAuthError) as exc:
        raise ConfigurationError(f"Invalid Google service account credentials: {exc}") from exc


class GoogleSheetsStore:
    def __init__(self, service: Any, *, max_retries: int = 3, base_delay: float = 0.5):
        self.service = service
        self.max_retries = max(max_retries, 1)
        self.base_delay = base_delay

    @classmethod
    def from_settings(cls, source: Settings) -> "GoogleSheetsStore":
        credentials = load_credentials(source)
        http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=source.sheets_timeout_seconds))
        service = build("sheets", "v4", http=http, cache_discovery=False)
        return cls(service, max_retries=source.sheets_request_retries)

    def _execute(self, request: Any, label: str, *, retry: bool = True) -> Any:
        attempts = self.max_retries if retry else 1
        delay = self.base_delay
        for attempt in range(attempts):
            try:
                return request.execute()
            except HttpError as error:
                status = _status_of(error)
                if status in RETRY_STATUSES and attempt < attempts - 1:
                    logger.warning("[%s] HttpError %s; retrying in %.2fs", label, status, delay)
                    time.sleep(delay + random.uniform(0, delay * 0.3))
                    delay = min(delay * 2, 30)
                    continue
                raise StoreError(f"Google Sheets API {status} during {label}: {error}") from error
            except (OSError, httplib2.HttpLib2Error, TransportError) as exc:
                if attempt < attempts - 1:
                    logger.warning("[%s] %s; retrying in %.2fs", label, exc.__class__.__name__, delay)
                    time.sleep(delay + random.uniform(0, delay * 0.3))
                    delay = min(delay * 2, 30)
                    continue
                raise StoreError(f"Google Sheets request {label} failed: {exc}") from exc
        raise StoreError(f"Google Sheets request {label} failed after retries")

    def get_values(self, document_id: str, a1_range: str) -> list[list[Any]]:
        data = self._execute(
            self.service.spreadsheets().values().get(spreadsheetId=document_id, range=a1_range),
            label="values.get",
        )
        values = data.get("values") if isinstance(data, dict) else None
        return values if isinstance(values, list) else []

    def update_values(self, document_id: str, a1_range: str, values: Sequence[Sequence[Any]]) -> None:
        self._execute(
            self.service.spreadsheets().values().update(
                spreadsheetId=document_id,
                range=a1_range,
                valueInputOption="RAW",
                body={"values": [list(row) for row in values]},
            ),
            label="values.update",
        )

    def get_sheets(self, document_id: str) -> list[SheetInfo]:
        data = self._execute(
            self.service.spreadsheets().get(spreadsheetId=document_id, fields="sheets.properties"),
            label="spreadsheets.get",
        )
        sheets = data.get("sheets") if isinstance(data, dict) else None
        return [_sheet_info(sheet.get("properties") or {}) for sheet in sheets or [] if isinstance(sheet, dict)]

    def _batch_update(self, document_id: str, requests: list[dict[str, Any]], label: str, *, retry: bool) -> Any:
        return self._execute(
            self.service.spreadsheets().batchUpdate(spreadsheetId=document_id, body={"requests": requests}),
            label=label,
            retry=retry,
        )

    def duplicate_sheet(self, document_id: str, source_sheet_id: int, new_title: str) -> SheetInfo:
        data = self._batch_update(
            document_id,
            [{"duplicateSheet": {"sourceSheetId": source_sheet_id, "newSheetName": new_title}}],
            label="batchUpdate[duplicateSheet]",
            retry=False,
        )
        replies = data.get("replies") if isinstance(data, dict) else None
        properties = (replies or [{}])[0].get("duplicateSheet", {}).get("properties")
        if not properties:
            raise StoreError(f'Duplicating the template into "{new_title}" returned no sheet properties')
        return _sheet_info(properties)

    def append_columns(self, document_id: str, sheet_id: int, count: int) -> None:
        self._batch_update(
            document_id,
            [{"appendDimension": {"sheetId": sheet_id, "dimension": "COLUMNS", "length": count}}],
            label="batchUpdate[appendDimension]",
            retry=False,
        )

    def batch_format(self, document_id: str, ops: Sequence[FormatOp]) -> None:
        requests = format_requests(ops)
        if requests:
            self._batch_update(document_id, requests, label="batchUpdate[format]", retry=True)
