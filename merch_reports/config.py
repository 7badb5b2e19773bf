from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

DEFAULT_SPREADSHEET_IDS = {
    "Solomon": "148PXW2iApr04lOo-3rY4a8IJ2ToUztMDOzN6TceC3bQ",
    "Patricia": "1sm014ASh1w84UJAfXj7OX7Gtj29Mv5e1xin_eJ5Pz78",
    "Milan": "1HwoB4FFQlqkgwJusbZxbBUaB861p9flE6hMtNk6e-Tw",
    "Caro": "1GDc1MLSVRwm_Ccy4ahkVeNpfTzlLH6iOIRZYQ6PfbJU",
    "Charles": "1Ji2e5ewH8bVieMKKR57Xd2ZBYUwT5XfmA6Qk3uH_qDo",
    "Brenda": "1EPdIDDTgmauEbTlSeme9bxKNUjN9i1RTC-RZLCKNLOQ",
    "Rayan": "1uwE2JTyPxoxrvHvebhWfwmvZNy3mlrLyvEatn6JyHm8",
    "Job": "1yUySiotqekdK5EqcO_A637qwDg0PdU0P0Kb8_9WTAns",
}


def _to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    text = value.strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return default


def load_spreadsheet_ids(raw: str | None) -> dict[str, str]:
    if raw is None or not raw.strip():
        return dict(DEFAULT_SPREADSHEET_IDS)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid MERCH_SPREADSHEET_IDS: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("MERCH_SPREADSHEET_IDS must be a JSON object")
    return {str(name).strip(): str(doc_id).strip() for name, doc_id in data.items() if str(doc_id).strip()}


class Settings:
    app_host: str = os.getenv("APP_HOST", "0.0.0.0")
    app_port: int = int(os.getenv("APP_PORT", os.getenv("PORT", "8080")))
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    cors_origins: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    sheet_backend: str = os.getenv("SHEET_BACKEND", "google").strip().lower()
    google_credentials_file: str = os.getenv("GOOGLE_CREDENTIALS_FILE", "/etc/secrets/GOOGLE_CREDENTIALS_FILE")
    google_credentials_json: str = os.getenv("GOOGLE_CREDENTIALS_JSON", "")
    workbook_dir: str = os.getenv("WORKBOOK_DIR", "workbooks")
    sheets_timeout_seconds: int = max(int(os.getenv("SHEETS_TIMEOUT_SECONDS", "30")), 5)
    sheets_request_retries: int = min(max(int(os.getenv("SHEETS_REQUEST_RETRIES", "3")), 1), 8)

    spreadsheet_ids: dict[str, str] = load_spreadsheet_ids(os.getenv("MERCH_SPREADSHEET_IDS"))
    template_tab: str = os.getenv("TEMPLATE_TAB", "Acacia")
    data_start_row: int = int(os.getenv("DATA_START_ROW", "6"))
    notes_placeholder: str = os.getenv("NOTES_PLACEHOLDER", "No notes")
    strict_items: bool = _to_bool(os.getenv("REPORT_STRICT_ITEMS"), False)
    apply_formatting: bool = _to_bool(os.getenv("REPORT_APPLY_FORMATTING"), True)


settings = Settings()


@dataclass(frozen=True)
class ProjectorConfig:
    """Layout conventions and the merchandiser registry used by the projector."""

    spreadsheet_ids: Mapping[str, str] = field(default_factory=lambda: MappingProxyType(dict(DEFAULT_SPREADSHEET_IDS)))
    template_tab: str = "Acacia"
    data_start_row: int = 6
    notes_placeholder: str = "No notes"
    expiry_placeholder: str = ""
    apply_formatting: bool = True
    notes_row_height: int = 48

    def __post_init__(self):
        if not isinstance(self.spreadsheet_ids, MappingProxyType):
            object.__setattr__(self, "spreadsheet_ids", MappingProxyType(dict(self.spreadsheet_ids)))
        if self.data_start_row < 3:
            raise ValueError("data_start_row must leave rows 1 and 2 for the block header and notes")

    @classmethod
    def from_settings(cls, source: Settings) -> "ProjectorConfig":
        return cls(
            spreadsheet_ids=source.spreadsheet_ids,
            template_tab=source.template_tab,
            data_start_row=source.data_start_row,
            notes_placeholder=source.notes_placeholder,
            apply_formatting=source.apply_formatting,
        )
