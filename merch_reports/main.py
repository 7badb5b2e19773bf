import logging
from functools import lru_cache
from typing import Any

from fastapi import Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from merch_reports.config import ProjectorConfig, Settings, settings
from merch_reports.errors import ConfigurationError, ReportError
from merch_reports.models import parse_report
from merch_reports.projector import SheetProjector
from merch_reports.store import TabularStore

app = FastAPI(title="Merchandiser Report Sheets")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
logger = logging.getLogger(__name__)


def build_store(source: Settings) -> TabularStore:
    if source.sheet_backend == "workbook":
        from merch_reports.workbook_store import WorkbookStore

        return WorkbookStore(source.workbook_dir)
    if source.sheet_backend == "google":
        from merch_reports.google_store import GoogleSheetsStore

        return GoogleSheetsStore.from_settings(source)
    raise ConfigurationError(f"Unknown SHEET_BACKEND '{source.sheet_backend}'. Use google or workbook.")


@lru_cache(maxsize=1)
def get_store() -> TabularStore:
    return build_store(settings)


def get_projector_config() -> ProjectorConfig:
    return ProjectorConfig.from_settings(settings)


def get_strict_items() -> bool:
    return settings.strict_items


@app.exception_handler(ReportError)
def report_error_handler(request: Request, exc: ReportError):
    if exc.status_code >= 500:
        logger.error("Error in %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid payload format", "code": "invalid_payload"})


@app.get("/ping", response_class=PlainTextResponse)
def ping():
    return "Sheet API is running"


@app.get("/health", response_class=PlainTextResponse)
def health():
    return "OK"


@app.post("/report")
def submit_report(
    payload: Any = Body(default=None),
    strict_items: bool = Depends(get_strict_items),
    config: ProjectorConfig = Depends(get_projector_config),
    store: TabularStore = Depends(get_store),
):
    try:
        report = parse_report(payload, strict=strict_items)
        result = SheetProjector(store, config).project(report)
    except ReportError:
        raise
    except Exception as exc:
        logger.exception("Unexpected error while saving report")
        return JSONResponse(status_code=500, content={"error": str(exc), "code": "internal_error"})

    return {
        "status": "Report appended to Google Sheet",
        "sheet": result.sheet,
        "created_sheet": result.created_sheet,
        "columns": result.columns,
        "matched": result.matched,
        "unmatched": result.unmatched,
        "formatted": result.formatted,
    }
