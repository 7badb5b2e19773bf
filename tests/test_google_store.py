from unittest import mock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from merch_reports.config import Settings
from merch_reports.errors import ConfigurationError, StoreError
from merch_reports.google_store import GoogleSheetsStore, format_requests, load_credentials
from merch_reports.store import FormatOp


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b'{"error": {"message": "backend unavailable"}}')


@pytest.fixture()
def service():
    return mock.MagicMock()


@pytest.fixture()
def sheets_store(service):
    return GoogleSheetsStore(service, max_retries=3, base_delay=0.01)


def test_get_values_reads_range(sheets_store, service):
    request = service.spreadsheets().values().get
    request.return_value.execute.return_value = {"values": [["Item"], [], ["Tomato"]]}

    values = sheets_store.get_values("doc-1", "'Acacia'!A:A")

    assert values == [["Item"], [], ["Tomato"]]
    request.assert_called_with(spreadsheetId="doc-1", range="'Acacia'!A:A")


def test_get_values_without_values_key(sheets_store, service):
    service.spreadsheets().values().get.return_value.execute.return_value = {"range": "'Acacia'!A1:A1000"}

    assert sheets_store.get_values("doc-1", "'Acacia'!A:A") == []


def test_update_values_uses_raw_overwrite(sheets_store, service):
    sheets_store.update_values("doc-1", "'Acacia Market'!B6:B7", [(5,), ("",)])

    service.spreadsheets().values().update.assert_called_with(
        spreadsheetId="doc-1",
        range="'Acacia Market'!B6:B7",
        valueInputOption="RAW",
        body={"values": [[5], [""]]},
    )


def test_get_sheets_parses_properties(sheets_store, service):
    service.spreadsheets().get.return_value.execute.return_value = {
        "sheets": [
            {"properties": {"title": "Acacia", "sheetId": 0, "gridProperties": {"columnCount": 26}}},
            {"properties": {"title": "Acacia Market", "sheetId": 812, "gridProperties": {"columnCount": 30}}},
        ]
    }

    sheets = sheets_store.get_sheets("doc-1")

    assert [(s.title, s.sheet_id, s.column_count) for s in sheets] == [("Acacia", 0, 26), ("Acacia Market", 812, 30)]
    service.spreadsheets().get.assert_called_with(spreadsheetId="doc-1", fields="sheets.properties")


def test_duplicate_sheet_returns_new_properties(sheets_store, service):
    batch = service.spreadsheets().batchUpdate
    batch.return_value.execute.return_value = {
        "replies": [
            {
                "duplicateSheet": {
                    "properties": {"title": "Acacia Market", "sheetId": 99, "gridProperties": {"columnCount": 26}}
                }
            }
        ]
    }

    created = sheets_store.duplicate_sheet("doc-1", 0, "Acacia Market")

    assert (created.title, created.sheet_id, created.column_count) == ("Acacia Market", 99, 26)
    batch.assert_called_with(
        spreadsheetId="doc-1",
        body={"requests": [{"duplicateSheet": {"sourceSheetId": 0, "newSheetName": "Acacia Market"}}]},
    )


def test_duplicate_sheet_without_reply_is_an_error(sheets_store, service):
    service.spreadsheets().batchUpdate.return_value.execute.return_value = {"replies": [{}]}

    with pytest.raises(StoreError):
        sheets_store.duplicate_sheet("doc-1", 0, "Acacia Market")


def test_append_columns_request(sheets_store, service):
    sheets_store.append_columns("doc-1", 99, 3)

    service.spreadsheets().batchUpdate.assert_called_with(
        spreadsheetId="doc-1",
        body={"requests": [{"appendDimension": {"sheetId": 99, "dimension": "COLUMNS", "length": 3}}]},
    )


def test_reads_retry_on_transient_errors(sheets_store, service):
    execute = service.spreadsheets().values().get.return_value.execute
    execute.side_effect = [_http_error(503), OSError("reset"), {"values": [["Item"]]}]

    with mock.patch("merch_reports.google_store.time.sleep", return_value=None) as sleep:
        values = sheets_store.get_values("doc-1", "'Acacia'!1:1")

    assert values == [["Item"]]
    assert execute.call_count == 3
    assert sleep.call_count == 2


def test_retries_are_bounded(sheets_store, service):
    execute = service.spreadsheets().values().update.return_value.execute
    execute.side_effect = _http_error(429)

    with mock.patch("merch_reports.google_store.time.sleep", return_value=None):
        with pytest.raises(StoreError, match="429"):
            sheets_store.update_values("doc-1", "'Acacia'!B1", [["2024-05-01"]])

    assert execute.call_count == 3


def test_client_errors_are_not_retried(sheets_store, service):
    execute = service.spreadsheets().values().get.return_value.execute
    execute.side_effect = _http_error(400)

    with pytest.raises(StoreError, match="400"):
        sheets_store.get_values("doc-1", "'Nowhere'!A:A")

    assert execute.call_count == 1


def test_duplicate_sheet_is_not_retried(sheets_store, service):
    execute = service.spreadsheets().batchUpdate.return_value.execute
    execute.side_effect = _http_error(503)

    with pytest.raises(StoreError):
        sheets_store.duplicate_sheet("doc-1", 0, "Acacia Market")

    assert execute.call_count == 1


def test_format_requests_shape():
    requests = format_requests(
        [
            FormatOp(sheet_id=7, start_row=1, end_row=1, start_col=2, end_col=2, bold=True, background="#FF0000", note="by Job"),
            FormatOp(sheet_id=7, start_row=2, end_row=2, start_col=2, end_col=2, wrap=True, row_height=48),
        ]
    )

    grid = {"sheetId": 7, "startRowIndex": 0, "endRowIndex": 1, "startColumnIndex": 1, "endColumnIndex": 2}
    assert requests[0] == {
        "repeatCell": {
            "range": grid,
            "cell": {
                "userEnteredFormat": {
                    "textFormat": {"bold": True},
                    "backgroundColor": {"red": 1.0, "green": 0.0, "blue": 0.0},
                }
            },
            "fields": "userEnteredFormat.textFormat.bold,userEnteredFormat.backgroundColor",
        }
    }
    assert requests[1] == {"repeatCell": {"range": grid, "cell": {"note": "by Job"}, "fields": "note"}}
    assert requests[2]["repeatCell"]["fields"] == "userEnteredFormat.wrapStrategy"
    assert requests[3] == {
        "updateDimensionProperties": {
            "range": {"sheetId": 7, "dimension": "ROWS", "startIndex": 1, "endIndex": 2},
            "properties": {"pixelSize": 48},
            "fields": "pixelSize",
        }
    }


def test_empty_format_batch_sends_nothing(sheets_store, service):
    sheets_store.batch_format("doc-1", [FormatOp(sheet_id=1, start_row=1, end_row=1, start_col=1, end_col=1)])

    service.spreadsheets().batchUpdate.assert_not_called()


def test_missing_credentials_file_is_a_configuration_error(tmp_path):
    source = Settings()
    source.google_credentials_json = ""
    source.google_credentials_file = str(tmp_path / "missing.json")

    with pytest.raises(ConfigurationError, match="credentials file not found"):
        load_credentials(source)


def test_invalid_credentials_json_is_a_configuration_error():
    source = Settings()
    source.google_credentials_json = "{not json"

    with pytest.raises(ConfigurationError, match="Invalid Google service account credentials"):
        load_credentials(source)
