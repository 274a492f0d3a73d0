#!/usr/bin/env python3
"""
New Relic → Google Sheets report uploader

- Reads report definitions from REPORTS_JSON or reports.json (see config/reports.py).
  Each report names a NRQL query, a New Relic account and a sheet range.

- For every report, concurrently: reads the header row of the sheet range, runs
  the query through NerdGraph for the run's time window, turns each result into
  a row ordered like the headers and appends the rows under the range.
  Columns named beginTime / endTime receive the window boundaries.

- Time window defaults to yesterday 00:00:00 → 23:59:00 (local offset);
  override with BEGIN_TIME and END_TIME. Limit the run with ONLY_REPORTS,
  skip the append with DRY_RUN=true.

Run: python newrelic_to_sheets.py
"""

import json
import os
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Union

import requests
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config.reports import Report, ReportsManager, load_reports
from config.settings import RESERVED_COLUMNS, SHEETS, ConfigError, Settings, TimeWindow

CellValue = Union[str, int, float, bool, None]
Record = Dict[str, CellValue]


class TransportError(RuntimeError):
    """A Sheets or NerdGraph call failed or returned something unusable."""


# =============================
# Utility: cells and errors
# =============================

def to_cell(value: Any) -> CellValue:
    """Scalars pass through; lists/objects (e.g. multi-attribute facets) become compact JSON."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    return json.dumps(value, separators=(',', ':'), sort_keys=True)


def describe_http_error(he: HttpError) -> str:
    status = getattr(getattr(he, 'resp', None), 'status', None)
    content = he.content
    if isinstance(content, bytes):
        content = content.decode('utf-8', errors='replace')
    return f"HTTP {status or '?'}: {(content or '').strip() or he}"


# =============================
# NerdGraph helpers
# =============================

NRQL_GRAPHQL = """query($accounts: [Int!]!, $nrql: Nrql!) {
  actor {
    nrql(accounts: $accounts, query: $nrql) {
      results
    }
  }
}"""


def build_nrql(query: str, window: TimeWindow) -> str:
    return f"{query.rstrip()} SINCE '{window.begin}' UNTIL '{window.end}'"


def build_graphql_payload(nrql: str, account_id: int) -> Dict[str, Any]:
    return {
        'query': NRQL_GRAPHQL,
        'variables': {'accounts': [account_id], 'nrql': nrql},
    }


def encode_payload(payload: Mapping[str, Any]) -> str:
    """Serialize the request body, writing every single quote as the JSON escape \\u0027.

    A quote can only appear inside a JSON string, so the body stays valid JSON
    and decodes to the same NRQL text.
    """
    return json.dumps(payload).replace("'", "\\u0027")


def build_headers(api_key: str) -> Dict[str, str]:
    return {'Content-Type': 'application/json', 'API-Key': api_key}


def extract_results(body: Any, report_name: str = '') -> List[Record]:
    """Pull data.actor.nrql.results out of a NerdGraph response.

    Entries that are not objects are skipped. A missing level means no results,
    unless the response carries GraphQL errors.
    """
    if not isinstance(body, dict):
        raise TransportError(f"[{report_name}] Unexpected NerdGraph response: {str(body)[:500]}")

    node: Any = body
    for key in ('data', 'actor', 'nrql', 'results'):
        node = node.get(key) if isinstance(node, dict) else None

    errors = body.get('errors') or []
    if errors:
        messages = '; '.join(str(e.get('message', e)) if isinstance(e, dict) else str(e) for e in errors)
        if node is None:
            raise TransportError(f"[{report_name}] NerdGraph returned errors: {messages}")
        print(f"   ⚠️ [{report_name}] NerdGraph returned partial errors: {messages}")

    if not isinstance(node, list):
        return []
    return [{str(k): to_cell(v) for k, v in item.items()} for item in node if isinstance(item, dict)]


def fetch_nrql_results(report: Report, window: TimeWindow, settings: Settings) -> List[Record]:
    nrql = build_nrql(report.query, window)
    body = encode_payload(build_graphql_payload(nrql, report.account_id))
    print(f"   📥 [{report.name}] Querying New Relic account {report.account_id}")
    try:
        resp = requests.post(
            settings.graphql_url,
            data=body.encode('utf-8'),
            headers=build_headers(report.api_key),
            timeout=settings.request_timeout,
        )
    except requests.exceptions.RequestException as e:
        raise TransportError(f"[{report.name}] NerdGraph request failed: {e}") from e

    if not resp.ok:
        raise TransportError(f"[{report.name}] NerdGraph returned HTTP {resp.status_code}: {resp.text.strip()}")

    try:
        payload = resp.json()
    except ValueError as e:
        raise TransportError(f"[{report.name}] NerdGraph response is not JSON: {resp.text[:500]}") from e

    records = extract_results(payload, report.name)
    print(f"   ✅ [{report.name}] Retrieved {len(records)} result(s)")
    return records


# =============================
# Google Sheets helpers
# =============================

def load_credentials(credentials_path: str = 'credentials.json') -> Credentials:
    # Try environment variable first (for GitHub Actions), then file
    google_creds_json = os.getenv('GOOGLE_CREDENTIALS_JSON')
    if google_creds_json:
        try:
            creds_dict = json.loads(google_creds_json)
        except json.JSONDecodeError as e:
            raise ConfigError(f"GOOGLE_CREDENTIALS_JSON is not valid JSON: {e}") from e
        try:
            creds = Credentials.from_service_account_info(creds_dict, scopes=SHEETS['scopes'])
        except (ValueError, GoogleAuthError) as e:
            raise ConfigError(f"GOOGLE_CREDENTIALS_JSON is not a usable service account: {e}") from e
        print("🔐 Google Sheets credentials loaded (from environment)")
        return creds

    if not os.path.exists(credentials_path):
        raise ConfigError(f"Credentials file not found: {credentials_path}")
    try:
        creds = Credentials.from_service_account_file(credentials_path, scopes=SHEETS['scopes'])
    except (ValueError, GoogleAuthError) as e:
        raise ConfigError(f"Credentials file {credentials_path} is not a usable service account: {e}") from e
    print("🔐 Google Sheets credentials loaded (from file)")
    return creds


class SheetsClient:
    def __init__(self, credentials_path: str = 'credentials.json', credentials: Optional[Credentials] = None):
        self.credentials = credentials if credentials is not None else load_credentials(credentials_path)
        # httplib2 transports are not thread-safe: one service per worker thread
        self._local = threading.local()

    @property
    def service(self):
        service = getattr(self._local, 'service', None)
        if service is None:
            service = build('sheets', 'v4', credentials=self.credentials, cache_discovery=False)
            self._local.service = service
        return service

    def read_header(self, spreadsheet_id: str, sheet_range: str) -> List[str]:
        """Return the first row of the range; an empty range gives an empty header."""
        try:
            res = self.service.spreadsheets().values().get(
                spreadsheetId=spreadsheet_id,
                range=sheet_range,
            ).execute()
        except HttpError as he:
            raise TransportError(f"Read headers '{sheet_range}' failed: {describe_http_error(he)}") from he
        except Exception as e:
            raise TransportError(f"Read headers '{sheet_range}' failed: {e}") from e

        values = res.get('values') or []
        if not values:
            return []
        return ['' if h is None else str(h) for h in values[0]]

    def append_rows(self, spreadsheet_id: str, sheet_range: str, rows: Sequence[Sequence[CellValue]]) -> int:
        if not rows:
            return 0
        try:
            res = self.service.spreadsheets().values().append(
                spreadsheetId=spreadsheet_id,
                range=sheet_range,
                valueInputOption=SHEETS['value_input_option'],
                insertDataOption=SHEETS['insert_data_option'],
                body={'values': [list(r) for r in rows]},
            ).execute()
        except HttpError as he:
            raise TransportError(f"Append to '{sheet_range}' failed: {describe_http_error(he)}") from he
        except Exception as e:
            raise TransportError(f"Append to '{sheet_range}' failed: {e}") from e

        updates = (res or {}).get('updates') or {}
        return int(updates.get('updatedRows', len(rows)))


# =============================
# Row mapping
# =============================

def map_row(headers: Sequence[str], record: Mapping[str, CellValue], window: TimeWindow) -> List[CellValue]:
    row: List[CellValue] = []
    for col in headers:
        if col == RESERVED_COLUMNS['end']:
            row.append(window.end)
        elif col == RESERVED_COLUMNS['begin']:
            row.append(window.begin)
        else:
            row.append(record.get(col))
    return row


def map_rows(headers: Sequence[str], records: Sequence[Mapping[str, CellValue]], window: TimeWindow) -> List[List[CellValue]]:
    return [map_row(headers, record, window) for record in records]


# =============================
# Report pipeline
# =============================

class ReportResult(NamedTuple):
    report: str
    rows_appended: int = 0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def validate_report(report: Report, window: TimeWindow) -> None:
    missing = report.missing_fields()
    if not window.begin:
        missing.append('begin')
    if not window.end:
        missing.append('end')
    if missing:
        raise ConfigError(f"Report '{report.name}' has empty required field(s): {', '.join(missing)}")


def run_report(gc: SheetsClient, report: Report, window: TimeWindow, settings: Settings) -> int:
    """Header → query → rows → append for one report. Returns the number of rows appended."""
    validate_report(report, window)
    settings.validate()

    print(f"📋 [{report.name}] Reading headers from '{report.sheet_range}'")
    headers = gc.read_header(report.spreadsheet_id, report.sheet_range)
    if not headers:
        print(f"   ⚠️ [{report.name}] Header row is empty; rows will have no columns")

    records = fetch_nrql_results(report, window, settings)
    rows = map_rows(headers, records, window)

    if settings.dry_run:
        print(f"   ⏭️  [{report.name}] DRY_RUN: skipping append of {len(rows)} row(s)")
        for row in rows:
            print(f"      {row}")
        return 0

    if not rows:
        print(f"   ⚠️ [{report.name}] No results to append")
        return 0

    appended = gc.append_rows(report.spreadsheet_id, report.sheet_range, rows)
    print(f"   ✅ [{report.name}] Appended {appended} row(s) to '{report.sheet_range}'")
    return appended


# =============================
# Orchestrator
# =============================

def run_reports(reports: Sequence[Report], window: TimeWindow, gc: SheetsClient, settings: Settings) -> List[ReportResult]:
    """Run every report in its own thread and wait for all of them.

    A failure only ends its own report; results come back in report order.
    """
    if not reports:
        return []

    results: List[ReportResult] = []
    with ThreadPoolExecutor(max_workers=len(reports), thread_name_prefix='report') as pool:
        futures = [(r, pool.submit(run_report, gc, r, window, settings)) for r in reports]
        for report, future in futures:
            try:
                results.append(ReportResult(report.name, future.result()))
            except Exception as e:
                print(f"   ❌ [{report.name}] Failed: {e}")
                results.append(ReportResult(report.name, error=e))
    return results


def main() -> int:
    print("🚀 New Relic → Google Sheets Report Uploader")
    settings = Settings()
    try:
        window = settings.time_window()
        settings.validate()
        manager = ReportsManager(load_reports(settings.reports_path, env=settings.env))
        reports = manager.select(settings.only_reports())
        gc = SheetsClient(credentials_path=settings.credentials_path)
    except ConfigError as e:
        print(f"❌ Configuration error: {e}")
        return 1

    print(f"📅 Time window: {window.begin} → {window.end}")
    print(f"🎯 Reports: {', '.join(r.name for r in reports) or 'none'}")

    results = run_reports(reports, window, gc, settings)

    failures = [r for r in results if not r.ok]
    total_rows = sum(r.rows_appended for r in results)
    print(f"\n📊 {len(results) - len(failures)}/{len(results)} report(s) succeeded, {total_rows} row(s) appended")
    if failures:
        for failure in failures:
            print(f"❌ {failure.report}: {failure.error}")
        return 1

    print("✅ Completed New Relic → Sheets for", window.begin, "→", window.end)
    return 0


if __name__ == '__main__':
    sys.exit(main())
