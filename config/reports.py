"""Report definitions: which NRQL query feeds which sheet range.

Definitions are read from the REPORTS_JSON environment variable (handy for CI
secrets) or from a JSON file, default ``reports.json``. The file holds either a
list of reports or ``{"reports": [...]}``; see ``reports.example.json``.
"""
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional

from .settings import NEW_RELIC, PATHS, ConfigError


class Report(NamedTuple):
    name: str
    spreadsheet_id: str
    sheet_range: str  # header source and append target, e.g. "Play GRPC Report!A1:F1"
    api_key: str
    query: str
    account_id: int

    def missing_fields(self) -> List[str]:
        fields = ["sheet_range", "spreadsheet_id", "api_key", "query", "account_id"]
        return [f for f in fields if not getattr(self, f)]

    def __repr__(self) -> str:
        # Keep the API key out of logs and tracebacks
        return (f"Report(name={self.name!r}, spreadsheet_id={self.spreadsheet_id!r}, "
                f"sheet_range={self.sheet_range!r}, account_id={self.account_id!r})")


def _parse_account_id(value: Any, name: str) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ConfigError(f"Report '{name}': account_id must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ConfigError(f"Report '{name}': account_id must be an integer, got {value!r}")


def report_from_dict(data: Mapping[str, Any], index: int, env: Optional[Mapping[str, str]] = None) -> Report:
    """Build a Report from one JSON entry.

    Missing fields are kept empty so per-report validation can name them later.
    The API key comes from ``api_key`` or from the environment variable named by
    ``api_key_env`` (default NEW_RELIC_API_KEY).
    """
    env = os.environ if env is None else env
    if not isinstance(data, Mapping):
        raise ConfigError(f"Report #{index + 1} must be a JSON object, got {type(data).__name__}")

    def text(key: str) -> str:
        value = data.get(key)
        return "" if value is None else str(value).strip()

    sheet_range = text("sheet_range")
    name = text("name") or sheet_range or f"report #{index + 1}"
    api_key = text("api_key")
    if not api_key:
        api_key = (env.get(text("api_key_env") or NEW_RELIC["api_key_env"]) or "").strip()

    return Report(
        name=name,
        spreadsheet_id=text("spreadsheet_id"),
        sheet_range=sheet_range,
        api_key=api_key,
        query=text("query"),
        account_id=_parse_account_id(data.get("account_id"), name),
    )


def load_reports(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> List[Report]:
    env = os.environ if env is None else env
    raw = (env.get("REPORTS_JSON") or "").strip()
    if raw:
        source = "REPORTS_JSON"
    else:
        report_path = Path(path or env.get("REPORTS_FILE") or PATHS["reports"])
        if not report_path.exists():
            raise ConfigError(f"Reports file not found: {report_path}")
        source = str(report_path)
        raw = report_path.read_text(encoding="utf-8")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {source}: {e}") from e

    if isinstance(data, dict):
        data = data.get("reports")
    if not isinstance(data, list):
        raise ConfigError(f"{source} must contain a list of reports")

    reports = [report_from_dict(entry, i, env) for i, entry in enumerate(data)]
    seen = set()
    for report in reports:
        if report.name in seen:
            raise ConfigError(f"Duplicate report name in {source}: {report.name}")
        seen.add(report.name)
    return reports


class ReportsManager:
    def __init__(self, reports: Iterable[Report]):
        self.reports: Dict[str, Report] = {r.name: r for r in reports}

    def get_report(self, name: str) -> Report:
        if name not in self.reports:
            raise ConfigError(f"Unknown report: {name} (configured: {', '.join(self.report_names()) or 'none'})")
        return self.reports[name]

    def report_names(self) -> List[str]:
        return list(self.reports.keys())

    def select(self, names: Optional[Iterable[str]] = None) -> List[Report]:
        """Return the named reports in the given order, or every report when no names are given."""
        names = list(names or [])
        if not names:
            return list(self.reports.values())
        return [self.get_report(n) for n in names]
