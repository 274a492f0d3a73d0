"""Global pipeline settings"""
import os
from datetime import datetime, timedelta
from typing import List, Mapping, NamedTuple, Optional

from dotenv import load_dotenv

NEW_RELIC = {
    "endpoints": {
        "US": "https://api.newrelic.com/graphql",
        "EU": "https://api.eu.newrelic.com/graphql",
    },
    "default_region": "US",
    # Seconds; there is no retry, a timed out request fails the report
    "request_timeout": 60.0,
    "api_key_env": "NEW_RELIC_API_KEY",
}

SHEETS = {
    "scopes": ["https://www.googleapis.com/auth/spreadsheets"],
    "value_input_option": "USER_ENTERED",
    "insert_data_option": "INSERT_ROWS",
}

TIME_WINDOW = {
    "format": "%Y-%m-%d %H:%M:%S %z",
    "begin": {"hour": 0, "minute": 0, "second": 0},
    "end": {"hour": 23, "minute": 59, "second": 0},
}

# Header names that receive the window boundaries instead of a query value
RESERVED_COLUMNS = {"begin": "beginTime", "end": "endTime"}

PATHS = {
    "credentials": "credentials.json",
    "reports": "reports.json",
}

TRUTHY = {"1", "true", "yes"}


class ConfigError(ValueError):
    """Raised for missing or malformed configuration, always before any network call."""


class TimeWindow(NamedTuple):
    begin: str
    end: str


class Settings:
    def __init__(self, env: Optional[Mapping[str, str]] = None):
        if env is None:
            # Load .env if present so users don't need to export variables manually
            load_dotenv()
            env = os.environ
        self.env = env
        self.new_relic = NEW_RELIC
        self.paths = PATHS

    def _get(self, name: str) -> str:
        return (self.env.get(name) or "").strip()

    @property
    def credentials_path(self) -> str:
        return self._get("GOOGLE_CREDENTIALS_FILE") or self.paths["credentials"]

    @property
    def reports_path(self) -> str:
        return self._get("REPORTS_FILE") or self.paths["reports"]

    @property
    def graphql_url(self) -> str:
        override = self._get("NEW_RELIC_GRAPHQL_URL")
        if override:
            return override
        region = (self._get("NEW_RELIC_REGION") or self.new_relic["default_region"]).upper()
        endpoints = self.new_relic["endpoints"]
        if region not in endpoints:
            raise ConfigError(f"Unknown New Relic region: {region} (expected one of {', '.join(endpoints)})")
        return endpoints[region]

    @property
    def request_timeout(self) -> float:
        raw = self._get("NEW_RELIC_TIMEOUT")
        if not raw:
            return self.new_relic["request_timeout"]
        try:
            timeout = float(raw)
        except ValueError:
            raise ConfigError(f"NEW_RELIC_TIMEOUT must be a number of seconds, got: {raw}")
        if timeout <= 0:
            raise ConfigError(f"NEW_RELIC_TIMEOUT must be positive, got: {raw}")
        return timeout

    def validate(self) -> None:
        """Resolve the NerdGraph endpoint and timeout so a bad value fails before any I/O."""
        self.graphql_url
        self.request_timeout

    @property
    def dry_run(self) -> bool:
        return self._get("DRY_RUN").lower() in TRUTHY

    def only_reports(self) -> List[str]:
        raw = self._get("ONLY_REPORTS")
        return [name.strip() for name in raw.split(",") if name.strip()]

    def time_window(self, now: Optional[datetime] = None) -> TimeWindow:
        """Return the run's window: BEGIN_TIME/END_TIME, or all of yesterday in local time."""
        begin = self._get("BEGIN_TIME")
        end = self._get("END_TIME")
        if begin and end:
            return TimeWindow(begin, end)
        if begin or end:
            raise ConfigError("BEGIN_TIME and END_TIME must be set together")
        return default_time_window(now)


def default_time_window(now: Optional[datetime] = None) -> TimeWindow:
    now = now or datetime.now().astimezone()
    if now.tzinfo is None:
        now = now.astimezone()
    yesterday = now - timedelta(days=1)
    fmt = TIME_WINDOW["format"]
    begin = yesterday.replace(microsecond=0, **TIME_WINDOW["begin"])
    end = yesterday.replace(microsecond=0, **TIME_WINDOW["end"])
    return TimeWindow(begin.strftime(fmt), end.strftime(fmt))
