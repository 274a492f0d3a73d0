#!/usr/bin/env python3
"""
Standalone script to push a single report
Usage: python3 push_report.py REPORT_NAME [BEGIN END]
Example: python3 push_report.py "Play GRPC Report" "2022-05-17 00:00:00 +0700" "2022-05-17 23:59:00 +0700"
"""

import sys

from config import ConfigError, ReportsManager, Settings, TimeWindow, load_reports
from newrelic_to_sheets import SheetsClient, run_report

USAGE = "Usage: python3 push_report.py REPORT_NAME [BEGIN END]"


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) not in (1, 3):
        print(USAGE)
        return 2

    name = argv[0]
    print(f"🚀 Single report - Pushing '{name}' to Google Sheets")
    settings = Settings()

    try:
        if len(argv) == 3:
            window = TimeWindow(argv[1], argv[2])
            print(f"📅 Using provided window: {window.begin} → {window.end}")
        else:
            window = settings.time_window()
            print(f"📅 Using window: {window.begin} → {window.end}")
        settings.validate()

        report = ReportsManager(load_reports(settings.reports_path, env=settings.env)).get_report(name)
        print(f"📋 Target range: {report.sheet_range}")
        print(f"🔗 https://docs.google.com/spreadsheets/d/{report.spreadsheet_id}")

        print("\n🔌 Connecting to Google Sheets...")
        gc = SheetsClient(credentials_path=settings.credentials_path)
        appended = run_report(gc, report, window, settings)
    except ConfigError as e:
        print(f"\n❌ Configuration error: {e}")
        return 1
    except Exception as e:
        print(f"\n❌ Failed to push report '{name}': {e}")
        return 1

    print(f"\n✅ Successfully pushed {appended} row(s) for '{name}'")
    return 0


if __name__ == '__main__':
    sys.exit(main())
