import json
from unittest.mock import patch

import push_report
from config.settings import TimeWindow
from newrelic_to_sheets import TransportError

REPORTS = [{
    "name": "Play GRPC Report",
    "spreadsheet_id": "sheet-1",
    "sheet_range": "Play GRPC Report!A1:F1",
    "api_key": "NRAK-1",
    "query": "SELECT 1",
    "account_id": 1,
}]


def test_usage_on_wrong_arguments():
    assert push_report.main([]) == 2
    assert push_report.main(["a", "only-begin"]) == 2


def test_pushes_named_report_for_given_window(monkeypatch):
    monkeypatch.setenv("REPORTS_JSON", json.dumps(REPORTS))
    with patch("push_report.SheetsClient") as client, patch("push_report.run_report", return_value=3) as run:
        code = push_report.main(["Play GRPC Report", "2022-05-17 00:00:00 +0700", "2022-05-17 23:59:00 +0700"])

    assert code == 0
    _, report, window, _ = run.call_args[0]
    assert report.name == "Play GRPC Report"
    assert window == TimeWindow("2022-05-17 00:00:00 +0700", "2022-05-17 23:59:00 +0700")
    client.assert_called_once()


def test_unknown_report_exits_non_zero(monkeypatch):
    monkeypatch.setenv("REPORTS_JSON", json.dumps(REPORTS))
    with patch("push_report.SheetsClient") as client:
        assert push_report.main(["Nope", "b", "e"]) == 1

    client.assert_not_called()


def test_failed_report_exits_non_zero(monkeypatch):
    monkeypatch.setenv("REPORTS_JSON", json.dumps(REPORTS))
    with patch("push_report.SheetsClient"), \
            patch("push_report.run_report", side_effect=TransportError("HTTP 500: boom")):
        assert push_report.main(["Play GRPC Report", "b", "e"]) == 1


def test_bad_region_fails_before_connecting(monkeypatch):
    monkeypatch.setenv("REPORTS_JSON", json.dumps(REPORTS))
    monkeypatch.setenv("NEW_RELIC_REGION", "APAC")
    with patch("push_report.SheetsClient") as client, patch("push_report.run_report") as run:
        assert push_report.main(["Play GRPC Report", "b", "e"]) == 1

    client.assert_not_called()
    run.assert_not_called()
