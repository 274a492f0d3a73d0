import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from config.reports import Report
from config.settings import Settings, TimeWindow
from newrelic_to_sheets import TransportError, extract_results, fetch_nrql_results

WINDOW = TimeWindow("2022-05-17 00:00:00 +0700", "2022-05-17 23:59:00 +0700")
REPORT = Report(
    name="Play GRPC Report",
    spreadsheet_id="sheet-1",
    sheet_range="Play GRPC Report!A1:F1",
    api_key="NRAK-TEST",
    query="SELECT count(*) FROM Metric WHERE status != 'error'",
    account_id=3221984,
)


def _response(status=200, body=None, text=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    if body is not None:
        resp.json.return_value = body
        resp.text = json.dumps(body)
    else:
        resp.json.side_effect = ValueError("No JSON object could be decoded")
        resp.text = text or ""
    return resp


def _envelope(results):
    return {"data": {"actor": {"nrql": {"results": results}}}}


def test_fetch_posts_encoded_body_to_nerdgraph():
    settings = Settings(env={})
    with patch("newrelic_to_sheets.requests.post", return_value=_response(body=_envelope([{"count": 3}]))) as post:
        records = fetch_nrql_results(REPORT, WINDOW, settings)

    assert records == [{"count": 3}]
    args, kwargs = post.call_args
    assert args[0] == "https://api.newrelic.com/graphql"
    assert kwargs["headers"]["API-Key"] == "NRAK-TEST"
    assert kwargs["timeout"] == 60.0
    sent = kwargs["data"].decode("utf-8")
    assert "'" not in sent
    assert json.loads(sent)["variables"]["nrql"].endswith("UNTIL '2022-05-17 23:59:00 +0700'")


def test_eu_region_uses_eu_endpoint():
    settings = Settings(env={"NEW_RELIC_REGION": "eu"})
    with patch("newrelic_to_sheets.requests.post", return_value=_response(body=_envelope([]))) as post:
        fetch_nrql_results(REPORT, WINDOW, settings)

    assert post.call_args[0][0] == "https://api.eu.newrelic.com/graphql"


def test_non_success_status_raises_with_body():
    settings = Settings(env={})
    with patch("newrelic_to_sheets.requests.post", return_value=_response(status=401, text="Invalid API key")):
        with pytest.raises(TransportError, match="401.*Invalid API key"):
            fetch_nrql_results(REPORT, WINDOW, settings)


def test_unparseable_response_raises():
    settings = Settings(env={})
    with patch("newrelic_to_sheets.requests.post", return_value=_response(text="<html>bad gateway</html>")):
        with pytest.raises(TransportError, match="not JSON"):
            fetch_nrql_results(REPORT, WINDOW, settings)


def test_connection_error_raises_transport_error():
    settings = Settings(env={})
    with patch("newrelic_to_sheets.requests.post", side_effect=requests.exceptions.ConnectionError("refused")):
        with pytest.raises(TransportError, match="refused"):
            fetch_nrql_results(REPORT, WINDOW, settings)


def test_graphql_errors_without_results_raise():
    body = {"errors": [{"message": "NRQL Syntax Error"}], "data": {"actor": {"nrql": None}}}

    with pytest.raises(TransportError, match="NRQL Syntax Error"):
        extract_results(body, "grpc")


def test_missing_envelope_gives_no_records():
    assert extract_results({"data": {"actor": None}}) == []
    assert extract_results({}) == []


def test_nested_values_become_json_strings():
    body = _envelope([{"facet": ["play-api", "production"], "cpu": 12.5, "ok": True, "none": None}])

    assert extract_results(body) == [
        {"facet": '["play-api","production"]', "cpu": 12.5, "ok": True, "none": None}
    ]
