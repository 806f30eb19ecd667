from datetime import date

import pytest
import requests

from harvest_client import HarvestClient, period_range, summarize_entries
from conftest import entry
from report_models import UpstreamError


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text or str(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    def __init__(self, responses) -> None:
        self.responses = list(responses)
        self.requests: list[dict] = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.requests.append({"url": url, "headers": headers, "params": dict(params or {}), "timeout": timeout})
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


def _entry_json(eid: int, user: str = "Dana Reyes", hours: float = 1.0) -> dict:
    return {
        "id": eid,
        "spent_date": "2026-10-02",
        "hours": hours,
        "billable": True,
        "billable_rate": 100.0,
        "user": {"id": 7, "name": user},
        "project": {"id": 1, "name": "CloudSee Drive"},
        "client": {"id": 2, "name": "CloudSee"},
    }


def _client(session: FakeSession) -> HarvestClient:
    return HarvestClient("12345", "token-abc", base_url="https://harvest.test/v2", timeout=5, session=session)


def test_sends_auth_headers_range_and_follows_pages():
    session = FakeSession(
        [
            FakeResponse(payload={"time_entries": [_entry_json(1)], "next_page": 2}),
            FakeResponse(payload={"time_entries": [_entry_json(2)], "next_page": None}),
        ]
    )
    entries = _client(session).fetch_time_entries(date(2026, 10, 1), date(2026, 10, 31), {"project_id": 1})

    assert [e.id for e in entries] == [1, 2]
    first = session.requests[0]
    assert first["url"] == "https://harvest.test/v2/time_entries"
    assert first["headers"]["Authorization"] == "Bearer token-abc"
    assert first["headers"]["Harvest-Account-Id"] == "12345"
    assert first["params"]["from"] == "2026-10-01"
    assert first["params"]["to"] == "2026-10-31"
    assert first["params"]["project_id"] == "1"
    assert first["timeout"] == 5
    assert session.requests[1]["params"]["page"] == 2


def test_user_name_filter_is_applied_locally():
    session = FakeSession(
        [FakeResponse(payload={"time_entries": [_entry_json(1, "Dana Reyes"), _entry_json(2, "Sam Ortiz")]})]
    )
    entries = _client(session).fetch_time_entries("2026-10-01", "2026-10-31", {"user_name": "SAM"})
    assert [e.id for e in entries] == [2]
    assert "user_name" not in session.requests[0]["params"]


def test_non_2xx_raises_upstream_error():
    session = FakeSession([FakeResponse(status_code=401, payload={"error": "invalid_token"})])
    with pytest.raises(UpstreamError) as exc:
        _client(session).fetch_projects()
    assert exc.value.status_code == 401


def test_network_failure_raises_upstream_error():
    session = FakeSession([requests.exceptions.ConnectionError("boom")])
    with pytest.raises(UpstreamError):
        _client(session).fetch_clients()


def test_malformed_payload_raises_upstream_error():
    session = FakeSession([FakeResponse(payload={"projects": [{"name": "missing id"}]})])
    with pytest.raises(UpstreamError):
        _client(session).fetch_projects()


def test_non_json_body_raises_upstream_error():
    session = FakeSession([FakeResponse(status_code=200, payload=None, text="<html>")])
    with pytest.raises(UpstreamError):
        _client(session).fetch_clients()


def test_test_connection_reports_bool():
    assert _client(FakeSession([FakeResponse(payload={"id": 7})])).test_connection() is True
    assert _client(FakeSession([FakeResponse(status_code=403, payload={})])).test_connection() is False


def test_summarize_entries():
    entries = [
        entry(1, (1, "CloudSee Drive"), 3, client=(2, "CloudSee")),
        entry(2, (1, "CloudSee Drive"), 1.5, billable=False, client=(2, "CloudSee")),
        entry(3, (9, "Vision AST"), 2, client=(3, "Vision")),
    ]
    s = summarize_entries(entries)
    assert s["total_hours"] == 6.5
    assert s["billable_hours"] == 5.0
    assert s["non_billable_hours"] == 1.5
    assert s["project_count"] == 2
    assert s["client_count"] == 2
    assert s["average_per_entry"] == 2.2
    assert summarize_entries([])["average_per_entry"] == 0


def test_period_range_weeks_start_sunday():
    today = date(2026, 10, 14)  # Wednesday
    assert period_range("this_week", today) == ("2026-10-11", "2026-10-17")
    assert period_range("last_week", today) == ("2026-10-04", "2026-10-10")
    assert period_range("yesterday", today) == ("2026-10-13", "2026-10-13")
    assert period_range("this_month", today) == ("2026-10-01", "2026-10-31")
    assert period_range("last_month", today) == ("2026-09-01", "2026-09-30")
    assert period_range("today", today) == ("2026-10-14", "2026-10-14")


def test_get_current_user_reads_users_me():
    session = FakeSession([FakeResponse(payload={"id": 7, "first_name": "Dana"})])
    assert _client(session).get_current_user() == {"id": 7, "first_name": "Dana"}
    assert session.requests[0]["url"] == "https://harvest.test/v2/users/me"


def test_without_session_each_call_uses_requests_get(monkeypatch):
    calls = []

    def fake_get(url, headers=None, params=None, timeout=None):
        calls.append(url)
        return FakeResponse(payload={"clients": [{"id": 1, "name": "Acme Corp"}]})

    monkeypatch.setattr(requests, "get", fake_get)
    client = HarvestClient("12345", "token-abc", base_url="https://harvest.test/v2", timeout=5)
    assert client.session is None
    assert [c.name for c in client.fetch_clients()] == ["Acme Corp"]
    assert calls == ["https://harvest.test/v2/clients"]
