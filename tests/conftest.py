from datetime import date
from typing import Any

import pytest

import settings
import store
from report_models import Client, Project, ReportConfig, TimeEntry, UpstreamError


def project(pid: int, name: str, budget: float | None = None, client: tuple[int, str] | None = None, **kw: Any) -> Project:
    data: dict[str, Any] = {"id": pid, "name": name, "budget": budget, **kw}
    if client:
        data["client"] = {"id": client[0], "name": client[1]}
    return Project.model_validate(data)


def entry(
    eid: int,
    project_ref: tuple[int, str],
    hours: float,
    billable: bool = True,
    billable_rate: float | None = None,
    client: tuple[int, str] | None = None,
    spent_date: str = "2026-10-05",
    user: str = "Dana Reyes",
    **kw: Any,
) -> TimeEntry:
    data: dict[str, Any] = {
        "id": eid,
        "spent_date": spent_date,
        "hours": hours,
        "billable": billable,
        "billable_rate": billable_rate,
        "project": {"id": project_ref[0], "name": project_ref[1]},
        "user": {"id": 1, "name": user},
        **kw,
    }
    if client:
        data["client"] = {"id": client[0], "name": client[1]}
    return TimeEntry.model_validate(data)


class FakeHarvestClient:
    def __init__(
        self,
        projects: list[Project] | None = None,
        clients: list[Client] | None = None,
        entries: list[TimeEntry] | None = None,
        fail: str | None = None,
    ) -> None:
        self.projects = projects or []
        self.clients = clients or []
        self.entries = entries or []
        self.fail = fail
        self.calls: list[tuple] = []

    def _maybe_fail(self, name: str) -> None:
        if self.fail == name:
            raise UpstreamError(f"Harvest API error 500 on /{name}", status_code=500)

    def fetch_projects(self) -> list[Project]:
        self.calls.append(("projects",))
        self._maybe_fail("projects")
        return list(self.projects)

    def fetch_clients(self) -> list[Client]:
        self.calls.append(("clients",))
        self._maybe_fail("clients")
        return list(self.clients)

    def fetch_time_entries(self, date_from=None, date_to=None, filters=None) -> list[TimeEntry]:
        self.calls.append(("time_entries", date_from, date_to, filters))
        self._maybe_fail("time_entries")
        return list(self.entries)

    def get_current_user(self) -> dict:
        self.calls.append(("users/me",))
        self._maybe_fail("users/me")
        return {"id": 7, "first_name": "Dana", "last_name": "Reyes", "email": "dana@example.com"}

    def test_connection(self) -> bool:
        return self.fail is None


@pytest.fixture
def report_config() -> ReportConfig:
    return ReportConfig.model_validate(
        {
            "rate_policy": {"rate_fields": ["billable_rate", "hourly_rate"], "fallback_rate": 75},
            "hosting_support_keywords": ["basic hosting support", "bhs"],
            "hosting_support_label": "Basic Hosting Support",
            "target_groups": [
                {"display_name": "CloudSee Drive", "keywords": ["cloudsee", "cloud see"]},
                {"display_name": "Vision AST", "keywords": ["vision", "ast"], "fallback_budget": 5000},
                {
                    "display_name": "Acme Corp",
                    "keywords": ["acme"],
                    "category": "hosting-support",
                    "support_hours": 8,
                    "support_rate": 150,
                },
                {
                    "display_name": "Icon Media, Inc.",
                    "keywords": ["icon", "media"],
                    "category": "hosting-support",
                    "support_hours": 2,
                    "support_rate": 150,
                },
            ],
        }
    )


@pytest.fixture
def fixed_today():
    return lambda: date(2026, 10, 18)


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DB_PATH", tmp_path / "test.db")
    monkeypatch.setattr(settings, "REPORTS_DIR", tmp_path / "reports")
    monkeypatch.setattr(settings, "HARVEST_ACCOUNT_ID", "")
    monkeypatch.setattr(settings, "HARVEST_ACCESS_TOKEN", "")
    monkeypatch.setattr(settings, "EMAIL_USER", "")
    monkeypatch.setattr(settings, "EMAIL_PASSWORD", "")
    store.ensure_db()
    return tmp_path
