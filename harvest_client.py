import logging
from datetime import date, timedelta
from typing import Any, TypeVar

import requests
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

import settings
from report_models import Client, Project, TimeEntry, UpstreamError

log = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

PER_PAGE = 2000


class HarvestClient:
    """
    Thin wrapper over Harvest API v2. Holds nothing but the account credentials.
    Every failure surfaces as UpstreamError; nothing is retried here.

    Without an explicit session each call goes through requests.get, so the report
    builder can fetch from several threads at once.
    """

    def __init__(
        self,
        account_id: str,
        access_token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.account_id = str(account_id)
        self.access_token = access_token
        self.base_url = (base_url or settings.HARVEST_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.HARVEST_TIMEOUT
        self.session = session

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Harvest-Account-Id": self.account_id,
            "User-Agent": settings.HARVEST_USER_AGENT,
            "Content-Type": "application/json",
        }

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            http = self.session or requests
            r = http.get(url, headers=self._headers(), params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise UpstreamError(f"Harvest API timeout on {path}") from e
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Harvest API connection error on {path}: {str(e)[:150]}") from e
        if not 200 <= r.status_code < 300:
            log.warning("Harvest %s returned %s: %s", path, r.status_code, r.text[:300])
            raise UpstreamError(f"Harvest API error {r.status_code} on {path}", status_code=r.status_code)
        try:
            data = r.json()
        except ValueError as e:
            raise UpstreamError(f"Harvest API returned non-JSON body on {path}") from e
        if not isinstance(data, dict):
            raise UpstreamError(f"Harvest API returned unexpected payload on {path}")
        return data

    def _list(self, path: str, key: str, model: type[T], params: dict[str, Any] | None = None) -> list[T]:
        """Follow next_page until exhausted so large ranges are not truncated to the first page."""
        query = dict(params or {})
        query["per_page"] = PER_PAGE
        page = 1
        items: list[T] = []
        while True:
            query["page"] = page
            data = self._get(path, query)
            raw = data.get(key) or []
            try:
                items.extend(model.model_validate(x) for x in raw)
            except PydanticValidationError as e:
                raise UpstreamError(f"Harvest API returned malformed {key}: {str(e)[:200]}") from e
            next_page = data.get("next_page")
            if not next_page or next_page == page:
                return items
            page = int(next_page)

    def get_current_user(self) -> dict[str, Any]:
        return self._get("/users/me")

    def test_connection(self) -> bool:
        try:
            self.get_current_user()
            return True
        except UpstreamError as e:
            log.warning("Harvest connection test failed: %s", e)
            return False

    def fetch_time_entries(
        self,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[TimeEntry]:
        """
        date_from/date_to are inclusive. filters may carry user_id, project_id, client_id
        (sent to the API) and user_name / user (case-insensitive substring, applied locally).
        """
        filters = filters or {}
        params: dict[str, Any] = {}
        if date_from:
            params["from"] = str(date_from)
        if date_to:
            params["to"] = str(date_to)
        for key in ("user_id", "project_id", "client_id"):
            if filters.get(key):
                params[key] = str(filters[key])

        entries = self._list("/time_entries", "time_entries", TimeEntry, params)

        search_name = (filters.get("user_name") or filters.get("user") or "").strip().lower()
        if search_name:
            entries = [e for e in entries if search_name in ((e.user.name if e.user else "") or "").lower()]
        return entries

    def fetch_projects(self) -> list[Project]:
        return self._list("/projects", "projects", Project)

    def fetch_clients(self) -> list[Client]:
        return self._list("/clients", "clients", Client)


def summarize_entries(entries: list[TimeEntry]) -> dict[str, Any]:
    """Headline numbers for a list of entries, shown next to chat answers."""
    total_hours = sum(e.hours for e in entries)
    billable_hours = sum(e.hours for e in entries if e.billable)
    projects = sorted({e.project.name for e in entries if e.project and e.project.name})
    clients = sorted({e.client.name for e in entries if e.client and e.client.name})
    return {
        "total_hours": round(total_hours, 1),
        "billable_hours": round(billable_hours, 1),
        "non_billable_hours": round(total_hours - billable_hours, 1),
        "project_count": len(projects),
        "client_count": len(clients),
        "average_per_entry": round(total_hours / len(entries), 1) if entries else 0,
        "projects": projects,
        "clients": clients,
    }


def period_range(period: str, today: date) -> tuple[str, str]:
    """Relative period name -> inclusive ISO range. Weeks start Sunday."""
    # weekday(): Mon=0 .. Sun=6
    days_since_sunday = (today.weekday() + 1) % 7
    if period == "yesterday":
        d = today - timedelta(days=1)
        return d.isoformat(), d.isoformat()
    if period == "this_week":
        start = today - timedelta(days=days_since_sunday)
        return start.isoformat(), (start + timedelta(days=6)).isoformat()
    if period == "last_week":
        start = today - timedelta(days=days_since_sunday + 7)
        return start.isoformat(), (start + timedelta(days=6)).isoformat()
    if period == "this_month":
        start = today.replace(day=1)
        nxt = (start + timedelta(days=32)).replace(day=1)
        return start.isoformat(), (nxt - timedelta(days=1)).isoformat()
    if period == "last_month":
        end = today.replace(day=1) - timedelta(days=1)
        return end.replace(day=1).isoformat(), end.isoformat()
    return today.isoformat(), today.isoformat()
