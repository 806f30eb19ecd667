import calendar
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from typing import Callable
from zoneinfo import ZoneInfo

import settings
from aggregator import aggregate, sort_descending_by_hours
from categorizer import apply_entry_totals, categorize_by_client, categorize_projects, categorize_time_entries
from harvest_client import HarvestClient
from report_models import ConfigurationMissingError, ReportConfig, ReportData, ValidationError

log = logging.getLogger(__name__)

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def report_today() -> date:
    return datetime.now(ZoneInfo(settings.REPORT_TIMEZONE)).date()


def resolve_month(month: str | None, today: date) -> tuple[date, date]:
    """'YYYY-MM' (or None for the month containing today) -> inclusive [first day, last day]."""
    if month is None or not month.strip():
        year, mon = today.year, today.month
    else:
        m = _MONTH_RE.match(month.strip())
        if not m:
            raise ValidationError(f"Invalid month {month!r}; expected YYYY-MM")
        year, mon = int(m.group(1)), int(m.group(2))
        if not 1 <= mon <= 12 or year < 1:
            raise ValidationError(f"Invalid month {month!r}; expected YYYY-MM")
    last_day = calendar.monthrange(year, mon)[1]
    return date(year, mon, 1), date(year, mon, last_day)


def month_label(first_day: date) -> str:
    return f"{calendar.month_name[first_day.month]} {first_day.year}"


class ReportAssembler:
    """
    Single entry point for the monthly budget report, shared by the HTTP endpoints
    and the weekly scheduled delivery. Holds no per-build state, so concurrent
    builds are independent.
    """

    def __init__(
        self,
        client: HarvestClient | None,
        config: ReportConfig,
        today: Callable[[], date] | None = None,
    ) -> None:
        self.client = client
        self.config = config
        self.today = today or report_today

    def build_report(self, month: str | None = None) -> ReportData:
        date_from, date_to = resolve_month(month, self.today())
        if self.client is None:
            raise ConfigurationMissingError("Harvest API not configured. Please set up your API credentials first.")
        client = self.client

        log.info("Building report for %s..%s", date_from, date_to)
        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="harvest-fetch") as pool:
            projects_f = pool.submit(client.fetch_projects)
            clients_f = pool.submit(client.fetch_clients)
            entries_f = pool.submit(client.fetch_time_entries, date_from, date_to, {})
            projects = projects_f.result()
            clients = clients_f.result()
            entries = entries_f.result()

        cfg = self.config
        known_project_ids = frozenset(p.id for p in projects)

        matched = categorize_projects(projects, cfg.primary_groups, exclude_keywords=cfg.hosting_support_keywords)
        entry_totals = categorize_time_entries(
            entries,
            matched.group_by_project_id,
            cfg.primary_groups,
            cfg.rate_policy,
            known_project_ids=known_project_ids,
            exclude_keywords=cfg.hosting_support_keywords,
        )
        primary_rows = apply_entry_totals(matched.rows, entry_totals)
        hosting_rows = categorize_by_client(
            projects,
            entries,
            cfg.hosting_support_groups,
            cfg.hosting_support_keywords,
            cfg.rate_policy,
            clients=clients,
            hosting_support_label=cfg.hosting_support_label,
        )

        primary = sort_descending_by_hours(aggregate(r) for r in primary_rows.values())
        hosting = sort_descending_by_hours(aggregate(r) for r in hosting_rows.values())
        total_hours = sum(r.total_hours for r in primary_rows.values()) + sum(
            r.total_hours for r in hosting_rows.values()
        )

        return ReportData(
            month=f"{date_from.year:04d}-{date_from.month:02d}",
            report_label=month_label(date_from),
            date_from=date_from,
            date_to=date_to,
            primary_groups=primary,
            hosting_support_groups=hosting,
            total_hours=round(total_hours, 2),
        )
