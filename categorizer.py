"""
Consolidates raw Harvest projects and time entries into configured target groups.

Two passes exist. The project-keyed pass groups primary business lines by project
name. The client-keyed pass takes only projects whose name carries a hosting-support
keyword and regroups them by owning client, so the hosting-support table shows one
row per client rather than one per Harvest project.

All functions are folds that return new mappings; no accumulator is shared between
passes.
"""
import logging
from dataclasses import dataclass, replace
from functools import reduce
from typing import Iterable, Mapping

from aggregator import check_amount
from report_models import Client, PartialRow, Project, RatePolicy, TargetGroup, TimeEntry

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntryTotals:
    total_hours: float = 0.0
    billable_hours: float = 0.0
    billed_amount: float = 0.0

    def plus(self, entry: TimeEntry, rate_policy: RatePolicy) -> "EntryTotals":
        hours = check_amount(entry.hours, f"time entry {entry.id} hours")
        if not entry.billable:
            return replace(self, total_hours=self.total_hours + hours)
        rate = check_amount(rate_policy.rate_for(entry), f"time entry {entry.id} rate")
        return EntryTotals(
            total_hours=self.total_hours + hours,
            billable_hours=self.billable_hours + hours,
            billed_amount=self.billed_amount + hours * rate,
        )


@dataclass(frozen=True)
class ProjectCategorization:
    rows: dict[str, PartialRow]
    group_by_project_id: dict[int, str]


def match_group(name: str | None, groups: Iterable[TargetGroup]) -> TargetGroup | None:
    """First declared group with a keyword contained in the lowercased name."""
    for group in groups:
        if group.matches(name):
            return group
    return None


def _matches_any(name: str | None, keywords: Iterable[str]) -> bool:
    lowered = (name or "").lower()
    return any(kw in lowered for kw in keywords)


def seed_row(group: TargetGroup, hosting_support_label: str = "") -> PartialRow:
    if group.category == "hosting-support":
        name = f"{group.display_name} - {hosting_support_label}" if hosting_support_label else group.display_name
        return PartialRow(
            id=group.row_id,
            name=name,
            category=group.category,
            budget=group.support_hours * group.support_rate,
            support_hours=group.support_hours,
        )
    return PartialRow(id=group.row_id, name=group.display_name, category=group.category)


def categorize_projects(
    raw_projects: Iterable[Project],
    target_groups: list[TargetGroup],
    exclude_keywords: Iterable[str] = (),
) -> ProjectCategorization:
    """
    Project-keyed pass. Every declared group gets a row. A group backed by several
    raw projects keeps the largest provider budget seen rather than summing
    duplicates; only when none of its projects reports a budget does the group's
    fallback_budget apply.
    """
    exclude_keywords = tuple(exclude_keywords)
    seeded = {g.key: seed_row(g) for g in target_groups}

    def step(acc: ProjectCategorization, project: Project) -> ProjectCategorization:
        if _matches_any(project.name, exclude_keywords):
            return acc
        group = match_group(project.name, target_groups)
        if group is None:
            return acc
        budget = check_amount(project.budget or 0.0, f"project {project.id} budget")
        spent = check_amount(project.budget_spent or 0.0, f"project {project.id} budget spent")
        row = acc.rows[group.key]
        updated = replace(row, budget=max(row.budget, budget), budget_spent=max(row.budget_spent, spent))
        return ProjectCategorization(
            rows={**acc.rows, group.key: updated},
            group_by_project_id={**acc.group_by_project_id, project.id: group.key},
        )

    folded = reduce(step, raw_projects, ProjectCategorization(rows=seeded, group_by_project_id={}))
    matched_keys = set(folded.group_by_project_id.values())
    fallbacks = {g.key: g.fallback_budget for g in target_groups}
    rows = {
        key: replace(row, budget=fallbacks[key]) if key in matched_keys and row.budget <= 0 else row
        for key, row in folded.rows.items()
    }
    return ProjectCategorization(rows=rows, group_by_project_id=folded.group_by_project_id)


def categorize_time_entries(
    entries: Iterable[TimeEntry],
    group_by_project_id: Mapping[int, str],
    target_groups: list[TargetGroup],
    rate_policy: RatePolicy,
    known_project_ids: frozenset[int] = frozenset(),
    exclude_keywords: Iterable[str] = (),
) -> dict[str, EntryTotals]:
    """
    Route each entry by its project id into the group chosen by categorize_projects.
    An entry whose project id never appeared in the project listing is routed by
    project name instead, so hours are not lost when the two listings disagree.
    An entry whose project was listed but not accepted is dropped.
    """
    exclude_keywords = tuple(exclude_keywords)

    def step(acc: dict[str, EntryTotals], entry: TimeEntry) -> dict[str, EntryTotals]:
        key = group_by_project_id.get(entry.project.id)
        if key is None and entry.project.id not in known_project_ids:
            if not _matches_any(entry.project.name, exclude_keywords):
                group = match_group(entry.project.name, target_groups)
                key = group.key if group else None
        if key is None:
            return acc
        return {**acc, key: acc.get(key, EntryTotals()).plus(entry, rate_policy)}

    return reduce(step, entries, {})


def apply_entry_totals(rows: Mapping[str, PartialRow], totals: Mapping[str, EntryTotals]) -> dict[str, PartialRow]:
    out: dict[str, PartialRow] = {}
    for key, row in rows.items():
        t = totals.get(key)
        if t is None:
            out[key] = row
            continue
        out[key] = replace(
            row,
            total_hours=row.total_hours + t.total_hours,
            billable_hours=row.billable_hours + t.billable_hours,
            billed_amount=row.billed_amount + t.billed_amount,
        )
    return out


def _client_name(ref_id: int | None, ref_name: str | None, clients_by_id: Mapping[int, Client]) -> str:
    if ref_name:
        return ref_name
    if ref_id is not None and ref_id in clients_by_id:
        return clients_by_id[ref_id].name
    return ""


def categorize_by_client(
    raw_projects: Iterable[Project],
    time_entries: Iterable[TimeEntry],
    client_targets: list[TargetGroup],
    hosting_support_keywords: Iterable[str],
    rate_policy: RatePolicy,
    clients: Iterable[Client] = (),
    hosting_support_label: str = "",
) -> dict[str, PartialRow]:
    """
    Client-keyed pass over hosting-support projects. Every declared client target is
    present, pre-seeded with its nominal budget (support_hours * support_rate).
    billed_amount prices each entry at its own rate; budget_spent prices the logged
    hours at the fixed support rate. The two are kept as separate figures.
    """
    hosting_support_keywords = tuple(hosting_support_keywords)
    raw_projects = list(raw_projects)
    time_entries = list(time_entries)
    clients_by_id = {c.id: c for c in clients}
    known_project_ids = frozenset(p.id for p in raw_projects)

    # Projects listed without a client ref fall back to the client carried on their entries
    entry_client_by_project: dict[int, str] = {}
    for e in time_entries:
        if e.client and e.project.id not in entry_client_by_project:
            name = _client_name(e.client.id, e.client.name, clients_by_id)
            if name:
                entry_client_by_project[e.project.id] = name

    def assign(acc: dict[int, str], project: Project) -> dict[int, str]:
        if not _matches_any(project.name, hosting_support_keywords):
            return acc
        client_ref = project.client
        name = _client_name(client_ref.id if client_ref else None, client_ref.name if client_ref else None, clients_by_id)
        name = name or entry_client_by_project.get(project.id, "")
        target = match_group(name, client_targets)
        if target is None:
            log.info("Hosting-support project %r (client %r) matches no client target", project.name, name)
            return acc
        return {**acc, project.id: target.key}

    target_by_project_id = reduce(assign, raw_projects, {})

    def route(acc: dict[str, EntryTotals], entry: TimeEntry) -> dict[str, EntryTotals]:
        key = target_by_project_id.get(entry.project.id)
        if key is None and entry.project.id not in known_project_ids and _matches_any(entry.project.name, hosting_support_keywords):
            client_ref = entry.client
            name = _client_name(client_ref.id if client_ref else None, client_ref.name if client_ref else None, clients_by_id)
            target = match_group(name, client_targets)
            key = target.key if target else None
        if key is None:
            return acc
        return {**acc, key: acc.get(key, EntryTotals()).plus(entry, rate_policy)}

    totals = reduce(route, time_entries, {})
    seeded = {g.key: seed_row(g, hosting_support_label) for g in client_targets}
    rows = apply_entry_totals(seeded, totals)
    rates = {g.key: g.support_rate for g in client_targets}
    return {key: replace(row, budget_spent=row.total_hours * rates[key]) for key, row in rows.items()}
