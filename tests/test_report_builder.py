from datetime import date

import pytest

from conftest import FakeHarvestClient, entry, project
from report_builder import ReportAssembler, month_label, resolve_month
from report_models import ConfigurationMissingError, UpstreamError, ValidationError


def _assembler(report_config, fixed_today, **client_kw) -> tuple[ReportAssembler, FakeHarvestClient]:
    client = FakeHarvestClient(**client_kw)
    return ReportAssembler(client, report_config, today=fixed_today), client


def test_resolve_month_explicit_and_default():
    assert resolve_month("2024-02", date(2026, 10, 18)) == (date(2024, 2, 1), date(2024, 2, 29))
    assert resolve_month(None, date(2026, 10, 18)) == (date(2026, 10, 1), date(2026, 10, 31))
    assert month_label(date(2024, 2, 1)) == "February 2024"


@pytest.mark.parametrize("bad", ["2024-13", "2024-00", "24-02", "2024/02", "February", "2024-2"])
def test_invalid_month_fails_before_any_fetch(report_config, fixed_today, bad):
    assembler, client = _assembler(report_config, fixed_today)
    with pytest.raises(ValidationError):
        assembler.build_report(bad)
    assert client.calls == []


def test_missing_credentials_is_distinct_from_upstream_failure(report_config, fixed_today):
    assembler = ReportAssembler(None, report_config, today=fixed_today)
    with pytest.raises(ConfigurationMissingError):
        assembler.build_report("2026-10")


def test_hosting_support_scenario(report_config, fixed_today):
    assembler, _ = _assembler(
        report_config,
        fixed_today,
        projects=[project(1, "Acme Basic Hosting Support", budget=0, client=(100, "Acme Corp"))],
        entries=[entry(1, (1, "Acme Basic Hosting Support"), 8, billable_rate=100, client=(100, "Acme Corp"))],
    )
    report = assembler.build_report("2026-10")
    acme = next(r for r in report.hosting_support_groups if r.name.startswith("Acme Corp"))
    assert acme.total_hours == 8
    assert acme.billable_hours == 8
    assert acme.billed_amount == 800.00
    assert acme.budget == 1200
    assert acme.budget_percent_complete == 66.67
    assert acme.budget_used_pct == 100.0
    assert acme.budget_remaining == 0
    assert report.total_hours == 8
    assert all(r.total_hours == 0 for r in report.primary_groups)


def test_no_entries_keeps_every_declared_group(report_config, fixed_today):
    assembler, _ = _assembler(
        report_config,
        fixed_today,
        projects=[project(1, "CloudSee Drive", budget=2000), project(2, "Vision AST", budget=3000)],
    )
    report = assembler.build_report()
    assert [r.name for r in report.primary_groups] == ["CloudSee Drive", "Vision AST"]
    for row in report.primary_groups:
        assert row.total_hours == 0
        assert row.billed_amount == 0.00
        assert row.budget_percent_complete == 0
    assert len(report.hosting_support_groups) == 2
    assert report.total_hours == 0


def test_label_and_range_follow_requested_month(report_config, fixed_today):
    assembler, client = _assembler(report_config, fixed_today)
    report = assembler.build_report("2024-02")
    assert report.report_label == "February 2024"
    assert report.month == "2024-02"
    assert (report.date_from, report.date_to) == (date(2024, 2, 1), date(2024, 2, 29))
    fetch = next(c for c in client.calls if c[0] == "time_entries")
    assert fetch[1:3] == (date(2024, 2, 1), date(2024, 2, 29))
    assert {c[0] for c in client.calls} == {"projects", "clients", "time_entries"}


def _mixed_dataset():
    projects = [
        project(1, "CloudSee Drive", budget=10000, budget_spent=2500, client=(10, "CloudSee")),
        project(2, "Vision AST Platform", budget=None, client=(20, "Vision AST")),
        project(3, "Acme BHS", client=(100, "Acme Corp")),
        project(4, "Icon Media - Basic Hosting Support", client=(200, "Icon Media, Inc.")),
        project(5, "Internal Ops", client=(1, "Us")),
    ]
    entries = [
        entry(1, (1, "CloudSee Drive"), 10, billable_rate=100),
        entry(2, (1, "CloudSee Drive"), 2.5, billable=False),
        entry(3, (2, "Vision AST Platform"), 4, hourly_rate=120),
        entry(4, (3, "Acme BHS"), 1.25, billable_rate=150),
        entry(5, (4, "Icon Media - Basic Hosting Support"), 3, billable_rate=150),
        entry(6, (5, "Internal Ops"), 7),
    ]
    return projects, entries


def test_conservation_and_sorting(report_config, fixed_today):
    projects, entries = _mixed_dataset()
    assembler, _ = _assembler(report_config, fixed_today, projects=projects, entries=entries)
    report = assembler.build_report("2026-10")

    primary = {r.name: r for r in report.primary_groups}
    assert primary["CloudSee Drive"].total_hours == 12.5
    assert primary["CloudSee Drive"].billable_hours == 10
    assert primary["CloudSee Drive"].billed_amount == 1000
    assert primary["CloudSee Drive"].budget_used_pct == 25.0
    assert primary["CloudSee Drive"].budget_percent_complete == 10.0
    # hourly_rate is the second rate field; budget falls back to the configured 5000
    assert primary["Vision AST"].billed_amount == 480
    assert primary["Vision AST"].budget == 5000

    grand = sum(r.total_hours for r in report.primary_groups) + sum(r.total_hours for r in report.hosting_support_groups)
    # the 7 hours on Internal Ops match no keyword
    assert grand == report.total_hours == 12.5 + 4 + 1.25 + 3

    hours = [r.total_hours for r in report.primary_groups]
    assert hours == sorted(hours, reverse=True)
    assert [r.name for r in report.hosting_support_groups] == [
        "Icon Media, Inc. - Basic Hosting Support",
        "Acme Corp - Basic Hosting Support",
    ]


def test_build_is_idempotent(report_config, fixed_today):
    projects, entries = _mixed_dataset()
    assembler, _ = _assembler(report_config, fixed_today, projects=projects, entries=entries)
    assert assembler.build_report("2026-09").model_dump_json() == assembler.build_report("2026-09").model_dump_json()


@pytest.mark.parametrize("failing", ["projects", "clients", "time_entries"])
def test_upstream_failure_aborts_whole_report(report_config, fixed_today, failing):
    projects, entries = _mixed_dataset()
    assembler, _ = _assembler(report_config, fixed_today, projects=projects, entries=entries, fail=failing)
    with pytest.raises(UpstreamError):
        assembler.build_report("2026-10")


def test_negative_hours_from_provider_surface_as_validation_error(report_config, fixed_today):
    assembler, _ = _assembler(
        report_config,
        fixed_today,
        projects=[project(1, "CloudSee Drive")],
        entries=[entry(1, (1, "CloudSee Drive"), -3)],
    )
    with pytest.raises(ValidationError):
        assembler.build_report("2026-10")
