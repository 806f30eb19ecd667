import logging
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler

import settings
import store
from harvest_client import HarvestClient
from report_builder import ReportAssembler
from report_config import load_report_config
from report_email import deliver_report, render_report_html
from report_models import HarvestAssistantError

log = logging.getLogger(__name__)


def harvest_client_from_store() -> HarvestClient | None:
    cfg = store.get_harvest_config()
    if not cfg:
        return None
    return HarvestClient(account_id=cfg["account_id"], access_token=cfg["access_token"])


def make_assembler() -> ReportAssembler:
    # Target groups are re-read per build so edits to the JSON take effect without a restart
    return ReportAssembler(harvest_client_from_store(), load_report_config())


def send_monthly_report(month: str | None = None) -> dict[str, Any]:
    email_config = store.get_email_config()
    if not email_config or not email_config["report_recipients"]:
        log.info("No email configuration or recipients found - skipping monthly report")
        return {"ok": False, "error": "No email configuration or recipients", "results": []}

    assembler = make_assembler()
    report = assembler.build_report(month)
    html = render_report_html(report, hosting_support_title=assembler.config.hosting_support_label)
    results = deliver_report(report, html, email_config)
    return {"ok": any(r["ok"] for r in results), "report_label": report.report_label, "results": results}


def _weekly_report_job() -> None:
    log.info("Running scheduled monthly project report")
    try:
        outcome = send_monthly_report()
    except HarvestAssistantError:
        log.exception("Scheduled monthly report could not be built")
        return
    log.info("Scheduled monthly report finished: %s", outcome)


def start_scheduler() -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone=settings.REPORT_TIMEZONE)
    scheduler.add_job(
        _weekly_report_job,
        "cron",
        day_of_week=settings.REPORT_CRON_DAY_OF_WEEK,
        hour=settings.REPORT_CRON_HOUR,
        minute=settings.REPORT_CRON_MINUTE,
        id="weekly_report",
        replace_existing=True,
    )
    scheduler.start()
    log.info(
        "Report scheduler started: %s %02d:%02d %s",
        settings.REPORT_CRON_DAY_OF_WEEK,
        settings.REPORT_CRON_HOUR,
        settings.REPORT_CRON_MINUTE,
        settings.REPORT_TIMEZONE,
    )
    return scheduler
