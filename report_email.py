import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from pathlib import Path
from typing import Any

import settings
from report_models import AggregateRow, ReportData

log = logging.getLogger(__name__)


def _pct_color(pct: float) -> str:
    if pct > 90:
        return "#e74c3c"
    if pct > 75:
        return "#f39c12"
    return "#27ae60"


def _table_rows(rows: list[AggregateRow]) -> str:
    out = []
    for row in rows:
        if row.budget > 0:
            budget_cell = f"${row.budget:,.2f}"
            pct_cell = f"{row.budget_percent_complete:.1f}%"
            color = _pct_color(row.budget_percent_complete)
        else:
            budget_cell = "No Budget Set"
            pct_cell = "N/A"
            color = "#7f8c8d"
        out.append(
            f"""
      <tr>
        <td style="padding: 12px; border-bottom: 1px solid #eee;">{escape(row.name)}</td>
        <td style="padding: 12px; border-bottom: 1px solid #eee; text-align: center;">{row.total_hours:.1f}h</td>
        <td style="padding: 12px; border-bottom: 1px solid #eee; text-align: center;">${row.billed_amount:,.2f}</td>
        <td style="padding: 12px; border-bottom: 1px solid #eee; text-align: center;">{budget_cell}</td>
        <td style="padding: 12px; border-bottom: 1px solid #eee; text-align: center; color: {color};">{pct_cell}</td>
      </tr>"""
        )
    return "".join(out)


def _table(title: str, rows: list[AggregateRow]) -> str:
    return f"""
    <h2 style="color: #2c3e50; margin: 30px 0 20px 0;">{escape(title)}</h2>
    <table style="width: 100%; border-collapse: collapse; background: white;">
      <thead>
        <tr style="background: #34495e; color: white;">
          <th style="padding: 15px; text-align: left;">Name</th>
          <th style="padding: 15px; text-align: center;">Hours Logged</th>
          <th style="padding: 15px; text-align: center;">Billed</th>
          <th style="padding: 15px; text-align: center;">Total Budget</th>
          <th style="padding: 15px; text-align: center;">Budget %</th>
        </tr>
      </thead>
      <tbody>{_table_rows(rows)}
      </tbody>
    </table>"""


def render_report_html(report: ReportData, hosting_support_title: str = "Basic Hosting Support (BHS)") -> str:
    """Self-contained HTML document (inline styles only) for email clients."""
    primary_hours = sum(r.total_hours for r in report.primary_groups)
    hosting_hours = sum(r.total_hours for r in report.hosting_support_groups)
    hosting_section = _table(hosting_support_title, report.hosting_support_groups) if report.hosting_support_groups else ""
    hosting_total = (
        f"<p><strong>Total {escape(hosting_support_title)} Hours:</strong> {hosting_hours:.1f} hours</p>"
        if report.hosting_support_groups
        else ""
    )
    label = escape(report.report_label)
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Monthly Project Budget Report - {label}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 800px; margin: 0 auto; padding: 20px;">
  <div style="background: linear-gradient(135deg, #FF6B35, #F7931E); color: white; padding: 30px; border-radius: 8px; text-align: center;">
    <h1 style="margin: 0; font-size: 28px;">Monthly Project Budget Report</h1>
    <p style="margin: 10px 0 0 0; font-size: 16px;">{label} ({report.date_from.isoformat()} to {report.date_to.isoformat()})</p>
  </div>
  {_table("Primary Projects", report.primary_groups)}
  {hosting_section}
  <div style="margin-top: 30px; padding: 20px; background: #ecf0f1; border-radius: 8px;">
    <h3 style="color: #2c3e50; margin-top: 0;">Summary</h3>
    <p><strong>Total Primary Project Hours:</strong> {primary_hours:.1f} hours</p>
    {hosting_total}
    <p><strong>Total Hours This Month:</strong> {report.total_hours:.1f} hours</p>
    <p><strong>Groups Tracked:</strong> {len(report.primary_groups) + len(report.hosting_support_groups)}</p>
  </div>
</body>
</html>
"""


def send_email(to: str, subject: str, html: str, email_config: dict[str, Any]) -> bool:
    """SMTP with STARTTLS. Returns False on any delivery failure so the caller can fall back."""
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = email_config["email_user"]
    msg["To"] = to
    msg.attach(MIMEText(html, "html"))
    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT) as server:
            server.starttls()
            server.login(email_config["email_user"], email_config["email_password"])
            server.sendmail(email_config["email_user"], [to], msg.as_string())
    except smtplib.SMTPAuthenticationError as e:
        log.error(
            "SMTP authentication failed for %s (%s). Gmail accounts need 2-Step Verification and an App Password.",
            email_config["email_user"],
            e.smtp_code,
        )
        return False
    except (smtplib.SMTPException, OSError) as e:
        log.error("Failed to send email to %s: %s", to, e)
        return False
    log.info("Email sent to %s", to)
    return True


def save_report_as_file(html: str, recipient: str) -> Path | None:
    """Durable draft when delivery fails; the operator sends it by hand."""
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%f")
    path = settings.REPORTS_DIR / f"monthly-report-{stamp}.html"
    try:
        settings.REPORTS_DIR.mkdir(parents=True, exist_ok=True)
        path.write_text(html, encoding="utf-8")
    except OSError as e:
        log.error("Failed to save report file for %s: %s", recipient, e)
        return None
    log.warning("Email delivery failed; report for %s saved to %s", recipient, path)
    return path


def manual_send_instructions(recipient: str, path: Path, report_label: str) -> str:
    return (
        "To send the report manually:\n"
        f"1. Open {path} in a browser\n"
        "2. Copy all of the content\n"
        f"3. Create a new email to: {recipient}\n"
        f"4. Subject: Monthly Project Budget Report - {report_label}\n"
        "5. Paste the content into the body and send"
    )


def deliver_report(report: ReportData, html: str, email_config: dict[str, Any]) -> list[dict[str, Any]]:
    """Send to each recipient separately; a failed recipient gets a file draft instead."""
    subject = f"Monthly Project Budget Report - {report.report_label}"
    results: list[dict[str, Any]] = []
    for recipient in email_config.get("report_recipients") or []:
        if send_email(recipient, subject, html, email_config):
            results.append({"recipient": recipient, "ok": True})
            continue
        path = save_report_as_file(html, recipient)
        if path is not None:
            log.warning(manual_send_instructions(recipient, path, report.report_label))
        results.append({"recipient": recipient, "ok": False, "fallback_path": str(path) if path else None})
    if results and not any(r["ok"] for r in results):
        log.error("Failed to send monthly report to any recipient")
    return results
