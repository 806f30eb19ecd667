import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

import settings
import store
from assistant_ai import generate_response, parse_natural_language_query
from harvest_client import HarvestClient, period_range, summarize_entries
from report_builder import report_today
from report_email import render_report_html
from report_models import (
    ConfigurationMissingError,
    HarvestAssistantError,
    ReportConfigError,
    ReportData,
    UpstreamError,
    ValidationError,
)
from report_scheduler import harvest_client_from_store, make_assembler, send_monthly_report, start_scheduler

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _http_error(exc: HarvestAssistantError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ConfigurationMissingError):
        return HTTPException(status_code=400, detail={"error": "not_configured", "message": str(exc)})
    if isinstance(exc, UpstreamError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, ReportConfigError):
        log.error("Report target configuration is unusable: %s", exc)
        return HTTPException(status_code=500, detail="Report target configuration is invalid")
    return HTTPException(status_code=500, detail=str(exc))


def _require_harvest_client() -> HarvestClient:
    client = harvest_client_from_store()
    if client is None:
        raise _http_error(
            ConfigurationMissingError("Harvest API not configured. Please set up your API credentials first.")
        )
    return client


@app.on_event("startup")
def on_startup() -> None:
    store.ensure_db()
    if settings.REPORT_SCHEDULER_ENABLED:
        app.state.scheduler = start_scheduler()


@app.on_event("shutdown")
def on_shutdown() -> None:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)


@app.get("/api/health")
def api_health() -> dict[str, Any]:
    return {"ok": True, "now": _utc_now().isoformat(), "db": str(settings.DB_PATH)}


# ─────────────────────────────────────────────────────────────
# Chat
# ─────────────────────────────────────────────────────────────

class ChatIn(BaseModel):
    message: str = Field(min_length=1)


SUMMARY_PERIODS = {"daily": "today", "weekly": "this_week", "monthly": "this_month"}


def _resolve_date_range(params: dict[str, Any], summary_type: str | None) -> tuple[str | None, str | None]:
    dr = params.get("date_range") or {}
    date_from, date_to = dr.get("from"), dr.get("to")
    if not date_from and not date_to and summary_type in SUMMARY_PERIODS:
        return period_range(SUMMARY_PERIODS[summary_type], report_today())
    return date_from, date_to


def _execute_query(
    client: HarvestClient, query_type: str, params: dict[str, Any], summary_type: str | None = None
) -> tuple[Any, dict[str, Any] | None]:
    filters = dict(params.get("filters") or {})
    for key in ("user_id", "project_id", "client_id"):
        if params.get(key):
            filters[key] = params[key]

    if query_type == "projects":
        return [p.model_dump(mode="json") for p in client.fetch_projects()], None
    if query_type == "clients":
        return [c.model_dump(mode="json") for c in client.fetch_clients()], None
    if query_type == "report":
        report = make_assembler().build_report(params.get("month"))
        return report.model_dump(mode="json"), None

    date_from, date_to = _resolve_date_range(params, summary_type)
    entries = client.fetch_time_entries(date_from, date_to, filters)
    summary = summarize_entries(entries) if query_type in ("time_entries", "summary") else None
    return [e.model_dump(mode="json") for e in entries], summary


@app.post("/api/chat")
def api_chat(req: ChatIn) -> dict[str, Any]:
    message = req.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required")
    client = _require_harvest_client()

    try:
        parsed = parse_natural_language_query(message, report_today())
        data, summary = _execute_query(client, parsed.query_type, parsed.parameters, parsed.summary_type)
    except HarvestAssistantError as e:
        log.warning("Chat query failed: %s", e)
        raise _http_error(e)

    response = generate_response(message, data, parsed.query_type)
    store.create_chat_message(content=message, role="user", query_type=parsed.query_type)
    store.create_chat_message(
        content=response,
        role="assistant",
        harvest_data={"data": data, "summary": summary, "parsed_query": parsed.model_dump()},
        query_type=parsed.query_type,
    )
    return {
        "response": response,
        "data": data,
        "summary": summary,
        "query_type": parsed.query_type,
        "parsed_query": parsed.model_dump(),
    }


@app.get("/api/chat/history")
def api_chat_history() -> list[dict[str, Any]]:
    return store.get_chat_messages()


# ─────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────

class HarvestConfigIn(BaseModel):
    account_id: str = Field(min_length=1)
    access_token: str = Field(min_length=1)


class EmailConfigIn(BaseModel):
    email_user: str = Field(min_length=1)
    email_password: str = Field(min_length=1)
    report_recipients: str = ""


@app.post("/api/harvest/config")
def api_harvest_config(req: HarvestConfigIn) -> JSONResponse:
    # Test the connection before saving
    client = HarvestClient(account_id=req.account_id, access_token=req.access_token)
    if not client.test_connection():
        raise HTTPException(status_code=400, detail="Invalid Harvest API credentials")
    store.save_harvest_config(req.account_id, req.access_token)
    return JSONResponse({"ok": True, "message": "Harvest API configured successfully"})


@app.get("/api/harvest/status")
def api_harvest_status() -> dict[str, Any]:
    client = harvest_client_from_store()
    if client is None:
        return {"connected": False, "message": "No configuration found"}
    try:
        me = client.get_current_user()
    except UpstreamError as e:
        log.warning("Harvest status check failed: %s", e)
        return {"connected": False, "message": "Connection failed"}
    user = {
        "id": me.get("id"),
        "name": " ".join(p for p in (me.get("first_name"), me.get("last_name")) if p),
        "email": me.get("email"),
    }
    return {"connected": True, "message": "Connected to Harvest API", "user": user}


@app.post("/api/email/config")
def api_email_config(req: EmailConfigIn) -> JSONResponse:
    store.save_email_config(req.email_user, req.email_password, req.report_recipients)
    return JSONResponse({"ok": True, "message": "Email configuration saved successfully"})


@app.get("/api/config")
def api_config() -> dict[str, Any]:
    """Booleans and non-secret identifiers only."""
    harvest_cfg = store.get_harvest_config()
    email_cfg = store.get_email_config()
    return {
        "harvest_configured": harvest_cfg is not None,
        "email_configured": email_cfg is not None,
        "harvest_account_id": harvest_cfg["account_id"] if harvest_cfg else "",
        "email_user": email_cfg["email_user"] if email_cfg else "",
        "report_recipients": email_cfg["report_recipients"] if email_cfg else [],
        "llm_configured": bool(settings.LLM_API_KEY),
    }


# ─────────────────────────────────────────────────────────────
# Reports
# ─────────────────────────────────────────────────────────────

def _build_report(month: str | None) -> tuple[ReportData, str]:
    try:
        assembler = make_assembler()
        return assembler.build_report(month), assembler.config.hosting_support_label
    except HarvestAssistantError as e:
        log.warning("Report build failed: %s", e)
        raise _http_error(e)


@app.get("/api/reports/data", response_model=ReportData)
def api_report_data(month: str | None = None) -> ReportData:
    report, _ = _build_report(month)
    return report


@app.get("/api/reports/html", response_class=HTMLResponse)
def api_report_html(month: str | None = None) -> HTMLResponse:
    report, hosting_label = _build_report(month)
    return HTMLResponse(render_report_html(report, hosting_support_title=hosting_label))


@app.post("/api/reports/trigger")
def api_report_trigger(month: str | None = None) -> dict[str, Any]:
    try:
        return send_monthly_report(month)
    except HarvestAssistantError as e:
        log.warning("Manual report trigger failed: %s", e)
        raise _http_error(e)


@app.get("/api/debug/projects")
def api_debug_projects() -> dict[str, Any]:
    client = _require_harvest_client()
    try:
        projects = client.fetch_projects()
    except UpstreamError as e:
        raise _http_error(e)
    return {"projects": [{"id": p.id, "name": p.name, "client": p.client.name if p.client else None} for p in projects]}
