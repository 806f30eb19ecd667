import json
import logging
import re
from datetime import date
from typing import Any

import requests
from pydantic import ValidationError as PydanticValidationError

import settings
from report_models import ConfigurationMissingError, ParsedQuery, UpstreamError

log = logging.getLogger(__name__)

RESPONSE_FALLBACK = (
    "I was able to retrieve your data, but had trouble generating a summary. "
    "Please check the data table below for details."
)

# Data sent back to the model is capped so a busy month does not blow the context window
MAX_DATA_CHARS = 30000


def _extract_content_from_message(msg: dict) -> str | None:
    """Extract text from OpenAI-style message; content may be str or list of parts."""
    raw = msg.get("content")
    if raw is None:
        return None
    if isinstance(raw, str):
        return raw.strip() or None
    if isinstance(raw, list):
        parts = []
        for part in raw:
            if isinstance(part, dict):
                t = part.get("text") or part.get("content")
                if isinstance(t, str) and t.strip():
                    parts.append(t.strip())
            elif isinstance(part, str) and part.strip():
                parts.append(part.strip())
        return " ".join(parts) if parts else None
    return None


def _chat(messages: list[dict], max_tokens: int = 1000, temperature: float = 0.7) -> str:
    """One chat-completions call. Raises ConfigurationMissingError / UpstreamError, never returns empty."""
    if not settings.LLM_API_KEY:
        raise ConfigurationMissingError("LLM_API_KEY not set. Add it to .env and restart the backend.")
    url = f"{settings.LLM_BASE_URL}/chat/completions"
    payload = {"model": settings.LLM_MODEL, "messages": messages, "max_tokens": max_tokens, "temperature": temperature}
    log.info("LLM: calling %s model=%s", url, settings.LLM_MODEL)
    try:
        r = requests.post(
            url,
            headers={"Authorization": f"Bearer {settings.LLM_API_KEY}", "Content-Type": "application/json"},
            json=payload,
            timeout=settings.LLM_TIMEOUT,
        )
    except requests.exceptions.Timeout as e:
        raise UpstreamError("LLM API timeout") from e
    except requests.exceptions.RequestException as e:
        raise UpstreamError(f"LLM API connection error: {str(e)[:150]}") from e
    if r.status_code != 200:
        log.warning("LLM error %s: %s", r.status_code, r.text[:300])
        raise UpstreamError(f"LLM API error {r.status_code}", status_code=r.status_code)
    try:
        data = r.json()
    except ValueError as e:
        raise UpstreamError("LLM API returned non-JSON body") from e
    choices = data.get("choices") or []
    content = _extract_content_from_message(choices[0].get("message") or {}) if choices else None
    if not content:
        raise UpstreamError("LLM returned an empty response")
    return content


def _extract_json(text: str) -> dict[str, Any]:
    # Models sometimes wrap JSON in ```json fences or add a sentence around it
    fenced = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.S)
    candidate = fenced.group(1) if fenced else text
    start, end = candidate.find("{"), candidate.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in model output")
    return json.loads(candidate[start : end + 1])


def _normalize_parameters(raw: Any) -> dict[str, Any]:
    params = raw if isinstance(raw, dict) else {}
    date_range = params.get("dateRange") or params.get("date_range") or {}
    if not isinstance(date_range, dict):
        date_range = {}
    out: dict[str, Any] = {
        "date_range": {
            "from": date_range.get("from") if date_range.get("from") not in (None, "null", "") else None,
            "to": date_range.get("to") if date_range.get("to") not in (None, "null", "") else None,
        },
        "filters": params.get("filters") if isinstance(params.get("filters"), dict) else {},
        "month": params.get("month") or None,
    }
    for src, dst in (("userId", "user_id"), ("projectId", "project_id"), ("clientId", "client_id")):
        value = params.get(src, params.get(dst))
        out[dst] = value if value not in (None, "null", "") else None
    return out


def parse_natural_language_query(query: str, today: date) -> ParsedQuery:
    prompt = f"""You are a Harvest API query parser. Convert the natural language query into a structured format for Harvest API calls.

Current date context: {today.isoformat()}

Natural language query: "{query}"

Determine:
1. What type of data is being requested (time_entries, projects, clients, users, summary, report)
2. Any date ranges (this week, last month, yesterday, specific dates)
3. Filters (user, project, client, billable status)
4. Summary type if applicable

Use queryType "report" when the user asks for the monthly project budget report; put the month as "YYYY-MM" in parameters.month (null for the current month).

Respond with JSON in this exact format:
{{
  "queryType": "time_entries|projects|clients|users|summary|report",
  "parameters": {{
    "dateRange": {{"from": "YYYY-MM-DD or null", "to": "YYYY-MM-DD or null"}},
    "userId": "number or null",
    "projectId": "number or null",
    "clientId": "number or null",
    "month": "YYYY-MM or null",
    "filters": {{}}
  }},
  "summaryType": "weekly|monthly|daily|project|client or null"
}}"""
    messages = [
        {"role": "system", "content": "You are a Harvest API query parser. Always respond with valid JSON in the specified format."},
        {"role": "user", "content": prompt},
    ]
    content = _chat(messages, max_tokens=1024, temperature=0.1)
    try:
        result = _extract_json(content)
        return ParsedQuery(
            query_type=result.get("queryType") or "time_entries",
            parameters=_normalize_parameters(result.get("parameters")),
            summary_type=result.get("summaryType") or None,
        )
    except (ValueError, PydanticValidationError) as e:
        log.warning("Could not parse LLM query output: %s | %s", e, content[:300])
        raise UpstreamError("Failed to parse natural language query") from e


def generate_response(query: str, data: Any, query_type: str) -> str:
    data_str = json.dumps(data, indent=2, default=str)
    if len(data_str) > MAX_DATA_CHARS:
        data_str = data_str[:MAX_DATA_CHARS] + "\n... (truncated)"
    prompt = f"""You are a helpful Harvest time tracking assistant. Based on the user's query and the data retrieved from Harvest API, provide a clear, conversational response.

User query: "{query}"
Query type: {query_type}
Data retrieved: {data_str}

Acknowledge what the user asked for, summarize the key findings, and mention notable patterns. Keep it concise. If there is no data, say so clearly."""
    messages = [
        {"role": "system", "content": "You are a helpful Harvest time tracking assistant. Provide clear, conversational responses about time tracking data."},
        {"role": "user", "content": prompt},
    ]
    try:
        return _chat(messages, max_tokens=500, temperature=0.7)
    except (UpstreamError, ConfigurationMissingError) as e:
        log.warning("LLM response generation failed: %s", e)
        return RESPONSE_FALLBACK
