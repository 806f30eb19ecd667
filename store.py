import json
import secrets
import sqlite3
from datetime import datetime, timezone
from typing import Any

import settings


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _db() -> sqlite3.Connection:
    conn = sqlite3.connect(settings.DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def ensure_db() -> None:
    settings.DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(settings.DB_PATH) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS chat_messages (
              id TEXT PRIMARY KEY,
              content TEXT NOT NULL,
              role TEXT NOT NULL,
              timestamp TEXT NOT NULL,
              harvest_data_json TEXT,
              query_type TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS harvest_config (
              id TEXT PRIMARY KEY,
              account_id TEXT NOT NULL,
              access_token TEXT NOT NULL,
              is_active INTEGER NOT NULL DEFAULT 1,
              created_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS email_config (
              id TEXT PRIMARY KEY,
              email_user TEXT NOT NULL,
              email_password TEXT NOT NULL,
              report_recipients TEXT NOT NULL DEFAULT '',
              is_active INTEGER NOT NULL DEFAULT 1,
              created_at TEXT NOT NULL
            )
            """
        )
        conn.commit()


# ─────────────────────────────────────────────────────────────
# Chat history
# ─────────────────────────────────────────────────────────────

def create_chat_message(
    content: str, role: str, harvest_data: Any = None, query_type: str | None = None
) -> dict[str, Any]:
    msg_id = f"msg_{secrets.token_hex(8)}"
    # Microseconds kept so turns saved in the same second keep their order
    ts = datetime.now(timezone.utc).isoformat()
    data_json = json.dumps(harvest_data, default=str) if harvest_data is not None else None
    with _db() as conn:
        conn.execute(
            """
            INSERT INTO chat_messages (id, content, role, timestamp, harvest_data_json, query_type)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (msg_id, content, role, ts, data_json, query_type),
        )
        conn.commit()
    return {
        "id": msg_id,
        "content": content,
        "role": role,
        "timestamp": ts,
        "harvest_data": harvest_data,
        "query_type": query_type,
    }


def get_chat_messages() -> list[dict[str, Any]]:
    with _db() as conn:
        cur = conn.execute(
            """
            SELECT id, content, role, timestamp, harvest_data_json, query_type
            FROM chat_messages
            ORDER BY timestamp ASC, rowid ASC
            """
        )
        rows = cur.fetchall()
    out: list[dict[str, Any]] = []
    for r in rows:
        out.append(
            {
                "id": r["id"],
                "content": r["content"],
                "role": r["role"],
                "timestamp": r["timestamp"],
                "harvest_data": json.loads(r["harvest_data_json"]) if r["harvest_data_json"] else None,
                "query_type": r["query_type"],
            }
        )
    return out


# ─────────────────────────────────────────────────────────────
# Credentials
# ─────────────────────────────────────────────────────────────

def get_harvest_config() -> dict[str, str] | None:
    with _db() as conn:
        cur = conn.execute(
            "SELECT account_id, access_token FROM harvest_config WHERE is_active = 1 ORDER BY created_at DESC LIMIT 1"
        )
        row = cur.fetchone()
    if row:
        return {"account_id": row["account_id"], "access_token": row["access_token"]}
    if settings.HARVEST_ACCOUNT_ID and settings.HARVEST_ACCESS_TOKEN:
        return {"account_id": settings.HARVEST_ACCOUNT_ID, "access_token": settings.HARVEST_ACCESS_TOKEN}
    return None


def save_harvest_config(account_id: str, access_token: str) -> None:
    with _db() as conn:
        conn.execute("UPDATE harvest_config SET is_active = 0")
        conn.execute(
            """
            INSERT INTO harvest_config (id, account_id, access_token, is_active, created_at)
            VALUES (?, ?, ?, 1, ?)
            """,
            (f"hc_{secrets.token_hex(8)}", account_id, access_token, _utc_now().isoformat()),
        )
        conn.commit()


def get_email_config() -> dict[str, Any] | None:
    with _db() as conn:
        cur = conn.execute(
            """
            SELECT email_user, email_password, report_recipients
            FROM email_config WHERE is_active = 1
            ORDER BY created_at DESC LIMIT 1
            """
        )
        row = cur.fetchone()
    if row:
        user, password, recipients = row["email_user"], row["email_password"], row["report_recipients"]
    elif settings.EMAIL_USER and settings.EMAIL_PASSWORD:
        user, password, recipients = settings.EMAIL_USER, settings.EMAIL_PASSWORD, settings.REPORT_RECIPIENTS
    else:
        return None
    return {
        "email_user": user,
        "email_password": password,
        "report_recipients": [r.strip() for r in (recipients or "").split(",") if r.strip()],
    }


def save_email_config(email_user: str, email_password: str, report_recipients: str) -> None:
    with _db() as conn:
        conn.execute("UPDATE email_config SET is_active = 0")
        conn.execute(
            """
            INSERT INTO email_config (id, email_user, email_password, report_recipients, is_active, created_at)
            VALUES (?, ?, ?, ?, 1, ?)
            """,
            (f"ec_{secrets.token_hex(8)}", email_user, email_password, report_recipients, _utc_now().isoformat()),
        )
        conn.commit()
