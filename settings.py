import os
from pathlib import Path

from dotenv import load_dotenv

APP_NAME = "Harvest Assistant"
ROOT_DIR = Path(__file__).parent

# Local env (secrets live in .env; file itself is ignored)
load_dotenv(dotenv_path=ROOT_DIR / ".env", override=False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DB_PATH = Path(os.getenv("HARVEST_DB_PATH", str(ROOT_DIR / "harvest_assistant.db")))

# Harvest API v2
HARVEST_BASE_URL = os.getenv("HARVEST_BASE_URL", "https://api.harvestapp.com/v2").rstrip("/")
HARVEST_USER_AGENT = os.getenv("HARVEST_USER_AGENT", "Harvest Chat Assistant (support@example.com)")
HARVEST_TIMEOUT = float(os.getenv("HARVEST_TIMEOUT", "30"))
# Used only when no credentials were saved through /api/harvest/config
HARVEST_ACCOUNT_ID = os.getenv("HARVEST_ACCOUNT_ID", "")
HARVEST_ACCESS_TOKEN = os.getenv("HARVEST_ACCESS_TOKEN", "")

# Report engine
REPORT_TARGETS_PATH = os.getenv("REPORT_TARGETS_PATH", str(ROOT_DIR / "report_targets.json"))
REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "America/Chicago")
REPORTS_DIR = Path(os.getenv("REPORTS_DIR", str(ROOT_DIR / "reports")))

# Weekly delivery (Monday 8:00 in REPORT_TIMEZONE)
REPORT_SCHEDULER_ENABLED = os.getenv("REPORT_SCHEDULER_ENABLED", "1").strip().lower() not in ("0", "false", "no", "")
REPORT_CRON_DAY_OF_WEEK = os.getenv("REPORT_CRON_DAY_OF_WEEK", "mon")
REPORT_CRON_HOUR = int(os.getenv("REPORT_CRON_HOUR", "8"))
REPORT_CRON_MINUTE = int(os.getenv("REPORT_CRON_MINUTE", "0"))

# SMTP (STARTTLS)
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_TIMEOUT = float(os.getenv("SMTP_TIMEOUT", "30"))
EMAIL_USER = os.getenv("EMAIL_USER", "")
EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD", "")
REPORT_RECIPIENTS = os.getenv("REPORT_RECIPIENTS", "")

# OpenAI-compatible chat completions endpoint
LLM_API_KEY = os.getenv("LLM_API_KEY", "")
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1").rstrip("/")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
LLM_TIMEOUT = int(os.getenv("LLM_TIMEOUT", "90"))
