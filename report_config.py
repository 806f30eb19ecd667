import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

import settings
from report_models import ReportConfig, ReportConfigError

log = logging.getLogger(__name__)


def parse_report_config(data: dict[str, Any]) -> ReportConfig:
    try:
        return ReportConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ReportConfigError(f"Invalid report target configuration: {e}") from e


def load_report_config(path: str | Path | None = None) -> ReportConfig:
    """Read the target-group document (REPORT_TARGETS_PATH unless a path is given)."""
    path = Path(path or settings.REPORT_TARGETS_PATH)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ReportConfigError(f"Report target configuration not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ReportConfigError(f"Report target configuration is not valid JSON: {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ReportConfigError(f"Report target configuration must be a JSON object: {path}")
    config = parse_report_config(raw)
    log.info(
        "Loaded %d primary and %d hosting-support target groups from %s",
        len(config.primary_groups),
        len(config.hosting_support_groups),
        path,
    )
    return config
