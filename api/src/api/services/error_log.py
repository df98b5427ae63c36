"""Operator-visible error and alert records."""

from __future__ import annotations

import logging
from typing import Any

from indexnow.models import SystemErrorLog
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

ERROR_TYPES = (
    "authorization",
    "validation",
    "database",
    "external_api",
    "business_logic",
    "payment",
)
SEVERITY_LOG_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}


def record_system_error(
    db: AsyncSession,
    error_type: str,
    message: str,
    *,
    severity: str = "medium",
    status_code: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> SystemErrorLog:
    """Log ``message`` and stage a system_error_logs row in ``db``."""
    if error_type not in ERROR_TYPES:
        raise ValueError(f"Unknown error type: {error_type}")
    if severity not in SEVERITY_LOG_LEVELS:
        raise ValueError(f"Unknown severity: {severity}")

    detail = dict(metadata or {})
    logger.log(
        SEVERITY_LOG_LEVELS[severity],
        "[%s/%s] %s %s",
        error_type,
        severity,
        message,
        detail,
    )
    entry = SystemErrorLog(
        error_type=error_type,
        severity=severity,
        message=message,
        status_code=status_code,
        metadata_json=detail,
    )
    db.add(entry)
    return entry
