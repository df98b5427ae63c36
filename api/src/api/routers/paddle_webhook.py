"""Paddle webhook handler."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from indexnow.config import get_settings
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, get_webhook_secret_cache
from api.services.error_log import record_system_error
from api.services.paddle_config import GatewayConfigurationError, PaddleWebhookSecretCache
from api.services.paddle_processors import dispatch_event
from api.services.paddle_signature import (
    REASON_SIGNATURE_MISMATCH,
    SignatureCheck,
    precheck_signature_header,
    verify_signature,
)
from api.services.webhook_event_store import mark_failed, mark_processed, record_if_new

logger = logging.getLogger(__name__)
router = APIRouter()

SIGNATURE_HEADER = "Paddle-Signature"


class WebhookProcessingError(RuntimeError):
    """A processor failed; the event was annotated and must be retried."""

    def __init__(self, event_id: str, event_type: str, cause: BaseException) -> None:
        super().__init__(f"Processing {event_type} ({event_id}) failed: {cause}")
        self.event_id = event_id
        self.event_type = event_type


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _verify(
    db: AsyncSession,
    secrets: PaddleWebhookSecretCache,
    raw_body: bytes,
    signature_header: str,
    tolerance: int,
) -> SignatureCheck:
    secret = await secrets.get(db)
    check = verify_signature(raw_body, signature_header, secret, tolerance=tolerance)
    if check.valid or check.reason != REASON_SIGNATURE_MISMATCH:
        return check
    # The cached secret may predate a rotation; reload once.
    fresh_secret = await secrets.refresh(db)
    if fresh_secret == secret:
        return check
    return verify_signature(raw_body, signature_header, fresh_secret, tolerance=tolerance)


async def _process_event(
    db: AsyncSession,
    event_id: str,
    event_type: str,
    event: dict[str, Any],
) -> dict[str, Any]:
    record = await record_if_new(db, event_id, event_type, event)
    if record.already_processed:
        logger.info("Paddle duplicate webhook ignored: %s", event_id)
        return {"received": True, "duplicate": True}

    logger.info("Paddle webhook: %s (%s)", event_type, event_id)
    try:
        async with db.begin_nested():
            handled = await dispatch_event(db, event_type, event.get("data"))
    except Exception as exc:
        await mark_failed(db, event_id, str(exc))
        record_system_error(
            db,
            "external_api",
            f"Paddle webhook processing failed for {event_type}: {exc}",
            severity="high",
            status_code=500,
            metadata={
                "event_id": event_id,
                "event_type": event_type,
                "error": type(exc).__name__,
            },
        )
        raise WebhookProcessingError(event_id, event_type, exc) from exc

    await mark_processed(db, event_id)
    if not handled:
        logger.info("Paddle webhook %s acknowledged without processing", event_id)
    return {"received": True}


@router.post("/webhook")
async def paddle_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    secrets: PaddleWebhookSecretCache = Depends(get_webhook_secret_cache),
):
    raw_body = await request.body()
    signature_header = request.headers.get(SIGNATURE_HEADER, "").strip()
    if not signature_header:
        logger.error("Paddle webhook rejected: missing_signature")
        return _error(401, "Missing signature")

    tolerance = get_settings().paddle_webhook_tolerance_seconds
    reason = precheck_signature_header(signature_header, tolerance=tolerance)
    if reason is not None:
        logger.error("Paddle webhook rejected: %s", reason)
        return _error(401, "Invalid signature")

    try:
        check = await _verify(db, secrets, raw_body, signature_header, tolerance)
    except GatewayConfigurationError as exc:
        logger.error("Paddle webhook secret unavailable: %s", exc)
        return _error(500, "Webhook is not configured")
    except Exception:
        logger.exception("Paddle webhook secret lookup failed")
        return _error(500, "Webhook is not configured")
    if not check.valid:
        logger.error("Paddle webhook rejected: %s", check.reason)
        return _error(401, "Invalid signature")

    try:
        event = json.loads(raw_body)
    except ValueError:
        logger.warning("Paddle webhook rejected: invalid JSON body")
        return _error(400, "Invalid JSON payload")
    if not isinstance(event, dict):
        logger.warning("Paddle webhook rejected: payload is not an object")
        return _error(400, "Invalid webhook payload")
    event_id = str(event.get("event_id") or "").strip()
    event_type = str(event.get("event_type") or "").strip()
    if not event_id or not event_type:
        missing = [
            name for name, value in (("event_id", event_id), ("event_type", event_type)) if not value
        ]
        logger.warning("Paddle webhook rejected: missing %s", ", ".join(missing))
        return _error(400, "Missing event_id or event_type")

    try:
        return await _process_event(db, event_id, event_type, event)
    except WebhookProcessingError as exc:
        # Not re-raised: get_db must commit the failure annotation.
        logger.error("%s", exc)
        return _error(500, "Webhook processing failed")
    except Exception:
        logger.exception("Paddle webhook %s failed outside its processor", event_id)
        await db.rollback()
        return _error(500, "Internal server error")
