"""Paddle webhook event store: dedupe and processing state."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from indexnow.models import PaddleWebhookEvent
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 2000


@dataclass(frozen=True)
class EventRecord:
    is_new: bool
    already_processed: bool


async def record_if_new(
    db: AsyncSession,
    event_id: str,
    event_type: str,
    payload: dict[str, Any],
) -> EventRecord:
    """Insert the event unless its id exists; otherwise report its processed flag.

    The insert and the existence check are one statement. A concurrent
    delivery of the same id blocks on the unique index until the first
    transaction finishes, then reads the row under ``FOR UPDATE``.
    """
    stmt = (
        insert(PaddleWebhookEvent)
        .values(
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            processed=False,
            retry_count=0,
        )
        .on_conflict_do_nothing(index_elements=[PaddleWebhookEvent.event_id])
        .returning(PaddleWebhookEvent.id)
    )
    inserted = (await db.execute(stmt)).scalar_one_or_none()
    if inserted is not None:
        return EventRecord(is_new=True, already_processed=False)

    existing = await db.execute(
        select(PaddleWebhookEvent.processed)
        .where(PaddleWebhookEvent.event_id == event_id)
        .with_for_update()
    )
    processed = bool(existing.scalar_one_or_none())
    logger.info("Paddle webhook redelivered: %s processed=%s", event_id, processed)
    return EventRecord(is_new=False, already_processed=processed)


async def mark_processed(db: AsyncSession, event_id: str) -> None:
    await db.execute(
        update(PaddleWebhookEvent)
        .where(PaddleWebhookEvent.event_id == event_id)
        .values(processed=True, processed_at=datetime.now(UTC))
    )


async def mark_failed(db: AsyncSession, event_id: str, error_message: str) -> None:
    """Annotate a failed attempt. ``processed`` stays false so a redelivery retries."""
    message = (error_message or "Unknown error")[:MAX_ERROR_MESSAGE_LENGTH]
    await db.execute(
        update(PaddleWebhookEvent)
        .where(PaddleWebhookEvent.event_id == event_id)
        .values(
            error_message=message,
            retry_count=PaddleWebhookEvent.retry_count + 1,
        )
    )
