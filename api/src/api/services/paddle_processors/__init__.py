"""Paddle event routing: maps event types to their processors."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from api.services.paddle_processors.common import BillingRecordNotFound
from api.services.paddle_processors.payloads import WebhookPayloadError
from api.services.paddle_processors.subscriptions import (
    process_subscription_activated,
    process_subscription_canceled,
    process_subscription_created,
    process_subscription_past_due,
    process_subscription_paused,
    process_subscription_resumed,
    process_subscription_updated,
)
from api.services.paddle_processors.transactions import (
    process_transaction_completed,
    process_transaction_payment_failed,
    process_transaction_refunded,
)

logger = logging.getLogger(__name__)

Processor = Callable[[AsyncSession, Any], Awaitable[None]]

EVENT_PROCESSORS: dict[str, Processor] = {
    "subscription.created": process_subscription_created,
    "subscription.updated": process_subscription_updated,
    "subscription.canceled": process_subscription_canceled,
    "subscription.paused": process_subscription_paused,
    "subscription.resumed": process_subscription_resumed,
    "subscription.activated": process_subscription_activated,
    "subscription.past_due": process_subscription_past_due,
    "transaction.completed": process_transaction_completed,
    "transaction.payment_failed": process_transaction_payment_failed,
    "transaction.refunded": process_transaction_refunded,
}


async def dispatch_event(db: AsyncSession, event_type: str, data: Any) -> bool:
    """Run the processor for ``event_type``. Returns False for unhandled types."""
    processor = EVENT_PROCESSORS.get(event_type)
    if processor is None:
        logger.info("Unhandled Paddle event type: %s", event_type)
        return False
    await processor(db, data)
    return True


__all__ = [
    "EVENT_PROCESSORS",
    "BillingRecordNotFound",
    "WebhookPayloadError",
    "dispatch_event",
]
