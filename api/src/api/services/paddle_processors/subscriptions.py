"""Processors for Paddle ``subscription.*`` events."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from indexnow.models import PaymentSubscription
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.services.error_log import record_system_error
from api.services.paddle_processors.common import (
    MANAGED_SUBSCRIPTION_STATUSES,
    BillingRecordNotFound,
    get_or_create_profile,
    get_package_by_slug,
    get_profile,
    get_subscription_by_paddle_id,
    map_subscription_status,
    require_subscription,
    resolve_package,
    utcnow,
)
from api.services.paddle_processors.payloads import (
    SubscriptionEventData,
    WebhookPayloadError,
    billing_interval,
    first_price_id,
    parse_event_data,
    require_user_id,
)

logger = logging.getLogger(__name__)


async def process_subscription_created(db: AsyncSession, data: Any) -> None:
    """Create (or converge) the subscription and grant the package to its user."""
    payload = parse_event_data(SubscriptionEventData, data)
    if not payload.customer_id:
        raise WebhookPayloadError(f"Missing customer_id for subscription {payload.id}")
    user_id = require_user_id(payload.custom_data, payload.id)

    price_id = first_price_id(payload.items)
    if not price_id:
        raise WebhookPayloadError(f"Missing price id in items for subscription {payload.id}")
    period = payload.current_billing_period
    if period is None or period.starts_at is None or period.ends_at is None:
        raise WebhookPayloadError(f"Missing current_billing_period for subscription {payload.id}")

    package = await resolve_package(db, payload.custom_data)
    now = utcnow()

    subscription = await get_subscription_by_paddle_id(db, payload.id)
    if subscription is None:
        subscription = PaymentSubscription(
            id=uuid.uuid4(),
            user_id=user_id,
            paddle_subscription_id=payload.id,
            status="active",
        )
        db.add(subscription)

    subscription.user_id = user_id
    subscription.package_id = package.id
    subscription.paddle_customer_id = payload.customer_id
    subscription.paddle_price_id = price_id
    subscription.status = "active"
    subscription.billing_period = billing_interval(payload.items)
    subscription.current_period_start = period.starts_at
    subscription.current_period_end = period.ends_at
    subscription.cancel_at_period_end = False
    subscription.updated_at = now

    result = await db.execute(
        select(PaymentSubscription).where(
            PaymentSubscription.user_id == user_id,
            PaymentSubscription.status.in_(MANAGED_SUBSCRIPTION_STATUSES),
            PaymentSubscription.paddle_subscription_id != payload.id,
        )
    )
    for previous in result.scalars().all():
        logger.info(
            "Subscription %s superseded by %s for user %s",
            previous.paddle_subscription_id,
            payload.id,
            user_id,
        )
        previous.status = "cancelled"
        previous.cancel_at_period_end = False
        previous.canceled_at = previous.canceled_at or now
        previous.updated_at = now

    profile = await get_or_create_profile(db, user_id)
    profile.package_id = package.id
    profile.subscription_start_date = period.starts_at
    profile.subscription_end_date = period.ends_at
    profile.updated_at = now
    await db.flush()


async def process_subscription_updated(db: AsyncSession, data: Any) -> None:
    payload = parse_event_data(SubscriptionEventData, data)
    subscription = await require_subscription(db, payload.id)
    now = utcnow()

    if payload.status:
        subscription.status = map_subscription_status(payload.status)
    price_id = first_price_id(payload.items)
    if price_id:
        subscription.paddle_price_id = price_id
    interval = billing_interval(payload.items)
    if interval:
        subscription.billing_period = interval
    subscription.paused_at = payload.paused_at
    period = payload.current_billing_period
    if period is not None:
        if period.starts_at is not None:
            subscription.current_period_start = period.starts_at
        if period.ends_at is not None:
            subscription.current_period_end = period.ends_at

    package_changed = False
    slug = payload.custom_data.package_slug if payload.custom_data else None
    if slug:
        package = await get_package_by_slug(db, slug)
        if package is None:
            raise BillingRecordNotFound(f"Package {slug} not found")
        package_changed = subscription.package_id != package.id
        subscription.package_id = package.id
    subscription.updated_at = now

    profile = await get_profile(db, subscription.user_id)
    if profile is not None:
        if subscription.status == "active":
            profile.subscription_end_date = subscription.current_period_end
            if package_changed:
                profile.package_id = subscription.package_id
        else:
            profile.subscription_end_date = now
        profile.updated_at = now
    await db.flush()


async def process_subscription_canceled(db: AsyncSession, data: Any) -> None:
    """Cancel now, or flag cancel-at-period-end when the change is only scheduled."""
    payload = parse_event_data(SubscriptionEventData, data)
    subscription = await require_subscription(db, payload.id)
    now = utcnow()

    at_period_end = (
        payload.scheduled_change is not None and payload.scheduled_change.action == "cancel"
    )
    period = payload.current_billing_period
    if period is not None and period.ends_at is not None:
        subscription.current_period_end = period.ends_at

    subscription.canceled_at = payload.canceled_at or now
    subscription.cancel_at_period_end = at_period_end
    subscription.status = "active" if at_period_end else "cancelled"
    subscription.updated_at = now

    profile = await get_profile(db, subscription.user_id)
    if profile is not None:
        profile.subscription_end_date = subscription.current_period_end if at_period_end else now
        profile.updated_at = now
    await db.flush()
    logger.info(
        "Subscription %s canceled (at_period_end=%s)", payload.id, at_period_end
    )


async def process_subscription_paused(db: AsyncSession, data: Any) -> None:
    payload = parse_event_data(SubscriptionEventData, data)
    subscription = await require_subscription(db, payload.id)
    now = utcnow()

    subscription.status = "paused"
    subscription.paused_at = payload.paused_at or now
    subscription.updated_at = now

    profile = await get_profile(db, subscription.user_id)
    if profile is not None:
        profile.subscription_end_date = now
        profile.updated_at = now
    await db.flush()


async def process_subscription_resumed(db: AsyncSession, data: Any) -> None:
    payload = parse_event_data(SubscriptionEventData, data)
    subscription = await require_subscription(db, payload.id)
    now = utcnow()

    subscription.status = "active"
    subscription.paused_at = None
    period = payload.current_billing_period
    if period is not None:
        if period.starts_at is not None:
            subscription.current_period_start = period.starts_at
        if period.ends_at is not None:
            subscription.current_period_end = period.ends_at
    subscription.updated_at = now

    profile = await get_profile(db, subscription.user_id)
    if profile is not None:
        profile.subscription_end_date = subscription.current_period_end
        profile.updated_at = now
    await db.flush()


async def process_subscription_activated(db: AsyncSession, data: Any) -> None:
    """Trial conversion, payment recovery or unpause: restore access."""
    payload = parse_event_data(SubscriptionEventData, data)
    period = payload.current_billing_period
    if period is None or period.starts_at is None or period.ends_at is None:
        raise WebhookPayloadError(
            f"Missing billing period dates in activation of subscription {payload.id}"
        )
    subscription = await require_subscription(db, payload.id)
    now = utcnow()

    subscription.status = "active"
    subscription.current_period_start = period.starts_at
    subscription.current_period_end = period.ends_at
    subscription.updated_at = now

    profile = await get_profile(db, subscription.user_id)
    if profile is not None:
        profile.subscription_end_date = period.ends_at
        if subscription.package_id is not None:
            profile.package_id = subscription.package_id
        profile.updated_at = now
    await db.flush()


async def process_subscription_past_due(db: AsyncSession, data: Any) -> None:
    """Payment failed on renewal. The package stays, but effective access ends now."""
    payload = parse_event_data(SubscriptionEventData, data)
    subscription = await require_subscription(db, payload.id)
    now = utcnow()

    subscription.status = "past_due"
    subscription.updated_at = now

    profile = await get_profile(db, subscription.user_id)
    if profile is not None:
        profile.subscription_end_date = now
        profile.updated_at = now

    period = payload.current_billing_period
    record_system_error(
        db,
        "payment",
        f"Subscription {payload.id} is past due",
        severity="high",
        metadata={
            "subscription_id": payload.id,
            "user_id": str(subscription.user_id),
            "package_id": str(subscription.package_id) if subscription.package_id else None,
            "next_billing_period_end": (
                period.ends_at.isoformat() if period is not None and period.ends_at else None
            ),
        },
    )
    await db.flush()
