"""Lookups shared by the Paddle event processors."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from indexnow.config import get_settings
from indexnow.models import PaymentGateway, PaymentPackage, PaymentSubscription, UserProfile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.services.paddle_processors.payloads import CustomData, WebhookPayloadError

PADDLE_STATUS_MAP = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "paused": "paused",
    "canceled": "cancelled",
    "cancelled": "cancelled",
    "expired": "cancelled",
}
# Statuses of a subscription the pipeline still manages for its user.
MANAGED_SUBSCRIPTION_STATUSES = ("active", "past_due", "paused")


class BillingRecordNotFound(LookupError):
    """A record the event refers to does not exist (yet)."""


def utcnow() -> datetime:
    return datetime.now(UTC)


def map_subscription_status(status: str | None) -> str:
    return PADDLE_STATUS_MAP.get(str(status or "").strip().lower(), "active")


async def _first(db: AsyncSession, stmt: Any) -> Any:
    result = await db.execute(stmt)
    return result.scalars().first()


async def get_subscription_by_paddle_id(
    db: AsyncSession, paddle_subscription_id: str
) -> PaymentSubscription | None:
    return await _first(
        db,
        select(PaymentSubscription).where(
            PaymentSubscription.paddle_subscription_id == paddle_subscription_id
        ),
    )


async def require_subscription(db: AsyncSession, paddle_subscription_id: str) -> PaymentSubscription:
    subscription = await get_subscription_by_paddle_id(db, paddle_subscription_id)
    if subscription is None:
        raise BillingRecordNotFound(f"Subscription {paddle_subscription_id} not found")
    return subscription


async def get_profile(db: AsyncSession, user_id: uuid.UUID) -> UserProfile | None:
    return await _first(db, select(UserProfile).where(UserProfile.user_id == user_id))


async def get_or_create_profile(db: AsyncSession, user_id: uuid.UUID) -> UserProfile:
    profile = await get_profile(db, user_id)
    if profile is None:
        profile = UserProfile(id=uuid.uuid4(), user_id=user_id)
        db.add(profile)
    return profile


async def get_package_by_slug(db: AsyncSession, slug: str) -> PaymentPackage | None:
    return await _first(
        db,
        select(PaymentPackage).where(
            PaymentPackage.slug == slug,
            PaymentPackage.deleted_at.is_(None),
        ),
    )


async def resolve_package(db: AsyncSession, custom_data: CustomData | None) -> PaymentPackage:
    """Find the package named by ``packageSlug`` or ``packageId`` in custom data."""
    slug = (custom_data.package_slug if custom_data else None) or ""
    raw_id = (custom_data.package_id if custom_data else None) or ""
    if slug.strip():
        package = await get_package_by_slug(db, slug.strip())
        if package is None:
            raise BillingRecordNotFound(f"Package {slug.strip()} not found")
        return package
    if raw_id.strip():
        try:
            package_id = uuid.UUID(raw_id.strip())
        except ValueError as exc:
            raise WebhookPayloadError(f"Invalid custom_data.packageId: {raw_id}") from exc
        package = await db.get(PaymentPackage, package_id)
        if package is None or package.deleted_at is not None:
            raise BillingRecordNotFound(f"Package {package_id} not found")
        return package
    raise WebhookPayloadError("Missing packageSlug or packageId in custom_data")


async def resolve_package_id(
    db: AsyncSession,
    subscription: PaymentSubscription | None,
    custom_data: CustomData | None,
) -> uuid.UUID:
    """Package for a transaction: the subscription's, else the one in custom data."""
    if subscription is not None and subscription.package_id is not None:
        return subscription.package_id
    try:
        package = await resolve_package(db, custom_data)
    except WebhookPayloadError as exc:
        raise WebhookPayloadError("Unable to determine package_id for transaction") from exc
    return package.id


async def get_paddle_gateway(db: AsyncSession) -> PaymentGateway:
    gateway = await _first(
        db,
        select(PaymentGateway).where(
            PaymentGateway.slug == get_settings().paddle_gateway_slug,
            PaymentGateway.is_active.is_(True),
            PaymentGateway.deleted_at.is_(None),
        ),
    )
    if gateway is None:
        raise BillingRecordNotFound("Paddle payment gateway not found")
    return gateway
