"""Typed views of Paddle event ``data`` objects.

Paddle sends loosely-typed JSON; each processor validates the shape it needs
through one of these models before touching the database. Unknown provider
fields are kept but ignored.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class WebhookPayloadError(ValueError):
    """The event data is missing or has malformed required fields."""


class _PaddleModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class CustomData(_PaddleModel):
    user_id: str | None = Field(default=None, alias="userId")
    package_slug: str | None = Field(default=None, alias="packageSlug")
    package_id: str | None = Field(default=None, alias="packageId")
    billing_period: str | None = Field(default=None, alias="billingPeriod")


class BillingPeriod(_PaddleModel):
    starts_at: datetime | None = None
    ends_at: datetime | None = None


class ScheduledChange(_PaddleModel):
    action: str | None = None
    effective_at: datetime | None = None


class SubscriptionEventData(_PaddleModel):
    id: str = Field(min_length=1)
    customer_id: str | None = None
    status: str | None = None
    items: list[dict[str, Any]] = Field(default_factory=list)
    custom_data: CustomData | None = None
    current_billing_period: BillingPeriod | None = None
    scheduled_change: ScheduledChange | None = None
    canceled_at: datetime | None = None
    paused_at: datetime | None = None


class TransactionTotals(_PaddleModel):
    total: str | None = None
    currency_code: str | None = None


class TransactionDetails(_PaddleModel):
    totals: TransactionTotals | None = None
    receipt_url: str | None = None
    invoice_number: str | None = None


class TransactionEventData(_PaddleModel):
    id: str = Field(min_length=1)
    customer_id: str | None = None
    subscription_id: str | None = None
    status: str | None = None
    items: list[dict[str, Any]] = Field(default_factory=list)
    custom_data: CustomData | None = None
    details: TransactionDetails | None = None
    payments: list[dict[str, Any]] = Field(default_factory=list)


class RefundAdjustment(_PaddleModel):
    total: str = "0"
    reason: str = "unknown"


class RefundEventData(_PaddleModel):
    id: str = Field(min_length=1)
    subscription_id: str | None = None
    adjustment: RefundAdjustment | None = None


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_event_data(model: type[ModelT], data: Any) -> ModelT:
    if not isinstance(data, dict):
        raise WebhookPayloadError(f"Invalid {model.__name__} received: expected an object")
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors()})
        raise WebhookPayloadError(
            f"Invalid {model.__name__}: missing or malformed {', '.join(fields)}"
        ) from exc


def require_user_id(custom_data: CustomData | None, source_id: str) -> uuid.UUID:
    """Return ``custom_data.userId`` as a UUID or raise for ``source_id``."""
    raw = (custom_data.user_id if custom_data else None) or ""
    if not raw.strip():
        raise WebhookPayloadError(f"Missing custom_data.userId for {source_id}")
    try:
        return uuid.UUID(raw.strip())
    except ValueError as exc:
        raise WebhookPayloadError(f"Invalid custom_data.userId for {source_id}") from exc


def minor_units_to_decimal(value: str | int | None) -> Decimal:
    """Convert an integer minor-unit amount (e.g. cents) to a major-unit Decimal."""
    try:
        amount = Decimal(str(value if value is not None else "0").strip())
    except (InvalidOperation, ValueError) as exc:
        raise WebhookPayloadError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise WebhookPayloadError(f"Invalid amount: {value!r}")
    return amount / 100


def first_price_id(items: list[dict[str, Any]]) -> str | None:
    if not items:
        return None
    price = items[0].get("price") or {}
    price_id = price.get("id") if isinstance(price, dict) else None
    return str(price_id) if price_id else None


def billing_interval(items: list[dict[str, Any]]) -> str | None:
    """Return ``month``/``year`` from the first item's billing cycle, if present."""
    if not items:
        return None
    price = items[0].get("price") or {}
    cycle = price.get("billing_cycle") if isinstance(price, dict) else None
    interval = cycle.get("interval") if isinstance(cycle, dict) else None
    return interval if interval in ("month", "year") else None
