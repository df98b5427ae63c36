"""Processors for Paddle ``transaction.*`` events."""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any

from indexnow.models import PaddleTransaction, PaymentSubscription, PaymentTransaction
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.services.error_log import record_system_error
from api.services.paddle_processors.common import (
    BillingRecordNotFound,
    get_paddle_gateway,
    get_profile,
    get_subscription_by_paddle_id,
    resolve_package_id,
    utcnow,
)
from api.services.paddle_processors.payloads import (
    RefundEventData,
    TransactionEventData,
    WebhookPayloadError,
    billing_interval,
    minor_units_to_decimal,
    parse_event_data,
    require_user_id,
)

logger = logging.getLogger(__name__)

# A transaction only moves forward through these states.
_STATUS_RANK = {"pending": 0, "failed": 1, "completed": 2, "refunded": 3}


def _advance_status(current: str | None, target: str) -> str:
    if current is None or _STATUS_RANK.get(target, 0) >= _STATUS_RANK.get(current, 0):
        return target
    return current


def _payment_method(payments: list[dict[str, Any]]) -> str | None:
    for payment in payments:
        details = payment.get("method_details") if isinstance(payment, dict) else None
        if isinstance(details, dict) and details.get("type"):
            return str(details["type"])
    return None


async def _get_transaction(db: AsyncSession, gateway_transaction_id: str) -> PaymentTransaction | None:
    result = await db.execute(
        select(PaymentTransaction).where(
            PaymentTransaction.gateway_transaction_id == gateway_transaction_id
        )
    )
    return result.scalars().first()


async def _get_shadow(db: AsyncSession, paddle_transaction_id: str) -> PaddleTransaction | None:
    result = await db.execute(
        select(PaddleTransaction).where(
            PaddleTransaction.paddle_transaction_id == paddle_transaction_id
        )
    )
    return result.scalars().first()


async def _upsert_transaction(
    db: AsyncSession,
    data: dict[str, Any],
    *,
    status: str,
    event_type: str,
) -> PaymentTransaction:
    """Write the transaction and its Paddle shadow row for a transaction event."""
    payload = parse_event_data(TransactionEventData, data)
    user_id = require_user_id(payload.custom_data, payload.id)
    totals = payload.details.totals if payload.details else None
    if totals is None or not totals.total or not totals.currency_code:
        raise WebhookPayloadError(f"Missing details.totals for transaction {payload.id}")
    amount = minor_units_to_decimal(totals.total)
    currency = totals.currency_code.upper()

    subscription = None
    if payload.subscription_id:
        subscription = await get_subscription_by_paddle_id(db, payload.subscription_id)
    package_id = await resolve_package_id(db, subscription, payload.custom_data)
    gateway = await get_paddle_gateway(db)
    now = utcnow()

    billing_period = (
        (subscription.billing_period if subscription is not None else None)
        or (payload.custom_data.billing_period if payload.custom_data else None)
        or billing_interval(payload.items)
    )
    payment_method = _payment_method(payload.payments)

    transaction = await _get_transaction(db, payload.id)
    if transaction is None:
        transaction = PaymentTransaction(
            id=uuid.uuid4(),
            gateway_transaction_id=payload.id,
            user_id=user_id,
            transaction_type="subscription" if payload.subscription_id else "one_time",
            status=status,
            amount=amount,
            currency=currency,
        )
        db.add(transaction)
        previous_status = None
    else:
        previous_status = transaction.status

    transaction.status = _advance_status(previous_status, status)
    transaction.user_id = user_id
    transaction.subscription_id = subscription.id if subscription is not None else None
    transaction.package_id = package_id
    transaction.gateway_id = gateway.id
    transaction.amount = amount
    transaction.currency = currency
    transaction.payment_method = payment_method
    transaction.billing_period = billing_period
    transaction.gateway_response = data
    transaction.metadata_json = {
        **(transaction.metadata_json or {}),
        "paddle_customer_id": payload.customer_id,
        "paddle_subscription_id": payload.subscription_id,
        "last_event_type": event_type,
    }
    if transaction.status == "completed" and transaction.processed_at is None:
        transaction.processed_at = now
    transaction.updated_at = now

    shadow = await _get_shadow(db, payload.id)
    if shadow is None:
        shadow = PaddleTransaction(
            id=uuid.uuid4(),
            paddle_transaction_id=payload.id,
            transaction_id=transaction.id,
            user_id=user_id,
            amount=amount,
            currency=currency,
            status=transaction.status,
        )
        db.add(shadow)
    shadow.transaction_id = transaction.id
    shadow.user_id = user_id
    shadow.subscription_id = transaction.subscription_id
    shadow.amount = amount
    shadow.currency = currency
    shadow.status = _advance_status(shadow.status, status)
    shadow.payment_method = payment_method
    shadow.receipt_url = payload.details.receipt_url if payload.details else None
    shadow.invoice_number = payload.details.invoice_number if payload.details else None
    shadow.event_type = event_type
    shadow.event_data = data
    shadow.updated_at = now

    if previous_status is not None and transaction.status != status:
        logger.info(
            "Transaction %s kept status %s over %s", payload.id, transaction.status, status
        )
    await db.flush()
    return transaction


async def process_transaction_completed(db: AsyncSession, data: Any) -> None:
    transaction = await _upsert_transaction(
        db, data, status="completed", event_type="transaction.completed"
    )
    logger.info(
        "Transaction %s completed for user %s",
        transaction.gateway_transaction_id,
        transaction.user_id,
    )


async def process_transaction_payment_failed(db: AsyncSession, data: Any) -> None:
    """Record the failed payment. Entitlements are left alone."""
    transaction = await _upsert_transaction(
        db, data, status="failed", event_type="transaction.payment_failed"
    )
    record_system_error(
        db,
        "payment",
        f"Payment failed for transaction {transaction.gateway_transaction_id}",
        severity="medium",
        metadata={
            "transaction_id": transaction.gateway_transaction_id,
            "user_id": str(transaction.user_id),
            "amount": str(transaction.amount),
            "currency": transaction.currency,
        },
    )
    await db.flush()


async def process_transaction_refunded(db: AsyncSession, data: Any) -> None:
    """Mark a transaction refunded; a full refund also ends the subscription.

    The event's ``id`` is the refunded Paddle transaction id. A refund whose
    total covers the whole amount cancels the associated subscription and
    clears the user's package.
    """
    payload = parse_event_data(RefundEventData, data)
    adjustment = payload.adjustment
    refund_amount = minor_units_to_decimal(adjustment.total if adjustment else "0")
    refund_reason = adjustment.reason if adjustment else "unknown"

    shadow = await _get_shadow(db, payload.id)
    if shadow is None:
        raise BillingRecordNotFound(f"Paddle transaction {payload.id} not found")
    transaction = await db.get(PaymentTransaction, shadow.transaction_id)
    if transaction is None:
        raise BillingRecordNotFound(
            f"Transaction {shadow.transaction_id} for Paddle transaction {payload.id} not found"
        )
    now = utcnow()

    refund_details = {
        "refund_amount": str(refund_amount),
        "refund_reason": refund_reason,
        "refunded_at": now.isoformat(),
    }
    shadow.status = "refunded"
    shadow.event_type = "transaction.refunded"
    shadow.event_data = {**(shadow.event_data or {}), **refund_details}
    shadow.updated_at = now

    transaction.status = "refunded"
    transaction.notes = f"Refund: {refund_reason}"
    transaction.metadata_json = {**(transaction.metadata_json or {}), **refund_details}
    transaction.updated_at = now

    if refund_amount >= Decimal(transaction.amount):
        subscription = await _refunded_subscription(db, payload.subscription_id, transaction)
        if subscription is None:
            logger.warning(
                "Full refund of %s has no matching subscription; nothing to cancel", payload.id
            )
        else:
            subscription.status = "cancelled"
            subscription.cancel_at_period_end = False
            subscription.canceled_at = subscription.canceled_at or now
            subscription.updated_at = now
            profile = await get_profile(db, subscription.user_id)
            if profile is not None:
                profile.package_id = None
                profile.subscription_end_date = now
                profile.updated_at = now
            logger.info(
                "Full refund of %s cancelled subscription %s",
                payload.id,
                subscription.paddle_subscription_id,
            )
    await db.flush()


async def _refunded_subscription(
    db: AsyncSession, paddle_subscription_id: str | None, transaction: PaymentTransaction
) -> PaymentSubscription | None:
    if paddle_subscription_id:
        return await get_subscription_by_paddle_id(db, paddle_subscription_id)
    if transaction.subscription_id is not None:
        return await db.get(PaymentSubscription, transaction.subscription_id)
    return None
