"""Paddle gateway configuration stored in payment_gateways."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from indexnow.config import get_settings
from indexnow.models import PaymentGateway
from indexnow.services.encryption import (
    CredentialDecryptionError,
    decrypt_credential,
    encrypt_credential,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_NAME = "Paddle"


class GatewayConfigurationError(RuntimeError):
    """The gateway row is missing, inactive, or has no usable webhook secret."""


def _normalize_text(value: Any) -> str:
    return str(value or "").strip()


def _coerce_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def _mask_secret(value: str) -> str:
    if not value:
        return ""
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}{'*' * max(4, len(value) - 8)}{value[-4:]}"


def _gateway_slug() -> str:
    return _normalize_text(get_settings().paddle_gateway_slug) or "paddle"


async def _get_gateway_row(session: AsyncSession) -> PaymentGateway | None:
    result = await session.execute(
        select(PaymentGateway).where(
            PaymentGateway.slug == _gateway_slug(),
            PaymentGateway.deleted_at.is_(None),
        )
    )
    return result.scalars().first()


def _secret_from_credentials(credentials: dict[str, Any] | None) -> str:
    source = credentials if isinstance(credentials, dict) else {}
    encrypted = _normalize_text(source.get("webhook_secret_encrypted"))
    if encrypted:
        try:
            return decrypt_credential(encrypted)
        except (CredentialDecryptionError, ValueError) as exc:
            raise GatewayConfigurationError("Paddle webhook secret cannot be decrypted") from exc
    # Rows written before secrets were encrypted carry the plaintext value.
    return _normalize_text(source.get("webhook_secret"))


async def load_paddle_webhook_secret(session: AsyncSession) -> str:
    """Read the current webhook secret; fail closed on any configuration gap."""
    gateway = await _get_gateway_row(session)
    if gateway is None:
        raise GatewayConfigurationError("Paddle gateway not found")
    if not gateway.is_active:
        raise GatewayConfigurationError("Paddle gateway is not active")

    secret = _secret_from_credentials(gateway.api_credentials)
    if not secret:
        raise GatewayConfigurationError("Paddle webhook secret is not configured")
    return secret


SecretLoader = Callable[[AsyncSession], Awaitable[str]]


class PaddleWebhookSecretCache:
    """Short-lived per-process cache for the webhook secret.

    One instance is created by ``create_app()`` and lives on ``app.state``.
    The TTL bounds how long a rotated-away secret can still be used.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        loader: SecretLoader = load_paddle_webhook_secret,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = max(float(ttl_seconds), 0.0)
        self._loader = loader
        self._clock = clock
        self._secret: str | None = None
        self._loaded_at = 0.0

    async def get(self, session: AsyncSession) -> str:
        if self._secret is not None and self._clock() - self._loaded_at < self._ttl_seconds:
            return self._secret
        return await self.refresh(session)

    async def refresh(self, session: AsyncSession) -> str:
        try:
            secret = await self._loader(session)
        except Exception:
            self.reset()
            raise
        self._secret = secret
        self._loaded_at = self._clock()
        return secret

    def reset(self) -> None:
        self._secret = None
        self._loaded_at = 0.0


def _admin_payload(gateway: PaymentGateway | None) -> dict[str, Any]:
    if gateway is None:
        return {
            "slug": _gateway_slug(),
            "name": DEFAULT_GATEWAY_NAME,
            "is_active": False,
            "webhook_secret_masked": "",
            "webhook_is_configured": False,
            "updated_at": None,
        }
    try:
        secret = _secret_from_credentials(gateway.api_credentials)
    except GatewayConfigurationError:
        secret = ""
    return {
        "slug": gateway.slug,
        "name": gateway.name,
        "is_active": bool(gateway.is_active),
        "webhook_secret_masked": _mask_secret(secret),
        "webhook_is_configured": bool(secret),
        "updated_at": gateway.updated_at.isoformat() if gateway.updated_at else None,
    }


async def load_paddle_config(session: AsyncSession) -> dict[str, Any]:
    return _admin_payload(await _get_gateway_row(session))


async def save_paddle_config(session: AsyncSession, payload: dict[str, Any]) -> dict[str, Any]:
    """Create or update the gateway row. A new webhook secret is stored encrypted."""
    gateway = await _get_gateway_row(session)
    now = datetime.now(UTC)
    if gateway is None:
        gateway = PaymentGateway(
            slug=_gateway_slug(),
            name=_normalize_text(payload.get("name")) or DEFAULT_GATEWAY_NAME,
            is_active=False,
            api_credentials={},
            updated_at=now,
        )
        session.add(gateway)

    credentials = dict(gateway.api_credentials or {})
    if "name" in payload and _normalize_text(payload.get("name")):
        gateway.name = _normalize_text(payload.get("name"))
    if "is_active" in payload:
        gateway.is_active = _coerce_bool(payload.get("is_active"), False)
    if "webhook_secret" in payload:
        webhook_secret = _normalize_text(payload.get("webhook_secret"))
        credentials.pop("webhook_secret", None)
        credentials["webhook_secret_encrypted"] = (
            encrypt_credential(webhook_secret) if webhook_secret else ""
        )

    # Reassign so the JSONB change is tracked.
    gateway.api_credentials = credentials
    gateway.updated_at = now
    await session.flush()
    logger.info(
        "Paddle gateway config saved: fields=%s active=%s",
        sorted(payload.keys()),
        gateway.is_active,
    )
    return _admin_payload(gateway)
