"""FastAPI dependency injection."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import HTTPException, Request, status
from indexnow.database import get_session_factory
from sqlalchemy.ext.asyncio import AsyncSession

from api.services.paddle_config import PaddleWebhookSecretCache


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_webhook_secret_cache(request: Request) -> PaddleWebhookSecretCache:
    cache = getattr(request.app.state, "paddle_webhook_secrets", None)
    if cache is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret provider is not configured",
        )
    return cache
