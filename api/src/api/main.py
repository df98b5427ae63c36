"""FastAPI application factory."""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory
from fastapi import FastAPI
from indexnow.config import get_settings
from indexnow.database import close_engine, get_engine
from sqlalchemy import text

from api.routers import health, paddle_webhook
from api.services.paddle_config import PaddleWebhookSecretCache

logger = logging.getLogger(__name__)


async def _assert_database_revision_current() -> None:
    settings = get_settings()
    if settings.skip_migration_check:
        return

    repo_root = Path(__file__).resolve().parents[3]
    alembic_ini = repo_root / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning("alembic.ini not found; skipping migration revision check")
        return

    alembic_cfg = AlembicConfig(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", str(repo_root / "alembic"))
    script = ScriptDirectory.from_config(alembic_cfg)
    expected_heads = set(script.get_heads())
    if not expected_heads:
        return

    engine = get_engine()
    try:
        async with engine.connect() as connection:
            result = await connection.execute(text("SELECT version_num FROM alembic_version"))
            current_revisions = {str(row[0]) for row in result.fetchall() if row and row[0]}
    except Exception as exc:
        raise RuntimeError(
            "Database migration revision check failed. "
            "Run `alembic upgrade head` before starting the API."
        ) from exc

    if current_revisions != expected_heads:
        raise RuntimeError(
            "Database schema revision mismatch: "
            f"db={sorted(current_revisions)} expected={sorted(expected_heads)}. "
            "Run `alembic upgrade head`."
        )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    try:
        engine = get_engine()
        async with engine.begin() as connection:
            await connection.execute(text("CREATE EXTENSION IF NOT EXISTS pgcrypto"))
        await _assert_database_revision_current()
        yield
    finally:
        app.state.paddle_webhook_secrets.reset()
        await close_engine()


def _configure_logging() -> None:
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stdout,
    )


def _warn_insecure_defaults() -> None:
    settings = get_settings()
    if not settings.encryption_key:
        logger.warning("ENCRYPTION_KEY is empty; encrypted gateway secrets will fail")


def create_app() -> FastAPI:
    _configure_logging()
    settings = get_settings()
    _warn_insecure_defaults()
    app = FastAPI(title="IndexNow Billing API", version="0.1.0", lifespan=lifespan)
    app.state.paddle_webhook_secrets = PaddleWebhookSecretCache(
        ttl_seconds=settings.paddle_webhook_secret_cache_ttl_seconds,
    )
    app.include_router(health.router, tags=["health"])
    app.include_router(
        paddle_webhook.router,
        prefix="/v1/payments/paddle",
        tags=["paddle"],
    )
    return app


app = create_app()
