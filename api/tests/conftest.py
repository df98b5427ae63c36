"""API test configuration."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from api.dependencies import get_db
from api.main import create_app
from api.services.paddle_config import PaddleWebhookSecretCache
from httpx import ASGITransport, AsyncClient

TEST_WEBHOOK_SECRET = "pdl_ntfset_test_secret"


@pytest.fixture
def secret_loader():
    return AsyncMock(return_value=TEST_WEBHOOK_SECRET)


@pytest.fixture
def app(secret_loader):
    a = create_app()
    a.state.paddle_webhook_secrets = PaddleWebhookSecretCache(
        ttl_seconds=60,
        loader=secret_loader,
    )
    return a


def make_result(*, first=None, all_=None, scalar=None):
    """Build a mock Result for one ``session.execute`` call."""
    result = MagicMock()
    result.scalars.return_value.first.return_value = first
    result.scalars.return_value.all.return_value = list(all_ or [])
    result.scalar_one_or_none.return_value = scalar
    return result


@pytest.fixture
def mock_db():
    """Creates a mock AsyncSession with common patterns pre-configured."""
    session = AsyncMock()
    # AsyncSession.add() is synchronous; use MagicMock to avoid un-awaited coroutine warnings.
    session.add = MagicMock()
    # begin_nested() is used as ``async with``; exceptions must propagate.
    savepoint = MagicMock()
    savepoint.__aenter__ = AsyncMock(return_value=savepoint)
    savepoint.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=savepoint)
    # Default: execute returns empty result set
    session.execute.return_value = make_result()
    # Default: get returns None
    session.get.return_value = None
    return session


@pytest.fixture
async def client(app, mock_db):
    async def _override_db():
        yield mock_db

    app.dependency_overrides[get_db] = _override_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
