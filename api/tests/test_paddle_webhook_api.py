"""Tests for the Paddle webhook endpoint state machine."""

from __future__ import annotations

import json
import logging
import time
from unittest.mock import AsyncMock, patch

import pytest
from api.services.paddle_config import GatewayConfigurationError
from api.services.paddle_processors import BillingRecordNotFound
from api.services.paddle_signature import sign_payload
from api.services.webhook_event_store import EventRecord
from httpx import AsyncClient
from indexnow.models import SystemErrorLog

from conftest import TEST_WEBHOOK_SECRET

WEBHOOK_URL = "/v1/payments/paddle/webhook"
ROUTER = "api.routers.paddle_webhook"


def _event(event_type: str = "subscription.created", event_id: str = "evt_01test") -> bytes:
    return json.dumps(
        {
            "event_id": event_id,
            "event_type": event_type,
            "occurred_at": "2026-10-19T10:00:00Z",
            "data": {"id": "sub_01test", "status": "active"},
        }
    ).encode()


def _signed(body: bytes, secret: str = TEST_WEBHOOK_SECRET, **kwargs) -> dict[str, str]:
    return {
        "Paddle-Signature": sign_payload(body, secret, **kwargs),
        "Content-Type": "application/json",
    }


@pytest.mark.asyncio
async def test_missing_signature_rejected_without_db(client: AsyncClient, mock_db, secret_loader):
    response = await client.post(WEBHOOK_URL, content=_event())

    assert response.status_code == 401
    assert response.json() == {"error": "Missing signature"}
    secret_loader.assert_not_awaited()
    mock_db.execute.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "header",
    [
        "garbage",
        "h1=abc;ts=123",
        "ts=123;h1=abc;extra=1",
        "ts=abc;h1=deadbeef",
        "ts=123;h1=not-hex",
    ],
)
async def test_malformed_signature_rejected_without_db(
    client: AsyncClient, mock_db, secret_loader, header
):
    response = await client.post(
        WEBHOOK_URL, content=_event(), headers={"Paddle-Signature": header}
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid signature"}
    secret_loader.assert_not_awaited()
    mock_db.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_stale_timestamp_rejected_without_db(client: AsyncClient, secret_loader):
    body = _event()
    headers = _signed(body, timestamp=int(time.time()) - 301)

    response = await client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 401
    secret_loader.assert_not_awaited()


@pytest.mark.asyncio
async def test_wrong_secret_rejected(client: AsyncClient, secret_loader):
    body = _event()
    with patch(f"{ROUTER}.record_if_new", new_callable=AsyncMock) as record:
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body, "other"))

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid signature"}
    # The mismatch forces one reload of the secret before giving up.
    assert secret_loader.await_count == 2
    record.assert_not_awaited()


@pytest.mark.asyncio
async def test_tampered_body_rejected(client: AsyncClient):
    body = _event()
    headers = _signed(body)
    tampered = body.replace(b"sub_01test", b"sub_01evil")

    response = await client.post(WEBHOOK_URL, content=tampered, headers=headers)

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_rotated_secret_is_picked_up_on_mismatch(client: AsyncClient, secret_loader):
    secret_loader.side_effect = ["pdl_ntfset_old_secret", TEST_WEBHOOK_SECRET]
    body = _event()
    with (
        patch(f"{ROUTER}.record_if_new", new_callable=AsyncMock) as record,
        patch(f"{ROUTER}.dispatch_event", new_callable=AsyncMock) as dispatch,
        patch(f"{ROUTER}.mark_processed", new_callable=AsyncMock),
    ):
        record.return_value = EventRecord(is_new=True, already_processed=False)
        dispatch.return_value = True
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 200
    assert response.json() == {"received": True}


@pytest.mark.asyncio
async def test_unconfigured_gateway_fails_closed(client: AsyncClient, secret_loader):
    secret_loader.side_effect = GatewayConfigurationError("Paddle gateway is not active")
    body = _event()

    response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 500
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_invalid_json_rejected(client: AsyncClient):
    body = b"{not json"
    with patch(f"{ROUTER}.record_if_new", new_callable=AsyncMock) as record:
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON payload"}
    record.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"event_type": "subscription.created", "data": {}},
        {"event_id": "evt_01test", "data": {}},
        {"event_id": "  ", "event_type": "subscription.created"},
    ],
)
async def test_missing_event_identity_rejected(client: AsyncClient, payload):
    body = json.dumps(payload).encode()
    response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 400
    assert response.json() == {"error": "Missing event_id or event_type"}


@pytest.mark.asyncio
async def test_non_object_payload_rejected(client: AsyncClient):
    body = b"[1, 2, 3]"
    response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_signature_mismatch_logged_at_error(client: AsyncClient, caplog):
    body = _event()
    with caplog.at_level(logging.WARNING, logger=ROUTER):
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body, "other"))

    assert response.status_code == 401
    rejected = [r for r in caplog.records if r.name == ROUTER and "rejected" in r.getMessage()]
    assert [r.levelno for r in rejected] == [logging.ERROR]
    assert "signature_mismatch" in rejected[0].getMessage()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("headers", "reason"),
    [({}, "missing_signature"), ({"Paddle-Signature": "garbage"}, "invalid_format")],
)
async def test_header_rejections_logged_at_error(client: AsyncClient, caplog, headers, reason):
    with caplog.at_level(logging.WARNING, logger=ROUTER):
        response = await client.post(WEBHOOK_URL, content=_event(), headers=headers)

    assert response.status_code == 401
    assert any(
        r.levelno == logging.ERROR and reason in r.getMessage()
        for r in caplog.records
        if r.name == ROUTER
    )


@pytest.mark.asyncio
async def test_secret_lookup_failure_returns_json_500(client: AsyncClient, secret_loader, caplog):
    secret_loader.side_effect = ConnectionError("database unavailable")
    body = _event()

    with caplog.at_level(logging.ERROR, logger=ROUTER):
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook is not configured"}
    assert any(r.exc_info for r in caplog.records if r.name == ROUTER)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("payload", "field"),
    [
        ({"event_type": "subscription.created"}, "event_id"),
        ({"event_id": "evt_01test"}, "event_type"),
    ],
)
async def test_missing_event_identity_is_logged(client: AsyncClient, caplog, payload, field):
    body = json.dumps(payload).encode()
    with caplog.at_level(logging.WARNING, logger=ROUTER):
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 400
    warnings = [r for r in caplog.records if r.name == ROUTER and r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert f"missing {field}" in warnings[0].getMessage()


@pytest.mark.asyncio
async def test_invalid_json_is_logged(client: AsyncClient, caplog):
    body = b"{not json"
    with caplog.at_level(logging.WARNING, logger=ROUTER):
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 400
    assert any(
        r.levelno == logging.WARNING and "invalid JSON" in r.getMessage()
        for r in caplog.records
        if r.name == ROUTER
    )


@pytest.mark.asyncio
async def test_processed_duplicate_short_circuits(client: AsyncClient):
    body = _event()
    with (
        patch(f"{ROUTER}.record_if_new", new_callable=AsyncMock) as record,
        patch(f"{ROUTER}.dispatch_event", new_callable=AsyncMock) as dispatch,
        patch(f"{ROUTER}.mark_processed", new_callable=AsyncMock) as processed,
    ):
        record.return_value = EventRecord(is_new=False, already_processed=True)
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 200
    assert response.json() == {"received": True, "duplicate": True}
    dispatch.assert_not_awaited()
    processed.assert_not_awaited()


@pytest.mark.asyncio
async def test_unprocessed_redelivery_is_retried(client: AsyncClient, mock_db):
    body = _event()
    with (
        patch(f"{ROUTER}.record_if_new", new_callable=AsyncMock) as record,
        patch(f"{ROUTER}.dispatch_event", new_callable=AsyncMock) as dispatch,
        patch(f"{ROUTER}.mark_processed", new_callable=AsyncMock) as processed,
    ):
        record.return_value = EventRecord(is_new=False, already_processed=False)
        dispatch.return_value = True
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    dispatch.assert_awaited_once()
    processed.assert_awaited_once_with(mock_db, "evt_01test")


@pytest.mark.asyncio
async def test_success_dispatches_and_marks_processed(client: AsyncClient, mock_db):
    body = _event()
    with (
        patch(f"{ROUTER}.record_if_new", new_callable=AsyncMock) as record,
        patch(f"{ROUTER}.dispatch_event", new_callable=AsyncMock) as dispatch,
        patch(f"{ROUTER}.mark_processed", new_callable=AsyncMock) as processed,
        patch(f"{ROUTER}.mark_failed", new_callable=AsyncMock) as failed,
    ):
        record.return_value = EventRecord(is_new=True, already_processed=False)
        dispatch.return_value = True
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    stored_payload = record.await_args.args[3]
    assert stored_payload["occurred_at"] == "2026-10-19T10:00:00Z"
    dispatch.assert_awaited_once_with(
        mock_db, "subscription.created", {"id": "sub_01test", "status": "active"}
    )
    mock_db.begin_nested.assert_called_once()
    processed.assert_awaited_once_with(mock_db, "evt_01test")
    failed.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_event_type_acknowledged_and_marked(client: AsyncClient, mock_db):
    body = _event(event_type="something.new")
    with (
        patch(f"{ROUTER}.record_if_new", new_callable=AsyncMock) as record,
        patch(f"{ROUTER}.mark_processed", new_callable=AsyncMock) as processed,
    ):
        record.return_value = EventRecord(is_new=True, already_processed=False)
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    processed.assert_awaited_once_with(mock_db, "evt_01test")
    mock_db.add.assert_not_called()


@pytest.mark.asyncio
async def test_processor_failure_is_annotated_and_returns_500(client: AsyncClient, mock_db):
    body = _event(event_type="subscription.updated")
    with (
        patch(f"{ROUTER}.record_if_new", new_callable=AsyncMock) as record,
        patch(f"{ROUTER}.dispatch_event", new_callable=AsyncMock) as dispatch,
        patch(f"{ROUTER}.mark_processed", new_callable=AsyncMock) as processed,
        patch(f"{ROUTER}.mark_failed", new_callable=AsyncMock) as failed,
    ):
        record.return_value = EventRecord(is_new=True, already_processed=False)
        dispatch.side_effect = BillingRecordNotFound("Subscription sub_01test not found")
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook processing failed"}
    failed.assert_awaited_once_with(mock_db, "evt_01test", "Subscription sub_01test not found")
    processed.assert_not_awaited()
    mock_db.rollback.assert_not_awaited()

    error_rows = [
        call.args[0]
        for call in mock_db.add.call_args_list
        if isinstance(call.args[0], SystemErrorLog)
    ]
    assert len(error_rows) == 1
    assert error_rows[0].error_type == "external_api"
    assert error_rows[0].severity == "high"
    assert error_rows[0].metadata_json["event_id"] == "evt_01test"


@pytest.mark.asyncio
async def test_store_failure_rolls_back_and_returns_500(client: AsyncClient, mock_db):
    body = _event()
    with patch(f"{ROUTER}.record_if_new", new_callable=AsyncMock) as record:
        record.side_effect = RuntimeError("connection reset")
        response = await client.post(WEBHOOK_URL, content=body, headers=_signed(body))

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    mock_db.rollback.assert_awaited_once()
