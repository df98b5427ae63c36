"""Tests for Paddle signature verification."""

from __future__ import annotations

import hashlib
import hmac

import pytest
from api.services.paddle_signature import (
    REASON_INVALID_FORMAT,
    REASON_SIGNATURE_MISMATCH,
    REASON_STALE_TIMESTAMP,
    REASON_VERIFICATION_ERROR,
    PaddleSignature,
    SignatureVerificationError,
    check_timestamp,
    compute_signature,
    parse_signature_header,
    precheck_signature_header,
    sign_payload,
    verify_signature,
)

SECRET = "pdl_ntfset_unit_secret"
NOW = 1_760_000_000
BODY = b'{"event_id":"evt_1","event_type":"transaction.completed","data":{}}'


def test_compute_signature_matches_reference_hmac():
    expected = hmac.new(
        SECRET.encode(), f"{NOW}:".encode() + BODY, hashlib.sha256
    ).hexdigest()
    assert compute_signature(BODY, SECRET, NOW) == expected


def test_sign_payload_round_trips_through_verify():
    header = sign_payload(BODY, SECRET, timestamp=NOW)

    assert header.startswith(f"ts={NOW};h1=")
    assert verify_signature(BODY, header, SECRET, now=NOW).valid


def test_parse_signature_header_lowercases_digest():
    parsed = parse_signature_header("ts=123;h1=ABCDEF")
    assert parsed == PaddleSignature(timestamp=123, digest="abcdef")


@pytest.mark.parametrize(
    "header",
    [
        "",
        "ts=1",
        "ts=1;h1=ab;x=1",
        "h1=ab;ts=1",
        "ts=;h1=ab",
        "ts=1;h1=",
        "ts=-1;h1=ab",
        "t=1;v1=ab",
        "ts=123\n;h1=ab",
        "ts=\u0661\u0662\u0663;h1=ab",
    ],
)
def test_parse_signature_header_rejects_bad_shapes(header):
    with pytest.raises(SignatureVerificationError) as exc_info:
        parse_signature_header(header)
    assert exc_info.value.reason == REASON_INVALID_FORMAT


def test_check_timestamp_boundary():
    signature = PaddleSignature(timestamp=NOW, digest="00")
    check_timestamp(signature, now=NOW + 300)
    check_timestamp(signature, now=NOW - 300)
    with pytest.raises(SignatureVerificationError) as exc_info:
        check_timestamp(signature, now=NOW + 301)
    assert exc_info.value.reason == REASON_STALE_TIMESTAMP


def test_verify_rejects_future_timestamp_beyond_tolerance():
    header = sign_payload(BODY, SECRET, timestamp=NOW + 301)
    check = verify_signature(BODY, header, SECRET, now=NOW)
    assert check.valid is False
    assert check.reason == REASON_STALE_TIMESTAMP


def test_verify_rejects_single_byte_change():
    header = sign_payload(BODY, SECRET, timestamp=NOW)
    tampered = BODY.replace(b"evt_1", b"evt_2")

    check = verify_signature(tampered, header, SECRET, now=NOW)

    assert check.valid is False
    assert check.reason == REASON_SIGNATURE_MISMATCH


def test_verify_rejects_re_signed_timestamp():
    header = sign_payload(BODY, SECRET, timestamp=NOW)
    digest = header.split("h1=")[1]

    check = verify_signature(BODY, f"ts={NOW + 1};h1={digest}", SECRET, now=NOW)

    assert check.reason == REASON_SIGNATURE_MISMATCH


def test_verify_rejects_wrong_secret():
    header = sign_payload(BODY, "another-secret", timestamp=NOW)
    assert verify_signature(BODY, header, SECRET, now=NOW).reason == REASON_SIGNATURE_MISMATCH


def test_verify_rejects_short_digest():
    check = verify_signature(BODY, f"ts={NOW};h1=abcd", SECRET, now=NOW)
    assert check.valid is False
    assert check.reason == REASON_SIGNATURE_MISMATCH


def test_verify_fails_closed_without_secret():
    header = sign_payload(BODY, SECRET, timestamp=NOW)
    check = verify_signature(BODY, header, "", now=NOW)
    assert check.valid is False
    assert check.reason == REASON_VERIFICATION_ERROR


def test_verify_fails_closed_on_unexpected_input():
    check = verify_signature(None, f"ts={NOW};h1=" + "0" * 64, SECRET, now=NOW)  # type: ignore[arg-type]
    assert check.valid is False
    assert check.reason == REASON_VERIFICATION_ERROR


def test_precheck_reports_reason_without_secret():
    assert precheck_signature_header("nonsense", now=NOW) == REASON_INVALID_FORMAT
    assert precheck_signature_header(f"ts={NOW - 1000};h1=ab", now=NOW) == REASON_STALE_TIMESTAMP
    assert precheck_signature_header(f"ts={NOW};h1=ab", now=NOW) is None
