"""Paddle webhook signature verification.

Paddle signs each delivery with a header of the form ``ts=<unix>;h1=<hex>``
where ``h1`` is ``HMAC-SHA256(secret, "<ts>:<raw body>")``. Everything here
is pure: callers supply the body, header, secret and optionally the clock.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import time
from dataclasses import dataclass

DEFAULT_TOLERANCE_SECONDS = 300

REASON_INVALID_FORMAT = "invalid_format"
REASON_STALE_TIMESTAMP = "stale_timestamp"
REASON_SIGNATURE_MISMATCH = "signature_mismatch"
REASON_VERIFICATION_ERROR = "verification_error"

_DIGITS = re.compile(r"[0-9]+")
_HEX = re.compile(r"[0-9a-fA-F]+")


class SignatureVerificationError(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class PaddleSignature:
    timestamp: int
    digest: str


@dataclass(frozen=True)
class SignatureCheck:
    valid: bool
    reason: str | None = None


def parse_signature_header(header: str) -> PaddleSignature:
    """Split ``ts=..;h1=..`` into its parts, rejecting any other shape."""
    parts = header.strip().split(";")
    if len(parts) != 2:
        raise SignatureVerificationError(REASON_INVALID_FORMAT)

    ts_part = parts[0].split("=")
    h1_part = parts[1].split("=")
    if len(ts_part) != 2 or ts_part[0] != "ts" or len(h1_part) != 2 or h1_part[0] != "h1":
        raise SignatureVerificationError(REASON_INVALID_FORMAT)

    raw_ts, digest = ts_part[1], h1_part[1]
    if not _DIGITS.fullmatch(raw_ts) or not _HEX.fullmatch(digest):
        raise SignatureVerificationError(REASON_INVALID_FORMAT)
    return PaddleSignature(timestamp=int(raw_ts), digest=digest.lower())


def check_timestamp(
    signature: PaddleSignature,
    *,
    now: float | None = None,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> None:
    current = time.time() if now is None else now
    if abs(current - signature.timestamp) > tolerance:
        raise SignatureVerificationError(REASON_STALE_TIMESTAMP)


def compute_signature(raw_body: bytes, secret: str, timestamp: int) -> str:
    signed_payload = f"{timestamp}:".encode() + raw_body
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def sign_payload(raw_body: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a ``Paddle-Signature`` header value for ``raw_body``."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"ts={ts};h1={compute_signature(raw_body, secret, ts)}"


def precheck_signature_header(
    header: str,
    *,
    now: float | None = None,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> str | None:
    """Run the secret-free checks; return a reason code or None if they pass."""
    try:
        check_timestamp(parse_signature_header(header), now=now, tolerance=tolerance)
    except SignatureVerificationError as exc:
        return exc.reason
    except Exception:
        return REASON_VERIFICATION_ERROR
    return None


def verify_signature(
    raw_body: bytes,
    header: str,
    secret: str,
    *,
    now: float | None = None,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> SignatureCheck:
    """Verify a delivery. Never raises; any failure is reported as invalid."""
    try:
        if not secret:
            return SignatureCheck(valid=False, reason=REASON_VERIFICATION_ERROR)
        signature = parse_signature_header(header)
        check_timestamp(signature, now=now, tolerance=tolerance)
        expected = compute_signature(raw_body, secret, signature.timestamp)
        # Length is not secret.
        if len(signature.digest) != len(expected):
            return SignatureCheck(valid=False, reason=REASON_SIGNATURE_MISMATCH)
        if not hmac.compare_digest(signature.digest.encode(), expected.encode()):
            return SignatureCheck(valid=False, reason=REASON_SIGNATURE_MISMATCH)
        return SignatureCheck(valid=True)
    except SignatureVerificationError as exc:
        return SignatureCheck(valid=False, reason=exc.reason)
    except Exception:
        return SignatureCheck(valid=False, reason=REASON_VERIFICATION_ERROR)
