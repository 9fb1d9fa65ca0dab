"""Bridge webhook signature verification: two-pass SHA-256 + RSA.

Security contract:
- Header format is exactly ``t=<timestamp_ms>,v0=<base64 signature>``
- Signed payload is ``"<timestamp>." + raw body``, hashed once with SHA-256;
  the RSA PKCS#1 v1.5 / SHA-256 signature covers that digest, so the
  verification primitive hashes it a second time
- Deliveries older than 10 minutes are rejected (replay protection)
- Deliveries timestamped more than 5 minutes in the future are rejected
- verify() never raises for bad input; failures come back as a typed outcome
- Missing public key or header -> verification always fails (fail-closed)
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Mapping, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from bridge_webhooks.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Bridge sends the signature in X-Webhook-Signature (lowercased by the handler)
SIGNATURE_HEADER = "x-webhook-signature"

DEFAULT_MAX_AGE_MS = 10 * 60 * 1000
DEFAULT_MAX_FUTURE_SKEW_MS = 5 * 60 * 1000

_HEADER_PATTERN = re.compile(r"t=([0-9]+),v0=(\S+)")

PublicKeyInput = Union[str, bytes, rsa.RSAPublicKey]


class VerificationFailure(str, Enum):
    """Why a delivery was rejected."""

    MALFORMED_HEADER = "malformed_header"
    STALE_SIGNATURE = "stale_signature"
    SIGNATURE_MISMATCH = "signature_mismatch"
    DECODING_ERROR = "decoding_error"


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of a single verification pass. Truthy only when valid."""

    valid: bool
    reason: VerificationFailure | None = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.valid

    @classmethod
    def success(cls) -> VerificationOutcome:
        return cls(valid=True)

    @classmethod
    def failure(cls, reason: VerificationFailure, detail: str = "") -> VerificationOutcome:
        return cls(valid=False, reason=reason, detail=detail)


class MalformedSignatureHeader(ValueError):
    """Signature header does not match ``t=<digits>,v0=<signature>``."""


def parse_signature_header(header: str | None) -> tuple[str, str]:
    """Split a Bridge signature header into (timestamp, base64 signature).

    The timestamp is returned verbatim (as signed), not converted to int.

    Raises:
        MalformedSignatureHeader: if the header is missing or not in the
            exact ``t=...,v0=...`` form (no extra fields, no whitespace).
    """
    if not header:
        raise MalformedSignatureHeader("missing signature header")
    match = _HEADER_PATTERN.fullmatch(header)
    if match is None:
        raise MalformedSignatureHeader("expected 't=<timestamp>,v0=<signature>'")
    return match.group(1), match.group(2)


@lru_cache(maxsize=8)
def _load_pem(pem: bytes) -> rsa.RSAPublicKey:
    try:
        key = serialization.load_pem_public_key(pem)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise ValueError(f"invalid PEM public key: {exc}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError(f"unsupported public key type: {type(key).__name__}")
    return key


def load_public_key(public_key: PublicKeyInput) -> rsa.RSAPublicKey:
    """Load a PEM RSA public key (cached), or pass a loaded key through.

    Raises:
        ValueError: if the PEM cannot be parsed or is not an RSA key.
    """
    if isinstance(public_key, rsa.RSAPublicKey):
        return public_key
    if isinstance(public_key, str):
        public_key = public_key.encode("ascii")
    return _load_pem(public_key.strip() + b"\n")


def signed_digest(timestamp: str, raw_body: bytes | str) -> bytes:
    """First hash pass: SHA-256 over ``"<timestamp>.<raw body>"``."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    return hashlib.sha256(timestamp.encode("ascii") + b"." + raw_body).digest()


def verify(
    raw_body: bytes | str,
    signature_header: str | None,
    public_key: PublicKeyInput,
    *,
    max_age_ms: int = DEFAULT_MAX_AGE_MS,
    allow_replay: bool = False,
    max_future_skew_ms: int | None = DEFAULT_MAX_FUTURE_SKEW_MS,
    now_ms: int | None = None,
) -> VerificationOutcome:
    """Verify a Bridge webhook delivery.

    Args:
        raw_body: Exact request body bytes, before any JSON parsing
        signature_header: Value of the X-Webhook-Signature header
        public_key: Bridge PEM public key (text/bytes) or a loaded RSA key
        max_age_ms: Maximum age of the signature timestamp
        allow_replay: Skip freshness checks (fixture replay only)
        max_future_skew_ms: Maximum tolerated future timestamp; None = unbounded
        now_ms: Current time in ms since epoch (defaults to the wall clock)

    Returns:
        VerificationOutcome, valid only if fresh and cryptographically valid
    """
    try:
        timestamp, signature_b64 = parse_signature_header(signature_header)
    except MalformedSignatureHeader as exc:
        return VerificationOutcome.failure(VerificationFailure.MALFORMED_HEADER, str(exc))

    if not allow_replay:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        try:
            age_ms = now_ms - int(timestamp)
        except ValueError:
            # more digits than int() will parse
            return VerificationOutcome.failure(
                VerificationFailure.MALFORMED_HEADER, "timestamp out of range"
            )
        if age_ms > max_age_ms:
            return VerificationOutcome.failure(
                VerificationFailure.STALE_SIGNATURE,
                f"signature is {age_ms}ms old (max {max_age_ms}ms)",
            )
        if max_future_skew_ms is not None and -age_ms > max_future_skew_ms:
            return VerificationOutcome.failure(
                VerificationFailure.STALE_SIGNATURE,
                f"signature is {-age_ms}ms in the future (max {max_future_skew_ms}ms)",
            )

    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError):
        return VerificationOutcome.failure(
            VerificationFailure.DECODING_ERROR, "signature is not valid base64"
        )

    try:
        key = load_public_key(public_key)
    except ValueError as exc:
        return VerificationOutcome.failure(VerificationFailure.DECODING_ERROR, str(exc))

    digest = signed_digest(timestamp, raw_body)
    try:
        # Second hash pass happens inside verify()
        key.verify(signature, digest, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return VerificationOutcome.failure(
            VerificationFailure.SIGNATURE_MISMATCH, "signature does not match payload"
        )

    return VerificationOutcome.success()


def verify_bridge(
    body: bytes,
    headers: Mapping[str, str],
    settings: Settings | None = None,
) -> VerificationOutcome:
    """Verify an inbound Bridge webhook using the configured public key.

    Args:
        body: Raw request body
        headers: Request headers (lowercase keys)
        settings: Overrides the process-wide settings

    Returns:
        VerificationOutcome (reasons are logged, never returned to the caller)
    """
    settings = settings or get_settings()
    try:
        public_key = settings.webhook_public_key()
    except (OSError, UnicodeDecodeError):
        logger.exception("Cannot read Bridge webhook public key file")
        public_key = ""
    if not public_key:
        logger.warning("BRIDGE_WEBHOOK_PUBLIC_KEY not set, rejecting webhook")
        return VerificationOutcome.failure(
            VerificationFailure.DECODING_ERROR, "no public key configured"
        )

    outcome = verify(
        body,
        headers.get(SIGNATURE_HEADER),
        public_key,
        max_age_ms=settings.webhook_max_age_ms,
        max_future_skew_ms=settings.webhook_max_future_skew_ms,
    )
    if not outcome:
        logger.warning(
            "Bridge webhook signature rejected: %s (%s)",
            outcome.reason.value,
            outcome.detail,
        )
    return outcome
