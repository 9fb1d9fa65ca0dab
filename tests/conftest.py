"""Shared fixtures for the Bridge webhook test suite."""

from __future__ import annotations

import base64
import hashlib

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from bridge_webhooks.config import Settings


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    """Stand-in for Bridge's signing key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def public_key_pem(private_key) -> str:
    return (
        private_key.public_key()
        .public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("ascii")
    )


@pytest.fixture(scope="session")
def sign_webhook(private_key):
    """Return a function building a valid X-Webhook-Signature header.

    Mirrors Bridge: SHA-256 over "<t>.<body>", then RSA PKCS#1 v1.5 / SHA-256
    over that digest.
    """

    def _sign(body: bytes, timestamp_ms: int) -> str:
        digest = hashlib.sha256(f"{timestamp_ms}.".encode() + body).digest()
        signature = private_key.sign(digest, padding.PKCS1v15(), hashes.SHA256())
        return f"t={timestamp_ms},v0={base64.b64encode(signature).decode()}"

    return _sign


@pytest.fixture
def settings(public_key_pem) -> Settings:
    """Settings with the test public key and no API credentials."""
    return Settings(
        bridge_api_key="",
        bridge_webhook_public_key=public_key_pem,
        bridge_webhook_id="",
        redis_url="redis://localhost:6379/15",
    )
