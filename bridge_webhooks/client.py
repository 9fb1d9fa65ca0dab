"""Bridge webhook admin API client.

Wraps the /webhooks endpoints of the Bridge API (list, create, enable,
delete, upcoming events, delivery logs, resend). Authenticates with the
Api-Key header; mutating POSTs carry a fresh Idempotency-Key.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from bridge_webhooks.config import Settings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_EVENT_CATEGORIES = (
    "customer",
    "external_account",
    "kyc_link",
    "liquidation_address",
    "liquidation_address.drain",
    "transfer",
    "virtual_account",
    "virtual_account.activity",
)


class BridgeError(Exception):
    """Base class for Bridge client errors."""


class BridgeConfigError(BridgeError):
    """Client is missing required configuration (e.g. BRIDGE_API_KEY)."""


class BridgeAPIError(BridgeError):
    """Bridge answered with a non-2xx status."""

    def __init__(self, status_code: int, payload: Any):
        self.status_code = status_code
        self.payload = payload
        super().__init__(f"Bridge API returned HTTP {status_code}: {payload}")


def _idempotency_key(prefix: str = "webhook") -> str:
    return f"{prefix}-{uuid.uuid4()}"


def _as_list(result: Any) -> list[dict]:
    """Bridge list endpoints answer either {"data": [...]} or a bare array."""
    if isinstance(result, dict):
        return result.get("data", [])
    return result or []


class BridgeClient:
    """Thin synchronous client for Bridge webhook administration."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if not api_key:
            raise BridgeConfigError("BRIDGE_API_KEY not found in environment variables")
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Api-Key": api_key, "accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> BridgeClient:
        settings = settings or get_settings()
        return cls(settings.bridge_api_key, settings.bridge_api_url, **kwargs)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> BridgeClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._http.request(method, path, **kwargs)
        logger.debug("%s %s -> %d", method, path, response.status_code)
        if response.is_error:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            raise BridgeAPIError(response.status_code, payload)
        if not response.content:
            return None
        return response.json()

    # ── Webhook endpoints ────────────────────────────────────────────────

    def list_webhooks(self) -> list[dict]:
        """GET /webhooks: all webhook endpoints on the account."""
        return _as_list(self._request("GET", "/webhooks"))

    def create_webhook(
        self,
        url: str,
        event_categories: list[str] | tuple[str, ...] = DEFAULT_EVENT_CATEGORIES,
        event_epoch: str = "webhook_creation",
    ) -> dict:
        """POST /webhooks: register a new endpoint (created disabled)."""
        return self._request(
            "POST",
            "/webhooks",
            json={
                "url": url,
                "event_epoch": event_epoch,
                "event_categories": list(event_categories),
            },
            headers={"Idempotency-Key": _idempotency_key()},
        )

    def update_webhook(self, webhook_id: str, **fields: Any) -> dict:
        """PUT /webhooks/{id}."""
        return self._request("PUT", f"/webhooks/{webhook_id}", json=fields)

    def enable_webhook(self, webhook_id: str) -> dict:
        return self.update_webhook(webhook_id, status="active")

    def disable_webhook(self, webhook_id: str) -> dict:
        return self.update_webhook(webhook_id, status="disabled")

    def delete_webhook(self, webhook_id: str) -> Any:
        """DELETE /webhooks/{id}."""
        return self._request("DELETE", f"/webhooks/{webhook_id}")

    def list_webhook_events(self, webhook_id: str) -> list[dict]:
        """GET /webhooks/{id}/events: upcoming (undelivered) events."""
        return _as_list(self._request("GET", f"/webhooks/{webhook_id}/events"))

    def get_webhook_logs(self, webhook_id: str) -> list[dict]:
        """GET /webhooks/{id}/logs: recent delivery attempts, newest first."""
        return _as_list(self._request("GET", f"/webhooks/{webhook_id}/logs"))

    def get_webhook_event(self, event_id: str) -> dict:
        """GET /webhook_events/{event_id}: full event payload."""
        return self._request("GET", f"/webhook_events/{event_id}")

    def send_webhook_event(self, webhook_id: str, event_id: str) -> dict:
        """POST /webhooks/{id}/send: redeliver an event to the endpoint."""
        return self._request(
            "POST",
            f"/webhooks/{webhook_id}/send",
            json={"event_id": event_id},
            headers={"Idempotency-Key": _idempotency_key("webhook-event")},
        )
