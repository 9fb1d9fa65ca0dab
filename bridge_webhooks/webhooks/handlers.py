"""Webhook HTTP handlers: FastAPI route handlers for inbound Bridge webhooks.

The handler:
1. Reads the raw body (needed for signature verification)
2. Verifies the X-Webhook-Signature header against the Bridge public key
3. Parses the Bridge event envelope
4. Checks idempotency (reject duplicates)
5. Dispatches the event and returns 202 Accepted

Security contract:
- Nothing in the payload is parsed or logged before verification passes
- Never return error details to the webhook caller (info disclosure)
- Return 202 even for unrecognized events (don't leak event support map)
- Return 401 only for signature failures
- Log all webhook activity for audit trail
- A failed dispatch releases the dedup marker so a redelivery is processed
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from bridge_webhooks.webhooks.dispatcher import PROVIDER, dispatch_event, parse_event
from bridge_webhooks.webhooks.idempotency import (
    clear_failure,
    forget,
    is_duplicate,
    record_failure,
)
from bridge_webhooks.webhooks.verification import verify_bridge

logger = logging.getLogger(__name__)

_RECENT_LIMIT = 100

# Webhook receive counters, keyed by status (in-memory, per process)
_webhook_counts: dict[str, int] = {}

# Most recent deliveries, newest last
_recent: deque[dict] = deque(maxlen=_RECENT_LIMIT)


def _log_webhook(event_type: str, event_id: str, status: str) -> None:
    """Audit log for webhook activity."""
    _webhook_counts[status] = _webhook_counts.get(status, 0) + 1
    _recent.append(
        {
            "event_id": event_id,
            "event_type": event_type,
            "status": status,
            "received_at": time.time(),
        }
    )
    logger.info(
        "WEBHOOK_AUDIT provider=%s event=%s id=%s status=%s count=%d",
        PROVIDER,
        event_type,
        event_id,
        status,
        _webhook_counts[status],
    )


def reset_counts() -> None:
    _webhook_counts.clear()
    _recent.clear()


async def _handle_bridge_webhook(request: Request) -> JSONResponse:
    """Returns 202 on success, 200 on duplicates, 401 on signature failure."""
    start = time.time()

    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}

    # 1. Verify signature
    outcome = verify_bridge(body, headers)
    if not outcome:
        _log_webhook("unknown", "unknown", f"rejected_{outcome.reason.value}")
        return JSONResponse({"status": "unauthorized"}, status_code=401)

    # 2. Parse JSON payload
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        _log_webhook("unknown", "unknown", "invalid_json")
        return JSONResponse({"status": "received"}, status_code=202)
    if not isinstance(payload, dict):
        _log_webhook("unknown", "unknown", "invalid_json")
        return JSONResponse({"status": "received"}, status_code=202)

    # 3. Parse into normalized event
    event = parse_event(payload)
    if event is None:
        _log_webhook("unrecognized", str(payload.get("event_id", "")), "skipped")
        return JSONResponse({"status": "received"}, status_code=202)

    # 4. Check idempotency
    if is_duplicate(PROVIDER, event.event_id):
        _log_webhook(event.event_type, event.event_id, "duplicate")
        return JSONResponse({"status": "received"}, status_code=200)

    # 5. Dispatch
    try:
        dispatch_event(event)
    except Exception as exc:
        logger.exception("Failed to dispatch Bridge event: %s (%s)", event.event_type, event.event_id)
        forget(PROVIDER, event.event_id)
        record_failure(PROVIDER, event.event_id, event.event_type, f"{type(exc).__name__}: {exc}")
        _log_webhook(event.event_type, event.event_id, "dispatch_failed")
    else:
        clear_failure(PROVIDER, event.event_id)
        _log_webhook(event.event_type, event.event_id, "dispatched")

    elapsed_ms = (time.time() - start) * 1000
    logger.debug("Webhook processed in %.1fms: %s", elapsed_ms, event.event_type)

    return JSONResponse({"status": "received"}, status_code=202)


def register_webhook_routes(app: FastAPI) -> None:
    """Register webhook endpoint routes on the FastAPI app."""

    @app.post("/webhooks/bridge")
    async def bridge_webhook(request: Request):
        """Receive Bridge webhooks (signature-verified)."""
        return await _handle_bridge_webhook(request)

    @app.get("/webhooks/status")
    async def webhook_status():
        """Webhook receive counts by status."""
        return {"counts": dict(_webhook_counts)}

    @app.get("/webhooks/recent")
    async def webhook_recent(limit: int = Query(20, ge=1, le=_RECENT_LIMIT)):
        """Latest deliveries with their outcome, newest first."""
        return {"events": list(reversed(_recent))[:limit]}

    logger.info("Webhook routes registered: /webhooks/bridge")
