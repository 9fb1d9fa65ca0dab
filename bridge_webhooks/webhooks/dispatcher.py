"""Bridge webhook event dispatcher: routes verified events by category.

Bridge wraps every delivery in the same envelope::

    {"event_id": ..., "event_category": "transfer",
     "event_type": "transfer.updated.status_transitioned",
     "event_object_id": ..., "event_object_status": ...,
     "event_object": {...}, "event_object_changes": {...},
     "event_created_at": ...}

Security contract:
- Only called after signature verification has passed
- Payload fields are sanitized before they reach summaries (strip HTML, truncate)
- Customer emails are redacted to their domain
- Unknown categories are skipped, not errors
"""

from __future__ import annotations

import html
import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable


logger = logging.getLogger(__name__)

PROVIDER = "bridge"

# Maximum payload field length to keep log lines and summaries bounded
_MAX_FIELD_LENGTH = 500


@dataclass
class WebhookEvent:
    """Normalized Bridge webhook event ready for dispatch."""

    event_id: str
    category: str
    event_type: str
    object_id: str
    object_status: str
    payload: dict[str, Any]
    task_description: str
    priority: str = "normal"  # normal, high
    provider: str = PROVIDER

    @property
    def event_object(self) -> dict[str, Any]:
        obj = self.payload.get("event_object")
        return obj if isinstance(obj, dict) else {}


# Bridge event category -> task description template
_CATEGORY_TEMPLATES: dict[str, str] = {
    "customer": "Bridge customer {verb}: {summary}. Sync customer profile.",
    "kyc_link": "Bridge KYC link {verb}: {summary}. Update onboarding state.",
    "external_account": "Bridge external account {verb}: {summary}. Refresh payout accounts.",
    "liquidation_address": "Bridge liquidation address {verb}: {summary}. Refresh deposit addresses.",
    "liquidation_address.drain": "Bridge liquidation drain {verb}: {summary}. Reconcile deposit.",
    "transfer": "Bridge transfer {verb}: {summary}. Update transfer state.",
    "virtual_account": "Bridge virtual account {verb}: {summary}. Refresh account details.",
    "virtual_account.activity": "Bridge virtual account activity: {summary}. Record account activity.",
}

KNOWN_CATEGORIES = frozenset(_CATEGORY_TEMPLATES)

# States that need immediate attention, per category
_HIGH_PRIORITY_STATES: dict[str, frozenset[str]] = {
    "customer": frozenset({"rejected", "offboarded"}),
    "kyc_link": frozenset({"rejected"}),
    "transfer": frozenset({"error", "returned", "refunded", "canceled"}),
    "liquidation_address.drain": frozenset({"error", "returned", "refunded"}),
    "virtual_account.activity": frozenset({"deactivation", "refund", "microdeposit_failed"}),
}


def _sanitize_field(value: Any) -> str:
    """Sanitize a payload field value for safe inclusion in summaries."""
    if value is None:
        return ""
    s = str(value)
    # Strip HTML tags
    s = re.sub(r"<[^>]+>", "", s)
    # Unescape HTML entities
    s = html.unescape(s)
    # Collapse whitespace
    s = re.sub(r"\s+", " ", s).strip()
    # Truncate
    if len(s) > _MAX_FIELD_LENGTH:
        s = s[:_MAX_FIELD_LENGTH] + "..."
    return s


def _redact_email(value: Any) -> str:
    email = _sanitize_field(value)
    if "@" in email:
        return "***@" + email.split("@", 1)[1]
    return email


def _amount(obj: dict, amount_key: str = "amount", currency_key: str = "currency") -> str:
    amount = _sanitize_field(obj.get(amount_key))
    if not amount:
        return ""
    currency = _sanitize_field(obj.get(currency_key) or "usd").upper()
    return f"{amount} {currency}"


def _join(*parts: str) -> str:
    return ", ".join(p for p in parts if p)


def _summarize_customer(obj: dict) -> str:
    return _join(
        f"Customer {_sanitize_field(obj.get('id'))}",
        _sanitize_field(obj.get("status")),
        _redact_email(obj.get("email")),
    )


def _summarize_kyc_link(obj: dict) -> str:
    return _join(
        f"KYC link {_sanitize_field(obj.get('id'))}",
        f"kyc={_sanitize_field(obj.get('kyc_status'))}",
        f"tos={_sanitize_field(obj.get('tos_status'))}",
    )


def _summarize_external_account(obj: dict) -> str:
    last_4 = _sanitize_field(obj.get("last_4"))
    return _join(
        f"External account {_sanitize_field(obj.get('id'))}",
        _sanitize_field(obj.get("bank_name")),
        f"****{last_4}" if last_4 else "",
    )


def _summarize_liquidation_address(obj: dict) -> str:
    return _join(
        f"Liquidation address {_sanitize_field(obj.get('id'))}",
        _sanitize_field(obj.get("chain")),
        _sanitize_field(obj.get("currency")).upper(),
    )


def _summarize_drain(obj: dict) -> str:
    return _join(
        f"Drain {_sanitize_field(obj.get('id'))}",
        _sanitize_field(obj.get("state")),
        _amount(obj),
        _sanitize_field(obj.get("source_payment_rail")),
    )


def _summarize_transfer(obj: dict) -> str:
    source = obj.get("source") if isinstance(obj.get("source"), dict) else {}
    destination = obj.get("destination") if isinstance(obj.get("destination"), dict) else {}
    route = ""
    if source.get("payment_rail") or destination.get("payment_rail"):
        route = (
            f"{_sanitize_field(source.get('payment_rail'))} -> "
            f"{_sanitize_field(destination.get('payment_rail'))}"
        )
    return _join(
        f"Transfer {_sanitize_field(obj.get('id'))}",
        _sanitize_field(obj.get("state")),
        _amount(obj),
        route,
    )


def _summarize_virtual_account(obj: dict) -> str:
    return _join(
        f"Virtual account {_sanitize_field(obj.get('id'))}",
        _sanitize_field(obj.get("status")),
    )


def _summarize_virtual_account_activity(obj: dict) -> str:
    return _join(
        _sanitize_field(obj.get("type")) or "activity",
        _amount(obj),
        f"account {_sanitize_field(obj.get('virtual_account_id'))}",
    )


_SUMMARY_EXTRACTORS: dict[str, Callable[[dict], str]] = {
    "customer": _summarize_customer,
    "kyc_link": _summarize_kyc_link,
    "external_account": _summarize_external_account,
    "liquidation_address": _summarize_liquidation_address,
    "liquidation_address.drain": _summarize_drain,
    "transfer": _summarize_transfer,
    "virtual_account": _summarize_virtual_account,
    "virtual_account.activity": _summarize_virtual_account_activity,
}


def _verb(category: str, event_type: str) -> str:
    """'transfer.updated.status_transitioned' -> 'updated (status transitioned)'."""
    suffix = event_type[len(category) + 1:] if event_type.startswith(category + ".") else event_type
    head, _, tail = suffix.partition(".")
    head = head or "event"
    return f"{head} ({tail.replace('_', ' ')})" if tail else head


def _priority(category: str, status: str, obj: dict) -> str:
    states = _HIGH_PRIORITY_STATES.get(category, frozenset())
    if category == "virtual_account.activity":
        status = str(obj.get("type", ""))
    return "high" if status in states else "normal"


def parse_event(payload: dict) -> WebhookEvent | None:
    """Parse a Bridge webhook envelope into a normalized WebhookEvent.

    Args:
        payload: Parsed JSON body of a verified delivery

    Returns:
        WebhookEvent ready for dispatch, or None if the category is unrecognized
    """
    category = str(payload.get("event_category") or "")
    if category not in KNOWN_CATEGORIES:
        logger.info("Unrecognized Bridge event category: %r, skipping", category)
        return None

    event_type = str(payload.get("event_type") or f"{category}.unknown")
    obj = payload.get("event_object")
    if not isinstance(obj, dict):
        obj = {}

    object_id = str(payload.get("event_object_id") or obj.get("id") or "")
    status = str(
        payload.get("event_object_status") or obj.get("state") or obj.get("status") or ""
    )

    summary = _SUMMARY_EXTRACTORS[category](obj)
    task_description = _CATEGORY_TEMPLATES[category].format(
        verb=_verb(category, event_type), summary=summary
    )

    return WebhookEvent(
        event_id=str(payload.get("event_id") or ""),
        category=category,
        event_type=event_type,
        object_id=object_id,
        object_status=status,
        payload=payload,
        task_description=task_description,
        priority=_priority(category, status, obj),
    )


EventHandler = Callable[[WebhookEvent], None]

_handlers: dict[str, list[EventHandler]] = defaultdict(list)


def register_handler(category: str, handler: EventHandler) -> None:
    """Subscribe a callable to verified events of one Bridge category."""
    if category not in KNOWN_CATEGORIES:
        raise ValueError(f"Unknown Bridge event category: {category}")
    _handlers[category].append(handler)


def clear_handlers() -> None:
    _handlers.clear()


def dispatch_event(event: WebhookEvent) -> None:
    """Dispatch a verified event to the handlers registered for its category.

    Handler exceptions propagate; the HTTP layer logs them, releases the
    dedup marker and still acknowledges the delivery.
    """
    logger.info(
        "Dispatching Bridge event %s: %s/%s (priority=%s) %s",
        event.event_id,
        event.category,
        event.event_type,
        event.priority,
        event.task_description,
    )

    handlers = list(_handlers.get(event.category, ()))
    if not handlers:
        logger.debug("No handlers registered for Bridge category %s", event.category)
    for handler in handlers:
        handler(event)
