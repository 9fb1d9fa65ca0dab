"""Bridge inbound webhooks.

Deliveries are signature-verified, deduplicated by event_id, and dispatched
by event category.
"""
