"""CLI for Bridge webhook operations.

Usage:
    bridge-webhooks verify-signature                      # check the Bridge docs sample
    bridge-webhooks verify-signature --body-file body.json --header 't=...,v0=...' \\
        --public-key-file bridge.pem
    bridge-webhooks list
    bridge-webhooks create https://example.com/webhooks/bridge
    bridge-webhooks enable wep_123
    bridge-webhooks delete wep_123
    bridge-webhooks delete-all --yes
    bridge-webhooks events [wep_123]
    bridge-webhooks logs [wep_123]
    bridge-webhooks send [wep_123] evt_456 [--reprocess]
    bridge-webhooks failed
    bridge-webhooks replay-failed [wep_123] --yes
    bridge-webhooks serve --port 8000

Webhook IDs default to BRIDGE_WEBHOOK_ID. Settings are read from the
environment, .env and .env.local.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable

import httpx
import redis

from bridge_webhooks.client import (
    DEFAULT_EVENT_CATEGORIES,
    BridgeAPIError,
    BridgeClient,
    BridgeError,
)
from bridge_webhooks.config import get_settings
from bridge_webhooks.webhooks import samples
from bridge_webhooks.webhooks.dispatcher import PROVIDER
from bridge_webhooks.webhooks.idempotency import forget, list_failures
from bridge_webhooks.webhooks.verification import (
    DEFAULT_MAX_AGE_MS,
    MalformedSignatureHeader,
    parse_signature_header,
    verify,
)

logger = logging.getLogger(__name__)


def _dump(data: Any) -> None:
    print(json.dumps(data, indent=2))


def _webhook_id(args: argparse.Namespace) -> str:
    webhook_id = args.webhook_id or get_settings().bridge_webhook_id
    if not webhook_id:
        print("Error: No webhook ID provided", file=sys.stderr)
        print("Pass it as an argument or set BRIDGE_WEBHOOK_ID", file=sys.stderr)
        sys.exit(1)
    return webhook_id


def cmd_verify_signature(args: argparse.Namespace) -> int:
    """Verify a signature header against a body and public key."""
    try:
        if args.body_file:
            body = Path(args.body_file).read_bytes()
        elif args.body is not None:
            body = args.body.encode("utf-8")
        else:
            body = samples.SAMPLE_BODY
        if args.public_key_file:
            public_key = Path(args.public_key_file).read_text(encoding="utf-8")
        else:
            public_key = samples.SAMPLE_PUBLIC_KEY
    except (OSError, UnicodeDecodeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    header = args.header or samples.SAMPLE_SIGNATURE_HEADER

    # SAMPLE_REPLAY_OK lets the (old) sample fixture skip the freshness check
    allow_replay = args.allow_replay or bool(os.environ.get("SAMPLE_REPLAY_OK"))

    try:
        timestamp, _ = parse_signature_header(header)
        print(f"Timestamp: {timestamp}")
    except MalformedSignatureHeader:
        pass

    outcome = verify(
        body,
        header,
        public_key,
        max_age_ms=args.max_age_ms,
        allow_replay=allow_replay,
    )
    if outcome:
        print("✅  signature valid")
        return 0
    print(f"❌  invalid signature: {outcome.reason.value} ({outcome.detail})")
    return 1


def cmd_list(args: argparse.Namespace, client: BridgeClient) -> int:
    webhooks = client.list_webhooks()
    if not webhooks:
        print("No webhooks found.")
        return 0
    print(f"Found {len(webhooks)} webhooks:")
    _dump(webhooks)
    return 0


def cmd_create(args: argparse.Namespace, client: BridgeClient) -> int:
    categories = args.categories.split(",") if args.categories else list(DEFAULT_EVENT_CATEGORIES)
    print(f"Creating webhook endpoint at URL: {args.url}")
    print(f"Event categories: {', '.join(categories)}")
    _dump(client.create_webhook(args.url, categories))
    return 0


def cmd_enable(args: argparse.Namespace, client: BridgeClient) -> int:
    print(f"Enabling webhook with ID: {args.webhook_id}")
    _dump(client.enable_webhook(args.webhook_id))
    return 0


def cmd_disable(args: argparse.Namespace, client: BridgeClient) -> int:
    print(f"Disabling webhook with ID: {args.webhook_id}")
    _dump(client.disable_webhook(args.webhook_id))
    return 0


def cmd_delete(args: argparse.Namespace, client: BridgeClient) -> int:
    print(f"Deleting webhook with ID: {args.webhook_id}")
    result = client.delete_webhook(args.webhook_id)
    if result is not None:
        _dump(result)
    return 0


def cmd_delete_all(args: argparse.Namespace, client: BridgeClient) -> int:
    webhooks = client.list_webhooks()
    if not webhooks:
        print("No webhooks found to delete.")
        return 0

    print(f"Found {len(webhooks)} webhooks:")
    for webhook in webhooks:
        print(f"- {webhook.get('id')} (URL: {webhook.get('url')})")
    if not args.yes:
        print("\nRe-run with --yes to delete them.")
        return 0

    deleted = 0
    for webhook in webhooks:
        try:
            client.delete_webhook(webhook["id"])
        except BridgeAPIError as exc:
            print(f"Error deleting webhook {webhook['id']}: HTTP {exc.status_code}", file=sys.stderr)
            continue
        print(f"Deleted webhook {webhook['id']}")
        deleted += 1

    print(f"\nDeletion complete. Successfully deleted {deleted}/{len(webhooks)} webhooks.")
    return 0 if deleted == len(webhooks) else 1


def cmd_events(args: argparse.Namespace, client: BridgeClient) -> int:
    webhook_id = _webhook_id(args)
    print(f"Fetching upcoming events for webhook ID: {webhook_id}")
    events = client.list_webhook_events(webhook_id)
    if not events:
        print("No upcoming events found for this webhook.")
        return 0
    print(f"Found {len(events)} upcoming events:")
    for i, event in enumerate(events, 1):
        print(f"\nEvent {i}:")
        _dump(event)
    return 0


def cmd_logs(args: argparse.Namespace, client: BridgeClient) -> int:
    webhook_id = _webhook_id(args)
    print(f"Fetching logs for webhook ID: {webhook_id}")
    logs = client.get_webhook_logs(webhook_id)
    if not logs:
        print("No logs found for this webhook.")
        return 0

    print(f"Found {len(logs)} log entries:")
    _dump(logs)

    latest_event_id = logs[0].get("event_id")
    if latest_event_id:
        print(f"\nFull event payload for {latest_event_id}:")
        _dump(client.get_webhook_event(latest_event_id))
    return 0


def cmd_send(args: argparse.Namespace, client: BridgeClient) -> int:
    if len(args.ids) > 2:
        print("Usage: bridge-webhooks send [webhook_id] <event_id>", file=sys.stderr)
        return 2
    if len(args.ids) == 2:
        args.webhook_id, event_id = args.ids
    else:
        args.webhook_id, event_id = None, args.ids[0]
    webhook_id = _webhook_id(args)

    if args.reprocess:
        # Without this the receiver acknowledges the resend as a duplicate
        forget(PROVIDER, event_id)
        print(f"Cleared dedup marker for event {event_id}")

    print(f"Sending event {event_id} to webhook ID: {webhook_id}")
    _dump(client.send_webhook_event(webhook_id, event_id))
    return 0


def cmd_failed(args: argparse.Namespace) -> int:
    """List deliveries whose dispatch failed on the receiver."""
    try:
        failures = list_failures(PROVIDER)
    except redis.RedisError as exc:
        print(f"Error: cannot reach Redis: {exc}", file=sys.stderr)
        return 1
    if not failures:
        print("No failed events.")
        return 0
    print(f"Found {len(failures)} failed events:")
    for record in failures:
        print(f"- {record.get('event_id')} ({record.get('event_type')}): {record.get('error')}")
    return 0


def cmd_replay_failed(args: argparse.Namespace, client: BridgeClient) -> int:
    """Ask Bridge to redeliver every failed event to the webhook."""
    webhook_id = _webhook_id(args)
    failures = list_failures(PROVIDER)
    if not failures:
        print("No failed events to replay.")
        return 0

    print(f"Found {len(failures)} failed events:")
    for record in failures:
        print(f"- {record.get('event_id')} ({record.get('event_type')})")
    if not args.yes:
        print("\nRe-run with --yes to replay them.")
        return 0

    replayed = 0
    for record in failures:
        event_id = record["event_id"]
        forget(PROVIDER, event_id)
        try:
            client.send_webhook_event(webhook_id, event_id)
        except BridgeAPIError as exc:
            print(f"Error replaying event {event_id}: HTTP {exc.status_code}", file=sys.stderr)
            continue
        print(f"Replayed event {event_id}")
        replayed += 1

    print(f"\nReplay complete. Successfully replayed {replayed}/{len(failures)} events.")
    return 0 if replayed == len(failures) else 1


def cmd_serve(args: argparse.Namespace) -> int:
    from bridge_webhooks.serve import run

    run(host=args.host, port=args.port)
    return 0


def _with_client(fn: Callable[[argparse.Namespace, BridgeClient], int]) -> Callable[[argparse.Namespace], int]:
    """Wrap an API command: build the client, map API failures to exit 1."""

    def runner(args: argparse.Namespace) -> int:
        try:
            with BridgeClient.from_settings() as client:
                return fn(args, client)
        except BridgeAPIError as exc:
            print("Error: Bridge API request failed", file=sys.stderr)
            print(f"Status: {exc.status_code}", file=sys.stderr)
            print(f"Data: {json.dumps(exc.payload)}", file=sys.stderr)
        except BridgeError as exc:
            print(f"Error: {exc}", file=sys.stderr)
        except httpx.HTTPError as exc:
            print(f"Error: {exc}", file=sys.stderr)
        except redis.RedisError as exc:
            print(f"Error: cannot reach Redis: {exc}", file=sys.stderr)
        return 1

    return runner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bridge-webhooks",
        description="Bridge.xyz webhook tooling",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    # verify-signature
    p_verify = sub.add_parser("verify-signature", help="Verify a webhook signature")
    body_group = p_verify.add_mutually_exclusive_group()
    body_group.add_argument("--body", help="Raw body text (defaults to the Bridge docs sample)")
    body_group.add_argument("--body-file", help="File holding the exact raw body bytes")
    p_verify.add_argument("--header", help="X-Webhook-Signature value: t=<ms>,v0=<base64>")
    p_verify.add_argument("--public-key-file", help="Bridge PEM public key")
    p_verify.add_argument(
        "--allow-replay",
        action="store_true",
        help="Skip the freshness check (also enabled by SAMPLE_REPLAY_OK)",
    )
    p_verify.add_argument("--max-age-ms", type=int, default=DEFAULT_MAX_AGE_MS)
    p_verify.set_defaults(func=cmd_verify_signature)

    # list
    p_list = sub.add_parser("list", help="List webhook endpoints")
    p_list.set_defaults(func=_with_client(cmd_list))

    # create
    p_create = sub.add_parser("create", help="Create a webhook endpoint")
    p_create.add_argument("url", help="Public HTTPS URL receiving deliveries")
    p_create.add_argument("--categories", help="Comma-separated event categories")
    p_create.set_defaults(func=_with_client(cmd_create))

    # enable / disable / delete
    for name, func, help_text in (
        ("enable", cmd_enable, "Activate a webhook endpoint"),
        ("disable", cmd_disable, "Disable a webhook endpoint"),
        ("delete", cmd_delete, "Delete a webhook endpoint"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("webhook_id")
        p.set_defaults(func=_with_client(func))

    # delete-all
    p_delete_all = sub.add_parser("delete-all", help="Delete every webhook endpoint")
    p_delete_all.add_argument("--yes", action="store_true", help="Actually delete")
    p_delete_all.set_defaults(func=_with_client(cmd_delete_all))

    # events / logs
    p_events = sub.add_parser("events", help="List upcoming events for a webhook")
    p_events.add_argument("webhook_id", nargs="?")
    p_events.set_defaults(func=_with_client(cmd_events))

    p_logs = sub.add_parser("logs", help="Show delivery logs for a webhook")
    p_logs.add_argument("webhook_id", nargs="?")
    p_logs.set_defaults(func=_with_client(cmd_logs))

    # send
    p_send = sub.add_parser("send", help="Redeliver an event to a webhook")
    p_send.add_argument("ids", nargs="+", metavar="ID", help="[webhook_id] event_id")
    p_send.add_argument(
        "--reprocess",
        action="store_true",
        help="Clear the receiver's dedup marker first so the event is handled again",
    )
    p_send.set_defaults(func=_with_client(cmd_send))

    # failed / replay-failed
    p_failed = sub.add_parser("failed", help="List events whose dispatch failed")
    p_failed.set_defaults(func=cmd_failed)

    p_replay = sub.add_parser("replay-failed", help="Redeliver every failed event")
    p_replay.add_argument("webhook_id", nargs="?")
    p_replay.add_argument("--yes", action="store_true", help="Actually replay")
    p_replay.set_defaults(func=_with_client(cmd_replay_failed))

    # serve
    p_serve = sub.add_parser("serve", help="Run the webhook receiver")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
