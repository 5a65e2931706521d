#!/usr/bin/env python3
"""
Inspect and replay poison outbox entries.

Run:
  python scripts/replay_outbox.py list [--tenant TENANT] [--state failed] [--limit 50]
  python scripts/replay_outbox.py requeue OUTBOX_ID [OUTBOX_ID ...] [--reset-attempts]
  python scripts/replay_outbox.py requeue --all-failed [--tenant TENANT]
  python scripts/replay_outbox.py stats

Requeue only drops the lease; the running relay picks the entry up on its
next poll.

Exit codes:
  0 - Success
  1 - Some requested entries could not be requeued
  2 - Database not configured / connection error
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app import database  # noqa: E402
from app.services.outbox import ENTRY_STATES, STATE_FAILED, OutboxStore  # noqa: E402


def format_entries(entries) -> str:
    lines = []
    lines.append(f"{'ID':<38} {'EVENT':<26} {'STATE':<10} {'ATT':>3}  LAST ERROR")
    lines.append("-" * 110)
    for entry in entries:
        error = (entry.last_error or "").replace("\n", " ")
        if len(error) > 40:
            error = error[:37] + "..."
        lines.append(f"{entry.id:<38} {entry.event_type:<26} {entry.state:<10} {entry.attempts:>3}  {error}")
    lines.append("")
    lines.append(f"{len(entries)} entr{'y' if len(entries) == 1 else 'ies'}")
    return "\n".join(lines)


def cmd_list(store: OutboxStore, args) -> int:
    entries = store.list_entries(tenant_id=args.tenant, state=args.state, limit=args.limit)
    if args.json:
        print(json.dumps([entry.to_dict() for entry in entries], indent=2))
    else:
        print(format_entries(entries))
    return 0


def cmd_requeue(store: OutboxStore, args) -> int:
    ids = list(args.ids)
    if args.all_failed:
        ids.extend(entry.id for entry in store.list_entries(tenant_id=args.tenant, state=STATE_FAILED, limit=args.limit))

    if not ids:
        print("Nothing to requeue")
        return 0

    missing = []
    for outbox_id in ids:
        if store.requeue(outbox_id, reset_attempts=args.reset_attempts):
            print(f"requeued  {outbox_id}")
        else:
            print(f"skipped   {outbox_id} (not found or already processed)")
            missing.append(outbox_id)

    return 1 if missing else 0


def cmd_stats(store: OutboxStore, args) -> int:
    print(json.dumps(store.stats(tenant_id=args.tenant), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and replay outbox entries")
    parser.add_argument("--tenant", default=None, help="Restrict to one tenant")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List outbox entries")
    list_parser.add_argument("--state", choices=ENTRY_STATES, default=STATE_FAILED)
    list_parser.add_argument("--limit", type=int, default=50)
    list_parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    list_parser.set_defaults(handler=cmd_list)

    requeue_parser = subparsers.add_parser("requeue", help="Make entries claimable again")
    requeue_parser.add_argument("ids", nargs="*", help="Outbox entry ids")
    requeue_parser.add_argument("--all-failed", action="store_true", help="Requeue every failed entry")
    requeue_parser.add_argument("--reset-attempts", action="store_true",
                                help="Reset attempts to 0 (needed when OUTBOX_MAX_CLAIM_ATTEMPTS is set)")
    requeue_parser.add_argument("--limit", type=int, default=500)
    requeue_parser.set_defaults(handler=cmd_requeue)

    stats_parser = subparsers.add_parser("stats", help="Backlog counts")
    stats_parser.set_defaults(handler=cmd_stats)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    database.init_db()
    if database.SessionLocal is None:
        print("ERROR: DATABASE_URL not configured")
        return 2

    store = OutboxStore(database.SessionLocal)
    try:
        return args.handler(store, args)
    except Exception as e:
        print(f"ERROR: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
