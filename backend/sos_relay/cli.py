#!/usr/bin/env python3
"""Operator CLI for alert expiry and block-list maintenance.

Usage:
    # Run one expiry sweep now (takes the same Redis lock as the scheduled task)
    uv run python -m sos_relay.cli expire-alerts
    uv run python -m sos_relay.cli expire-alerts --no-lock   # Redis unavailable

    # Block / unblock a sender
    uv run python -m sos_relay.cli block-sender <sender-id> --reason "abuse"
    uv run python -m sos_relay.cli unblock-sender <sender-id>

    # Inspect state
    uv run python -m sos_relay.cli list-alerts --active
    uv run python -m sos_relay.cli list-admins
"""

import argparse
import asyncio
import sys

import redis.asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from sos_relay.celery.tasks import sweep_with_lock
from sos_relay.core.config import settings
from sos_relay.core.database import get_session_factory
from sos_relay.core.errors import RelayError
from sos_relay.services.admin_service import AdminService
from sos_relay.services.alert_service import AlertService
from sos_relay.services.block_service import BlockService
from sos_relay.services.expiration_service import ExpirationService

CLI_ACTOR = "cli"


async def cmd_expire_alerts(args: argparse.Namespace, session: AsyncSession) -> int:
    """
    Expire stale alerts once. Returns exit code.

    Takes the scheduled sweeper's Redis lock unless ``--no-lock`` is given;
    exits 1 when a sweep is already running.
    """
    threshold = settings.SOS_EXPIRY_THRESHOLD_MINUTES if args.threshold is None else args.threshold

    if args.no_lock:
        stats = await ExpirationService(session, threshold_minutes=threshold).expire_stale_alerts()
        expired_ids = stats["sender_ids"]
    else:
        redis_client = redis.asyncio.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        try:
            result = await sweep_with_lock(session, redis_client, threshold_minutes=threshold)
        finally:
            await redis_client.aclose()
        if result["status"] == "skipped":
            print("Another expiry sweep is running, nothing done", file=sys.stderr)
            return 1
        expired_ids = result["sender_ids"]

    if not expired_ids:
        print(f"No stale alerts (threshold {threshold} min)")
        return 0

    print(f"✅ Expired {len(expired_ids)} alert(s) idle for more than {threshold} min:")
    for sender_id in expired_ids:
        print(f"   {sender_id}")
    return 0


async def cmd_block_sender(args: argparse.Namespace, session: AsyncSession) -> int:
    entry = await BlockService(session).block(args.sender_id, args.reason, blocked_by=args.by)
    print(f"✅ Blocked {entry.sender_id} ({entry.reason})")
    return 0


async def cmd_unblock_sender(args: argparse.Namespace, session: AsyncSession) -> int:
    await BlockService(session).unblock(args.sender_id, unblocked_by=args.by)
    print(f"✅ Unblocked {args.sender_id}")
    return 0


async def cmd_list_alerts(args: argparse.Namespace, session: AsyncSession) -> int:
    """List alert snapshots, optionally filtered on the active flag."""
    alerts = await AlertService(session).list_snapshots(active=args.active)

    if not alerts:
        print("No alerts found")
        return 0

    print(f"Found {len(alerts)} alert(s):\n")
    print(f"{'Sender ID':<40} {'District':<20} {'Active':<8} Last Updated")
    print("-" * 100)
    for alert in alerts:
        last_updated = alert.last_updated.strftime("%Y-%m-%d %H:%M:%S")
        print(f"{alert.sender_id:<40} {alert.district:<20} {'yes' if alert.active else 'no':<8} {last_updated}")
    return 0


async def cmd_list_admins(args: argparse.Namespace, session: AsyncSession) -> int:
    admins = await AdminService(session).list_admins()

    if not admins:
        print("No admin accounts found")
        return 0

    print(f"Found {len(admins)} admin account(s):\n")
    print(f"{'Email':<40} {'Active':<8} Districts")
    print("-" * 100)
    for admin in admins:
        districts = ", ".join(admin.assigned_districts) or "-"
        print(f"{admin.email:<40} {'yes' if admin.active else 'no':<8} {districts}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SOS Relay operator CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    expire_parser = subparsers.add_parser(
        "expire-alerts",
        help="Expire active alerts that stopped receiving updates",
    )
    expire_parser.add_argument(
        "--threshold",
        type=int,
        default=None,
        help="Staleness threshold in minutes (default: SOS_EXPIRY_THRESHOLD_MINUTES)",
    )
    expire_parser.add_argument(
        "--no-lock",
        action="store_true",
        help="Skip the Redis lock shared with the scheduled sweeper",
    )

    block_parser = subparsers.add_parser("block-sender", help="Block a sender from raising alerts")
    block_parser.add_argument("sender_id", type=str)
    block_parser.add_argument("--reason", type=str, default=None)
    block_parser.add_argument("--by", type=str, default=CLI_ACTOR, help="Recorded as blocked_by (default: cli)")

    unblock_parser = subparsers.add_parser("unblock-sender", help="Remove a sender's block")
    unblock_parser.add_argument("sender_id", type=str)
    unblock_parser.add_argument("--by", type=str, default=CLI_ACTOR)

    list_alerts_parser = subparsers.add_parser("list-alerts", help="List alert snapshots")
    state = list_alerts_parser.add_mutually_exclusive_group()
    state.add_argument("--active", dest="active", action="store_const", const=True, default=None)
    state.add_argument("--inactive", dest="active", action="store_const", const=False)

    subparsers.add_parser("list-admins", help="List district admin accounts")

    return parser


COMMAND_HANDLERS = {
    "expire-alerts": cmd_expire_alerts,
    "block-sender": cmd_block_sender,
    "unblock-sender": cmd_unblock_sender,
    "list-alerts": cmd_list_alerts,
    "list-admins": cmd_list_admins,
}


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the CLI tool.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    handler = COMMAND_HANDLERS[args.command]

    async def run_with_session() -> int:
        async with get_session_factory()() as session:
            try:
                return await handler(args, session)
            except RelayError as e:
                print(f"❌ Error: {e}", file=sys.stderr)
                return 1

    return asyncio.run(run_with_session())


if __name__ == "__main__":
    sys.exit(main())
