"""
Replay Failed Webhook Events
============================
Re-processes webhook events whose last attempt failed, from the payload stored
in the ledger. Use after fixing the cause of a failure when the provider has
stopped retrying.

Usage:
    python scripts/replay_failed_events.py [--provider stripe|lemonsqueezy] [--event-id ID] [--limit N] [--dry-run]

Options:
    --provider NAME     Only replay events from this provider
    --event-id ID       Replay a single event (requires --provider)
    --limit N           Maximum number of events to replay (default: 50)
    --dry-run           List the events that would be replayed
"""

import asyncio
import argparse
import sys
from pathlib import Path
from typing import Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from reconciler.database import async_session_maker, close_db
from reconciler.models.enums import BillingProvider, ProcessingStatus
from reconciler.services.event_store import EventStore
from reconciler.services.reconciliation_service import ReconciliationEngine
from reconciler.utils.error_handling import AppException


async def replay(
    provider: Optional[BillingProvider],
    event_id: Optional[str],
    limit: int,
    dry_run: bool,
) -> int:
    """Replay events and return the number that failed again."""
    async with async_session_maker() as db:
        if event_id:
            targets = [(provider, event_id)]
        else:
            records = await EventStore(db).list_events(
                provider=provider,
                status=ProcessingStatus.FAILED,
                limit=limit,
            )
            targets = [(record.provider, record.external_event_id) for record in records]

    print(f"{len(targets)} event(s) to replay")
    if dry_run:
        for target_provider, target_id in targets:
            print(f"  would replay {target_provider.value} {target_id}")
        return 0

    failures = 0
    for target_provider, target_id in targets:
        # One session per event so a failure cannot leak into the next replay
        async with async_session_maker() as db:
            try:
                outcome = await ReconciliationEngine(db).replay(target_provider, target_id)
            except AppException as e:
                failures += 1
                print(f"  FAILED {target_provider.value} {target_id}: {e.code.value} {e.message}")
                continue
        note = " (already processed)" if outcome.duplicate else ""
        print(f"  OK {target_provider.value} {target_id} {outcome.event_type}{note}")

    return failures


async def main():
    parser = argparse.ArgumentParser(description="Replay failed webhook events")
    parser.add_argument("--provider", choices=[p.value for p in BillingProvider if p != BillingProvider.NONE])
    parser.add_argument("--event-id", type=str, help="Replay only this event")
    parser.add_argument("--limit", type=int, default=50)
    parser.add_argument("--dry-run", action="store_true", help="List events without replaying")
    args = parser.parse_args()

    if args.event_id and not args.provider:
        parser.error("--event-id requires --provider")

    provider = BillingProvider(args.provider) if args.provider else None
    try:
        failures = await replay(provider, args.event_id, args.limit, args.dry_run)
    finally:
        await close_db()

    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    asyncio.run(main())
