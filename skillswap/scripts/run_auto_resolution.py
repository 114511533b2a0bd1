"""Run one auto-resolution pass over pending trades.

Meant to be invoked by cron (once a day is enough). Overlapping or repeated
runs are harmless: every reminder and forced completion is guarded by state
persisted on the trade itself.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from skillswap.lifecycle.database import close_database, init_database
from skillswap.lifecycle.dependencies import close_queue, connect_queue, get_lifecycle


def _parse_as_of(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def _run(as_of: Optional[datetime]) -> dict:
    await init_database()
    await connect_queue()
    try:
        report = await get_lifecycle().scheduler.run(as_of)
    finally:
        await close_queue()
        await close_database()
    return {
        "ran_at": report.ran_at.isoformat(),
        "scanned": report.scanned,
        "reminded": [str(trade_id) for trade_id in report.reminded],
        "auto_completed": [str(trade_id) for trade_id in report.auto_completed],
        "failed": [str(trade_id) for trade_id in report.failed],
        "reward_failed": [str(trade_id) for trade_id in report.reward_failed],
        "notifications_delivered": report.notifications_delivered,
        "notifications_pruned": report.notifications_pruned,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--as-of", help="ISO timestamp to evaluate deadlines against (defaults to now)")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    summary = asyncio.run(_run(_parse_as_of(args.as_of)))
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
