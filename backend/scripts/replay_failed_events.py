"""Re-queue webhook events that ended up FAILED in the ledger.

Run from backend/:
    python -m scripts.replay_failed_events              # every failed event (up to 100)
    python -m scripts.replay_failed_events evt_1 evt_2  # only these ids
    python -m scripts.replay_failed_events --list       # show, do not replay
"""

import argparse
import asyncio

from billing_sync.core.config import get_settings
from billing_sync.core.logging import configure_structlog
from billing_sync.db import close_db, close_redis, get_redis, get_session_factory, init_db, init_redis
from billing_sync.webhooks.pipeline import build_pipeline


async def main(event_ids: list[str], limit: int, list_only: bool) -> None:
    settings = get_settings()
    configure_structlog(json_logs=False)

    await init_db()
    await init_redis()
    try:
        pipeline = build_pipeline(get_session_factory(), get_redis(), settings)

        failed = await pipeline.ledger.list_failed(limit=limit)
        print(f"Found {len(failed)} failed event(s):")
        for record in failed:
            print(f"  {record.event_id} | {record.event_type} | retries={record.retry_count} | {record.error_message}")

        if list_only:
            return

        replayed = await pipeline.worker.replay_failed(limit=limit, event_ids=event_ids or None)
        print(f"\nRe-queued {len(replayed)} event(s).")
    finally:
        await close_redis()
        await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("event_ids", nargs="*", help="Only replay these event ids")
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--list", dest="list_only", action="store_true", help="List failed events and exit")
    args = parser.parse_args()

    asyncio.run(main(args.event_ids, args.limit, args.list_only))
