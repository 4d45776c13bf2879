"""Stand-alone collector: python -m smartcity.collect [--shift N] [--date D] [--tuman ID]."""
import argparse
import asyncio
import logging

from smartcity.config import settings
from smartcity.db import db_shutdown, init_db
from smartcity.services.feed_client import EnhancedFeedClient, create_feed_client

logger = logging.getLogger("smartcity.collect")


async def subscribe(client: EnhancedFeedClient, args: argparse.Namespace) -> bool:
    return await client.collect(
        shift_no=args.shift,
        date=args.date,
        tuman_id=args.tuman,
        interval=args.interval,
    )


async def run(args: argparse.Namespace) -> None:
    await init_db()
    client = create_feed_client(enhanced=True)
    client.connect()
    await subscribe(client, args)
    logger.info(f"Collecting attendance from {client.url}; press Ctrl+C to stop")
    try:
        await asyncio.Event().wait()
    finally:
        await client.disconnect()
        await db_shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Collect partner attendance snapshots into MongoDB.")
    parser.add_argument("--shift", type=int, choices=[1, 2, 3], help="only this shift")
    parser.add_argument("--date", help="YYYY-MM-DD; defaults to today")
    parser.add_argument("--tuman", type=int, help="district (tuman) id")
    parser.add_argument("--interval", type=int, default=settings.feed_interval, help="seconds between pushes")
    return parser


def main(argv=None) -> None:
    logging.basicConfig(level=settings.effective_log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Collector stopped")


if __name__ == "__main__":
    main()
