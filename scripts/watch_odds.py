#!/usr/bin/env python3
"""
Odds Watch Script

Attaches to one event and prints its quotes and trends as they change.
Use this to check the feed (push and polling) against a running backend.

Usage:
    python scripts/watch_odds.py 55
    python scripts/watch_odds.py 55 --interval 10 --no-push
    python scripts/watch_odds.py 55 --once --stats
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from betslip.api.result import Err
from betslip.config import settings
from betslip.data.event_bus import EVENT_FEED_NOTICE, EVENT_ODDS_UPDATE
from betslip.data.models import OddsQuote
from betslip.main import build_components
from betslip.utils.logging import configure_logging

ARROWS = {"UP": "^", "DOWN": "v", "STABLE": "="}


def print_quote(quote: OddsQuote, trend=None) -> None:
    """Print one quote line."""
    status = "" if quote.active else " [suspended]"
    arrow = ARROWS.get(trend.direction.value, "?") if trend is not None else " "
    change = f"{trend.percent_change:+.2f}%" if trend is not None else ""
    previous = f"(was {quote.previous_value})" if quote.previous_value is not None else ""
    print(
        f"  {quote.last_updated:%H:%M:%S}  {quote.outcome_code:<12} "
        f"{quote.current_value:>7} {arrow} {change:>8} {previous}{status}"
    )


async def main():
    parser = argparse.ArgumentParser(description="Watch live odds for one event")
    parser.add_argument("event_id", help="Event identifier")
    parser.add_argument(
        "--interval", "-i",
        type=float,
        default=settings.poll_interval_seconds,
        help=f"Poll interval in seconds (default: {settings.poll_interval_seconds:g})",
    )
    parser.add_argument(
        "--no-push",
        action="store_true",
        help="Disable the stream and rely on polling only",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Fetch the odds once and exit",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Also print volume and statistics",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show debug logging",
    )

    args = parser.parse_args()

    configure_logging(log_level="DEBUG" if args.verbose else "WARNING", log_file="")

    app_settings = settings.model_copy(
        update={
            "poll_interval_seconds": args.interval,
            "stream_url": "" if args.no_push else settings.stream_url,
        }
    )
    components = build_components(app_settings)
    cache = components.cache

    print("=" * 60)
    print(f"Odds for event {args.event_id}")
    print("=" * 60)

    async with components.client:
        result = await cache.load_odds(args.event_id)
        if isinstance(result, Err):
            print(f"ERROR: could not load odds ({result.kind.value}): {result.message}")
            if args.once:
                sys.exit(1)
        for quote in cache.quotes_for(args.event_id):
            print_quote(quote, cache.trend_for(args.event_id, quote.outcome_code))

        if args.stats:
            await cache.load_volume(args.event_id)
            await cache.load_statistics(args.event_id)
            for record in cache.volume_for(args.event_id):
                print(f"  volume {record.outcome_code:<12} {record.total_staked:>10} ({record.bet_count} bets)")
            stats = cache.statistics_for(args.event_id)
            if stats is not None:
                print(f"  markets: {stats.total_markets} | most popular: {stats.most_popular_market or '-'}")

        if args.once:
            return

        updates = components.event_bus.subscribe(EVENT_ODDS_UPDATE)
        notices = components.event_bus.subscribe(EVENT_FEED_NOTICE)
        subscription = components.session.open_event(args.event_id)
        print("\nWatching for changes (Ctrl+C to stop)...")

        try:
            while True:
                getters = {
                    asyncio.ensure_future(updates.get()): "update",
                    asyncio.ensure_future(notices.get()): "notice",
                }
                done, pending = await asyncio.wait(getters, return_when=asyncio.FIRST_COMPLETED)
                for fut in pending:
                    fut.cancel()
                for fut in done:
                    payload = fut.result()
                    if getters[fut] == "update":
                        if payload.event_id == str(args.event_id):
                            print_quote(payload, cache.trend_for(payload.event_id, payload.outcome_code))
                    else:
                        health = subscription.health
                        print(f"  ! {payload.message} (push connected: {health.connected}, poll only: {health.poll_only})")
        except (KeyboardInterrupt, asyncio.CancelledError):
            pass
        finally:
            await components.session.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
