"""Protean Engine runner for the bistro domain.

Starts the Engine that processes events asynchronously in production:
- OutboxProcessor: polls the outbox table, publishes events to Redis Streams
- StreamSubscriptions: reads Redis Streams, invokes projectors and event handlers

Usage:
    python src/server.py
    python src/server.py --test-mode   # Drain pending messages, then exit
"""

import argparse
import asyncio

from bistro.utils.logging import configure_logging
from protean.server.engine import Engine


def _get_domain():
    from bistro.domain import bistro

    bistro.init()
    return bistro


async def run(test_mode=False):
    engine = Engine(_get_domain(), test_mode=test_mode)
    await engine.run()


def main():
    parser = argparse.ArgumentParser(description="Bistro Engine runner")
    parser.add_argument(
        "--test-mode",
        action="store_true",
        help="Process pending messages once and exit",
    )
    args = parser.parse_args()

    configure_logging()
    asyncio.run(run(test_mode=args.test_mode))


if __name__ == "__main__":
    main()
