#!/usr/bin/env python3
"""
Console watcher: prints new token contracts from all configured chains as
line-delimited JSON on stdout. Ctrl+C to stop.
"""

import asyncio
import json
import logging
import signal
import sys

from chains.aggregator import suffix_exclusion
from chains.client import ChainClient
from chains.config import TrackerSettings
from chains.errors import TrackerError
from streaming.session import SessionMode, SessionRequest, StreamingSession

logger = logging.getLogger(__name__)


async def watch(settings: TrackerSettings):
    clients = {
        chain_id: ChainClient(chain, poll_interval=settings.http_poll_interval)
        for chain_id, chain in settings.chains.items()
    }
    for client in clients.values():
        try:
            await client.connect()
        except TrackerError as e:
            logger.error(f"{client.name} unreachable: {e}")

    session = StreamingSession(
        SessionRequest(mode=SessionMode.CONTRACTS, chain_id=settings.primary_chain_id),
        clients,
        exclude=suffix_exclusion(settings.excluded_address_suffixes),
        queue_size=settings.session_queue_size,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, session.close)

    try:
        session.start()
        async for message in session.messages():
            sys.stdout.write(json.dumps(message) + '\n')
            sys.stdout.flush()
    finally:
        session.close()
        for client in clients.values():
            await client.close()
        logger.info("Watcher stopped.")


def main():
    settings = TrackerSettings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )
    if not settings.chains:
        logger.error("No chains configured")
        sys.exit(1)
    asyncio.run(watch(settings))


if __name__ == "__main__":
    main()
