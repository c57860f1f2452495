#!/usr/bin/env python3
"""
Live Token Launch Tracker
Streams new token contracts on every configured EVM chain, plus periodic
native price / gas / balance stats, to browser clients over SSE.
"""

import logging
import sys

from aiohttp import web

from chains.config import TrackerSettings
from streaming.server import create_app


def configure_logging(settings: TrackerSettings):
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
    # web3 logs every request at DEBUG
    logging.getLogger('web3').setLevel(logging.WARNING)


def main():
    """Main entry point"""
    settings = TrackerSettings.from_env()
    configure_logging(settings)
    logger = logging.getLogger('tracker_server')

    if not settings.chains:
        logger.error("No chains configured. Set ETHEREUM_RPC_HTTP / BNB_RPC_HTTP / BASE_RPC_HTTP in .env")
        sys.exit(1)

    logger.info(f"Enabled chains: {settings.chain_names()}")
    logger.info(f"Stats interval: {settings.stats_poll_interval}s, "
                f"session queue: {settings.session_queue_size} messages")

    web.run_app(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
