"""
HTTP surface for the tracker
GET /api/tracker streams contract creations or stats as Server-Sent Events,
GET /health reports the configured chains.
"""

import asyncio
import json
import logging
from typing import Dict, Optional, Set

import aiohttp
from aiohttp import web

from chains.aggregator import suffix_exclusion
from chains.client import ChainClient
from chains.config import TrackerSettings
from chains.errors import InvalidInput, TrackerError
from stats.price_oracle import CoinGeckoPriceOracle

from .session import SessionRequest, StreamingSession

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    'Content-Type': 'text/event-stream',
    'Cache-Control': 'no-cache, no-transform',
    'Connection': 'keep-alive',
    'X-Accel-Buffering': 'no',
    'Access-Control-Allow-Origin': '*',
}

HEARTBEAT_FRAME = b': keep-alive\n\n'


def encode_event(message: Dict) -> bytes:
    """One JSON message per SSE frame"""
    return f"data: {json.dumps(message, separators=(',', ':'))}\n\n".encode()


class TrackerService:
    """Process-wide shared state: chain clients, price oracle, live sessions"""

    def __init__(self, settings: TrackerSettings, clients: Optional[Dict[int, ChainClient]] = None,
                 oracle=None):
        self.settings = settings
        self.clients: Dict[int, ChainClient] = dict(clients or {})
        self.oracle = oracle
        self.exclude = suffix_exclusion(settings.excluded_address_suffixes)
        self.sessions: Set[StreamingSession] = set()

        self._http: Optional[aiohttp.ClientSession] = None
        self._owns_clients = clients is None

    async def startup(self, app: web.Application):
        if self.oracle is None:
            self._http = aiohttp.ClientSession()
            self.oracle = CoinGeckoPriceOracle(self._http, self.settings.coingecko_api)

        if self._owns_clients:
            for chain_id, chain in self.settings.chains.items():
                self.clients[chain_id] = ChainClient(chain, poll_interval=self.settings.http_poll_interval)

            # Unreachable chains stay registered; their feeds report the failure inline
            results = await asyncio.gather(
                *(client.connect() for client in self.clients.values()),
                return_exceptions=True,
            )
            for client, result in zip(self.clients.values(), results):
                if isinstance(result, TrackerError):
                    logger.error(f"{client.name} unreachable at startup: {result}")
                elif isinstance(result, BaseException):
                    raise result

        logger.info(f"Tracker ready: chains {[c.name for c in self.clients.values()]}, "
                    f"excluded suffixes {list(self.settings.excluded_address_suffixes)}")

    async def shutdown(self, app: web.Application):
        for session in list(self.sessions):
            self.close_session(session)

    async def cleanup(self, app: web.Application):
        if self._owns_clients:
            for client in self.clients.values():
                await client.close()
        if self._http is not None:
            await self._http.close()
            logger.info("Aiohttp session closed.")

    def open_session(self, request: SessionRequest) -> StreamingSession:
        session = StreamingSession(
            request,
            self.clients,
            oracle=self.oracle,
            exclude=self.exclude,
            stats_interval=self.settings.stats_poll_interval,
            queue_size=self.settings.session_queue_size,
        )
        self.sessions.add(session)
        return session

    def close_session(self, session: StreamingSession):
        session.close()
        self.sessions.discard(session)


SERVICE_KEY = web.AppKey('tracker_service', TrackerService)


async def health(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    return web.json_response({
        'ok': True,
        'chains': [c.name for c in service.clients.values()],
        'sessions': len(service.sessions),
    })


async def tracker_stream(request: web.Request) -> web.StreamResponse:
    service = request.app[SERVICE_KEY]

    try:
        session_request = SessionRequest.from_query(
            request.query, service.clients.keys(), service.settings.primary_chain_id
        )
    except InvalidInput as e:
        raise web.HTTPBadRequest(
            text=json.dumps({'error': e.message}), content_type='application/json'
        ) from e

    response = web.StreamResponse(headers=SSE_HEADERS)
    await response.prepare(request)

    session = service.open_session(session_request)
    try:
        session.start()
        async for message in session.messages(heartbeat=service.settings.stream_heartbeat):
            await response.write(HEARTBEAT_FRAME if message is None else encode_event(message))
    except ConnectionResetError:
        logger.info(f"Session {session.id}: client disconnected")
    finally:
        service.close_session(session)

    return response


def create_app(settings: TrackerSettings, clients: Optional[Dict[int, ChainClient]] = None,
               oracle=None) -> web.Application:
    service = TrackerService(settings, clients=clients, oracle=oracle)

    app = web.Application()
    app[SERVICE_KEY] = service
    app.router.add_get('/health', health)
    app.router.add_get('/api/tracker', tracker_stream)

    app.on_startup.append(service.startup)
    app.on_shutdown.append(service.shutdown)
    app.on_cleanup.append(service.cleanup)
    return app
