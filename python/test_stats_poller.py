"""
Tests for the stats poller and the CoinGecko price oracle
"""

import asyncio

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from chains.errors import TransportError
from conftest import ACCOUNT, FakeOracle, settle
from stats.price_oracle import CoinGeckoPriceOracle
from stats.stats_poller import StatsPoller


@pytest.mark.asyncio
async def test_price_failure_leaves_other_fields(eth_client):
    poller = StatsPoller(eth_client, FakeOracle(error=RuntimeError("coingecko down")),
                         on_snapshot=lambda s: None, account=ACCOUNT)

    snapshot = await poller.poll_once()
    message = snapshot.to_message()

    assert message['type'] == 'stats'
    assert message['chainId'] == 1
    assert message['ethPriceUsd'] is None
    assert message['gasPriceGwei'] == 25.0
    assert message['nativeTokenBalance'] == 2.0
    assert message['timestamp']


@pytest.mark.asyncio
async def test_every_fetch_failing_still_yields_a_snapshot(eth_client):
    eth_client.gas_error = TransportError("eth_gasPrice failed", chain="Ethereum")
    eth_client.balance_error = TransportError("eth_getBalance failed", chain="Ethereum")
    poller = StatsPoller(eth_client, FakeOracle(prices={}), on_snapshot=lambda s: None, account=ACCOUNT)

    snapshot = await poller.poll_once()

    assert (snapshot.native_price_usd, snapshot.gas_price_gwei, snapshot.native_balance) == (None, None, None)


@pytest.mark.asyncio
async def test_balance_is_skipped_without_account(eth_client, oracle):
    poller = StatsPoller(eth_client, oracle, on_snapshot=lambda s: None)

    snapshot = await poller.poll_once()

    assert snapshot.native_balance is None
    assert snapshot.native_price_usd == 3000.0
    assert eth_client.balance_requests == []


@pytest.mark.asyncio
async def test_price_uses_the_chains_native_symbol(bsc_client, oracle):
    poller = StatsPoller(bsc_client, oracle, on_snapshot=lambda s: None)

    snapshot = await poller.poll_once()

    assert oracle.requests == ['BNB']
    assert snapshot.native_price_usd == 600.0
    assert snapshot.chain_id == 56


@pytest.mark.asyncio
async def test_first_snapshot_is_immediate(eth_client, oracle):
    snapshots = []
    poller = StatsPoller(eth_client, oracle, on_snapshot=snapshots.append, interval=3600)

    poller.start()
    await settle()
    poller.cancel()

    assert len(snapshots) == 1


@pytest.mark.asyncio
async def test_snapshots_repeat_on_the_interval(eth_client, oracle):
    snapshots = []
    poller = StatsPoller(eth_client, oracle, on_snapshot=snapshots.append, interval=0.01)

    poller.start()
    await asyncio.sleep(0.1)
    poller.cancel()

    assert len(snapshots) >= 3


@pytest.mark.asyncio
async def test_in_flight_snapshot_is_dropped_after_cancel(eth_client):
    snapshots = []
    oracle = FakeOracle()
    oracle.gate = asyncio.Event()
    poller = StatsPoller(eth_client, oracle, on_snapshot=snapshots.append)

    poller.start()
    await settle()
    assert oracle.requests == ['ETH']

    assert poller.cancel() is True
    assert poller.cancel() is False
    oracle.gate.set()
    await settle()

    assert snapshots == []


def test_next_deadline_keeps_the_period(eth_client, oracle):
    poller = StatsPoller(eth_client, oracle, on_snapshot=lambda s: None, interval=30.0)

    assert poller.next_deadline(100.0, 101.5) == 130.0
    # Overran three periods: the next tick is now, not three ticks in the past
    assert poller.next_deadline(100.0, 195.0) == 195.0


@pytest.mark.asyncio
async def test_slow_poll_does_not_cause_a_burst(eth_client):
    snapshots = []
    oracle = FakeOracle()
    oracle.gate = asyncio.Event()
    poller = StatsPoller(eth_client, oracle, on_snapshot=snapshots.append, interval=0.02)

    poller.start()
    await asyncio.sleep(0.1)
    oracle.gate.set()
    await asyncio.sleep(0.015)
    poller.cancel()

    assert 1 <= len(snapshots) <= 3


async def _coingecko(request: web.Request) -> web.Response:
    coin_id = request.query['ids']
    if coin_id == 'binancecoin':
        return web.json_response({}, status=503)
    if coin_id == 'ethereum':
        return web.json_response({'ethereum': {'usd': 3210.5}})
    return web.json_response({coin_id: {'usd': 'n/a'}})


@pytest_asyncio.fixture
async def coingecko_url():
    app = web.Application()
    app.router.add_get('/simple/price', _coingecko)
    async with TestServer(app) as server:
        yield str(server.make_url('')).rstrip('/')


@pytest.mark.asyncio
async def test_oracle_parses_price(coingecko_url):
    async with aiohttp.ClientSession() as session:
        oracle = CoinGeckoPriceOracle(session, coingecko_url)

        assert await oracle.get_usd_price('ETH') == 3210.5
        assert await oracle.get_usd_price('eth') == 3210.5


@pytest.mark.asyncio
async def test_oracle_reports_unavailable(coingecko_url):
    async with aiohttp.ClientSession() as session:
        oracle = CoinGeckoPriceOracle(session, coingecko_url,
                                      price_ids={'BNB': 'binancecoin', 'XYZ': 'xyz'})

        assert await oracle.get_usd_price('BNB') is None   # HTTP 503
        assert await oracle.get_usd_price('XYZ') is None   # non-numeric
        assert await oracle.get_usd_price('DOGE') is None  # unknown symbol
