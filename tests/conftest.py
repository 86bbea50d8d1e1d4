"""Pytest configuration and shared fakes for sats-tracker tests."""

import asyncio
from collections.abc import Iterable

import httpx
import pytest

from sats_tracker.core.exceptions import NetworkFailure, TrackerError
from sats_tracker.core.models import BalanceResult, FeeEstimates, PriceQuote
from sats_tracker.core.scheduler import RefreshScheduler
from sats_tracker.core.store import AddressStore
from sats_tracker.data import load_config
from sats_tracker.storage.persistence import MemoryBackend, PersistenceAdapter


class FakePriceFeed:
    """Price feed returning a fixed quote (None simulates an outage)."""

    def __init__(self, quote: PriceQuote | None) -> None:
        self.quote = quote
        self.calls = 0

    async def fetch_price(self) -> PriceQuote | None:
        self.calls += 1
        return self.quote


class FakeFeeFeed:
    def __init__(self, fees: FeeEstimates | None) -> None:
        self.fees = fees
        self.calls = 0

    async def fetch_fees(self) -> FeeEstimates | None:
        self.calls += 1
        return self.fees


class FakeBalanceFetcher:
    """
    Balance fetcher answering from a dict keyed by address.

    Unknown addresses fail with NetworkFailure. When ``gate`` is set the
    fetch blocks until the test releases it; ``started`` fires on entry.

    """

    def __init__(self, results: dict[str, BalanceResult | TrackerError] | None = None) -> None:
        self.results = dict(results or {})
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()

    async def fetch_many(self, addresses: Iterable[str]) -> dict[str, BalanceResult | TrackerError]:
        self.calls += 1
        addresses = list(addresses)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        return {a: self.results.get(a, NetworkFailure(f"{a} unreachable")) for a in addresses}


def make_client(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def persistence(backend: MemoryBackend) -> PersistenceAdapter:
    return PersistenceAdapter(backend)


@pytest.fixture
def store(persistence: PersistenceAdapter) -> AddressStore:
    return AddressStore(persistence)


@pytest.fixture
def price_feed() -> FakePriceFeed:
    return FakePriceFeed(PriceQuote(price=50000, change_24h=2.5))


@pytest.fixture
def fee_feed() -> FakeFeeFeed:
    return FakeFeeFeed(FeeEstimates(fastest=20, half_hour=12, hour=8))


@pytest.fixture
def balance_fetcher() -> FakeBalanceFetcher:
    return FakeBalanceFetcher()


@pytest.fixture
def scheduler(store, price_feed, fee_feed, balance_fetcher) -> RefreshScheduler:
    return RefreshScheduler(store, price_feed, fee_feed, balance_fetcher, interval=3600)


@pytest.fixture
def config(monkeypatch):
    """Default configuration, isolated from the developer's environment."""
    monkeypatch.delenv("SATS_TRACKER_CONFIG", raising=False)
    monkeypatch.delenv("SATS_TRACKER_HOME", raising=False)
    return load_config()


@pytest.fixture
def mock_client():
    """Factory building an AsyncClient backed by a request handler."""
    return make_client


class FakeServices:
    """
    Request handler standing in for CoinGecko and mempool.space.

    ``balances`` maps address to ``(funded, spent, txs)``; any other address
    is rejected with HTTP 400 the way the real service rejects invalid ones.

    """

    def __init__(self, balances: dict[str, tuple[int, int, list]] | None = None, price: float = 50000) -> None:
        self.balances = dict(balances or {})
        self.price = price
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "api.coingecko.com":
            return httpx.Response(200, json={"bitcoin": {"usd": self.price, "usd_24h_change": 1.5}})

        path = request.url.path.removeprefix("/api/")
        if path == "v1/fees/recommended":
            return httpx.Response(200, json={"fastestFee": 20, "halfHourFee": 12, "hourFee": 8})

        parts = path.split("/")
        address = parts[1] if len(parts) > 1 else ""
        if parts[0] != "address" or address not in self.balances:
            return httpx.Response(400, text="Invalid Bitcoin address")
        funded, spent, txs = self.balances[address]
        if parts[-1] == "txs":
            return httpx.Response(200, json=txs)
        return httpx.Response(
            200,
            json={
                "address": address,
                "chain_stats": {"funded_txo_sum": funded, "spent_txo_sum": spent},
                "mempool_stats": {"funded_txo_sum": 0, "spent_txo_sum": 0},
            },
        )


@pytest.fixture
def services() -> FakeServices:
    return FakeServices()
