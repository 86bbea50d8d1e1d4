"""Tests for refresh cycles and the periodic refresh timer."""

import asyncio
from decimal import Decimal

import pytest

from sats_tracker.core.exceptions import NetworkFailure
from sats_tracker.core.models import BalanceResult, ConfirmedAt, Pending, PriceQuote
from sats_tracker.core.scheduler import RefreshScheduler


@pytest.mark.asyncio
async def test_cycle_updates_market_and_balances(scheduler, store, balance_fetcher):
    record = store.add("addr1", BalanceResult(balance_sats=1))
    balance_fetcher.results["addr1"] = BalanceResult(balance_sats=250_000, last_tx_time=Pending())

    report = await scheduler.run_cycle()

    assert report is not None
    assert report.price_updated and report.fees_updated
    assert report.refreshed == [record.id]
    assert report.failed == []
    assert scheduler.market.price.price == Decimal("50000")
    assert scheduler.market.fees.fastest == 20
    assert scheduler.market.last_cycle == report
    assert store.get(record.id).balance_sats == 250_000
    assert store.get(record.id).last_tx_time == Pending()


@pytest.mark.asyncio
async def test_failed_fetch_keeps_previous_values(scheduler, store, balance_fetcher):
    ok = store.add("addr-ok", BalanceResult(balance_sats=10))
    bad = store.add("addr-bad", BalanceResult(balance_sats=777, last_tx_time=Pending()))
    before = store.get(bad.id)
    balance_fetcher.results["addr-ok"] = BalanceResult(balance_sats=20)
    balance_fetcher.results["addr-bad"] = NetworkFailure("timeout")

    report = await scheduler.run_cycle()

    after = store.get(bad.id)
    assert report.failed == [bad.id]
    assert after.balance_sats == before.balance_sats
    assert after.last_tx_time == before.last_tx_time
    assert after.last_updated == before.last_updated
    assert after.stale is True
    assert store.get(ok.id).balance_sats == 20


@pytest.mark.asyncio
async def test_feed_outage_keeps_prior_quote(scheduler, price_feed, fee_feed):
    await scheduler.run_cycle()
    first_price = scheduler.market.price
    first_fees = scheduler.market.fees

    price_feed.quote = None
    fee_feed.fees = None
    report = await scheduler.run_cycle()

    assert report.price_updated is False
    assert report.fees_updated is False
    assert scheduler.market.price == first_price
    assert scheduler.market.fees == first_fees


@pytest.mark.asyncio
async def test_new_quote_replaces_old(scheduler, price_feed):
    await scheduler.run_cycle()
    price_feed.quote = PriceQuote(price=61000)
    await scheduler.run_cycle()
    assert scheduler.market.price.price == Decimal("61000")


@pytest.mark.asyncio
async def test_raising_feed_does_not_abort_cycle(scheduler, store, price_feed, balance_fetcher):
    async def broken():
        raise RuntimeError("boom")

    price_feed.fetch_price = broken
    record = store.add("addr1", BalanceResult(balance_sats=1))
    balance_fetcher.results["addr1"] = BalanceResult(balance_sats=2)

    report = await scheduler.run_cycle()

    assert report.price_updated is False
    assert store.get(record.id).balance_sats == 2
    assert scheduler.in_flight is False


@pytest.mark.asyncio
async def test_concurrent_cycles_fetch_once(scheduler, store, price_feed, fee_feed, balance_fetcher):
    store.add("addr1", BalanceResult(balance_sats=1))
    balance_fetcher.results["addr1"] = BalanceResult(balance_sats=5)
    balance_fetcher.gate = asyncio.Event()

    first = asyncio.create_task(scheduler.run_cycle())
    await asyncio.wait_for(balance_fetcher.started.wait(), timeout=1)

    assert scheduler.in_flight is True
    assert await scheduler.run_cycle() is None
    assert await scheduler.refresh_now() is None

    balance_fetcher.gate.set()
    report = await first

    assert report is not None
    assert balance_fetcher.calls == 1
    assert price_feed.calls == 1
    assert fee_feed.calls == 1
    assert scheduler.in_flight is False


@pytest.mark.asyncio
async def test_merge_only_sees_cycle_start_snapshot(scheduler, store, balance_fetcher):
    """Records removed or added while a cycle is in flight are left alone."""
    removed = store.add("addr-removed", BalanceResult(balance_sats=1))
    balance_fetcher.results["addr-removed"] = BalanceResult(balance_sats=999)
    balance_fetcher.results["addr-new"] = BalanceResult(balance_sats=999)
    balance_fetcher.gate = asyncio.Event()

    cycle = asyncio.create_task(scheduler.run_cycle())
    await asyncio.wait_for(balance_fetcher.started.wait(), timeout=1)

    store.remove(removed.id)
    added = store.add("addr-new", BalanceResult(balance_sats=3))

    balance_fetcher.gate.set()
    await cycle

    assert store.snapshot() == [added]
    assert store.get(added.id).balance_sats == 3


@pytest.mark.asyncio
async def test_empty_store_skips_balance_fan_out(scheduler, balance_fetcher):
    report = await scheduler.run_cycle()

    assert report.refreshed == []
    assert balance_fetcher.calls == 0


@pytest.mark.asyncio
async def test_duplicate_addresses_share_one_result(scheduler, store, balance_fetcher):
    a = store.add("same", BalanceResult(balance_sats=1), group="Savings")
    b = store.add("same", BalanceResult(balance_sats=1), group="General")
    balance_fetcher.results["same"] = BalanceResult(balance_sats=8, last_tx_time=ConfirmedAt(timestamp=a.last_updated))

    await scheduler.run_cycle()

    assert store.get(a.id).balance_sats == 8
    assert store.get(b.id).balance_sats == 8


@pytest.mark.asyncio
async def test_on_cycle_callback(store, price_feed, fee_feed, balance_fetcher):
    seen = []
    scheduler = RefreshScheduler(store, price_feed, fee_feed, balance_fetcher, on_cycle=seen.append)

    report = await scheduler.run_cycle()

    assert seen == [report]


@pytest.mark.asyncio
async def test_start_runs_immediately_and_repeats(store, price_feed, fee_feed, balance_fetcher):
    scheduler = RefreshScheduler(store, price_feed, fee_feed, balance_fetcher, interval=0.01)

    scheduler.start()
    assert scheduler.running
    for _ in range(100):
        if price_feed.calls >= 3:
            break
        await asyncio.sleep(0.01)
    await scheduler.stop()

    assert price_feed.calls >= 3
    assert not scheduler.running


@pytest.mark.asyncio
async def test_stop_lets_in_flight_cycle_merge(scheduler, store, price_feed, balance_fetcher):
    record = store.add("addr1", BalanceResult(balance_sats=1))
    balance_fetcher.results["addr1"] = BalanceResult(balance_sats=123)
    balance_fetcher.gate = asyncio.Event()

    scheduler.start()
    await asyncio.wait_for(balance_fetcher.started.wait(), timeout=1)

    stopping = asyncio.create_task(scheduler.stop())
    await asyncio.sleep(0.01)
    assert not scheduler.running
    assert not stopping.done()

    balance_fetcher.gate.set()
    await asyncio.wait_for(stopping, timeout=1)

    assert store.get(record.id).balance_sats == 123
    assert price_feed.calls == 1
    assert scheduler.in_flight is False


@pytest.mark.asyncio
async def test_start_twice_keeps_one_timer(scheduler, price_feed):
    scheduler.start()
    timer = scheduler._timer
    scheduler.start()
    assert scheduler._timer is timer
    await scheduler.stop()


@pytest.mark.asyncio
async def test_stop_without_start_is_harmless(scheduler):
    await scheduler.stop()
    assert not scheduler.running
    assert scheduler.market.last_cycle is None
