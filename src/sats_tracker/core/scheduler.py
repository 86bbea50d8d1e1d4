"""Refresh cycle orchestration and the periodic refresh timer."""

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Protocol

from sats_tracker.core.exceptions import TrackerError
from sats_tracker.core.models import (
    AddressRecord,
    BalanceResult,
    CycleReport,
    FeeEstimates,
    MarketState,
    PriceQuote,
)
from sats_tracker.core.store import AddressStore, RecordId

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0


class PriceSource(Protocol):
    async def fetch_price(self) -> PriceQuote | None: ...


class FeeSource(Protocol):
    async def fetch_fees(self) -> FeeEstimates | None: ...


class BalanceSource(Protocol):
    async def fetch_many(self, addresses: Iterable[str]) -> dict[str, BalanceResult | TrackerError]: ...


class RefreshScheduler:
    """
    Runs refresh cycles against the price, fee and balance sources.

    At most one cycle runs at a time: a cycle requested while another is in
    flight returns immediately without fetching anything. The periodic timer
    fires every ``interval`` seconds from ``start()`` until ``stop()``;
    stopping never interrupts a cycle that has already begun.

    Parameters
    ----------
    store : AddressStore
        Collection read at the start of each cycle and merged into at its end
    price_feed : PriceSource
        Spot price source
    fee_feed : FeeSource
        Fee recommendation source
    balance_fetcher : BalanceSource
        Per-address balance source
    interval : float
        Seconds between periodic cycles
    on_cycle : Callable[[CycleReport], None] | None
        Called after every completed cycle

    """

    def __init__(
        self,
        store: AddressStore,
        price_feed: PriceSource,
        fee_feed: FeeSource,
        balance_fetcher: BalanceSource,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        on_cycle: Callable[[CycleReport], None] | None = None,
    ) -> None:
        self.store = store
        self.price_feed = price_feed
        self.fee_feed = fee_feed
        self.balance_fetcher = balance_fetcher
        self.interval = interval
        self.on_cycle = on_cycle
        self.market = MarketState()
        self.in_flight = False
        self._timer: asyncio.Task | None = None
        self._cycle: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        """Whether the periodic timer is active."""
        return self._timer is not None and not self._timer.done()

    async def run_cycle(self) -> CycleReport | None:
        """
        Run one refresh cycle.

        Returns
        -------
        CycleReport | None
            Report of the cycle, or None when another cycle was in flight

        """
        if self.in_flight:
            logger.debug("Refresh already in flight, skipping")
            return None

        self.in_flight = True
        try:
            report = await self._refresh()
        finally:
            self.in_flight = False

        self.market.last_cycle = report
        if self.on_cycle is not None:
            self.on_cycle(report)
        return report

    async def refresh_now(self) -> CycleReport | None:
        """User-triggered refresh sharing the in-flight guard."""
        return await self.run_cycle()

    def start(self) -> None:
        """Run a cycle now and then every ``interval`` seconds."""
        if self.running:
            logger.warning("Refresh timer already running")
            return
        self._timer = asyncio.create_task(self._tick_forever(), name="sats-tracker-timer")
        logger.info("Refresh timer started (every %ss)", self.interval)

    async def stop(self, *, drain: bool = True) -> None:
        """
        Cancel the periodic timer.

        Parameters
        ----------
        drain : bool
            Wait for a cycle that is already in flight to finish merging

        """
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
            logger.info("Refresh timer stopped")

        if drain and self._cycle is not None and not self._cycle.done():
            await asyncio.wait({self._cycle})

    async def _tick_forever(self) -> None:
        while True:
            if not self.in_flight:
                self._cycle = asyncio.create_task(self.run_cycle(), name="sats-tracker-cycle")
                self._cycle.add_done_callback(_log_cycle_failure)
            await asyncio.sleep(self.interval)

    async def _refresh(self) -> CycleReport:
        started = datetime.now(UTC)
        report = CycleReport(started_at=started)
        snapshot = self.store.snapshot()
        logger.info("Refresh cycle started for %d addresses", len(snapshot))

        price, fees, results = await asyncio.gather(
            self._fetch_price(),
            self._fetch_fees(),
            self._fetch_balances(snapshot),
        )

        if price is not None:
            self.market.price = price
            report.price_updated = True
        if fees is not None:
            self.market.fees = fees
            report.fees_updated = True

        self.store.merge_refresh_results(results, attempted_at=started)
        report.refreshed = [rid for rid, result in results.items() if result is not None]
        report.failed = [rid for rid, result in results.items() if result is None]
        report.finished_at = datetime.now(UTC)

        logger.info(
            "Refresh cycle finished: %d refreshed, %d failed, price %s, fees %s",
            len(report.refreshed),
            len(report.failed),
            "updated" if report.price_updated else "kept",
            "updated" if report.fees_updated else "kept",
        )
        return report

    async def _fetch_price(self) -> PriceQuote | None:
        try:
            return await self.price_feed.fetch_price()
        except Exception:
            logger.exception("Price feed raised")
            return None

    async def _fetch_fees(self) -> FeeEstimates | None:
        try:
            return await self.fee_feed.fetch_fees()
        except Exception:
            logger.exception("Fee feed raised")
            return None

    async def _fetch_balances(self, snapshot: list[AddressRecord]) -> dict[RecordId, BalanceResult | None]:
        if not snapshot:
            return {}

        try:
            outcomes = await self.balance_fetcher.fetch_many(r.address for r in snapshot)
        except Exception:
            logger.exception("Balance fetcher raised")
            outcomes = {}

        results: dict[RecordId, BalanceResult | None] = {}
        for record in snapshot:
            outcome = outcomes.get(record.address)
            if isinstance(outcome, BalanceResult):
                results[record.id] = outcome
            else:
                logger.warning("Keeping previous balance for %s: %s", record.address, outcome)
                results[record.id] = None
        return results


def _log_cycle_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Refresh cycle failed: %s", exc, exc_info=exc)
