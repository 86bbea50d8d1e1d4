"""Tracker facade wiring configuration, storage, feeds and the refresh scheduler."""

import logging
from decimal import Decimal

import httpx

from sats_tracker.core.aggregator import by_address, by_group, portfolio_totals
from sats_tracker.core.exceptions import InvalidAddress, TrackerError
from sats_tracker.core.models import (
    AddressRecord,
    AddressRow,
    BreakdownRow,
    CycleReport,
    MarketState,
    PortfolioTotals,
)
from sats_tracker.core.scheduler import RefreshScheduler
from sats_tracker.core.store import AddressStore, RecordId
from sats_tracker.data.loader import TrackerConfig
from sats_tracker.feeds.coingecko import CoinGeckoPriceFeed
from sats_tracker.feeds.mempool import MempoolBalanceFetcher, MempoolFeeFeed
from sats_tracker.storage.backup import export_document, import_document
from sats_tracker.storage.persistence import FileBackend, KeyValueBackend, PersistenceAdapter

logger = logging.getLogger(__name__)


class SatsTracker:
    """
    One tracker instance: the address store plus everything that feeds it.

    Construction loads persisted state synchronously. Network work only
    happens in ``add_address``, ``refresh`` and while the refresh timer runs.

    Parameters
    ----------
    config : TrackerConfig
        Effective configuration
    backend : KeyValueBackend | None
        Storage backend, defaults to files under ``config.storage.directory``
    client : httpx.AsyncClient | None
        HTTP client shared by the feeds; created (and closed) here when None

    """

    def __init__(
        self,
        config: TrackerConfig,
        backend: KeyValueBackend | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.persistence = PersistenceAdapter(backend or FileBackend(config.storage.directory))
        self.store = AddressStore.load(self.persistence)
        self._privacy = self.persistence.load_privacy()

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=config.http_timeout_seconds,
            headers={"Accept": "application/json"},
        )
        self.price_feed = CoinGeckoPriceFeed(
            self.client,
            url=str(config.price.url),
            asset_id=config.price.asset_id,
            currency=config.price.currency,
        )
        api_url = str(config.mempool.api_url)
        self.fee_feed = MempoolFeeFeed(self.client, base_url=api_url)
        self.balance_fetcher = MempoolBalanceFetcher(self.client, base_url=api_url)
        self.scheduler = RefreshScheduler(
            self.store,
            self.price_feed,
            self.fee_feed,
            self.balance_fetcher,
            interval=config.refresh_interval_seconds,
        )

    @property
    def market(self) -> MarketState:
        """Latest price and fee data."""
        return self.scheduler.market

    @property
    def privacy(self) -> bool:
        """Whether balances should be masked on display."""
        return self._privacy

    @privacy.setter
    def privacy(self, enabled: bool) -> None:
        self.persistence.save_privacy(enabled)
        self._privacy = enabled

    @property
    def price(self) -> Decimal | None:
        """Latest known spot price, None before the first successful quote."""
        return self.market.price.price if self.market.price else None

    async def add_address(self, address: str, label: str = "", group: str = "") -> AddressRecord:
        """
        Fetch an address once and start tracking it.

        Raises
        ------
        InvalidAddress
            If the address is empty or the ledger service cannot resolve it;
            no record is created in that case

        """
        address = address.strip()
        if not address:
            msg = "Address is empty"
            raise InvalidAddress(msg)

        try:
            result = await self.balance_fetcher.fetch(address)
        except TrackerError as e:
            logger.info("Rejected address %s: %s", address, e)
            msg = f"Could not fetch {address}; check that it is a valid Bitcoin address ({e})"
            raise InvalidAddress(msg) from e

        return self.store.add(address, result, label=label.strip(), group=group.strip())

    def remove_address(self, record_id: RecordId) -> bool:
        """Stop tracking a record. Returns False when the id is unknown."""
        return self.store.remove(record_id)

    def rename(self, record_id: RecordId, label: str | None = None, group: str | None = None) -> AddressRecord:
        """Edit label and/or group of a record."""
        return self.store.update(record_id, label=label, group=group)

    async def refresh(self) -> CycleReport | None:
        """Run an on-demand refresh cycle."""
        return await self.scheduler.refresh_now()

    def group_breakdown(self) -> list[BreakdownRow]:
        return by_group(self.store.snapshot(), self.price)

    def address_breakdown(self) -> list[AddressRow]:
        return by_address(self.store.snapshot(), self.price)

    def totals(self) -> PortfolioTotals:
        return portfolio_totals(self.store.snapshot(), self.price)

    def export_backup(self) -> str:
        """Serialize the collection as a portable JSON document."""
        return export_document(self.store)

    def import_backup(self, text: str | bytes) -> list[AddressRecord]:
        """Replace the collection from a backup document, all or nothing."""
        return import_document(self.store, text)

    def start(self) -> None:
        """Start periodic refreshing."""
        self.scheduler.start()

    async def stop(self) -> None:
        """Stop periodic refreshing, letting an in-flight cycle finish."""
        await self.scheduler.stop()

    async def aclose(self) -> None:
        """Stop refreshing and release the HTTP client."""
        await self.stop()
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "SatsTracker":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Async context manager exit."""
        await self.aclose()
