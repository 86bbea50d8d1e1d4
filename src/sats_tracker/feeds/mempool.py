"""mempool.space clients: fee recommendations and per-address balances."""

import asyncio
import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from sats_tracker.core.exceptions import NetworkFailure, ParseFailure, TrackerError
from sats_tracker.core.models import (
    BalanceResult,
    ConfirmedAt,
    FeeEstimates,
    Pending,
    Unknown,
)

logger = logging.getLogger(__name__)

MEMPOOL_API_URL = "https://mempool.space/api"


class _MempoolClient:
    """Shared request plumbing for the mempool.space REST API."""

    def __init__(self, client: httpx.AsyncClient, base_url: str = MEMPOOL_API_URL) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")

    async def _get_json(self, path: str) -> Any:
        """
        GET ``path`` and decode the JSON body.

        Raises
        ------
        NetworkFailure
            On transport errors and non-2xx responses
        ParseFailure
            If the body is not JSON

        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            msg = f"HTTP {e.response.status_code} from {url}"
            raise NetworkFailure(msg) from e
        except httpx.HTTPError as e:
            msg = f"Request to {url} failed: {e}"
            raise NetworkFailure(msg) from e

        try:
            return response.json()
        except ValueError as e:
            msg = f"Response from {url} is not JSON"
            raise ParseFailure(msg) from e


class MempoolFeeFeed(_MempoolClient):
    """Fetches recommended fee rates from ``v1/fees/recommended``."""

    async def fetch_fees(self) -> FeeEstimates | None:
        """Return current fee tiers, or None when the service is unavailable."""
        try:
            data = await self._get_json("v1/fees/recommended")
            return FeeEstimates(
                fastest=data["fastestFee"],
                half_hour=data["halfHourFee"],
                hour=data["hourFee"],
                economy=data.get("economyFee"),
                minimum=data.get("minimumFee"),
            )
        except TrackerError as e:
            logger.warning("Fee request failed: %s", e)
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.warning("Fee response is malformed: %s", e)
        return None


class MempoolBalanceFetcher(_MempoolClient):
    """
    Resolves the balance and latest activity of addresses.

    A failed lookup raises instead of reporting a zero balance, so callers
    can tell an empty address from an unreachable service.

    """

    async def fetch(self, address: str) -> BalanceResult:
        """
        Fetch balance and newest activity for one address.

        Parameters
        ----------
        address : str
            Ledger address

        Returns
        -------
        BalanceResult
            Confirmed plus unconfirmed balance and the newest activity

        Raises
        ------
        NetworkFailure
            If either request fails or is rejected
        ParseFailure
            If either response has an unexpected shape

        """
        path = f"address/{quote(address, safe='')}"
        stats = await self._get_json(path)
        balance = self._parse_balance(address, stats)

        txs = await self._get_json(f"{path}/txs")
        activity = self._parse_activity(address, txs)

        try:
            return BalanceResult(balance_sats=balance, last_tx_time=activity)
        except ValidationError as e:
            msg = f"Inconsistent balance for {address}: {balance}"
            raise ParseFailure(msg) from e

    async def fetch_many(self, addresses: Iterable[str]) -> dict[str, BalanceResult | TrackerError]:
        """
        Fetch several addresses concurrently.

        Returns
        -------
        dict[str, BalanceResult | TrackerError]
            Per-address result, or the error that address failed with

        """
        unique = list(dict.fromkeys(addresses))
        outcomes = await asyncio.gather(*(self.fetch(a) for a in unique), return_exceptions=True)

        results: dict[str, BalanceResult | TrackerError] = {}
        for address, outcome in zip(unique, outcomes, strict=True):
            if isinstance(outcome, BalanceResult | TrackerError):
                results[address] = outcome
            elif isinstance(outcome, Exception):
                results[address] = ParseFailure(f"Unexpected error for {address}: {outcome!r}")
            else:
                raise outcome
        return results

    @staticmethod
    def _parse_balance(address: str, stats: Any) -> int:
        try:
            chain = stats["chain_stats"]
            mempool = stats["mempool_stats"]
            confirmed = int(chain["funded_txo_sum"]) - int(chain["spent_txo_sum"])
            unconfirmed = int(mempool["funded_txo_sum"]) - int(mempool["spent_txo_sum"])
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Balance response for {address} is malformed: {e}"
            raise ParseFailure(msg) from e
        return confirmed + unconfirmed

    @staticmethod
    def _parse_activity(address: str, txs: Any) -> Unknown | Pending | ConfirmedAt:
        if not isinstance(txs, list):
            msg = f"Transaction list for {address} is not an array"
            raise ParseFailure(msg)
        if not txs:
            return Unknown()

        try:
            status = txs[0]["status"]
            if not status["confirmed"]:
                return Pending()
            block_time = int(status["block_time"])
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Newest transaction for {address} is malformed: {e}"
            raise ParseFailure(msg) from e
        return ConfirmedAt(timestamp=datetime.fromtimestamp(block_time, tz=UTC))
