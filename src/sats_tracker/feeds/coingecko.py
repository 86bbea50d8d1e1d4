"""CoinGecko spot price feed."""

import logging
from decimal import Decimal, InvalidOperation

import httpx

from sats_tracker.core.models import PriceQuote

logger = logging.getLogger(__name__)

COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"


class CoinGeckoPriceFeed:
    """
    Fetches the spot price and 24h change of one asset from CoinGecko.

    The feed never raises for remote problems; callers keep their previous
    quote when ``fetch_price`` returns None.

    Parameters
    ----------
    client : httpx.AsyncClient
        Shared HTTP client
    url : str
        ``simple/price`` endpoint URL
    asset_id : str
        CoinGecko asset identifier
    currency : str
        Quote currency code

    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str = COINGECKO_PRICE_URL,
        asset_id: str = "bitcoin",
        currency: str = "usd",
    ) -> None:
        self.client = client
        self.url = url
        self.asset_id = asset_id
        self.currency = currency.lower()

    async def fetch_price(self) -> PriceQuote | None:
        """
        Fetch the current quote.

        Returns
        -------
        PriceQuote | None
            Quote on success, None on any network or decoding failure

        """
        params = {
            "ids": self.asset_id,
            "vs_currencies": self.currency,
            "include_24hr_change": "true",
        }
        try:
            response = await self.client.get(self.url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.warning("Price request failed: %s", e)
            return None
        except ValueError as e:
            logger.warning("Price response is not JSON: %s", e)
            return None

        return self._parse(data)

    def _parse(self, data: object) -> PriceQuote | None:
        entry = data.get(self.asset_id) if isinstance(data, dict) else None
        if not isinstance(entry, dict) or entry.get(self.currency) is None:
            logger.warning("Price response has no %s/%s entry", self.asset_id, self.currency)
            return None

        try:
            price = Decimal(str(entry[self.currency]))
            raw_change = entry.get(f"{self.currency}_24h_change")
            change = Decimal(str(raw_change)) if raw_change is not None else None
        except InvalidOperation:
            logger.warning("Price response has non-numeric values: %r", entry)
            return None

        if not price.is_finite() or price <= 0:
            logger.warning("Price response has non-positive price: %s", price)
            return None

        return PriceQuote(price=price, change_24h=change, currency=self.currency)
