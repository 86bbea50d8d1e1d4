"""Data models for tracked addresses, feed results and aggregate views."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    field_serializer,
    field_validator,
)

SATS_PER_BTC = 100_000_000

DEFAULT_LABEL = "My Wallet"
DEFAULT_GROUP = "General"
SUGGESTED_GROUPS = ["General", "Savings", "Cold Storage", "Hot Wallet", "Exchange"]

PENDING_MARKER = "pending"

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_ONE_MS = timedelta(milliseconds=1)


class Unknown(BaseModel):
    """No activity has been observed for the address."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["unknown"] = "unknown"


class Pending(BaseModel):
    """The newest transaction touching the address is still unconfirmed."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["pending"] = "pending"


class ConfirmedAt(BaseModel):
    """
    The newest transaction touching the address was confirmed.

    Attributes
    ----------
    timestamp : datetime
        Block time of the confirming block (UTC)

    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["confirmed"] = "confirmed"
    timestamp: datetime


LastActivity = Annotated[Unknown | Pending | ConfirmedAt, Field(discriminator="kind")]


def activity_from_wire(value: Any) -> Any:
    """
    Decode the portable form of the last-activity field.

    Backups store the field as ``null``, ``"pending"`` or epoch milliseconds.
    Anything else (model instances, tagged dicts) is handed back unchanged for
    the discriminated union to validate.

    """
    if value is None:
        return Unknown()
    if value == PENDING_MARKER:
        return Pending()
    if isinstance(value, bool):
        msg = "last activity must be null, 'pending' or epoch milliseconds"
        raise ValueError(msg)
    if isinstance(value, int | float):
        try:
            timestamp = _EPOCH + int(value) * _ONE_MS
        except (OverflowError, ValueError) as e:
            msg = f"last activity {value!r} is out of range"
            raise ValueError(msg) from e
        return ConfirmedAt(timestamp=timestamp)
    return value


def activity_to_wire(value: Unknown | Pending | ConfirmedAt) -> int | str | None:
    """Encode a last-activity variant into its portable form."""
    if isinstance(value, Pending):
        return PENDING_MARKER
    if isinstance(value, ConfirmedAt):
        timestamp = value.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        return (timestamp - _EPOCH) // _ONE_MS
    return None


class AddressRecord(BaseModel):
    """
    One tracked address.

    Field aliases follow the camelCase keys used by backup documents so that
    backups move between installs unchanged.

    Attributes
    ----------
    id : int | str
        Opaque unique identifier, assigned once and never reused
    address : str
        Ledger address string
    label : str
        Display name
    group : str
        Free-text category used for aggregation
    balance_sats : int
        Confirmed plus unconfirmed balance in satoshis
    last_tx_time : Unknown | Pending | ConfirmedAt
        Most recent activity observed for the address
    last_updated : datetime | None
        Time of the last successful refresh
    stale : bool
        True when the latest refresh attempt failed

    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: int | str
    address: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    label: str = DEFAULT_LABEL
    group: str = DEFAULT_GROUP
    balance_sats: int = Field(default=0, ge=0, alias="balanceSats")
    last_tx_time: LastActivity = Field(default_factory=Unknown, alias="lastTxTime")
    last_updated: datetime | None = Field(default=None, alias="lastUpdated")
    stale: bool = False

    @field_validator("label", mode="before")
    @classmethod
    def _default_label(cls, value: Any) -> Any:
        return value or DEFAULT_LABEL

    @field_validator("group", mode="before")
    @classmethod
    def _default_group(cls, value: Any) -> Any:
        return value or DEFAULT_GROUP

    @field_validator("last_tx_time", mode="before")
    @classmethod
    def _decode_activity(cls, value: Any) -> Any:
        return activity_from_wire(value)

    @field_serializer("last_tx_time")
    def _encode_activity(self, value: Unknown | Pending | ConfirmedAt) -> int | str | None:
        return activity_to_wire(value)

    @property
    def balance_btc(self) -> Decimal:
        """Balance expressed in whole coins."""
        return sats_to_btc(self.balance_sats)


class BalanceResult(BaseModel):
    """Balance and latest activity resolved for one address."""

    model_config = ConfigDict(frozen=True)

    balance_sats: int = Field(ge=0)
    last_tx_time: LastActivity = Field(default_factory=Unknown)


class PriceQuote(BaseModel):
    """
    Spot price of one whole coin.

    Attributes
    ----------
    price : Decimal
        Currency units per coin
    change_24h : Decimal | None
        24-hour percentage change, when the feed reports it
    currency : str
        Quote currency code
    fetched_at : datetime
        When the quote was received

    """

    model_config = ConfigDict(frozen=True)

    price: Decimal = Field(gt=0)
    change_24h: Decimal | None = None
    currency: str = "usd"
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class FeeEstimates(BaseModel):
    """Recommended fee rates in sat/vB."""

    model_config = ConfigDict(frozen=True)

    fastest: float
    half_hour: float
    hour: float
    economy: float | None = None
    minimum: float | None = None
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class BreakdownRow(BaseModel):
    """
    One row of an aggregate view.

    Attributes
    ----------
    key : str
        Group name or address
    sats : int
        Summed balance in satoshis
    native_amount : Decimal
        Summed balance in whole coins
    fiat_amount : Decimal | None
        Fiat value rounded to cents, None while no price is known

    """

    key: str
    sats: int
    native_amount: Decimal
    fiat_amount: Decimal | None = None


class AddressRow(BreakdownRow):
    """Aggregate row for a single address."""

    record_id: int | str
    label: str
    stale: bool = False


class PortfolioTotals(BaseModel):
    """Portfolio-wide totals shown above the breakdowns."""

    total_sats: int
    native_amount: Decimal
    fiat_amount: Decimal | None = None
    address_count: int = 0
    stale_count: int = 0


class CycleReport(BaseModel):
    """Outcome of one refresh cycle."""

    started_at: datetime
    finished_at: datetime | None = None
    price_updated: bool = False
    fees_updated: bool = False
    refreshed: list[int | str] = Field(default_factory=list)
    failed: list[int | str] = Field(default_factory=list)


class MarketState(BaseModel):
    """Latest known price and fee data; stale values are kept over absent ones."""

    price: PriceQuote | None = None
    fees: FeeEstimates | None = None
    last_cycle: CycleReport | None = None


def sats_to_btc(sats: int) -> Decimal:
    """Convert satoshis to whole coins without float rounding."""
    return Decimal(sats) / SATS_PER_BTC
