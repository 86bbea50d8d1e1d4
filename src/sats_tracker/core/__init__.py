"""Core engine: models, address store, refresh scheduler and aggregation."""

from sats_tracker.core.aggregator import by_address, by_group, fiat_value, portfolio_totals
from sats_tracker.core.exceptions import (
    InvalidAddress,
    InvalidFormat,
    NetworkFailure,
    ParseFailure,
    TrackerError,
)
from sats_tracker.core.models import (
    AddressRecord,
    AddressRow,
    BalanceResult,
    BreakdownRow,
    ConfirmedAt,
    CycleReport,
    FeeEstimates,
    MarketState,
    Pending,
    PortfolioTotals,
    PriceQuote,
    Unknown,
)
from sats_tracker.core.scheduler import RefreshScheduler
from sats_tracker.core.store import AddressStore, validate_records

__all__ = [
    "AddressRecord",
    "AddressRow",
    "AddressStore",
    "BalanceResult",
    "BreakdownRow",
    "ConfirmedAt",
    "CycleReport",
    "FeeEstimates",
    "InvalidAddress",
    "InvalidFormat",
    "MarketState",
    "NetworkFailure",
    "ParseFailure",
    "Pending",
    "PortfolioTotals",
    "PriceQuote",
    "RefreshScheduler",
    "TrackerError",
    "Unknown",
    "by_address",
    "by_group",
    "fiat_value",
    "portfolio_totals",
    "validate_records",
]
