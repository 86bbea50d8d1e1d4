"""Portfolio breakdowns by group and by address."""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from sats_tracker.core.models import (
    AddressRecord,
    AddressRow,
    BreakdownRow,
    PortfolioTotals,
    sats_to_btc,
)

CENT = Decimal("0.01")


def fiat_value(sats: int, price: Decimal | None) -> Decimal | None:
    """
    Value of ``sats`` at ``price`` per whole coin, rounded to cents.

    Parameters
    ----------
    sats : int
        Amount in satoshis
    price : Decimal | None
        Price of one whole coin, None when unknown

    Returns
    -------
    Decimal | None
        Fiat value, or None when no price is known

    """
    if price is None:
        return None
    return (sats_to_btc(sats) * Decimal(price)).quantize(CENT, rounding=ROUND_HALF_UP)


def by_group(records: Iterable[AddressRecord], price: Decimal | None = None) -> list[BreakdownRow]:
    """
    Sum balances per group.

    Groups whose total is zero are dropped. Rows are sorted by descending
    balance; equal totals keep the order in which their groups first appear.

    Parameters
    ----------
    records : Iterable[AddressRecord]
        Tracked records
    price : Decimal | None
        Price of one whole coin

    Returns
    -------
    list[BreakdownRow]
        One row per nonzero group

    """
    totals: dict[str, int] = {}
    for record in records:
        totals[record.group] = totals.get(record.group, 0) + record.balance_sats

    rows = [
        BreakdownRow(
            key=group,
            sats=sats,
            native_amount=sats_to_btc(sats),
            fiat_amount=fiat_value(sats, price),
        )
        for group, sats in totals.items()
        if sats > 0
    ]
    # sorted() is stable with reverse=True, so ties keep first-seen order
    return sorted(rows, key=lambda row: row.sats, reverse=True)


def by_address(records: Iterable[AddressRecord], price: Decimal | None = None) -> list[AddressRow]:
    """One row per nonzero record, sorted like ``by_group``."""
    rows = [
        AddressRow(
            key=record.address,
            record_id=record.id,
            label=record.label,
            stale=record.stale,
            sats=record.balance_sats,
            native_amount=sats_to_btc(record.balance_sats),
            fiat_amount=fiat_value(record.balance_sats, price),
        )
        for record in records
        if record.balance_sats > 0
    ]
    return sorted(rows, key=lambda row: row.sats, reverse=True)


def portfolio_totals(records: Iterable[AddressRecord], price: Decimal | None = None) -> PortfolioTotals:
    """Totals across every tracked record."""
    records = list(records)
    total = sum(r.balance_sats for r in records)
    return PortfolioTotals(
        total_sats=total,
        native_amount=sats_to_btc(total),
        fiat_amount=fiat_value(total, price),
        address_count=len(records),
        stale_count=sum(1 for r in records if r.stale),
    )
