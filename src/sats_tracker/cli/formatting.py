"""Display formatting for amounts, dates and masked values."""

from datetime import datetime
from decimal import Decimal

from sats_tracker.core.models import ConfirmedAt, Pending, Unknown, sats_to_btc

MASK = "***"


def format_btc(sats: int) -> str:
    """Satoshis as whole coins with eight decimals, e.g. ``0.00500000``."""
    return f"{sats_to_btc(sats):,.8f}"


def format_fiat(amount: Decimal | None, symbol: str = "$") -> str:
    """Fiat amount with thousands separators, or ``-`` when unknown."""
    if amount is None:
        return "-"
    return f"{symbol}{amount:,.2f}"


def format_change(change: Decimal | None) -> str:
    if change is None:
        return "-"
    return f"{change:+.2f}% (24h)"


def format_date(value: datetime | None) -> str:
    if value is None:
        return "Never"
    return f"{value:%b} {value.day}, {value.year}"


def format_last_activity(value: Unknown | Pending | ConfirmedAt) -> str:
    """``Never``, ``Pending...`` or the confirmation date."""
    if isinstance(value, Pending):
        return "Pending..."
    if isinstance(value, ConfirmedAt):
        return format_date(value.timestamp)
    return "Never"


def mask(text: str, hidden: bool) -> str:
    """Replace ``text`` with a placeholder while privacy mode is on."""
    return MASK if hidden else text


def currency_symbol(currency: str) -> str:
    return {"usd": "$", "eur": "€", "gbp": "£", "jpy": "¥"}.get(currency.lower(), f"{currency.upper()} ")
