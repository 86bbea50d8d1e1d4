"""Track Bitcoin address balances and aggregate them into a portfolio view."""

from sats_tracker.tracker import SatsTracker

__version__ = "0.1.0"

__all__ = ["SatsTracker", "__version__"]
