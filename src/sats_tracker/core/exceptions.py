"""Exception hierarchy for the tracker engine."""


class TrackerError(Exception):
    """Base class for all tracker errors."""


class NetworkFailure(TrackerError):
    """A remote feed or the ledger service was unreachable or answered non-OK."""


class ParseFailure(TrackerError):
    """A persisted, imported or remote document could not be decoded."""


class InvalidAddress(TrackerError):
    """The ledger service rejected an address that was being added."""


class InvalidFormat(TrackerError):
    """An import document failed structural validation."""
