"""Canonical in-memory collection of tracked addresses."""

import logging
import time
from collections.abc import Iterator, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from sats_tracker.core.exceptions import InvalidFormat
from sats_tracker.core.models import AddressRecord, BalanceResult

if TYPE_CHECKING:
    from sats_tracker.storage.persistence import PersistenceAdapter

logger = logging.getLogger(__name__)

RecordId = int | str


def validate_records(items: Any) -> list[AddressRecord]:
    """
    Validate a decoded document as a complete address collection.

    Parameters
    ----------
    items : Any
        Decoded document, expected to be a list of record objects

    Returns
    -------
    list[AddressRecord]
        Validated records in document order

    Raises
    ------
    InvalidFormat
        If the document is not a list, an entry lacks a non-empty ``address``
        string or an ``id``, an entry fails field validation, or two entries
        share an id

    """
    if not isinstance(items, list):
        msg = f"Expected an array of address records, got {type(items).__name__}"
        raise InvalidFormat(msg)

    records: list[AddressRecord] = []
    seen: set[RecordId] = set()
    for index, item in enumerate(items):
        if isinstance(item, AddressRecord):
            record = item
        else:
            if not isinstance(item, dict):
                msg = f"Entry {index} is not an object"
                raise InvalidFormat(msg)
            address = item.get("address")
            if not isinstance(address, str) or not address.strip():
                msg = f"Entry {index} has no address"
                raise InvalidFormat(msg)
            if item.get("id") is None:
                msg = f"Entry {index} has no id"
                raise InvalidFormat(msg)
            try:
                record = AddressRecord.model_validate(item)
            except ValidationError as e:
                msg = f"Entry {index} is invalid: {e}"
                raise InvalidFormat(msg) from e

        if record.id in seen:
            msg = f"Entry {index} repeats id {record.id!r}"
            raise InvalidFormat(msg)
        seen.add(record.id)
        records.append(record)

    return records


class AddressStore:
    """
    Owns the tracked address records and writes every change through.

    Records are immutable; mutations replace them. Insertion order is the
    default display order.

    Parameters
    ----------
    persistence : PersistenceAdapter
        Durable storage written after each mutation
    records : list[AddressRecord] | None
        Initial records, usually loaded at startup

    """

    def __init__(
        self,
        persistence: "PersistenceAdapter",
        records: list[AddressRecord] | None = None,
    ) -> None:
        self.persistence = persistence
        self._records: list[AddressRecord] = list(records or [])
        self._last_id = 0
        self._observe_ids(self._records)

    @classmethod
    def load(cls, persistence: "PersistenceAdapter") -> "AddressStore":
        """Create a store from the persisted collection."""
        records = persistence.load_addresses()
        logger.info("Loaded %d tracked addresses", len(records))
        return cls(persistence, records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[AddressRecord]:
        return iter(self.snapshot())

    def __contains__(self, record_id: object) -> bool:
        return any(r.id == record_id for r in self._records)

    def snapshot(self) -> list[AddressRecord]:
        """Return a point-in-time copy of the collection."""
        return list(self._records)

    def get(self, record_id: RecordId) -> AddressRecord | None:
        """Return the record with ``record_id``, or None."""
        return next((r for r in self._records if r.id == record_id), None)

    def groups(self) -> list[str]:
        """Return group names in first-seen order."""
        return list(dict.fromkeys(r.group for r in self._records))

    def add(
        self,
        address: str,
        result: BalanceResult,
        *,
        label: str = "",
        group: str = "",
        now: datetime | None = None,
    ) -> AddressRecord:
        """
        Append a new record built from a successful initial fetch.

        Parameters
        ----------
        address : str
            Ledger address
        result : BalanceResult
            Initial balance and activity
        label : str
            Display name (placeholder when empty)
        group : str
            Category (``General`` when empty)
        now : datetime | None
            Refresh timestamp, defaults to the current time

        Returns
        -------
        AddressRecord
            The stored record with its assigned id

        """
        record = AddressRecord(
            id=self._next_id(),
            address=address,
            label=label,
            group=group,
            balance_sats=result.balance_sats,
            last_tx_time=result.last_tx_time,
            last_updated=now or datetime.now(UTC),
        )
        self._commit([*self._records, record])
        logger.info("Added address %s as %r (id=%s)", record.address, record.label, record.id)
        return record

    def remove(self, record_id: RecordId) -> bool:
        """Delete a record. Returns False when no record had that id."""
        remaining = [r for r in self._records if r.id != record_id]
        if len(remaining) == len(self._records):
            return False
        self._commit(remaining)
        logger.info("Removed address id=%s", record_id)
        return True

    def update(
        self,
        record_id: RecordId,
        *,
        label: str | None = None,
        group: str | None = None,
    ) -> AddressRecord:
        """
        Change the label and/or group of a record.

        Raises
        ------
        KeyError
            If no record has ``record_id``

        """
        current = self.get(record_id)
        if current is None:
            raise KeyError(record_id)

        changes: dict[str, Any] = {}
        if label is not None:
            changes["label"] = label
        if group is not None:
            changes["group"] = group
        # Revalidate so empty values fall back to the placeholders
        updated = AddressRecord.model_validate({**current.model_dump(), **changes})
        self._commit([updated if r.id == record_id else r for r in self._records])
        return updated

    def replace_all(self, items: Any) -> list[AddressRecord]:
        """
        Swap in a whole new collection, or reject it without any change.

        Raises
        ------
        InvalidFormat
            If ``items`` fails validation

        """
        records = validate_records(items)
        self._commit(records)
        self._observe_ids(records)
        logger.info("Replaced collection with %d records", len(records))
        return self.snapshot()

    def merge_refresh_results(
        self,
        results: Mapping[RecordId, BalanceResult | None],
        *,
        attempted_at: datetime | None = None,
    ) -> list[RecordId]:
        """
        Fold one cycle's fetch results into the current collection.

        A result replaces balance and activity and stamps ``last_updated``.
        A None result marks the record stale and keeps everything else. Records
        missing from ``results`` are untouched, and ids in ``results`` that are
        no longer stored are ignored.

        Returns
        -------
        list[RecordId]
            Ids of records whose fields changed

        """
        stamp = attempted_at or datetime.now(UTC)
        changed: list[RecordId] = []
        merged: list[AddressRecord] = []
        for record in self._records:
            if record.id not in results:
                merged.append(record)
                continue

            result = results[record.id]
            if result is None:
                updated = record if record.stale else record.model_copy(update={"stale": True})
            else:
                updated = record.model_copy(
                    update={
                        "balance_sats": result.balance_sats,
                        "last_tx_time": result.last_tx_time,
                        "last_updated": stamp,
                        "stale": False,
                    }
                )
            if updated is not record:
                changed.append(record.id)
            merged.append(updated)

        if changed:
            self._commit(merged)
        return changed

    def _commit(self, records: list[AddressRecord]) -> None:
        self.persistence.save_addresses(records)
        self._records = records

    def _observe_ids(self, records: list[AddressRecord]) -> None:
        numeric = [r.id for r in records if isinstance(r.id, int)]
        if numeric:
            self._last_id = max(self._last_id, *numeric)

    def _next_id(self) -> int:
        # Millisecond clock, bumped so ids stay strictly increasing
        self._last_id = max(time.time_ns() // 1_000_000, self._last_id + 1)
        return self._last_id
