"""Durable key-value storage for the address collection and display flags."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from pydantic import TypeAdapter

from sats_tracker.core.exceptions import InvalidFormat, ParseFailure
from sats_tracker.core.models import AddressRecord
from sats_tracker.core.store import validate_records

logger = logging.getLogger(__name__)

ADDRESSES_KEY = "sats-tracker-addresses"
PRIVACY_KEY = "sats-tracker-privacy"

_RECORDS = TypeAdapter(list[AddressRecord])


class KeyValueBackend(Protocol):
    """
    Minimal string key-value interface the adapter persists through.

    Methods
    -------
    get(key)
        Return the stored text, or None when the key was never written
    set(key, value)
        Overwrite the stored text for a key

    """

    def get(self, key: str) -> str | None:
        """Return the stored text for ``key``."""
        ...

    def set(self, key: str, value: str) -> None:
        """Overwrite the stored text for ``key``."""
        ...


class MemoryBackend:
    """In-process backend, used by tests and dry runs."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})
        self.writes = 0

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value
        self.writes += 1


class FileBackend:
    """
    Backend storing one JSON file per key inside a directory.

    Writes go to a temporary file in the same directory which is then renamed
    over the target, so a crash mid-write never leaves a truncated document.

    Parameters
    ----------
    directory : Path
        Directory holding the key files; created on first write

    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory).expanduser()

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, self._path(key))
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class PersistenceAdapter:
    """
    Reads and writes the two persisted entries as opaque JSON snapshots.

    Parameters
    ----------
    backend : KeyValueBackend
        Storage the snapshots are written to

    """

    def __init__(self, backend: KeyValueBackend) -> None:
        self.backend = backend

    def load_addresses(self) -> list[AddressRecord]:
        """
        Load the stored address collection.

        Returns
        -------
        list[AddressRecord]
            Stored records, empty when nothing has been saved yet

        Raises
        ------
        ParseFailure
            If the stored document is not a valid record array

        """
        raw = self._load_json(ADDRESSES_KEY)
        if raw is None:
            return []
        try:
            return validate_records(raw)
        except InvalidFormat as e:
            msg = f"Stored address collection is malformed: {e}"
            raise ParseFailure(msg) from e

    def save_addresses(self, records: list[AddressRecord]) -> None:
        """Overwrite the stored address collection."""
        payload = _RECORDS.dump_python(records, mode="json", by_alias=True)
        self.backend.set(ADDRESSES_KEY, json.dumps(payload))
        logger.debug("Persisted %d address records", len(records))

    def load_privacy(self) -> bool:
        """Load the privacy-display flag, defaulting to off."""
        raw = self._load_json(PRIVACY_KEY)
        if raw is None:
            return False
        if not isinstance(raw, bool):
            msg = f"Stored privacy flag must be a boolean, got {raw!r}"
            raise ParseFailure(msg)
        return raw

    def save_privacy(self, enabled: bool) -> None:
        """Overwrite the stored privacy-display flag."""
        self.backend.set(PRIVACY_KEY, json.dumps(enabled))

    def _load_json(self, key: str) -> Any | None:
        text = self.backend.get(key)
        if text is None:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            msg = f"Stored entry {key!r} is not valid JSON: {e}"
            raise ParseFailure(msg) from e
