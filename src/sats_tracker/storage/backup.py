"""Portable JSON backups of the address collection."""

import json
import logging
from pathlib import Path

from pydantic import TypeAdapter

from sats_tracker.core.exceptions import ParseFailure
from sats_tracker.core.models import AddressRecord
from sats_tracker.core.store import AddressStore

logger = logging.getLogger(__name__)

BACKUP_FILENAME = "sats_tracker_backup.json"

_RECORDS = TypeAdapter(list[AddressRecord])


def export_document(store: AddressStore) -> str:
    """
    Serialize every record with every field.

    Returns
    -------
    str
        JSON array of record objects

    """
    payload = _RECORDS.dump_python(store.snapshot(), mode="json", by_alias=True)
    return json.dumps(payload, indent=2)


def import_document(store: AddressStore, text: str | bytes) -> list[AddressRecord]:
    """
    Replace the collection with the records in a backup document.

    The store is left untouched unless the whole document is valid.

    Parameters
    ----------
    store : AddressStore
        Target collection
    text : str | bytes
        Backup document

    Returns
    -------
    list[AddressRecord]
        The imported records

    Raises
    ------
    ParseFailure
        If ``text`` is not JSON
    InvalidFormat
        If the document is not an array of records with ``id`` and ``address``

    """
    try:
        document = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        msg = f"Backup is not valid JSON: {e}"
        raise ParseFailure(msg) from e

    records = store.replace_all(document)
    logger.info("Imported %d records from backup", len(records))
    return records


def write_backup(store: AddressStore, path: Path) -> Path:
    """Write a backup file, using the default file name when ``path`` is a directory."""
    path = Path(path).expanduser()
    if path.is_dir():
        path = path / BACKUP_FILENAME
    path.write_text(export_document(store), encoding="utf-8")
    return path


def read_backup(store: AddressStore, path: Path) -> list[AddressRecord]:
    """
    Import a backup file.

    Raises
    ------
    ParseFailure
        If the file cannot be read or is not JSON
    InvalidFormat
        If the document fails validation

    """
    try:
        text = Path(path).expanduser().read_bytes()
    except OSError as e:
        msg = f"Cannot read backup {path}: {e}"
        raise ParseFailure(msg) from e
    return import_document(store, text)
