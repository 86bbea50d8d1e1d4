"""Local persistence and portable backups."""

from sats_tracker.storage.backup import (
    BACKUP_FILENAME,
    export_document,
    import_document,
    read_backup,
    write_backup,
)
from sats_tracker.storage.persistence import (
    ADDRESSES_KEY,
    PRIVACY_KEY,
    FileBackend,
    KeyValueBackend,
    MemoryBackend,
    PersistenceAdapter,
)

__all__ = [
    "ADDRESSES_KEY",
    "BACKUP_FILENAME",
    "PRIVACY_KEY",
    "FileBackend",
    "KeyValueBackend",
    "MemoryBackend",
    "PersistenceAdapter",
    "export_document",
    "import_document",
    "read_backup",
    "write_backup",
]
