"""Durable and recovery persistence for annotation state."""

from passagenotes.persistence.bridge import CommitReport, PersistenceBridge
from passagenotes.persistence.records import PersistedRecord, RecoveryRecord
from passagenotes.persistence.recovery import RecoveryMirror
from passagenotes.persistence.storage import (
    KeyValueStorage,
    MemoryStorage,
    SqlStorage,
    create_storage,
)

__all__ = [
    "CommitReport",
    "KeyValueStorage",
    "MemoryStorage",
    "PersistedRecord",
    "PersistenceBridge",
    "RecoveryMirror",
    "RecoveryRecord",
    "SqlStorage",
    "create_storage",
]
