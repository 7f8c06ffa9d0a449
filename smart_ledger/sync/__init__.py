"""Per-record synchronization between drafts and the record store."""

from smart_ledger.sync.controller import EntitySyncController, RecordLoader, SyncState

__all__ = ["EntitySyncController", "RecordLoader", "SyncState"]
