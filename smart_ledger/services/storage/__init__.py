"""
Storage Services Package

Provides the abstract record store interface and its implementations:
Supabase (hosted Postgres + realtime), the ledger REST API, and an
in-memory store for tests and offline use.
"""

from smart_ledger.services.storage.interface import (
    BackendUnavailableError,
    ChangeHandler,
    FetchError,
    PushNotSupportedError,
    RecordStoreInterface,
    SaveError,
    StoreError,
    Subscription,
)
from smart_ledger.services.storage.memory import InMemoryRecordStore
from smart_ledger.services.storage.rest_api import RestRecordStore
from smart_ledger.services.storage.supabase_store import (
    SupabaseConnection,
    SupabaseRecordStore,
)

__all__ = [
    # Interfaces
    "ChangeHandler",
    "RecordStoreInterface",
    "Subscription",
    # Exceptions
    "BackendUnavailableError",
    "FetchError",
    "PushNotSupportedError",
    "SaveError",
    "StoreError",
    # Implementations
    "InMemoryRecordStore",
    "RestRecordStore",
    "SupabaseConnection",
    "SupabaseRecordStore",
]
