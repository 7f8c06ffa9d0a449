"""Services package."""

from smart_ledger.services.identity import (
    AnonymousIdentityProvider,
    AuthError,
    IdentityProviderInterface,
    LocalStorage,
    SupabaseIdentityProvider,
)
from smart_ledger.services.storage import (
    BackendUnavailableError,
    FetchError,
    InMemoryRecordStore,
    PushNotSupportedError,
    RecordStoreInterface,
    RestRecordStore,
    SaveError,
    StoreError,
    Subscription,
    SupabaseConnection,
    SupabaseRecordStore,
)

__all__ = [
    # Identity
    "AnonymousIdentityProvider",
    "AuthError",
    "IdentityProviderInterface",
    "LocalStorage",
    "SupabaseIdentityProvider",
    # Storage
    "BackendUnavailableError",
    "FetchError",
    "InMemoryRecordStore",
    "PushNotSupportedError",
    "RecordStoreInterface",
    "RestRecordStore",
    "SaveError",
    "StoreError",
    "Subscription",
    "SupabaseConnection",
    "SupabaseRecordStore",
]
