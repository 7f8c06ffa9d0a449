"""Identity providers: who owns the records on screen."""

from smart_ledger.services.identity.interface import (
    AuthError,
    IdentityListener,
    IdentityProviderInterface,
    Unsubscribe,
)
from smart_ledger.services.identity.anonymous import (
    CLIENT_ID_KEY,
    AnonymousIdentityProvider,
    LocalStorage,
)
from smart_ledger.services.identity.supabase_auth import (
    FLOW_PARAM,
    PendingSignIns,
    SupabaseIdentityProvider,
    identity_from_session,
)

__all__ = [
    "AuthError",
    "IdentityListener",
    "IdentityProviderInterface",
    "Unsubscribe",
    "CLIENT_ID_KEY",
    "AnonymousIdentityProvider",
    "LocalStorage",
    "FLOW_PARAM",
    "PendingSignIns",
    "SupabaseIdentityProvider",
    "identity_from_session",
]
