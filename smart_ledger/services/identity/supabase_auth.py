"""
Supabase Auth Identity Provider

Wraps the client's auth API: session lookup, auth-state events, OAuth
sign-in and sign-out. Every failure is re-raised as AuthError so the
dashboard can show it without knowing about the SDK's exceptions.

Provider sign-in uses PKCE. The redirect back from the provider lands
in a fresh app session with a fresh client, so the code verifier is
kept server-side under a per-attempt flow id carried in the redirect
URL, and handed to the code exchange explicitly.
"""

from typing import Any, Optional
from uuid import uuid4

import httpx
import structlog

from smart_ledger.config import get_settings
from smart_ledger.models.identity import Identity
from smart_ledger.services.identity.anonymous import LocalStorage
from smart_ledger.services.identity.interface import (
    AuthError,
    IdentityListener,
    IdentityProviderInterface,
    Unsubscribe,
)
from smart_ledger.services.storage.interface import StoreError
from smart_ledger.services.storage.supabase_store import SupabaseConnection


logger = structlog.get_logger(__name__)

FLOW_PARAM = "flow"
PENDING_KEY_PREFIX = "smart_ledger_pkce:"


def identity_from_session(session: Any) -> Optional[Identity]:
    """Map an auth session (or None) to an Identity."""
    user = getattr(session, "user", None) if session is not None else None
    if user is None or not getattr(user, "id", None):
        return None
    return Identity(owner_id=str(user.id), email=getattr(user, "email", None))


class PendingSignIns:
    """PKCE code verifiers of sign-ins that are waiting for their redirect."""

    def __init__(self, storage: Optional[LocalStorage] = None):
        self._storage = storage or LocalStorage()

    def put(self, flow_id: str, code_verifier: str) -> None:
        self._storage.set_item(PENDING_KEY_PREFIX + flow_id, code_verifier)

    def pop(self, flow_id: str) -> Optional[str]:
        """Return and forget the verifier; each one is usable once."""
        key = PENDING_KEY_PREFIX + flow_id
        code_verifier = self._storage.get_item(key)
        if code_verifier is not None:
            self._storage.remove_item(key)
        return code_verifier


class SupabaseIdentityProvider(IdentityProviderInterface):
    """Session-based identity backed by Supabase Auth."""

    supports_sign_in = True

    def __init__(
        self,
        connection: Optional[SupabaseConnection] = None,
        redirect_url: Optional[str] = None,
        pending: Optional[PendingSignIns] = None,
    ):
        self._connection = connection or SupabaseConnection()
        self._redirect_url = redirect_url or get_settings().supabase.redirect_url
        self._pending = pending or PendingSignIns()
        self._listeners: list[IdentityListener] = []
        self._auth_subscription: Any = None

    async def _client(self) -> Any:
        try:
            return await self._connection.connect()
        except StoreError as e:
            raise AuthError(e.message)

    async def get_current_identity(self) -> Optional[Identity]:
        client = await self._client()
        try:
            session = await client.auth.get_session()
        except Exception as e:
            raise AuthError(f"Could not read session: {e}")
        return identity_from_session(session)

    def on_change(self, listener: IdentityListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def watch(self) -> None:
        """Start forwarding auth-state events to listeners (idempotent)."""
        if self._auth_subscription is not None:
            return
        client = await self._client()

        def handle(event: Any, session: Any) -> None:
            identity = identity_from_session(session)
            logger.debug("auth_state_changed", auth_event=str(event), signed_in=identity is not None)
            for listener in list(self._listeners):
                listener(identity)

        self._auth_subscription = client.auth.on_auth_state_change(handle)

    def unwatch(self) -> None:
        if self._auth_subscription is None:
            return
        self._auth_subscription.unsubscribe()
        self._auth_subscription = None

    async def sign_in_with_provider(self, provider: str) -> Optional[str]:
        if not self._redirect_url:
            raise AuthError("SUPABASE_REDIRECT_URL must be set for provider sign-in")
        client = await self._client()
        flow_id = uuid4().hex
        redirect_to = str(httpx.URL(self._redirect_url).copy_add_param(FLOW_PARAM, flow_id))
        credentials: dict[str, Any] = {
            "provider": provider,
            "options": {"redirect_to": redirect_to},
        }
        try:
            response = await client.auth.sign_in_with_oauth(credentials)
        except Exception as e:
            raise AuthError(getattr(e, "message", None) or f"Sign-in failed: {e}")

        code_verifier = self._connection.auth_storage.code_verifier()
        if code_verifier:
            self._pending.put(flow_id, code_verifier)
        logger.info("oauth_sign_in_started", provider=provider, pkce=bool(code_verifier))
        return getattr(response, "url", None)

    async def complete_sign_in(
        self,
        auth_code: str,
        flow_id: Optional[str] = None,
    ) -> Identity:
        client = await self._client()
        params: dict[str, Any] = {"auth_code": auth_code}
        code_verifier = self._pending.pop(flow_id) if flow_id else None
        if code_verifier:
            params["code_verifier"] = code_verifier
        try:
            response = await client.auth.exchange_code_for_session(params)
        except Exception as e:
            raise AuthError(getattr(e, "message", None) or f"Sign-in failed: {e}")
        identity = identity_from_session(getattr(response, "session", None))
        if identity is None:
            raise AuthError("Sign-in did not return a session")
        return identity

    async def sign_out(self) -> None:
        client = await self._client()
        try:
            await client.auth.sign_out()
        except Exception as e:
            raise AuthError(getattr(e, "message", None) or f"Sign-out failed: {e}")
