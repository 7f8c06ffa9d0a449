"""
Supabase Storage Implementation

DESIGN DECISION: The hosted Postgres backend gives us three things the
dashboard needs without running a server of our own:
1. Row-level storage with an upsert conflict target on `user_id`
2. Built-in auth (sessions, OAuth providers)
3. A realtime change feed per table, filterable by owner

TRADEOFFS:
- "Latest" is defined by `updated_at`; the table must maintain it
- A DELETE is delivered as an all-null record (absence) when its old
  row carries `user_id` (REPLICA IDENTITY FULL); otherwise it is
  dropped by the owner check

The implementation follows the abstract interface, so the REST backend
can be swapped in without changing the sync controller.
"""

import asyncio
from typing import Any, Mapping, Optional

import structlog
from supabase import AsyncClient, AsyncClientOptions, acreate_client
from supabase_auth import AsyncMemoryStorage
from tenacity import retry, stop_after_attempt, wait_exponential

from smart_ledger.config import get_settings
from smart_ledger.models.records import (
    EntityName,
    LedgerRecord,
    describe_invalid_row,
    get_schema,
)
from smart_ledger.services.storage.interface import (
    BackendUnavailableError,
    ChangeHandler,
    FetchError,
    RecordStoreInterface,
    SaveError,
    Subscription,
    deliver_change,
)


logger = structlog.get_logger(__name__)

OWNER_COLUMN = "user_id"
UPDATED_AT_COLUMN = "updated_at"
CODE_VERIFIER_SUFFIX = "-code-verifier"


class AuthStorage(AsyncMemoryStorage):
    """
    Per-connection auth storage.

    Sessions stay in memory. The PKCE code verifier written when a
    provider sign-in starts can be read back, so it can be handed to
    whichever session receives the OAuth redirect.
    """

    def code_verifier(self) -> Optional[str]:
        for key, value in self.storage.items():
            if key.endswith(CODE_VERIFIER_SUFFIX):
                return value
        return None


class SupabaseConnection:
    """
    Lazily created async Supabase client.

    Shared by the record store and the identity provider so that the
    auth session and the data requests use the same client.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        anon_key: Optional[str] = None,
        client: Optional[AsyncClient] = None,
    ):
        settings = get_settings().supabase
        self._url = url or settings.url
        self._anon_key = anon_key or settings.anon_key
        self.schema_name = settings.schema_name
        self.auth_storage = AuthStorage()
        self._client = client
        if client is None and not (self._url and self._anon_key):
            settings.warn_if_missing()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def connect(self) -> AsyncClient:
        """Create the client on first use."""
        if self._client is None:
            try:
                self._client = await acreate_client(
                    self._url,
                    self._anon_key,
                    options=AsyncClientOptions(storage=self.auth_storage, flow_type="pkce"),
                )
            except Exception as e:
                raise BackendUnavailableError(f"Failed to connect to Supabase: {e}")
        return self._client


def _extract_change(payload: Any) -> tuple[str, Optional[dict]]:
    """
    Pull the event type and changed row out of a postgres_changes payload.

    New row for INSERT/UPDATE, old row for DELETE. Payload shapes
    differ between realtime client versions, so several are accepted.
    """
    if not isinstance(payload, dict):
        return "", None
    data = payload.get("data", payload)
    if not isinstance(data, dict):
        return "", None
    event_type = str(data.get("type") or data.get("eventType") or "").upper()
    keys = ("old_record", "old") if event_type == "DELETE" else ("record", "new")
    for key in keys:
        row = data.get(key)
        if isinstance(row, dict) and row:
            return event_type, row
    return event_type, None


class SupabaseSubscription(Subscription):
    def __init__(self, connection: SupabaseConnection, channel: Any, name: str):
        self._connection = connection
        self._channel = channel
        self._name = name
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        client = await self._connection.connect()
        await client.remove_channel(self._channel)
        logger.debug("realtime_channel_removed", channel=self._name)


class SupabaseRecordStore(RecordStoreInterface):
    """
    Supabase implementation of the record store.

    One table per record type, named after EntityName values, each with
    a unique `user_id` column and an `updated_at` timestamp.
    """

    supports_push = True

    def __init__(self, connection: Optional[SupabaseConnection] = None):
        self._connection = connection or SupabaseConnection()
        self._pending: set[asyncio.Task] = set()

    async def fetch_latest(
        self,
        entity: EntityName,
        owner_id: str,
    ) -> Optional[LedgerRecord]:
        entity = EntityName(entity)
        client = await self._connection.connect()
        try:
            response = await (
                client.table(entity.value)
                .select("*")
                .eq(OWNER_COLUMN, owner_id)
                .order(UPDATED_AT_COLUMN, desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise FetchError(
                getattr(e, "message", None) or f"Failed to load {entity.value}: {e}",
                entity=entity.value,
            )

        rows = response.data or []
        if not rows:
            return None
        try:
            return get_schema(entity).parse_record(rows[0])
        except ValueError as e:
            raise FetchError(
                f"Malformed {entity.value} record: {describe_invalid_row(e)}",
                entity=entity.value,
            )

    async def upsert(
        self,
        entity: EntityName,
        owner_id: str,
        values: Mapping[str, Any],
    ) -> LedgerRecord:
        entity = EntityName(entity)
        schema = get_schema(entity)
        payload = {**dict(values), OWNER_COLUMN: owner_id}

        client = await self._connection.connect()
        try:
            response = await (
                client.table(entity.value)
                .upsert(payload, on_conflict=OWNER_COLUMN)
                .execute()
            )
        except Exception as e:
            raise SaveError(
                getattr(e, "message", None) or f"Failed to save {schema.noun}: {e}",
                entity=entity.value,
            )

        rows = response.data or []
        try:
            return schema.parse_record(rows[0] if rows else payload)
        except ValueError as e:
            raise SaveError(
                f"Unexpected response for {schema.noun}: {describe_invalid_row(e)}",
                entity=entity.value,
            )

    async def subscribe(
        self,
        entity: EntityName,
        owner_id: str,
        on_change: ChangeHandler,
    ) -> Subscription:
        entity = EntityName(entity)
        schema = get_schema(entity)
        client = await self._connection.connect()
        name = f"ledger-{entity.value}-{owner_id}"

        def handle(payload: Any) -> None:
            event_type, row = _extract_change(payload)
            # The channel filter already scopes by owner; check again anyway
            if row is None or str(row.get(OWNER_COLUMN)) != owner_id:
                logger.debug("realtime_payload_dropped", channel=name, event_type=event_type)
                return
            if event_type == "DELETE":
                # A deleted row reads as absence: every tracked field null
                row = {OWNER_COLUMN: owner_id}
            try:
                record = schema.parse_record(row)
            except ValueError as e:
                logger.warning("realtime_payload_invalid", channel=name, error=str(e))
                return
            task = asyncio.ensure_future(deliver_change(on_change, record))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        channel = client.channel(name)
        channel.on_postgres_changes(
            "*",
            schema=self._connection.schema_name,
            table=entity.value,
            filter=f"{OWNER_COLUMN}=eq.{owner_id}",
            callback=handle,
        )
        await channel.subscribe()
        logger.debug("realtime_channel_subscribed", channel=name)
        return SupabaseSubscription(self._connection, channel, name)
