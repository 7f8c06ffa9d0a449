"""
In-Memory Record Store

Process-local implementation of the record store with realtime support.
Used for tests and for running the dashboard without any backend
(`backend=memory`). Every write is delivered to subscribers of the same
record type, mirroring a hosted change feed.
"""

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from smart_ledger.models.records import (
    EntityName,
    LedgerRecord,
    describe_invalid_row,
    get_schema,
)
from smart_ledger.services.storage.interface import (
    ChangeHandler,
    RecordStoreInterface,
    SaveError,
    Subscription,
    deliver_change,
)


class InMemorySubscription(Subscription):
    def __init__(self, store: "InMemoryRecordStore", entity: EntityName, listener: tuple):
        self._store = store
        self._entity = entity
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._store._remove_listener(self._entity, self._listener)


class InMemoryRecordStore(RecordStoreInterface):
    """
    One row per (record type, owner), held in a dict.

    Rows are validated through the record model on every write, so a
    bad value fails the same way a remote validation error would.
    """

    supports_push = True

    def __init__(self):
        self._rows: dict[tuple[EntityName, str], dict[str, Any]] = {}
        self._listeners: dict[EntityName, list[tuple[str, ChangeHandler]]] = {}

    async def fetch_latest(
        self,
        entity: EntityName,
        owner_id: str,
    ) -> Optional[LedgerRecord]:
        row = self._rows.get((EntityName(entity), owner_id))
        if row is None:
            return None
        return get_schema(entity).parse_record(row)

    async def upsert(
        self,
        entity: EntityName,
        owner_id: str,
        values: Mapping[str, Any],
    ) -> LedgerRecord:
        entity = EntityName(entity)
        schema = get_schema(entity)
        row = {
            **{name: values.get(name) for name in schema.field_names},
            "owner_id": owner_id,
            "updated_at": datetime.now(timezone.utc),
        }
        try:
            record = schema.parse_record(row)
        except ValueError as e:
            raise SaveError(f"Invalid {schema.noun}: {describe_invalid_row(e)}", entity=entity.value)

        self._rows[(entity, owner_id)] = row
        await self._notify(entity, record)
        return record

    async def subscribe(
        self,
        entity: EntityName,
        owner_id: str,
        on_change: ChangeHandler,
    ) -> Subscription:
        entity = EntityName(entity)
        listener = (owner_id, on_change)
        self._listeners.setdefault(entity, []).append(listener)
        return InMemorySubscription(self, entity, listener)

    def listener_count(self, entity: EntityName) -> int:
        return len(self._listeners.get(EntityName(entity), []))

    def _remove_listener(self, entity, listener) -> None:
        listeners = self._listeners.get(entity, [])
        if listener in listeners:
            listeners.remove(listener)

    async def _notify(self, entity: EntityName, record: LedgerRecord) -> None:
        # Deliver to every listener of the table; each one filters by owner
        for owner_id, handler in list(self._listeners.get(entity, [])):
            if record.owner_id != owner_id:
                continue
            await deliver_change(handler, record)
