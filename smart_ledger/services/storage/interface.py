"""
Abstract Record Store Interface

DESIGN DECISION: Every ledger record follows the same pattern: one row
per owner, read the latest, write a full replacement, optionally listen
for remote changes. We define that pattern once, parameterized by the
record type, instead of hardcoding table names in the dashboard.

This allows us to:
1. Swap the hosted Postgres backend for the REST backend
2. Use in-memory storage for testing and offline demos
3. Keep the sync controller decoupled from any transport
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from smart_ledger.models.records import EntityName, LedgerRecord


# A change handler receives the changed record. Handlers may be sync or async.
ChangeHandler = Callable[[LedgerRecord], Union[None, Awaitable[None]]]


class StoreError(Exception):
    """Base exception for record store operations."""

    def __init__(self, message: str, entity: Optional[str] = None):
        self.message = message
        self.entity = entity
        super().__init__(message)


class FetchError(StoreError):
    """Loading the latest record failed."""
    pass


class SaveError(StoreError):
    """The remote write was rejected (validation, network, permission)."""
    pass


class BackendUnavailableError(StoreError):
    """Could not connect to the storage backend."""
    pass


class PushNotSupportedError(StoreError):
    """The store has no realtime change feed."""
    pass


class Subscription(ABC):
    """Handle for a realtime subscription."""

    @property
    @abstractmethod
    def active(self) -> bool:
        pass

    @abstractmethod
    async def cancel(self) -> None:
        """
        Stop delivery and release the transport channel.

        Cancelling an already-cancelled subscription does nothing.
        """
        pass


class RecordStoreInterface(ABC):
    """
    Abstract interface for single-record-per-owner storage.

    Any storage implementation (hosted Postgres, REST, memory)
    must implement fetch_latest and upsert. Realtime delivery is
    optional and advertised through supports_push.
    """

    supports_push: bool = False
    # True when fetch_dashboard is one round trip rather than one per record
    supports_combined_fetch: bool = False

    @abstractmethod
    async def fetch_latest(
        self,
        entity: EntityName,
        owner_id: str,
    ) -> Optional[LedgerRecord]:
        """
        Fetch the single latest record for an owner.

        Args:
            entity: Which record type to read
            owner_id: The owner identifier

        Returns:
            The record, or None if the owner has never saved one

        Raises:
            FetchError: If the backend could not be read
        """
        pass

    @abstractmethod
    async def upsert(
        self,
        entity: EntityName,
        owner_id: str,
        values: Mapping[str, Any],
    ) -> LedgerRecord:
        """
        Write `values` as the full record for an owner.

        Creates the record if absent, otherwise replaces every tracked
        field. The owner identifier is merged in by the store.

        Returns:
            The record as written

        Raises:
            SaveError: If the write is rejected
        """
        pass

    async def fetch_dashboard(
        self,
        owner_id: str,
    ) -> dict[EntityName, Optional[LedgerRecord]]:
        """
        Latest record of every type for an owner.

        The default issues one fetch_latest per record type; stores with
        a combined read override it and set supports_combined_fetch.
        """
        entities = list(EntityName)
        records = await asyncio.gather(
            *(self.fetch_latest(entity, owner_id) for entity in entities)
        )
        return dict(zip(entities, records))

    async def subscribe(
        self,
        entity: EntityName,
        owner_id: str,
        on_change: ChangeHandler,
    ) -> Subscription:
        """
        Deliver create/update/delete notifications for an owner's record.

        Implementations must re-check the owner on every notification
        and drop notifications for other owners.

        Raises:
            PushNotSupportedError: If the store has no change feed
        """
        raise PushNotSupportedError(
            f"{type(self).__name__} does not support realtime updates",
            entity=entity.value,
        )

    async def close(self) -> None:
        """Release transport resources."""
        return None


async def deliver_change(handler: ChangeHandler, record: LedgerRecord) -> None:
    """Invoke a change handler, awaiting it if it is a coroutine function."""
    result = handler(record)
    if inspect.isawaitable(result):
        await result
