"""
Entity Sync Controller

One controller per record type keeps the editable draft for the current
owner in step with the store:

    WAITING ──owner known──▶ LOADING ──fetched / failed──▶ IDLE ⇄ SAVING
                                  └──────push──────────────▶ IDLE

- Loading populates the draft from the latest record, or empty defaults
  if there is none or the fetch failed. It never stays in LOADING.
- Editing only touches the local draft.
- Saving normalizes the draft and upserts it. On failure the draft is
  kept as-is so the user can retry.
- A realtime push for the same owner overwrites the draft in any state,
  including an unsaved edit. The server's last write wins.

Results that arrive after close() or after the owner changed are
discarded.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog

from smart_ledger.audit import ActivityLogger
from smart_ledger.models.records import EntitySchema, LedgerRecord
from smart_ledger.notifications import NotificationPresenter
from smart_ledger.services.storage import (
    RecordStoreInterface,
    StoreError,
    Subscription,
)


logger = structlog.get_logger(__name__)

# Supplies the record for a load in place of the store's own fetch
RecordLoader = Callable[[], Awaitable[Optional[LedgerRecord]]]


class SyncState(str, Enum):
    WAITING = "waiting"  # no owner yet
    LOADING = "loading"
    IDLE = "idle"
    SAVING = "saving"


class EntitySyncController:
    """
    Draft state for one record type, generic over its EntitySchema.

    Usage:
        controller = EntitySyncController(schema, store, presenter)
        await controller.set_owner("u1")
        controller.edit("amount", "1500")
        await controller.save()
    """

    def __init__(
        self,
        schema: EntitySchema,
        store: RecordStoreInterface,
        notifier: NotificationPresenter,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        self.schema = schema
        self._store = store
        self._notifier = notifier
        self._activity = activity_logger or ActivityLogger()

        self._state = SyncState.WAITING
        self._owner_id: Optional[str] = None
        self._draft: dict[str, Any] = schema.empty_draft()
        self._record: Optional[LedgerRecord] = None
        self._revision = 0
        self._subscription: Optional[Subscription] = None

        # Liveness flag and sequence numbers used to drop late results
        self._alive = True
        self._owner_generation = 0
        self._load_seq = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def entity(self) -> str:
        return self.schema.entity.value

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def saving(self) -> bool:
        return self._state == SyncState.SAVING

    @property
    def owner_id(self) -> Optional[str]:
        return self._owner_id

    @property
    def draft(self) -> dict[str, Any]:
        return dict(self._draft)

    @property
    def record(self) -> Optional[LedgerRecord]:
        """Last record seen from the store (load, save or push)."""
        return self._record

    @property
    def revision(self) -> int:
        """Bumped whenever the draft is replaced from outside (load or push)."""
        return self._revision

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def _replace_draft(self, record: Optional[LedgerRecord]) -> None:
        self._draft = self.schema.to_draft(record)
        self._revision += 1

    # ------------------------------------------------------------------
    # Owner & loading
    # ------------------------------------------------------------------

    async def set_owner(
        self,
        owner_id: Optional[str],
        preload: Optional[RecordLoader] = None,
    ) -> None:
        """
        Bind the controller to an owner and load their record.

        None unbinds (sign-out): the draft is cleared and the controller
        waits for the next owner. `preload` replaces the per-record
        fetch, e.g. with a slice of one combined read.
        """
        if not self._alive or owner_id == self._owner_id:
            return

        await self.stop_push()
        self._owner_generation += 1
        self._owner_id = owner_id
        self._record = None

        if owner_id is None:
            self._load_seq += 1
            self._replace_draft(None)
            self._state = SyncState.WAITING
            return

        await self._load(preload)

    async def reload(self, preload: Optional[RecordLoader] = None) -> bool:
        """Re-read the latest record for the current owner."""
        if not self._alive or self._owner_id is None or self._state != SyncState.IDLE:
            return False
        await self._load(preload)
        return True

    async def _load(self, preload: Optional[RecordLoader] = None) -> None:
        owner_id = self._owner_id
        self._load_seq += 1
        seq = self._load_seq
        self._state = SyncState.LOADING

        try:
            if preload is not None:
                record = await preload()
            else:
                record = await self._store.fetch_latest(self.schema.entity, owner_id)
        except Exception as e:
            if not self._alive or seq != self._load_seq:
                return
            message = self._error_text(e) or f"Error loading {self.schema.noun}"
            logger.warning("load_failed", entity=self.entity, error=message)
            self._activity.record_load_failed(self.entity, owner_id, message)
            self._notifier.error(message)
            self._replace_draft(None)
            self._state = SyncState.IDLE
            return

        if not self._alive or seq != self._load_seq:
            return

        self._record = record
        self._replace_draft(record)
        self._state = SyncState.IDLE
        self._activity.record_loaded(self.entity, owner_id, record is not None)

    # ------------------------------------------------------------------
    # Editing & saving
    # ------------------------------------------------------------------

    def edit(self, field: str, value: Any) -> None:
        """Change one draft field. No network effect."""
        self.schema.field(field)
        self._draft[field] = "" if value is None else value

    def edit_many(self, values: dict[str, Any]) -> None:
        for field, value in values.items():
            self.edit(field, value)

    async def save(self) -> bool:
        """
        Persist the draft as the owner's full record.

        Only acts in IDLE. Returns True when the store accepted the write.
        """
        if not self._alive or self._owner_id is None or self._state != SyncState.IDLE:
            return False

        owner_id = self._owner_id
        generation = self._owner_generation
        self._state = SyncState.SAVING

        try:
            values = self.schema.normalize(self._draft)
            record = await self._store.upsert(self.schema.entity, owner_id, values)
        except Exception as e:
            if not self._alive:
                return False
            message = self._error_text(e) or self.schema.failure_message
            self._activity.record_save_failed(self.entity, owner_id, message)
            self._notifier.error(message)
            if generation == self._owner_generation:
                self._state = SyncState.IDLE
            return False

        if not self._alive:
            return False
        if generation == self._owner_generation:
            self._record = record
            self._state = SyncState.IDLE
        self._activity.record_saved(self.entity, owner_id, values)
        self._notifier.success(self.schema.success_message)
        return True

    @staticmethod
    def _error_text(error: Exception) -> str:
        if isinstance(error, StoreError):
            return error.message
        return str(error)

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    def apply_push(self, record: Optional[LedgerRecord]) -> bool:
        """
        Overwrite the draft with a pushed record for this owner.

        Pushes for any other owner are ignored. Returns True if applied.
        """
        if not self._alive:
            return False
        if record is None or self._owner_id is None or record.owner_id != self._owner_id:
            self._activity.push_ignored(
                self.entity,
                self._owner_id,
                record.owner_id if record is not None else None,
            )
            return False

        previous_state = self._state
        self._record = record
        self._replace_draft(record)
        if previous_state == SyncState.LOADING:
            # The pushed row is newer than whatever the pending fetch returns
            self._load_seq += 1
            self._state = SyncState.IDLE
        self._activity.push_applied(self.entity, self._owner_id, previous_state.value)
        return True

    async def start_push(self) -> bool:
        """Subscribe to the owner's change feed if the store has one."""
        if (
            not self._alive
            or self._owner_id is None
            or not self._store.supports_push
            or self.subscribed
        ):
            return False

        owner_id = self._owner_id
        try:
            subscription = await self._store.subscribe(
                self.schema.entity, owner_id, self.apply_push
            )
        except StoreError as e:
            logger.warning("subscribe_failed", entity=self.entity, error=e.message)
            return False

        if not self._alive or owner_id != self._owner_id:
            await subscription.cancel()
            return False

        self._subscription = subscription
        self._activity.subscription_changed(self.entity, owner_id, started=True)
        return True

    async def stop_push(self) -> None:
        if self._subscription is None:
            return
        subscription, self._subscription = self._subscription, None
        await subscription.cancel()
        if self._owner_id is not None:
            self._activity.subscription_changed(self.entity, self._owner_id, started=False)

    async def close(self) -> None:
        """Unmount: stop pushes and discard any result still in flight."""
        self._alive = False
        await self.stop_push()
