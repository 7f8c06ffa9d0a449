"""
Main Orchestrator for Smart Ledger

This module ties together all the components of the dashboard:
1. Identity provider → owner identifier
2. One EntitySyncController per record type
3. Record store (Supabase, REST or in-memory)
4. Notification presenter for toasts

DESIGN DECISION: The dashboard holds no per-record logic. It only
composes controllers, forwards identity changes to them, and exposes
plain view models so any front end (Streamlit, tests) can render it.

Records are independent: loads and saves for different records run
concurrently with no ordering between them. When the store has a
combined read (the REST API), one request loads all five records.
"""

import asyncio
from typing import Any, Optional

import structlog
from pydantic import BaseModel

from smart_ledger.audit import ActivityLogger, configure_logging
from smart_ledger.config import get_settings
from smart_ledger.models.identity import Identity
from smart_ledger.models.records import ENTITY_SCHEMAS, EntityName, LedgerRecord
from smart_ledger.notifications import NotificationPresenter
from smart_ledger.services.identity import (
    AnonymousIdentityProvider,
    AuthError,
    IdentityProviderInterface,
    LocalStorage,
    SupabaseIdentityProvider,
)
from smart_ledger.services.storage import (
    InMemoryRecordStore,
    RecordStoreInterface,
    RestRecordStore,
    SupabaseConnection,
    SupabaseRecordStore,
)
from smart_ledger.sync import EntitySyncController, RecordLoader, SyncState


logger = structlog.get_logger(__name__)


# =============================================================================
# VIEW MODELS
# =============================================================================

class FieldView(BaseModel):
    """One labeled input bound to a draft field."""
    name: str
    label: str
    placeholder: str
    input_type: str
    value: Any


class SectionView(BaseModel):
    """One dashboard card: a record's inputs plus its save control."""
    entity: EntityName
    title: str
    state: SyncState
    saving: bool
    revision: int
    fields: list[FieldView]

    @property
    def save_label(self) -> str:
        return "Saving..." if self.saving else "Save"


# =============================================================================
# COMBINED READ
# =============================================================================

class CombinedFetch:
    """
    One fetch_dashboard call shared by every controller of a dashboard.

    The request starts when the first controller loads, and each
    controller then takes its own record from the shared result.
    """

    def __init__(self, store: RecordStoreInterface, owner_id: str):
        self._store = store
        self._owner_id = owner_id
        self._task: Optional[asyncio.Task] = None

    def loader(self, entity: EntityName) -> RecordLoader:
        async def load() -> Optional[LedgerRecord]:
            if self._task is None:
                self._task = asyncio.ensure_future(
                    self._store.fetch_dashboard(self._owner_id)
                )
            records = await self._task
            return records.get(entity)

        return load


# =============================================================================
# DASHBOARD
# =============================================================================

class Dashboard:
    """
    Composes one sync controller per record type for the current owner.

    Flow:
    1. start() → read identity → bind owner → load all records
    2. edit()/save() → delegated to the record's controller
    3. identity change (sign-in/out) → rebind every controller
    4. close() → cancel subscriptions and drop in-flight results
    """

    def __init__(
        self,
        identity_provider: IdentityProviderInterface,
        store: RecordStoreInterface,
        presenter: Optional[NotificationPresenter] = None,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        self._identity_provider = identity_provider
        self._store = store
        self.presenter = presenter or NotificationPresenter()
        self._activity = activity_logger or ActivityLogger()

        self.controllers: dict[EntityName, EntitySyncController] = {
            entity: EntitySyncController(
                schema,
                store,
                self.presenter,
                self._activity,
            )
            for entity, schema in ENTITY_SCHEMAS.items()
        }

        self._identity: Optional[Identity] = None
        self._auth_loading = True
        self._unsubscribe_identity = None
        self._pending: set[asyncio.Task] = set()
        self._alive = True

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def auth_loading(self) -> bool:
        """True until the first identity lookup has finished."""
        return self._auth_loading

    @property
    def signed_in(self) -> bool:
        return self._identity is not None

    @property
    def owner_label(self) -> str:
        return self._identity.display_label if self._identity else ""

    @property
    def can_sign_in(self) -> bool:
        return self._identity_provider.supports_sign_in

    @property
    def supports_push(self) -> bool:
        return self._store.supports_push

    @property
    def activity(self) -> ActivityLogger:
        return self._activity

    async def start(self) -> None:
        """Resolve the current identity and load every record."""
        self._unsubscribe_identity = self._identity_provider.on_change(
            self._on_identity_change
        )
        try:
            await self._identity_provider.watch()
            identity = await self._identity_provider.get_current_identity()
        except AuthError as e:
            self._activity.auth_failed("get_session", str(e))
            self.presenter.error(str(e))
            identity = None
        finally:
            self._auth_loading = False

        await self.set_identity(identity)

    async def set_identity(self, identity: Optional[Identity]) -> None:
        """Bind every controller to the identity's owner (None unbinds)."""
        if not self._alive:
            return
        previous = self._identity
        self._identity = identity
        owner_id = identity.owner_id if identity else None
        if previous is not None and identity is not None and previous.owner_id == owner_id:
            return

        if identity is not None:
            self._activity.signed_in(identity.owner_id, identity.is_anonymous)

        combined = self._combined_fetch(owner_id)
        await asyncio.gather(
            *(
                controller.set_owner(owner_id, self._preload(combined, entity))
                for entity, controller in self.controllers.items()
            )
        )
        if owner_id is not None and self._store.supports_push:
            await asyncio.gather(
                *(controller.start_push() for controller in self.controllers.values())
            )

    def _combined_fetch(self, owner_id: Optional[str]) -> Optional[CombinedFetch]:
        if owner_id is None or not self._store.supports_combined_fetch:
            return None
        return CombinedFetch(self._store, owner_id)

    @staticmethod
    def _preload(
        combined: Optional[CombinedFetch],
        entity: EntityName,
    ) -> Optional[RecordLoader]:
        return combined.loader(entity) if combined is not None else None

    def _on_identity_change(self, identity: Optional[Identity]) -> None:
        if not self._alive:
            return
        task = asyncio.ensure_future(self.set_identity(identity))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def sign_in(self, provider: Optional[str] = None) -> Optional[str]:
        """
        Start a provider sign-in.

        Returns the URL to send the user to, or None on failure
        (the failure is shown as a notification).
        """
        provider = provider or get_settings().supabase.oauth_provider
        try:
            return await self._identity_provider.sign_in_with_provider(provider)
        except AuthError as e:
            self._activity.auth_failed("sign_in", str(e))
            self.presenter.error(str(e))
            return None

    async def complete_sign_in(
        self,
        auth_code: str,
        flow_id: Optional[str] = None,
    ) -> bool:
        """Exchange the code returned by the provider for a session."""
        try:
            identity = await self._identity_provider.complete_sign_in(auth_code, flow_id)
        except AuthError as e:
            self._activity.auth_failed("complete_sign_in", str(e))
            self.presenter.error(str(e))
            return False
        await self.set_identity(identity)
        return True

    async def sign_out(self) -> bool:
        """Invalidate the session and return to the signed-out view."""
        if not self.can_sign_in:
            return False
        try:
            await self._identity_provider.sign_out()
        except AuthError as e:
            self._activity.auth_failed("sign_out", str(e))
            self.presenter.error(str(e))
            return False
        self._activity.signed_out(self._identity.owner_id if self._identity else None)
        await self.set_identity(None)
        return True

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def controller(self, entity: EntityName | str) -> EntitySyncController:
        return self.controllers[EntityName(entity)]

    def edit(self, entity: EntityName | str, field: str, value: Any) -> None:
        self.controller(entity).edit(field, value)

    async def save(self, entity: EntityName | str) -> bool:
        return await self.controller(entity).save()

    async def reload(self) -> None:
        owner_id = self._identity.owner_id if self._identity else None
        combined = self._combined_fetch(owner_id)
        await asyncio.gather(
            *(
                controller.reload(self._preload(combined, entity))
                for entity, controller in self.controllers.items()
            )
        )

    def sections(self) -> list[SectionView]:
        """View models for every record, in display order."""
        sections = []
        for entity, controller in self.controllers.items():
            draft = controller.draft
            sections.append(
                SectionView(
                    entity=entity,
                    title=controller.schema.title,
                    state=controller.state,
                    saving=controller.saving,
                    revision=controller.revision,
                    fields=[
                        FieldView(
                            name=spec.name,
                            label=spec.label,
                            placeholder=spec.placeholder,
                            input_type=spec.input_type,
                            value=draft.get(spec.name, ""),
                        )
                        for spec in controller.schema.fields
                    ],
                )
            )
        return sections

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Unmount: cancel every subscription and release the store."""
        if not self._alive:
            return
        self._alive = False
        if self._unsubscribe_identity is not None:
            self._unsubscribe_identity()
            self._unsubscribe_identity = None
        self._identity_provider.unwatch()

        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(
            *(controller.close() for controller in self.controllers.values())
        )
        await self._store.close()


# =============================================================================
# FACTORY
# =============================================================================

def create_app_components(
    backend: Optional[str] = None,
) -> Dashboard:
    """
    Factory function to create a dashboard for the configured backend.

    Args:
        backend: "supabase", "rest" or "memory". Defaults to the
                 BACKEND setting.

    Returns:
        An unstarted Dashboard; call `await dashboard.start()`.
    """
    settings = get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level, app_settings.log_json)

    backend = backend or app_settings.backend
    activity_logger = ActivityLogger()
    presenter = NotificationPresenter(duration=app_settings.notification_seconds)

    if backend == "supabase":
        connection = SupabaseConnection()
        store: RecordStoreInterface = SupabaseRecordStore(connection)
        identity_provider: IdentityProviderInterface = SupabaseIdentityProvider(connection)
    elif backend == "rest":
        rest = settings.rest
        store = RestRecordStore(rest.base_url, rest.timeout_seconds)
        identity_provider = AnonymousIdentityProvider(
            LocalStorage(app_settings.local_storage_path)
        )
    elif backend == "memory":
        store = InMemoryRecordStore()
        identity_provider = AnonymousIdentityProvider(
            LocalStorage(app_settings.local_storage_path)
        )
    else:
        raise ValueError(f"Unknown backend: {backend!r}")

    logger.info("dashboard_created", backend=backend, push=store.supports_push)
    return Dashboard(
        identity_provider=identity_provider,
        store=store,
        presenter=presenter,
        activity_logger=activity_logger,
    )
