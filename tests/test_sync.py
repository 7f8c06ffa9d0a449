"""Tests for the entity sync controller state machine."""

import asyncio

import pytest

from smart_ledger.models import BankBalanceRecord, EntityName, Severity, get_schema
from smart_ledger.notifications import NotificationPresenter
from smart_ledger.services.storage import FetchError, InMemoryRecordStore, SaveError
from smart_ledger.sync import EntitySyncController, SyncState


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FailingStore(InMemoryRecordStore):
    """Fails the next N fetches / upserts, then behaves normally."""

    def __init__(self, fetch_failures=0, save_failures=0):
        super().__init__()
        self.fetch_failures = fetch_failures
        self.save_failures = save_failures

    async def fetch_latest(self, entity, owner_id):
        if self.fetch_failures:
            self.fetch_failures -= 1
            raise FetchError("Backend offline", entity=str(entity))
        return await super().fetch_latest(entity, owner_id)

    async def upsert(self, entity, owner_id, values):
        if self.save_failures:
            self.save_failures -= 1
            raise SaveError("Permission denied", entity=str(entity))
        return await super().upsert(entity, owner_id, values)


class GatedStore(InMemoryRecordStore):
    """Holds every fetch / upsert until the test opens the gate."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def fetch_latest(self, entity, owner_id):
        await self.gate.wait()
        return await super().fetch_latest(entity, owner_id)

    async def upsert(self, entity, owner_id, values):
        await self.gate.wait()
        return await super().upsert(entity, owner_id, values)


def _controller(store, entity=EntityName.BANK_BALANCE, presenter=None):
    presenter = presenter or NotificationPresenter(duration=2.0, clock=FakeClock())
    return EntitySyncController(get_schema(entity), store, presenter), presenter


async def _yield():
    for _ in range(5):
        await asyncio.sleep(0)


class TestLoading:

    @pytest.mark.asyncio
    async def test_starts_waiting(self):
        controller, _ = _controller(InMemoryRecordStore())
        assert controller.state == SyncState.WAITING
        assert controller.draft == {"amount": ""}

    @pytest.mark.asyncio
    async def test_load_absent_record_gives_empty_draft(self):
        controller, presenter = _controller(InMemoryRecordStore())
        await controller.set_owner("u1")
        assert controller.state == SyncState.IDLE
        assert controller.draft == {"amount": ""}
        assert presenter.current is None

    @pytest.mark.asyncio
    async def test_load_existing_record(self):
        store = InMemoryRecordStore()
        await store.upsert(EntityName.BANK_BALANCE, "u1", {"amount": 1500.0})
        controller, _ = _controller(store)

        await controller.set_owner("u1")

        assert controller.draft == {"amount": "1500"}
        assert controller.record.amount == 1500.0

    @pytest.mark.asyncio
    async def test_load_failure_notifies_and_goes_idle(self):
        controller, presenter = _controller(FailingStore(fetch_failures=1))
        await controller.set_owner("u1")

        assert controller.state == SyncState.IDLE
        assert controller.draft == {"amount": ""}
        assert presenter.current.message == "Backend offline"
        assert presenter.current.severity == Severity.ERROR

    @pytest.mark.asyncio
    async def test_is_loading_while_fetch_pending(self):
        store = GatedStore()
        controller, _ = _controller(store)

        task = asyncio.ensure_future(controller.set_owner("u1"))
        await _yield()
        assert controller.state == SyncState.LOADING

        store.gate.set()
        await task
        assert controller.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_unbinding_owner_clears_draft(self):
        store = InMemoryRecordStore()
        await store.upsert(EntityName.BANK_BALANCE, "u1", {"amount": 5.0})
        controller, _ = _controller(store)
        await controller.set_owner("u1")

        await controller.set_owner(None)

        assert controller.state == SyncState.WAITING
        assert controller.draft == {"amount": ""}
        assert controller.record is None

    @pytest.mark.asyncio
    async def test_revision_bumps_on_replacement_only(self):
        controller, _ = _controller(InMemoryRecordStore())
        await controller.set_owner("u1")
        revision = controller.revision

        controller.edit("amount", "7")
        assert controller.revision == revision

        await controller.reload()
        assert controller.revision == revision + 1

    @pytest.mark.asyncio
    async def test_reload_ignored_without_owner(self):
        controller, _ = _controller(InMemoryRecordStore())
        assert await controller.reload() is False

    @pytest.mark.asyncio
    async def test_preload_replaces_store_fetch(self):
        store = FailingStore(fetch_failures=1)
        controller, presenter = _controller(store)

        async def preload():
            return BankBalanceRecord(owner_id="u1", amount=250.0)

        await controller.set_owner("u1", preload)

        assert controller.state == SyncState.IDLE
        assert controller.draft == {"amount": "250"}
        assert store.fetch_failures == 1
        assert presenter.current is None

    @pytest.mark.asyncio
    async def test_preload_failure_is_a_load_failure(self):
        controller, presenter = _controller(InMemoryRecordStore())

        async def preload():
            raise FetchError("Backend offline")

        await controller.set_owner("u1", preload)

        assert controller.state == SyncState.IDLE
        assert controller.draft == {"amount": ""}
        assert presenter.current.message == "Backend offline"


class TestEditing:

    @pytest.mark.asyncio
    async def test_edit_has_no_network_effect(self):
        store = InMemoryRecordStore()
        controller, _ = _controller(store)
        await controller.set_owner("u1")

        controller.edit("amount", "1500")

        assert controller.draft == {"amount": "1500"}
        assert await store.fetch_latest(EntityName.BANK_BALANCE, "u1") is None

    @pytest.mark.asyncio
    async def test_edit_unknown_field_raises(self):
        controller, _ = _controller(InMemoryRecordStore())
        with pytest.raises(KeyError):
            controller.edit("month", "Jan")

    @pytest.mark.asyncio
    async def test_edit_many(self):
        controller, _ = _controller(InMemoryRecordStore(), entity=EntityName.ORDERS)
        await controller.set_owner("u1")
        controller.edit_many({"total_orders": "3", "completed": "2"})
        assert controller.draft == {"total_orders": "3", "pending": "", "completed": "2"}


class TestSaving:

    @pytest.mark.asyncio
    async def test_save_success(self):
        store = InMemoryRecordStore()
        controller, presenter = _controller(store)
        await controller.set_owner("u1")
        controller.edit("amount", "1500")

        assert await controller.save() is True

        assert controller.state == SyncState.IDLE
        assert presenter.current.message == "Bank balance saved"
        record = await store.fetch_latest(EntityName.BANK_BALANCE, "u1")
        assert record.amount == 1500.0

    @pytest.mark.asyncio
    async def test_save_failure_keeps_draft(self):
        controller, presenter = _controller(FailingStore(save_failures=1))
        await controller.set_owner("u1")
        controller.edit("amount", "1500")

        assert await controller.save() is False

        assert controller.state == SyncState.IDLE
        assert controller.draft == {"amount": "1500"}
        assert presenter.current.message == "Permission denied"
        assert presenter.current.is_error

    @pytest.mark.asyncio
    async def test_failure_message_falls_back_to_generic(self):
        class SilentFailure(InMemoryRecordStore):
            async def upsert(self, entity, owner_id, values):
                raise SaveError("")

        controller, presenter = _controller(SilentFailure())
        await controller.set_owner("u1")
        await controller.save()
        assert presenter.current.message == "Error saving bank balance"

    @pytest.mark.asyncio
    async def test_invalid_number_reported_like_save_error(self):
        store = InMemoryRecordStore()
        controller, presenter = _controller(store)
        await controller.set_owner("u1")
        controller.edit("amount", "abc")

        assert await controller.save() is False

        assert presenter.current.message == "Amount must be a number"
        assert controller.state == SyncState.IDLE
        assert await store.fetch_latest(EntityName.BANK_BALANCE, "u1") is None

    @pytest.mark.asyncio
    async def test_save_ignored_while_saving(self):
        store = GatedStore()
        controller, _ = _controller(store)
        store.gate.set()
        await controller.set_owner("u1")
        store.gate.clear()

        task = asyncio.ensure_future(controller.save())
        await _yield()
        assert controller.saving is True
        assert await controller.save() is False

        store.gate.set()
        assert await task is True
        assert controller.saving is False

    @pytest.mark.asyncio
    async def test_save_ignored_without_owner(self):
        controller, _ = _controller(InMemoryRecordStore())
        assert await controller.save() is False

    @pytest.mark.asyncio
    async def test_saved_values_round_trip_through_reload(self):
        store = InMemoryRecordStore()
        controller, _ = _controller(store, entity=EntityName.ORDERS)
        await controller.set_owner("u1")
        controller.edit_many({"total_orders": "10", "pending": "", "completed": "7"})
        await controller.save()

        await controller.reload()

        assert controller.draft == {"total_orders": "10", "pending": "", "completed": "7"}


class TestPush:

    @pytest.mark.asyncio
    async def test_push_for_same_owner_replaces_draft(self):
        store = InMemoryRecordStore()
        controller, _ = _controller(store)
        await controller.set_owner("u1")
        assert await controller.start_push() is True

        await store.upsert(EntityName.BANK_BALANCE, "u1", {"amount": 200.0})

        assert controller.draft == {"amount": "200"}

    @pytest.mark.asyncio
    async def test_push_for_other_owner_ignored(self):
        controller, _ = _controller(InMemoryRecordStore())
        await controller.set_owner("u1")

        applied = controller.apply_push(BankBalanceRecord(owner_id="u2", amount=999.0))

        assert applied is False
        assert controller.draft == {"amount": ""}

    @pytest.mark.asyncio
    async def test_push_overwrites_unsaved_edit(self):
        controller, _ = _controller(InMemoryRecordStore())
        await controller.set_owner("u1")
        controller.edit("amount", "150")

        controller.apply_push(BankBalanceRecord(owner_id="u1", amount=200.0))

        assert controller.draft == {"amount": "200"}

    @pytest.mark.asyncio
    async def test_push_during_load_wins(self):
        store = GatedStore()
        controller, _ = _controller(store)
        task = asyncio.ensure_future(controller.set_owner("u1"))
        await _yield()

        controller.apply_push(BankBalanceRecord(owner_id="u1", amount=300.0))
        assert controller.state == SyncState.IDLE

        store.gate.set()
        await task
        assert controller.draft == {"amount": "300"}

    @pytest.mark.asyncio
    async def test_push_during_save_keeps_saving(self):
        store = GatedStore()
        store.gate.set()
        controller, _ = _controller(store)
        await controller.set_owner("u1")
        store.gate.clear()
        controller.edit("amount", "10")

        task = asyncio.ensure_future(controller.save())
        await _yield()
        controller.apply_push(BankBalanceRecord(owner_id="u1", amount=50.0))
        assert controller.state == SyncState.SAVING
        assert controller.draft == {"amount": "50"}

        store.gate.set()
        await task
        assert controller.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_owner_change_moves_subscription(self):
        store = InMemoryRecordStore()
        controller, _ = _controller(store)
        await controller.set_owner("u1")
        await controller.start_push()

        await controller.set_owner("u2")
        await controller.start_push()
        await store.upsert(EntityName.BANK_BALANCE, "u1", {"amount": 1.0})

        assert controller.draft == {"amount": ""}
        assert store.listener_count(EntityName.BANK_BALANCE) == 1

    @pytest.mark.asyncio
    async def test_start_push_is_idempotent(self):
        store = InMemoryRecordStore()
        controller, _ = _controller(store)
        await controller.set_owner("u1")
        await controller.start_push()
        assert await controller.start_push() is False
        assert store.listener_count(EntityName.BANK_BALANCE) == 1


class TestClose:

    @pytest.mark.asyncio
    async def test_close_cancels_subscription(self):
        store = InMemoryRecordStore()
        controller, _ = _controller(store)
        await controller.set_owner("u1")
        await controller.start_push()

        await controller.close()

        assert controller.subscribed is False
        assert store.listener_count(EntityName.BANK_BALANCE) == 0

    @pytest.mark.asyncio
    async def test_late_load_result_discarded(self):
        store = GatedStore()
        await InMemoryRecordStore.upsert(store, EntityName.BANK_BALANCE, "u1", {"amount": 5.0})
        controller, _ = _controller(store)

        task = asyncio.ensure_future(controller.set_owner("u1"))
        await _yield()
        await controller.close()
        store.gate.set()
        await task

        assert controller.draft == {"amount": ""}
        assert controller.record is None

    @pytest.mark.asyncio
    async def test_late_save_result_discarded(self):
        store = GatedStore()
        store.gate.set()
        controller, presenter = _controller(store)
        await controller.set_owner("u1")
        store.gate.clear()

        task = asyncio.ensure_future(controller.save())
        await _yield()
        await controller.close()
        store.gate.set()

        assert await task is False
        assert presenter.current is None

    @pytest.mark.asyncio
    async def test_closed_controller_ignores_push(self):
        controller, _ = _controller(InMemoryRecordStore())
        await controller.set_owner("u1")
        await controller.close()
        assert controller.apply_push(BankBalanceRecord(owner_id="u1", amount=1.0)) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
