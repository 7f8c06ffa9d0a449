"""Tests for the record store implementations."""

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest

from smart_ledger.models import EntityName, get_schema
from smart_ledger.notifications import NotificationPresenter
from smart_ledger.services.storage import (
    FetchError,
    InMemoryRecordStore,
    PushNotSupportedError,
    RestRecordStore,
    SaveError,
    SupabaseConnection,
    SupabaseRecordStore,
)
from smart_ledger.services.storage.supabase_store import AuthStorage
from smart_ledger.sync import EntitySyncController


SAMPLE_DRAFTS = {
    EntityName.BANK_BALANCE: {"amount": "1500"},
    EntityName.EXPENSES: {"amount": "320.75", "month": "Jan 2025"},
    EntityName.SALES: {"amount": ""},
    EntityName.ORDERS: {"total_orders": "10", "pending": "", "completed": "7"},
    EntityName.REMINDERS: {"title": "Pay rent", "due_date": "2025-03-01"},
}


# ── In-memory store ──


class TestInMemoryRecordStore:

    @pytest.mark.asyncio
    async def test_absent_record_is_none(self):
        store = InMemoryRecordStore()
        assert await store.fetch_latest(EntityName.SALES, "u1") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entity", list(EntityName))
    async def test_upsert_then_fetch_returns_normalized_values(self, entity):
        store = InMemoryRecordStore()
        values = get_schema(entity).normalize(SAMPLE_DRAFTS[entity])

        await store.upsert(entity, "u1", values)
        record = await store.fetch_latest(entity, "u1")

        assert record is not None
        assert record.owner_id == "u1"
        assert record.tracked_values() == values
        assert record.updated_at is not None

    @pytest.mark.asyncio
    async def test_upsert_replaces_every_tracked_field(self):
        store = InMemoryRecordStore()
        await store.upsert(EntityName.EXPENSES, "u1", {"amount": 10.0, "month": "Jan"})
        await store.upsert(EntityName.EXPENSES, "u1", {"amount": 20.0, "month": None})

        record = await store.fetch_latest(EntityName.EXPENSES, "u1")
        assert record.amount == 20.0
        assert record.month is None

    @pytest.mark.asyncio
    async def test_owners_are_isolated(self):
        store = InMemoryRecordStore()
        await store.upsert(EntityName.SALES, "u1", {"amount": 5.0})
        assert await store.fetch_latest(EntityName.SALES, "u2") is None

    @pytest.mark.asyncio
    async def test_invalid_values_rejected(self):
        store = InMemoryRecordStore()
        with pytest.raises(SaveError):
            await store.upsert(EntityName.ORDERS, "u1", {"pending": "lots"})
        assert await store.fetch_latest(EntityName.ORDERS, "u1") is None

    @pytest.mark.asyncio
    async def test_subscribers_only_see_their_owner(self):
        store = InMemoryRecordStore()
        received = []
        await store.subscribe(EntityName.BANK_BALANCE, "u1", received.append)

        await store.upsert(EntityName.BANK_BALANCE, "u1", {"amount": 100.0})
        await store.upsert(EntityName.BANK_BALANCE, "u2", {"amount": 999.0})
        await store.upsert(EntityName.SALES, "u1", {"amount": 1.0})

        assert [r.amount for r in received] == [100.0]

    @pytest.mark.asyncio
    async def test_async_handlers_are_awaited(self):
        store = InMemoryRecordStore()
        received = []

        async def handler(record):
            await asyncio.sleep(0)
            received.append(record)

        await store.subscribe(EntityName.SALES, "u1", handler)
        await store.upsert(EntityName.SALES, "u1", {"amount": 3.0})
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_cancel_stops_delivery(self):
        store = InMemoryRecordStore()
        received = []
        subscription = await store.subscribe(EntityName.SALES, "u1", received.append)

        await subscription.cancel()
        await subscription.cancel()
        await store.upsert(EntityName.SALES, "u1", {"amount": 3.0})

        assert received == []
        assert subscription.active is False
        assert store.listener_count(EntityName.SALES) == 0


# ── REST store ──


def _rest_store(handler) -> RestRecordStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RestRecordStore(base_url="http://ledger.test/", timeout=5, http_client=client)


class TestRestRecordStore:

    @pytest.mark.asyncio
    async def test_fetch_dashboard_parses_every_record(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == "/api/dashboard/u1"
            return httpx.Response(200, json={
                "bank_balance": {"amount": 1500},
                "expenses": None,
                "orders": {"total_orders": 3, "pending": 1, "completed": 2},
            })

        store = _rest_store(handler)
        records = await store.fetch_dashboard("u1")

        assert records[EntityName.BANK_BALANCE].amount == 1500.0
        assert records[EntityName.BANK_BALANCE].owner_id == "u1"
        assert records[EntityName.EXPENSES] is None
        assert records[EntityName.SALES] is None
        assert records[EntityName.REMINDERS] is None
        assert records[EntityName.ORDERS].completed == 2

    @pytest.mark.asyncio
    async def test_fetch_latest_picks_one_record(self):
        def handler(request):
            return httpx.Response(200, json={"sales": {"amount": 42.5}})

        store = _rest_store(handler)
        record = await store.fetch_latest(EntityName.SALES, "u1")
        assert record.amount == 42.5
        assert await store.fetch_latest(EntityName.BANK_BALANCE, "u1") is None

    @pytest.mark.asyncio
    async def test_fetch_error_uses_server_message(self):
        def handler(request):
            return httpx.Response(500, json={"error": "database unavailable"})

        store = _rest_store(handler)
        with pytest.raises(FetchError, match="database unavailable") as exc:
            await store.fetch_latest(EntityName.SALES, "u1")
        assert exc.value.entity == "sales"

    @pytest.mark.asyncio
    async def test_upsert_posts_owner_and_values(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ownerId": "u1", "amount": 1500})

        store = _rest_store(handler)
        record = await store.upsert(EntityName.BANK_BALANCE, "u1", {"amount": 1500.0})

        assert captured["path"] == "/api/upsert/bank_balance"
        assert captured["body"] == {"ownerId": "u1", "values": {"amount": 1500.0}}
        assert record.amount == 1500.0
        assert record.owner_id == "u1"

    @pytest.mark.asyncio
    async def test_upsert_text_error(self):
        def handler(request):
            return httpx.Response(400, text="amount must be positive")

        store = _rest_store(handler)
        with pytest.raises(SaveError, match="amount must be positive"):
            await store.upsert(EntityName.SALES, "u1", {"amount": -1.0})

    @pytest.mark.asyncio
    async def test_upsert_empty_error_body(self):
        def handler(request):
            return httpx.Response(503)

        store = _rest_store(handler)
        with pytest.raises(SaveError, match="HTTP 503"):
            await store.upsert(EntityName.SALES, "u1", {"amount": 1.0})

    @pytest.mark.asyncio
    async def test_network_error_becomes_save_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        store = _rest_store(handler)
        with pytest.raises(SaveError, match="Network error"):
            await store.upsert(EntityName.SALES, "u1", {"amount": 1.0})

    @pytest.mark.asyncio
    async def test_no_push_support(self):
        store = _rest_store(lambda request: httpx.Response(200, json={}))
        assert store.supports_push is False
        with pytest.raises(PushNotSupportedError):
            await store.subscribe(EntityName.SALES, "u1", lambda record: None)

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        store = RestRecordStore(base_url="http://ledger.test", http_client=client)
        await store.close()
        assert client.is_closed is False
        await client.aclose()


# ── Supabase store (fake client) ──


class FakeAPIError(Exception):
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class FakeQuery:
    def __init__(self, client, table):
        self._client = client
        self._table = table

    def _record(self, *call):
        self._client.calls.append((self._table, *call))
        return self

    def select(self, columns):
        return self._record("select", columns)

    def eq(self, column, value):
        return self._record("eq", column, value)

    def order(self, column, desc=False):
        return self._record("order", column, desc)

    def limit(self, count):
        return self._record("limit", count)

    def upsert(self, payload, on_conflict=None):
        return self._record("upsert", payload, on_conflict)

    async def execute(self):
        if self._client.error is not None:
            raise self._client.error
        return SimpleNamespace(data=self._client.rows)


class FakeChannel:
    def __init__(self, name):
        self.name = name
        self.bindings = []
        self.subscribed = False

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.bindings.append(
            {"event": event, "table": table, "schema": schema, "filter": filter, "callback": callback}
        )
        return self

    async def subscribe(self):
        self.subscribed = True
        return self


class FakeSupabaseClient:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = []
        self.channels = []
        self.removed = []

    def table(self, name):
        return FakeQuery(self, name)

    def channel(self, name):
        channel = FakeChannel(name)
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel):
        self.removed.append(channel)


def _supabase_store(client) -> SupabaseRecordStore:
    return SupabaseRecordStore(SupabaseConnection(client=client))


class TestSupabaseRecordStore:

    @pytest.mark.asyncio
    async def test_fetch_latest_query(self):
        client = FakeSupabaseClient(rows=[{"user_id": "u1", "amount": 100}])
        store = _supabase_store(client)

        record = await store.fetch_latest(EntityName.BANK_BALANCE, "u1")

        assert record.amount == 100.0
        assert ("bank_balance", "eq", "user_id", "u1") in client.calls
        assert ("bank_balance", "order", "updated_at", True) in client.calls
        assert ("bank_balance", "limit", 1) in client.calls

    @pytest.mark.asyncio
    async def test_fetch_latest_absent(self):
        store = _supabase_store(FakeSupabaseClient(rows=[]))
        assert await store.fetch_latest(EntityName.SALES, "u1") is None

    @pytest.mark.asyncio
    async def test_fetch_error(self):
        client = FakeSupabaseClient(error=FakeAPIError("JWT expired"))
        store = _supabase_store(client)
        with pytest.raises(FetchError, match="JWT expired"):
            await store.fetch_latest(EntityName.SALES, "u1")

    @pytest.mark.asyncio
    async def test_upsert_conflicts_on_owner(self):
        client = FakeSupabaseClient(rows=[{"user_id": "u1", "title": "Pay rent", "due_date": "2025-03-01"}])
        store = _supabase_store(client)

        record = await store.upsert(
            EntityName.REMINDERS, "u1", {"title": "Pay rent", "due_date": "2025-03-01"}
        )

        assert (
            "reminders",
            "upsert",
            {"title": "Pay rent", "due_date": "2025-03-01", "user_id": "u1"},
            "user_id",
        ) in client.calls
        assert record.due_date == "2025-03-01"

    @pytest.mark.asyncio
    async def test_upsert_error_message(self):
        client = FakeSupabaseClient(error=FakeAPIError("new row violates row-level security policy"))
        store = _supabase_store(client)
        with pytest.raises(SaveError, match="row-level security"):
            await store.upsert(EntityName.SALES, "u1", {"amount": 1.0})

    @pytest.mark.asyncio
    async def test_subscribe_filters_by_owner(self):
        client = FakeSupabaseClient()
        store = _supabase_store(client)
        received = []

        await store.subscribe(EntityName.BANK_BALANCE, "u1", received.append)
        channel = client.channels[0]
        binding = channel.bindings[0]
        assert channel.subscribed is True
        assert binding["table"] == "bank_balance"
        assert binding["filter"] == "user_id=eq.u1"
        assert binding["event"] == "*"

        callback = binding["callback"]
        callback({"data": {"type": "UPDATE", "record": {"user_id": "u1", "amount": 200}}})
        callback({"data": {"type": "UPDATE", "record": {"user_id": "u2", "amount": 999}}})
        callback({"new": {"user_id": "u1", "amount": 300}})
        await asyncio.sleep(0.01)

        assert [r.amount for r in received] == [200.0, 300.0]

    @pytest.mark.asyncio
    async def test_cancel_removes_channel_once(self):
        client = FakeSupabaseClient()
        store = _supabase_store(client)

        subscription = await store.subscribe(EntityName.SALES, "u1", lambda record: None)
        await subscription.cancel()
        await subscription.cancel()

        assert client.removed == client.channels
        assert subscription.active is False

    @pytest.mark.asyncio
    async def test_delete_reads_as_absence(self):
        client = FakeSupabaseClient()
        store = _supabase_store(client)
        received = []
        await store.subscribe(EntityName.BANK_BALANCE, "u1", received.append)
        callback = client.channels[0].bindings[0]["callback"]

        callback({"data": {"type": "DELETE", "old_record": {"user_id": "u1", "amount": 100}}})
        await asyncio.sleep(0.01)

        assert len(received) == 1
        assert received[0].owner_id == "u1"
        assert received[0].amount is None

    @pytest.mark.asyncio
    async def test_delete_without_owner_is_dropped(self):
        client = FakeSupabaseClient()
        store = _supabase_store(client)
        received = []
        await store.subscribe(EntityName.BANK_BALANCE, "u1", received.append)
        callback = client.channels[0].bindings[0]["callback"]

        callback({"data": {"type": "DELETE", "old_record": {"id": 7}}})
        callback({"eventType": "DELETE", "old": {}})
        await asyncio.sleep(0.01)

        assert received == []

    @pytest.mark.asyncio
    async def test_delete_clears_the_draft(self):
        client = FakeSupabaseClient(rows=[{"user_id": "u1", "amount": 100}])
        presenter = NotificationPresenter(duration=2.0)
        controller = EntitySyncController(
            get_schema(EntityName.BANK_BALANCE), _supabase_store(client), presenter
        )
        await controller.set_owner("u1")
        await controller.start_push()
        assert controller.draft == {"amount": "100"}

        callback = client.channels[0].bindings[0]["callback"]
        callback({"data": {"type": "DELETE", "old_record": {"user_id": "u1", "amount": 100}}})
        await asyncio.sleep(0.01)

        assert controller.draft == {"amount": ""}

    @pytest.mark.asyncio
    async def test_malformed_row_becomes_fetch_error(self):
        client = FakeSupabaseClient(rows=[{"user_id": "u1", "total_orders": "abc"}])
        store = _supabase_store(client)
        with pytest.raises(FetchError, match="Malformed orders record: total_orders") as exc:
            await store.fetch_latest(EntityName.ORDERS, "u1")
        assert exc.value.entity == "orders"

    @pytest.mark.asyncio
    async def test_malformed_upsert_response_becomes_save_error(self):
        client = FakeSupabaseClient(rows=[{"user_id": "u1", "pending": "several"}])
        store = _supabase_store(client)
        with pytest.raises(SaveError, match="Unexpected response for orders"):
            await store.upsert(EntityName.ORDERS, "u1", {"pending": 2})


class TestAuthStorage:

    @pytest.mark.asyncio
    async def test_code_verifier_found_by_suffix(self):
        storage = AuthStorage()
        assert storage.code_verifier() is None

        await storage.set_item("sb-project-auth-token", "{}")
        await storage.set_item("sb-project-auth-token-code-verifier", "abc123")

        assert storage.code_verifier() == "abc123"

    def test_each_connection_has_its_own_storage(self):
        first = SupabaseConnection(client=FakeSupabaseClient())
        second = SupabaseConnection(client=FakeSupabaseClient())
        assert first.auth_storage is not second.auth_storage


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
