import pytest

from claims_engine.errors import ConcurrentModificationError, DocumentNotFoundError, StoreError
from claims_engine.store import create_store
from claims_engine.store.base import matches_filters, sort_records
from claims_engine.store.memory import InMemoryDocumentStore


class TestHelpers:
    def test_filters_are_equality_conjunctions(self):
        record = {"status": "open", "customer_id": "c1"}
        assert matches_filters(record, None)
        assert matches_filters(record, {"status": "open"})
        assert not matches_filters(record, {"status": "open", "customer_id": "c2"})

    def test_sort_tolerates_missing_fields(self):
        records = [{"n": 2}, {}, {"n": 1}]
        assert sort_records(records, "n") == [{}, {"n": 1}, {"n": 2}]
        assert sort_records(records, "n", descending=True) == [{"n": 2}, {"n": 1}, {}]

    def test_store_factory_defaults_to_memory(self, config):
        assert isinstance(create_store(config), InMemoryDocumentStore)


class TestInMemoryDocumentStore:
    @pytest.mark.asyncio
    async def test_create_assigns_id_and_version(self, store):
        record = await store.create("claims", {"amount": 10})
        assert record["id"]
        assert record["version"] == 1
        assert await store.get("claims", record["id"]) == record

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get("claims", "nope") is None

    @pytest.mark.asyncio
    async def test_records_are_copied(self, store):
        record = await store.create("claims", {"tags": ["a"]})
        record["tags"].append("b")
        fetched = await store.get("claims", record["id"])
        assert fetched["tags"] == ["a"]

    @pytest.mark.asyncio
    async def test_list_filters_and_orders(self, store):
        await store.create("claims", {"status": "open", "created_at": "2024-01-02"})
        await store.create("claims", {"status": "open", "created_at": "2024-01-03"})
        await store.create("claims", {"status": "closed", "created_at": "2024-01-01"})

        records = await store.list("claims", {"status": "open"}, order_by="created_at", descending=True)

        assert [r["created_at"] for r in records] == ["2024-01-03", "2024-01-02"]

    @pytest.mark.asyncio
    async def test_update_merges_and_bumps_version(self, store):
        record = await store.create("claims", {"amount": 10, "status": "draft"})
        updated = await store.update("claims", record["id"], {"status": "submitted"})
        assert updated["amount"] == 10
        assert updated["status"] == "submitted"
        assert updated["version"] == 2

    @pytest.mark.asyncio
    async def test_compare_and_swap(self, store):
        record = await store.create("approvalChains", {"current_step": 0})
        await store.update("approvalChains", record["id"], {"current_step": 1}, expected_version=1)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            await store.update("approvalChains", record["id"], {"current_step": 2}, expected_version=1)

        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        assert (await store.get("approvalChains", record["id"]))["current_step"] == 1

    @pytest.mark.asyncio
    async def test_update_and_delete_missing_raise(self, store):
        with pytest.raises(DocumentNotFoundError):
            await store.update("claims", "nope", {"a": 1})
        with pytest.raises(DocumentNotFoundError):
            await store.delete("claims", "nope")

    @pytest.mark.asyncio
    async def test_not_found_is_a_store_error_and_key_error(self, store):
        with pytest.raises(StoreError):
            await store.delete("claims", "nope")
        with pytest.raises(KeyError):
            await store.delete("claims", "nope")

    @pytest.mark.asyncio
    async def test_delete_removes_record(self, store):
        record = await store.create("claimRules", {"name": "r"})
        await store.delete("claimRules", record["id"])
        assert await store.list("claimRules") == []


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_snapshot_on_subscribe_and_after_writes(self, store):
        snapshots = []
        await store.create("fraudAlerts", {"status": "open"})

        unsubscribe = await store.subscribe("fraudAlerts", snapshots.append)
        created = await store.create("fraudAlerts", {"status": "open"})
        await store.update("fraudAlerts", created["id"], {"status": "resolved"})

        assert [len(s) for s in snapshots] == [1, 2, 2]
        unsubscribe()

    @pytest.mark.asyncio
    async def test_filtered_subscription(self, store):
        snapshots = []
        await store.subscribe("claims", snapshots.append, {"customer_id": "c1"})
        await store.create("claims", {"customer_id": "c1"})
        await store.create("claims", {"customer_id": "c2"})

        assert [len(s) for s in snapshots] == [0, 1, 1]

    @pytest.mark.asyncio
    async def test_other_collections_do_not_notify(self, store):
        snapshots = []
        await store.subscribe("claims", snapshots.append)
        await store.create("workflows", {"name": "wf"})
        assert len(snapshots) == 1

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited(self, store):
        seen = []

        async def callback(records):
            seen.append(len(records))

        await store.subscribe("claims", callback)
        await store.create("claims", {})
        assert seen == [0, 1]

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, store):
        snapshots = []
        unsubscribe = await store.subscribe("claims", snapshots.append)
        unsubscribe()
        unsubscribe()
        await store.create("claims", {})
        assert len(snapshots) == 1

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_writes(self, store):
        def callback(records):
            raise RuntimeError("subscriber bug")

        await store.subscribe("claims", callback)
        record = await store.create("claims", {"amount": 1})
        assert record["version"] == 1
