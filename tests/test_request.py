"""Tests for the request orchestrator entry points."""

import pytest

from conftest import entity_result

from kvorchestra import (
    AggregateQuery,
    AllocateIdsOptions,
    Entity,
    InvalidArgumentError,
    Key,
    QueryEncodingError,
    RpcError,
    TransactionExpiredError,
)
from kvorchestra.runtime.options import (
    CONSISTENCY_IN_TRANSACTION_ERROR,
    READ_TIME_AND_CONSISTENCY_ERROR,
    READ_TIME_IN_TRANSACTION_ERROR,
)
from kvorchestra.runtime.request import COMPLETE_KEY_ERROR, INCOMPLETE_KEY_ERROR, KEYS_REQUIRED_ERROR

CONFLICTING = {"consistency": "strong", "read_time": 1700000000000}


async def started_transaction(datastore, rpc, handle="tx-1"):
    rpc.script("beginTransaction", {"transaction": handle})
    transaction = datastore.transaction()
    await transaction.run()
    return transaction


class TestExpiredTransaction:
    """Every call through an expired transaction fails before any RPC."""

    @pytest.fixture
    def transaction(self, datastore):
        transaction = datastore.transaction()
        transaction.expire()
        return transaction

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "call",
        [
            lambda t, key: t.get(key),
            lambda t, key: t.get([key]),
            lambda t, key: t.run_query(t.datastore.create_query("Task")),
            lambda t, key: t.run_aggregation_query(AggregateQuery(query=t.datastore.create_query("Task")).count()),
            lambda t, key: t.delete(key),
            lambda t, key: t.save({"key": key, "data": {}}),
            lambda t, key: t.upsert({"key": key, "data": {}}),
            lambda t, key: t.merge({"key": key, "data": {}}),
            lambda t, key: t.allocate_ids(Key.from_path(["Task"]), 2),
            lambda t, key: t.run(),
            lambda t, key: t.commit(),
            lambda t, key: t.rollback(),
        ],
    )
    async def test_fails_fast(self, transaction, rpc, key, call):
        with pytest.raises(TransactionExpiredError, match="This transaction has already expired."):
            await call(transaction, key)

        assert rpc.calls == []
        assert transaction.mutations == []

    @pytest.mark.asyncio
    async def test_expiry_is_checked_before_key_completeness(self, transaction, rpc, key):
        with pytest.raises(TransactionExpiredError):
            await transaction.allocate_ids(key, 1)
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_stream_fails_on_first_pull(self, transaction, rpc):
        stream = transaction.run_query_stream(transaction.datastore.create_query("Task"))

        with pytest.raises(TransactionExpiredError):
            await stream.collect()
        assert rpc.calls == []


class TestReadOptionConflicts:
    """consistency and read_time are mutually exclusive on every read."""

    @pytest.mark.asyncio
    async def test_get(self, datastore, rpc, key):
        with pytest.raises(InvalidArgumentError, match=READ_TIME_AND_CONSISTENCY_ERROR):
            await datastore.get(key, CONFLICTING)
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_run_query(self, datastore, rpc):
        with pytest.raises(InvalidArgumentError, match=READ_TIME_AND_CONSISTENCY_ERROR):
            await datastore.run_query(datastore.create_query("Task"), CONFLICTING)
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_run_aggregation_query(self, datastore, rpc):
        query = datastore.create_aggregation_query(datastore.create_query("Task")).count()

        with pytest.raises(InvalidArgumentError, match=READ_TIME_AND_CONSISTENCY_ERROR):
            await datastore.run_aggregation_query(query, CONFLICTING)
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_consistency_in_unstarted_transaction(self, datastore, rpc, key):
        transaction = datastore.transaction()

        with pytest.raises(InvalidArgumentError, match=CONSISTENCY_IN_TRANSACTION_ERROR):
            await transaction.get(key, {"consistency": "eventual"})
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_read_time_in_active_transaction(self, datastore, rpc):
        transaction = await started_transaction(datastore, rpc)

        with pytest.raises(InvalidArgumentError, match=READ_TIME_IN_TRANSACTION_ERROR):
            await transaction.run_query(datastore.create_query("Task"), {"read_time": 1700000000000})
        assert len(rpc.calls) == 1

    @pytest.mark.asyncio
    async def test_plain_client_sends_consistency(self, datastore, rpc, key):
        await datastore.get(key, {"consistency": "eventual"})

        assert rpc.calls_to("lookup")[0]["readOptions"] == {"readConsistency": 2}


class TestGet:
    """Lookups by key."""

    @pytest.mark.asyncio
    async def test_single_key_unwraps(self, datastore, rpc, key):
        rpc.script("lookup", {"found": [entity_result("Company", "acme", employees=12)]})

        entity = await datastore.get(key)

        assert isinstance(entity, Entity)
        assert entity.key == key
        assert entity["employees"] == 12

    @pytest.mark.asyncio
    async def test_single_missing_key_is_none(self, datastore, rpc, key):
        rpc.script("lookup", {"missing": [{"entity": {"key": {"path": [{"kind": "Company", "name": "acme"}]}}}]})

        assert await datastore.get(key) is None

    @pytest.mark.asyncio
    async def test_key_list_stays_a_list(self, datastore, rpc, key):
        rpc.script("lookup", {"found": [entity_result("Company", "acme")]})

        entities = await datastore.get([key])

        assert isinstance(entities, list)
        assert len(entities) == 1

    @pytest.mark.asyncio
    async def test_no_keys(self, datastore, rpc):
        with pytest.raises(InvalidArgumentError, match=KEYS_REQUIRED_ERROR):
            await datastore.get([])
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_incomplete_key(self, datastore, rpc):
        with pytest.raises(InvalidArgumentError, match=COMPLETE_KEY_ERROR):
            await datastore.get(Key.from_path(["Company"]))
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_wrap_numbers(self, datastore, rpc, key):
        rpc.script("lookup", {"found": [entity_result("Company", "acme", employees=12)]})

        entity = await datastore.get(key, {"wrap_numbers": True})

        assert entity["employees"].value_of() == 12

    @pytest.mark.asyncio
    async def test_request_carries_project_and_database(self, rpc, key):
        from kvorchestra import ClientConfig, Datastore

        datastore = Datastore(ClientConfig(project_id="p1", database_id="db1"), rpc_client=rpc)

        await datastore.get(key)

        payload = rpc.calls_to("lookup")[0]
        assert payload["projectId"] == "p1"
        assert payload["databaseId"] == "db1"


class TestMutations:
    """delete / save and the buffer-or-commit branch."""

    @pytest.mark.asyncio
    async def test_delete_commits_outside_transaction(self, datastore, rpc, key):
        await datastore.delete(key)

        assert [method for method, _ in rpc.calls] == ["commit"]
        commit = rpc.calls_to("commit")[0]
        assert commit["mode"] == "NON_TRANSACTIONAL"
        assert "transaction" not in commit
        assert commit["mutations"] == [{"delete": {"path": [{"kind": "Company", "name": "acme"}]}}]

    @pytest.mark.asyncio
    async def test_delete_buffers_in_transaction(self, datastore, rpc, key):
        transaction = await started_transaction(datastore, rpc)
        calls_before = len(rpc.calls)

        result = await transaction.delete(key)

        assert result is None
        assert len(rpc.calls) == calls_before
        assert transaction.mutations == [{"delete": {"path": [{"kind": "Company", "name": "acme"}]}}]

    @pytest.mark.asyncio
    async def test_delete_rejects_incomplete_key(self, datastore, rpc):
        with pytest.raises(InvalidArgumentError, match=COMPLETE_KEY_ERROR):
            await datastore.delete(Key.from_path(["Company"]))
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_save_picks_method_from_key(self, datastore, rpc, key):
        await datastore.save([
            {"key": key, "data": {"employees": 12}},
            {"key": Key.from_path(["Company"]), "data": {"employees": 1}},
        ])

        mutations = rpc.calls_to("commit")[0]["mutations"]
        assert list(mutations[0]) == ["upsert"]
        assert list(mutations[1]) == ["insert"]

    @pytest.mark.asyncio
    async def test_insert_fills_allocated_id(self, datastore, rpc):
        rpc.script("commit", {"mutationResults": [{"key": {"path": [{"kind": "Task", "id": "55"}]}}]})
        key = Key.from_path(["Task"])

        await datastore.insert({"key": key, "data": {"done": False}})

        assert key.id == 55
        assert key.is_complete

    @pytest.mark.asyncio
    async def test_unknown_method_rejected(self, datastore, rpc, key):
        with pytest.raises(InvalidArgumentError):
            await datastore.save({"key": key, "data": {}, "method": "replace"})
        assert rpc.calls == []


class TestMerge:
    """merge runs a read-modify-write in its own transaction."""

    @pytest.mark.asyncio
    async def test_merges_over_stored_data(self, datastore, rpc, key):
        rpc.script("beginTransaction", {"transaction": "tx-merge"})
        rpc.script("lookup", {"found": [entity_result("Company", "acme", name="Acme", employees=12)]})

        await datastore.merge({"key": key, "data": {"employees": 13}})

        assert [method for method, _ in rpc.calls] == ["beginTransaction", "lookup", "commit"]
        assert rpc.calls_to("lookup")[0]["readOptions"] == {"transaction": "tx-merge"}
        commit = rpc.calls_to("commit")[0]
        assert commit["mode"] == "TRANSACTIONAL"
        assert commit["transaction"] == "tx-merge"
        assert commit["mutations"] == [
            {
                "upsert": {
                    "key": {"path": [{"kind": "Company", "name": "acme"}]},
                    "properties": {
                        "name": {"stringValue": "Acme"},
                        "employees": {"integerValue": "13"},
                    },
                }
            }
        ]

    @pytest.mark.asyncio
    async def test_rollback_failure_does_not_mask_fetch_error(self, datastore, rpc, key):
        fetch_error = RpcError("lookup", 503, "unavailable")
        rpc.script("beginTransaction", {"transaction": "tx-merge"})
        rpc.script("lookup", fetch_error)
        rpc.script("rollback", RpcError("rollback", 500, "internal"))

        with pytest.raises(RpcError) as exc_info:
            await datastore.merge({"key": key, "data": {"employees": 13}})

        assert exc_info.value is fetch_error
        assert rpc.calls_to("rollback")[0]["transaction"] == "tx-merge"
        assert rpc.calls_to("commit") == []


class TestAllocateIds:
    """Id allocation for incomplete keys."""

    @pytest.mark.asyncio
    async def test_rejects_complete_key(self, datastore, rpc, key):
        with pytest.raises(InvalidArgumentError, match=INCOMPLETE_KEY_ERROR):
            await datastore.allocate_ids(key, 2)
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_allocates_in_response_order(self, datastore, rpc):
        rpc.script(
            "allocateIds",
            {
                "keys": [
                    {"path": [{"kind": "Task", "id": "102"}]},
                    {"path": [{"kind": "Task", "id": "101"}]},
                ]
            },
        )

        keys, response = await datastore.allocate_ids(Key.from_path(["Task"]), AllocateIdsOptions(allocations=2))

        assert [k.id for k in keys] == [102, 101]
        assert "keys" in response
        assert rpc.calls_to("allocateIds")[0]["keys"] == [{"path": [{"kind": "Task"}]}] * 2


class TestAggregation:
    """runAggregationQuery."""

    @pytest.mark.asyncio
    async def test_decodes_aggregate_properties(self, datastore, rpc):
        rpc.script(
            "runAggregationQuery",
            {
                "batch": {
                    "aggregationResults": [
                        {"aggregateProperties": {"total": {"integerValue": "42"}, "avg": {"doubleValue": 2.5}}}
                    ],
                    "moreResults": "NO_MORE_RESULTS",
                }
            },
        )
        query = (
            datastore.create_aggregation_query(datastore.create_query("Task").filter("done", "=", True))
            .count("total")
            .average("priority", "avg")
        )

        results, info = await datastore.run_aggregation_query(query)

        assert results == [{"total": 42, "avg": 2.5}]
        assert info.explain_metrics is None
        aggregation_query = rpc.calls_to("runAggregationQuery")[0]["aggregationQuery"]
        assert aggregation_query["nestedQuery"]["kind"] == [{"name": "Task"}]
        assert aggregation_query["aggregations"] == [
            {"count": {}, "alias": "total"},
            {"avg": {"property": {"name": "priority"}}, "alias": "avg"},
        ]

    @pytest.mark.asyncio
    async def test_query_encoding_errors_are_deferred(self, datastore, rpc):
        query = datastore.create_aggregation_query(datastore.create_query("Task").filter("done", "~", True)).count()

        call = datastore.run_aggregation_query(query)

        with pytest.raises(QueryEncodingError):
            await call
        assert rpc.calls == []
