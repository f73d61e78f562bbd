"""
Request orchestrator - the entry points of clients and transactions.

Handles:
- Gating every call on the transaction state
- Composing read options and wiring the transaction handle into requests
- Lookups and queries through the pagination engine
- Buffering mutations in a transaction, committing them directly otherwise
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional, Sequence, Type, TypeVar, Union

from ..core.codec import EntityCodec
from ..core.config import ClientConfig
from ..core.entity import Entity, EntityInput, EntityRecord, Key, prepare_entity_object
from ..core.errors import InvalidArgumentError
from ..core.query import AggregateQuery, QuerySpec
from ..core.request_types import (
    AllocateIdsOptions,
    AllocateIdsRequest,
    CommitRequest,
    LookupRequest,
    ReadOptions,
    RequestOptions,
    RunAggregationQueryRequest,
    RunQueryInfo,
    RunQueryOptions,
    RunQueryRequest,
    SharedQueryOptions,
)
from ..core.utils import clone
from .callbacks import with_callback
from .context import RequestContext
from .metrics import get_info_from_stats
from .options import OptionComposer, throw_on_read_time_and_consistency, throw_on_transaction_errors
from .pagination import LookupPager, PaginationEngine, QueryPager, ResultStream
from .rpc_client import CancellableCall, RpcClient
from .state import TransactionState

if TYPE_CHECKING:
    from .transaction import Transaction

logger = logging.getLogger(__name__)

KEYS_REQUIRED_ERROR = "At least one Key object is required."
INCOMPLETE_KEY_ERROR = "An incomplete key should be provided."
COMPLETE_KEY_ERROR = "Only complete keys can be used to look up or delete entities."

# Methods that read through the transaction handle once it exists.
READ_METHODS = ("lookup", "runQuery", "runAggregationQuery")

MUTATION_METHODS = ("insert", "update", "upsert")

SharedT = TypeVar("SharedT", bound=SharedQueryOptions)

Keys = Union[Key, Sequence[Key]]
Entities = Union[EntityInput, Sequence[EntityInput]]


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _with_shared(cls: Type[SharedT], shared: SharedQueryOptions, **fields: Any) -> SharedT:
    return cls(
        read_options=shared.read_options,
        partition_id=shared.partition_id,
        explain_options=shared.explain_options,
        **fields,
    )


def _input_key(obj: EntityInput) -> Optional[Key]:
    if isinstance(obj, (Entity, EntityRecord)):
        return obj.key
    if isinstance(obj, dict):
        return obj.get("key")
    return None


async def rollback_quietly(transaction: "Transaction") -> None:
    """Roll back, never letting a rollback failure replace the original error."""
    try:
        await transaction.rollback()
    except Exception as e:
        logger.warning(f"Rollback of transaction {transaction.id} failed: {e}")


class RequestOrchestrator:
    """
    Issues lookups, queries and mutations against the remote store.

    Shared by the root client (Datastore) and Transaction; the context's role
    tag says which one a call comes from.
    """

    def __init__(
        self,
        rpc_client: RpcClient,
        codec: EntityCodec,
        context: RequestContext,
        config: ClientConfig,
        datastore: Any = None,
    ):
        """
        Initialize orchestrator.

        Args:
            rpc_client: Transport for RPC calls
            codec: Key/entity/query wire codec
            context: Role, transaction state and mutation buffer
            config: Project, database and request defaults
            datastore: Root client owning this context (self for the root)
        """
        self.rpc = rpc_client
        self.codec = codec
        self.context = context
        self.config = config
        self.datastore = datastore if datastore is not None else self
        self.composer = OptionComposer()
        self.engine = PaginationEngine()

    @property
    def id(self) -> Optional[str]:
        return self.context.id

    @property
    def state(self) -> TransactionState:
        return self.context.state

    def check_expired(self) -> None:
        self.context.check_expired()

    def parse_transaction_response(self, response: Optional[dict[str, Any]]) -> None:
        if response:
            self.context.begin(response.get("transaction"))

    def _coerce_options(self, options: Union[RunQueryOptions, dict[str, Any], None]) -> RunQueryOptions:
        coerced = RunQueryOptions.coerce(options)
        if self.config.wrap_numbers and "wrap_numbers" not in coerced.model_fields_set:
            coerced = coerced.model_copy(update={"wrap_numbers": True})
        return coerced

    async def _ensure_begun(self) -> None:
        """Begin the server-side transaction; only transactions have one."""
        raise InvalidArgumentError("Only a transaction can be begun.")

    # --- Dispatch ---

    def prepare_request(self, method: str, request: RequestOptions) -> RequestOptions:
        """
        Finalize a request for sending.

        Works on a copy: sets the commit mode, the transaction handle, and the
        project and database ids.
        """
        prepared = request.model_copy(deep=True)
        handle = self.context.id

        if isinstance(prepared, CommitRequest):
            if handle:
                prepared.mode = "TRANSACTIONAL"
                prepared.transaction = handle
            else:
                prepared.mode = "NON_TRANSACTIONAL"

        if self.config.database_id:
            prepared.database_id = self.config.database_id

        if method == "rollback":
            prepared.transaction = handle

        throw_on_transaction_errors(self.context, prepared)

        if handle and method in READ_METHODS and isinstance(prepared, SharedQueryOptions):
            read_options = prepared.read_options or ReadOptions()
            # The transaction was begun by an earlier call.
            read_options.new_transaction = None
            read_options.transaction = handle
            read_options.consistency_type = "transaction"
            prepared.read_options = read_options

        prepared.project_id = self.config.project_id
        return prepared

    async def request_(
        self,
        method: str,
        request: RequestOptions,
        call_options: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Send one RPC. Transport errors propagate unchanged."""
        prepared = self.prepare_request(method, request)
        logger.debug(f"Calling {method} (transaction={self.context.id})")
        return await self.rpc.invoke(method, prepared, call_options)

    def request_stream_(
        self,
        method: str,
        request: RequestOptions,
        call_options: Optional[dict[str, Any]] = None,
    ) -> CancellableCall:
        """Send one RPC and return a handle that can cancel it."""
        prepared = self.prepare_request(method, request)
        logger.debug(f"Streaming {method} (transaction={self.context.id})")
        return self.rpc.stream(method, prepared, call_options)

    # --- Reads ---

    def create_read_stream(
        self,
        keys: Keys,
        options: Union[RunQueryOptions, dict[str, Any], None] = None,
    ) -> ResultStream:
        """
        Stream the entities stored under the given keys.

        Keys the server defers are requested again in later rounds; missing
        keys are simply absent from the stream.
        """

        def start():
            key_list = _as_list(keys)
            if not key_list:
                raise InvalidArgumentError(KEYS_REQUIRED_ERROR)
            self.check_expired()
            if not all(isinstance(key, Key) and key.is_complete for key in key_list):
                raise InvalidArgumentError(COMPLETE_KEY_ERROR)
            opts = self._coerce_options(options)
            shared = self.composer.compose(self.context, opts)

            def send(key_protos: list[dict[str, Any]]) -> CancellableCall:
                request = _with_shared(LookupRequest, shared, keys=key_protos)
                return self.request_stream_("lookup", request, opts.call_options)

            pager = LookupPager(send, self.codec, opts.wrap_numbers, self.parse_transaction_response)
            return pager, [self.codec.key_to_proto(key) for key in key_list]

        return self.engine.stream(start)

    @with_callback
    async def get(
        self,
        keys: Keys,
        options: Union[RunQueryOptions, dict[str, Any], None] = None,
    ) -> Union[Optional[Entity], list[Entity]]:
        """
        Retrieve entities by key.

        Args:
            keys: A single Key, or a list of keys
            options: consistency / read_time / wrap_numbers / call_options

        Returns:
            For a single Key, the entity or None when it does not exist; for a
            list, the list of found entities (possibly empty)
        """
        results = await self.create_read_stream(keys, options).collect()
        if isinstance(keys, Key):
            return results[0] if results else None
        return results

    def run_query_stream(
        self,
        query: QuerySpec,
        options: Union[RunQueryOptions, dict[str, Any], None] = None,
    ) -> ResultStream:
        """
        Stream the results of a query across as many rounds as needed.

        The final RunQueryInfo is published through stream.on_info listeners
        and stored on stream.info once the last round was consumed.
        """

        def start():
            self.check_expired()
            opts = self._coerce_options(options)
            throw_on_read_time_and_consistency(opts)
            traversal = query.model_copy(deep=True)
            shared = self.composer.compose(self.context, opts, traversal)

            def send(round_query: QuerySpec) -> CancellableCall:
                request = _with_shared(
                    RunQueryRequest,
                    shared,
                    query=self.codec.query_to_proto(round_query),
                )
                return self.request_stream_("runQuery", request, opts.call_options)

            pager = QueryPager(send, self.codec, opts.wrap_numbers, self.parse_transaction_response)
            return pager, traversal

        return self.engine.stream(start)

    @with_callback
    async def run_query(
        self,
        query: QuerySpec,
        options: Union[RunQueryOptions, dict[str, Any], None] = None,
    ) -> tuple[list[Entity], RunQueryInfo]:
        """
        Run a query and collect every result.

        Returns:
            (entities, info) where info carries the end cursor, the
            more-results status and explain metrics
        """
        stream = self.run_query_stream(query, options)
        entities = await stream.collect()
        return entities, stream.info or RunQueryInfo()

    @with_callback
    async def run_aggregation_query(
        self,
        query: AggregateQuery,
        options: Union[RunQueryOptions, dict[str, Any], None] = None,
    ) -> tuple[list[dict[str, Any]], RunQueryInfo]:
        """
        Run aggregations over a nested query.

        Returns:
            (results, info) with one plain dict per aggregation result,
            keyed by alias
        """
        self.check_expired()
        opts = self._coerce_options(options)
        throw_on_read_time_and_consistency(opts)

        nested = query.query.model_copy(deep=True)
        query_proto = self.codec.query_to_proto(nested)
        shared = self.composer.compose(self.context, opts, nested)

        request = _with_shared(
            RunAggregationQueryRequest,
            shared,
            aggregation_query={
                "nestedQuery": query_proto,
                "aggregations": query.to_proto(),
            },
        )
        response = await self.request_("runAggregationQuery", request, opts.call_options)

        info = get_info_from_stats(response)
        self.parse_transaction_response(response)
        batch = response.get("batch")
        if not batch:
            return [], info

        results = [
            {
                alias: self.codec.decode_value(value, opts.wrap_numbers)
                for alias, value in (result.get("aggregateProperties") or {}).items()
            }
            for result in batch.get("aggregationResults") or []
        ]
        return results, info

    # --- Mutations ---

    async def _commit_or_buffer(
        self,
        mutations: list[dict[str, Any]],
        call_options: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        """
        Buffer mutations in an active transaction, or commit them now.

        Returns:
            The commit response, or None when buffered
        """
        if self.context.is_transaction and not self.context.has_handle:
            # A write never leaves the transaction it was made through.
            await self._ensure_begun()
        if self.context.has_handle:
            self.context.mutations.extend(mutations)
            logger.debug(f"Buffered {len(mutations)} mutation(s) in transaction {self.context.id}")
            return None
        return await self.request_("commit", CommitRequest(mutations=mutations), call_options)

    @with_callback
    async def delete(
        self,
        keys: Keys,
        call_options: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        """Delete entities by key."""
        self.check_expired()
        key_list = _as_list(keys)
        if not key_list:
            raise InvalidArgumentError(KEYS_REQUIRED_ERROR)
        if not all(isinstance(key, Key) and key.is_complete for key in key_list):
            raise InvalidArgumentError(COMPLETE_KEY_ERROR)
        mutations = [{"delete": self.codec.key_to_proto(key)} for key in key_list]
        return await self._commit_or_buffer(mutations, call_options)

    async def _save(
        self,
        entities: Entities,
        method: Optional[str] = None,
        call_options: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        self.check_expired()
        inputs = _as_list(entities)
        if not inputs:
            raise InvalidArgumentError("At least one entity is required.")

        mutations = []
        for obj in inputs:
            record = prepare_entity_object(obj)
            if method is not None:
                record.method = method
            chosen = record.method or ("upsert" if record.key.is_complete else "insert")
            if chosen not in MUTATION_METHODS:
                raise InvalidArgumentError(f"Method {chosen} not recognized.")
            mutations.append({chosen: self.codec.entity_to_proto(record)})

        response = await self._commit_or_buffer(mutations, call_options)
        if response is not None:
            self._fill_allocated_keys(inputs, response)
        return response

    def _fill_allocated_keys(self, inputs: list[EntityInput], response: dict[str, Any]) -> None:
        """Give the caller's incomplete keys the ids the server allocated."""
        results = response.get("mutationResults") or []
        for obj, result in zip(inputs, results):
            key = _input_key(obj)
            if key is None or key.is_complete or not result.get("key"):
                continue
            allocated = self.codec.key_from_proto(result["key"])
            key.path[-1].id = allocated.id
            key.path[-1].name = allocated.name

    @with_callback
    async def save(self, entities: Entities, call_options: Optional[dict[str, Any]] = None) -> Optional[dict[str, Any]]:
        """
        Insert or update entities.

        Each entity's own method is used when set; otherwise complete keys are
        upserted and incomplete keys inserted.
        """
        return await self._save(entities, None, call_options)

    @with_callback
    async def insert(self, entities: Entities, call_options: Optional[dict[str, Any]] = None) -> Optional[dict[str, Any]]:
        return await self._save(entities, "insert", call_options)

    @with_callback
    async def update(self, entities: Entities, call_options: Optional[dict[str, Any]] = None) -> Optional[dict[str, Any]]:
        return await self._save(entities, "update", call_options)

    @with_callback
    async def upsert(self, entities: Entities, call_options: Optional[dict[str, Any]] = None) -> Optional[dict[str, Any]]:
        return await self._save(entities, "upsert", call_options)

    @with_callback
    async def merge(self, entities: Entities, call_options: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Shallow-merge data into stored entities atomically.

        Runs in its own transaction: each entity is read, the caller's data is
        laid over the stored properties, and the result is upserted. On any
        failure the transaction is rolled back and the original error raised.
        """
        self.check_expired()
        transaction = self.datastore.transaction()
        try:
            await transaction.run()
        except Exception:
            await rollback_quietly(transaction)
            raise

        async def merge_one(obj: EntityInput) -> None:
            record = prepare_entity_object(obj)
            current = await transaction.get(record.key)
            record.method = "upsert"
            record.data = {**(current.data if current else {}), **record.data}
            await transaction.save(record)

        try:
            await asyncio.gather(*(merge_one(obj) for obj in _as_list(entities)))
            return await transaction.commit(call_options)
        except Exception:
            await rollback_quietly(transaction)
            raise

    # --- Ids ---

    @with_callback
    async def allocate_ids(
        self,
        key: Key,
        options: Union[int, AllocateIdsOptions, dict[str, Any]],
    ) -> tuple[list[Key], dict[str, Any]]:
        """
        Reserve ids without creating entities.

        Args:
            key: Incomplete key naming the kind (and ancestors) to allocate in
            options: Number of ids, or AllocateIdsOptions

        Returns:
            (keys, response) with completed keys in response order
        """
        self.check_expired()
        if key.is_complete:
            raise InvalidArgumentError(INCOMPLETE_KEY_ERROR)
        if isinstance(options, int):
            options = AllocateIdsOptions(allocations=options)
        elif isinstance(options, dict):
            options = AllocateIdsOptions.model_validate(options)

        key_proto = self.codec.key_to_proto(key)
        request = AllocateIdsRequest(keys=[clone(key_proto) for _ in range(options.allocations)])
        response = await self.request_("allocateIds", request, options.call_options)
        keys = [self.codec.key_from_proto(proto) for proto in response.get("keys") or []]
        return keys, response
