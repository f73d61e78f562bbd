"""
kvorchestra - request and transaction orchestration for a remote document store.

Sits between application calls (get, query, commit, allocate ids) and the
store's RPC surface:
- Transaction lifecycle and the read options allowed inside it
- Multi-round lookups and queries delivered as one stream
- Explain metrics decoded from query responses

Usage:
    from kvorchestra import ClientConfig, Datastore

    datastore = Datastore(ClientConfig(project_id="my-project"))
    query = datastore.create_query("Task").filter("done", "=", False).limit(10)
    tasks, info = await datastore.run_query(query)
"""

from __future__ import annotations

from .core import (
    AggregateQuery,
    Aggregation,
    AllocateIdsOptions,
    ClientConfig,
    Entity,
    EntityCodec,
    EntityDecodeError,
    EntityRecord,
    ExecutionStats,
    ExplainMetrics,
    ExplainOptions,
    GeoPoint,
    Int,
    InvalidArgumentError,
    JsonEntityCodec,
    Key,
    KVOrchestraError,
    PathElement,
    PlanSummary,
    QueryEncodingError,
    QueryFilter,
    QueryOrder,
    QuerySpec,
    RpcError,
    RunOptions,
    RunQueryInfo,
    RunQueryOptions,
    TRANSACTION_EXPIRED_MESSAGE,
    TransactionExpiredError,
    TransactionOptions,
    load_config,
)
from .runtime import (
    CancellableCall,
    Datastore,
    HttpRpcClient,
    RequestOrchestrator,
    RequestRole,
    ResultStream,
    RpcClient,
    Transaction,
    TransactionState,
)

__version__ = "0.1.0"

__all__ = [
    # Client
    "Datastore",
    "Transaction",
    "RequestOrchestrator",
    "TransactionState",
    "RequestRole",
    "ResultStream",
    # Transport
    "RpcClient",
    "HttpRpcClient",
    "CancellableCall",
    # Codec
    "EntityCodec",
    "JsonEntityCodec",
    # Config
    "ClientConfig",
    "load_config",
    # Entities
    "Key",
    "PathElement",
    "Entity",
    "EntityRecord",
    "Int",
    "GeoPoint",
    # Queries
    "QuerySpec",
    "QueryFilter",
    "QueryOrder",
    "AggregateQuery",
    "Aggregation",
    # Options and results
    "RunQueryOptions",
    "RunOptions",
    "TransactionOptions",
    "AllocateIdsOptions",
    "ExplainOptions",
    "RunQueryInfo",
    "ExplainMetrics",
    "PlanSummary",
    "ExecutionStats",
    # Errors
    "KVOrchestraError",
    "InvalidArgumentError",
    "QueryEncodingError",
    "TransactionExpiredError",
    "TRANSACTION_EXPIRED_MESSAGE",
    "RpcError",
    "EntityDecodeError",
]
