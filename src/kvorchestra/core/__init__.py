"""
Core module - keys, entities, query specifications, wire models and codec.
"""

from __future__ import annotations

from .codec import EntityCodec, JsonEntityCodec
from .config import ClientConfig, load_config
from .entity import (
    Entity,
    EntityRecord,
    GeoPoint,
    Int,
    Key,
    PathElement,
    prepare_entity_object,
)
from .errors import (
    EntityDecodeError,
    InvalidArgumentError,
    KVOrchestraError,
    QueryEncodingError,
    RpcError,
    TRANSACTION_EXPIRED_MESSAGE,
    TransactionExpiredError,
)
from .query import AggregateQuery, Aggregation, QueryFilter, QueryOrder, QuerySpec
from .request_types import (
    AllocateIdsOptions,
    ExecutionStats,
    ExplainMetrics,
    ExplainOptions,
    PlanSummary,
    ReadOptions,
    RunOptions,
    RunQueryInfo,
    RunQueryOptions,
    SharedQueryOptions,
    Timestamp,
    TransactionOptions,
)

__all__ = [
    # Codec
    "EntityCodec",
    "JsonEntityCodec",
    # Config
    "ClientConfig",
    "load_config",
    # Entities
    "Entity",
    "EntityRecord",
    "GeoPoint",
    "Int",
    "Key",
    "PathElement",
    "prepare_entity_object",
    # Errors
    "KVOrchestraError",
    "InvalidArgumentError",
    "QueryEncodingError",
    "TransactionExpiredError",
    "TRANSACTION_EXPIRED_MESSAGE",
    "RpcError",
    "EntityDecodeError",
    # Queries
    "QuerySpec",
    "QueryFilter",
    "QueryOrder",
    "AggregateQuery",
    "Aggregation",
    # Options and results
    "AllocateIdsOptions",
    "ExplainOptions",
    "ExplainMetrics",
    "ExecutionStats",
    "PlanSummary",
    "ReadOptions",
    "RunOptions",
    "RunQueryInfo",
    "RunQueryOptions",
    "SharedQueryOptions",
    "Timestamp",
    "TransactionOptions",
]
