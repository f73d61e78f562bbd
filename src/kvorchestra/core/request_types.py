"""
Pydantic models for request options, wire requests and query results.

Wire models serialize with camelCase aliases (``model_dump(by_alias=True)``),
which is the field naming of the remote service's JSON surface.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_serializer

from .utils import to_camel_case


MORE_RESULTS_NOT_FINISHED = "NOT_FINISHED"
MORE_RESULTS_AFTER_LIMIT = "MORE_RESULTS_AFTER_LIMIT"
MORE_RESULTS_AFTER_CURSOR = "MORE_RESULTS_AFTER_CURSOR"
NO_MORE_RESULTS = "NO_MORE_RESULTS"


class WireModel(BaseModel):
    """Base for every model sent to the remote service."""
    model_config = ConfigDict(
        alias_generator=to_camel_case,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready payload with camelCase names and unset fields dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Caller options ---

class ExplainOptions(WireModel):
    """Ask the server to plan (and with analyze=True, also run) a query."""
    analyze: bool = False


class TransactionOptions(BaseModel):
    """Options for the transaction begun by Transaction.run()."""
    read_only: bool = False
    id: Optional[str] = None  # previous transaction to retry


class RunOptions(BaseModel):
    """Options accepted by Transaction.run()."""
    read_only: bool = False
    transaction_id: Optional[str] = None
    transaction_options: Optional[TransactionOptions] = None
    call_options: dict[str, Any] = Field(default_factory=dict)


class RunQueryOptions(BaseModel):
    """
    Read options accepted by get, run_query and run_aggregation_query.

    consistency and read_time are mutually exclusive, and both are rejected
    inside a transaction.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    consistency: Optional[str] = None  # "strong" | "eventual"
    read_time: Optional[int] = None  # epoch milliseconds
    explain_options: Optional[ExplainOptions] = None
    wrap_numbers: Union[bool, Callable[[str], Any]] = False
    call_options: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def coerce(cls, options: Union[RunQueryOptions, dict[str, Any], None]) -> RunQueryOptions:
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        return cls.model_validate(options)


class AllocateIdsOptions(BaseModel):
    allocations: int = 1
    call_options: dict[str, Any] = Field(default_factory=dict)


# --- Request envelope ---

class Timestamp(WireModel):
    """
    Point in time as whole seconds plus nanos.

    Serialized to an RFC 3339 string in JSON mode, which is how the remote
    service expects timestamps on its JSON surface.
    """
    seconds: int
    nanos: int = 0

    @model_serializer(mode="wrap")
    def _serialize(self, handler, info):
        if info.mode == "json":
            moment = datetime.fromtimestamp(self.seconds, tz=timezone.utc)
            fraction = f".{self.nanos:09d}" if self.nanos else ""
            return moment.strftime("%Y-%m-%dT%H:%M:%S") + fraction + "Z"
        return handler(self)


class ReadOptions(WireModel):
    """
    Read options of a single request.

    Only one of read_consistency, transaction, new_transaction and read_time
    may be set. consistency_type records which one is meant and is not sent.
    """
    read_consistency: Optional[int] = None
    transaction: Optional[str] = None
    new_transaction: Optional[dict[str, Any]] = None
    read_time: Optional[Timestamp] = None
    consistency_type: Optional[
        Literal["readConsistency", "transaction", "newTransaction", "readTime"]
    ] = Field(default=None, exclude=True)


class PartitionId(WireModel):
    project_id: Optional[str] = None
    database_id: Optional[str] = None
    namespace_id: Optional[str] = None


class RequestOptions(WireModel):
    """Fields shared by every request."""
    project_id: Optional[str] = None
    database_id: Optional[str] = None


class SharedQueryOptions(RequestOptions):
    """Envelope shared by lookup, runQuery and runAggregationQuery."""
    read_options: Optional[ReadOptions] = None
    partition_id: Optional[PartitionId] = None
    explain_options: Optional[ExplainOptions] = None


class LookupRequest(SharedQueryOptions):
    keys: list[dict[str, Any]] = Field(default_factory=list)


class RunQueryRequest(SharedQueryOptions):
    query: Optional[dict[str, Any]] = None


class RunAggregationQueryRequest(SharedQueryOptions):
    aggregation_query: Optional[dict[str, Any]] = None


class CommitRequest(RequestOptions):
    mode: Optional[Literal["TRANSACTIONAL", "NON_TRANSACTIONAL"]] = None
    transaction: Optional[str] = None
    mutations: list[dict[str, Any]] = Field(default_factory=list)


class AllocateIdsRequest(RequestOptions):
    keys: list[dict[str, Any]] = Field(default_factory=list)


class BeginTransactionRequest(RequestOptions):
    transaction_options: Optional[dict[str, Any]] = None


class RollbackRequest(RequestOptions):
    transaction: Optional[str] = None


# --- Results ---

class PlanSummary(BaseModel):
    indexes_used: list[Any] = Field(default_factory=list)


class ExecutionStats(BaseModel):
    results_returned: Optional[int] = None
    execution_duration: Optional[int] = None
    read_operations: Optional[int] = None
    debug_stats: Optional[Any] = None


class ExplainMetrics(BaseModel):
    plan_summary: Optional[PlanSummary] = None
    execution_stats: Optional[ExecutionStats] = None


class RunQueryInfo(BaseModel):
    """
    Metadata of a completed query.

    Produced once per logical query, after its final round.
    """
    end_cursor: Optional[str] = None
    more_results: Optional[str] = None
    explain_metrics: Optional[ExplainMetrics] = None
