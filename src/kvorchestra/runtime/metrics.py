"""
Metrics decoder - explain metrics returned alongside query responses.

Plan summaries and debug stats arrive as generic structured values; the
numeric execution stats may arrive as numbers or decimal strings.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ..core.errors import EntityDecodeError
from ..core.request_types import (
    ExecutionStats,
    ExplainMetrics,
    PlanSummary,
    RunQueryInfo,
)

_STRUCT_VALUE_KINDS = (
    "nullValue",
    "numberValue",
    "stringValue",
    "boolValue",
    "structValue",
    "listValue",
)


def decode_struct_value(value: Any) -> Any:
    """Decode one generic structured Value into plain data."""
    if not isinstance(value, dict):
        return value
    if "nullValue" in value:
        return None
    if "numberValue" in value:
        return value["numberValue"]
    if "stringValue" in value:
        return value["stringValue"]
    if "boolValue" in value:
        return value["boolValue"]
    if "structValue" in value:
        return decode_struct(value["structValue"])
    if "listValue" in value:
        return [decode_struct_value(v) for v in value["listValue"].get("values") or []]
    raise EntityDecodeError(f"Unknown structured value in {sorted(value)}")


def decode_struct(struct: Any) -> Any:
    """
    Decode a generic structured record into plain nested data.

    Accepts the encoded form ({"fields": {name: Value}}) and records that are
    already plain JSON, which is what the JSON surface of the service returns.
    """
    if not isinstance(struct, dict):
        return struct
    fields = struct.get("fields")
    if len(struct) == 1 and isinstance(fields, dict) and _looks_encoded(fields):
        return {name: decode_struct_value(value) for name, value in fields.items()}
    return struct


def _looks_encoded(fields: dict[str, Any]) -> bool:
    return all(
        isinstance(v, dict) and len(v) == 1 and next(iter(v)) in _STRUCT_VALUE_KINDS
        for v in fields.values()
    )


def to_int(value: Any) -> Optional[int]:
    """
    Normalize a number or decimal string to int.

    Duration strings such as "0.25s" are accepted and truncated.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    if text.endswith("s"):
        text = text[:-1]
    try:
        return int(Decimal(text))
    except InvalidOperation as e:
        raise EntityDecodeError(f"Invalid numeric stat {value!r}") from e


def decode_explain_metrics(response: Optional[dict[str, Any]]) -> Optional[ExplainMetrics]:
    """
    Decode explain metrics from a runQuery or runAggregationQuery response.

    Returns:
        None if the response carries neither a plan summary nor execution
        stats, so "no explain requested" stays distinguishable from an empty
        explain.
    """
    raw = (response or {}).get("explainMetrics") or {}
    metrics = ExplainMetrics()

    plan_summary = raw.get("planSummary") or {}
    if plan_summary.get("indexesUsed"):
        metrics.plan_summary = PlanSummary(
            indexes_used=[decode_struct(index) for index in plan_summary["indexesUsed"]]
        )

    stats = raw.get("executionStats")
    if stats is not None:
        execution_stats = ExecutionStats(
            results_returned=to_int(stats.get("resultsReturned")),
            execution_duration=to_int(stats.get("executionDuration")),
            read_operations=to_int(stats.get("readOperations")),
        )
        if stats.get("debugStats"):
            execution_stats.debug_stats = decode_struct(stats["debugStats"])
        metrics.execution_stats = execution_stats

    if metrics.plan_summary is None and metrics.execution_stats is None:
        return None
    return metrics


def get_info_from_stats(response: Optional[dict[str, Any]]) -> RunQueryInfo:
    """RunQueryInfo carrying only the decoded explain metrics."""
    return RunQueryInfo(explain_metrics=decode_explain_metrics(response))
