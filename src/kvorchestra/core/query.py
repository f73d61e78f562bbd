"""
Pydantic models for query specifications.

These describe what a query asks for; translating them into the wire query
shape is the codec's job.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


FILTER_OPERATORS = {
    "=": "EQUAL",
    "==": "EQUAL",
    "!=": "NOT_EQUAL",
    "<": "LESS_THAN",
    "<=": "LESS_THAN_OR_EQUAL",
    ">": "GREATER_THAN",
    ">=": "GREATER_THAN_OR_EQUAL",
    "HAS_ANCESTOR": "HAS_ANCESTOR",
    "IN": "IN",
    "NOT_IN": "NOT_IN",
}


class QueryFilter(BaseModel):
    """
    Property filter.

    Example: QueryFilter(field="age", op=">=", value=21)
    """
    field: str
    op: str
    value: Any


class QueryOrder(BaseModel):
    """Sort order on a property."""
    field: str
    dir: Literal["asc", "desc"] = "asc"


class QuerySpec(BaseModel):
    """
    A query over one kind.

    limit == -1 means unbounded and offset == -1 means no offset configured.
    The pagination engine works on a copy, so the caller's object is never
    changed by running it.

    Usage:
        query = (
            QuerySpec(kinds=["Task"])
            .filter("done", "=", False)
            .order("priority", descending=True)
            .limit(10)
        )
    """
    namespace: Optional[str] = None
    kinds: list[str] = Field(default_factory=list)
    filters: list[QueryFilter] = Field(default_factory=list)
    orders: list[QueryOrder] = Field(default_factory=list)
    select_fields: list[str] = Field(default_factory=list)
    group_by_fields: list[str] = Field(default_factory=list)
    start_val: Optional[str] = None
    end_val: Optional[str] = None
    limit_val: int = -1
    offset_val: int = -1

    def filter(self, field: str, op: str, value: Any) -> QuerySpec:
        self.filters.append(QueryFilter(field=field, op=op, value=value))
        return self

    def has_ancestor(self, key: Any) -> QuerySpec:
        return self.filter("__key__", "HAS_ANCESTOR", key)

    def order(self, field: str, descending: bool = False) -> QuerySpec:
        self.orders.append(QueryOrder(field=field, dir="desc" if descending else "asc"))
        return self

    def select(self, fields: list[str] | str) -> QuerySpec:
        self.select_fields = [fields] if isinstance(fields, str) else list(fields)
        return self

    def group_by(self, fields: list[str] | str) -> QuerySpec:
        self.group_by_fields = [fields] if isinstance(fields, str) else list(fields)
        return self

    def start(self, cursor: Optional[str]) -> QuerySpec:
        self.start_val = cursor
        return self

    def end(self, cursor: Optional[str]) -> QuerySpec:
        self.end_val = cursor
        return self

    def limit(self, n: int) -> QuerySpec:
        self.limit_val = n
        return self

    def offset(self, n: int) -> QuerySpec:
        self.offset_val = n
        return self


class Aggregation(BaseModel):
    """A single named aggregation over the nested query."""
    op: Literal["count", "sum", "avg"]
    alias: Optional[str] = None
    property: Optional[str] = None

    def to_proto(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.property is not None:
            body["property"] = {"name": self.property}
        proto: dict[str, Any] = {self.op: body}
        if self.alias is not None:
            proto["alias"] = self.alias
        return proto


class AggregateQuery(BaseModel):
    """
    Aggregations computed server-side over a nested query.

    Usage:
        AggregateQuery(query=query).count("total").sum("price", "revenue")
    """
    query: QuerySpec
    aggregations: list[Aggregation] = Field(default_factory=list)

    def count(self, alias: Optional[str] = None) -> AggregateQuery:
        self.aggregations.append(Aggregation(op="count", alias=alias))
        return self

    def sum(self, property: str, alias: Optional[str] = None) -> AggregateQuery:
        self.aggregations.append(Aggregation(op="sum", property=property, alias=alias))
        return self

    def average(self, property: str, alias: Optional[str] = None) -> AggregateQuery:
        self.aggregations.append(Aggregation(op="avg", property=property, alias=alias))
        return self

    def to_proto(self) -> list[dict[str, Any]]:
        return [aggregation.to_proto() for aggregation in self.aggregations]
