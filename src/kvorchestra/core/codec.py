"""
Entity codec - converts keys, entities and queries to and from the wire.

The request layer only depends on the EntityCodec protocol. JsonEntityCodec
implements it for the remote service's JSON encoding (Value, Key, Query and
EntityResult messages).
"""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, Union

from .entity import Entity, EntityRecord, GeoPoint, Int, Key, PathElement
from .errors import EntityDecodeError, InvalidArgumentError, QueryEncodingError
from .query import FILTER_OPERATORS, QueryFilter, QuerySpec


WrapNumbers = Union[bool, Callable[[str], Any]]

# Values longer than this (in bytes) cannot be indexed by the service.
MAX_INDEXED_VALUE_BYTES = 1500


class EntityCodec(Protocol):
    """Conversion between application objects and wire records."""

    def key_to_proto(self, key: Key) -> dict[str, Any]: ...

    def key_from_proto(self, proto: dict[str, Any]) -> Key: ...

    def entity_to_proto(self, record: EntityRecord) -> dict[str, Any]: ...

    def format_array(self, results: list[dict[str, Any]], wrap_numbers: WrapNumbers = False) -> list[Entity]: ...

    def decode_value(self, value: dict[str, Any], wrap_numbers: WrapNumbers = False) -> Any: ...

    def query_to_proto(self, query: QuerySpec) -> dict[str, Any]: ...


class JsonEntityCodec:
    """
    Codec for the JSON encoding of the remote service.

    Usage:
        codec = JsonEntityCodec()
        proto = codec.key_to_proto(Key.from_path(["Company", 123]))
        # {"path": [{"kind": "Company", "id": "123"}]}
    """

    # --- Keys ---

    def key_to_proto(self, key: Key) -> dict[str, Any]:
        path = []
        for index, element in enumerate(key.path):
            if not element.is_complete and index < len(key.path) - 1:
                raise InvalidArgumentError("Ancestor keys require an id or name.")
            step: dict[str, Any] = {"kind": element.kind}
            if element.id is not None:
                step["id"] = str(element.id)
            elif element.name is not None:
                step["name"] = element.name
            path.append(step)

        proto: dict[str, Any] = {"path": path}
        if key.namespace:
            proto["partitionId"] = {"namespaceId": key.namespace}
        return proto

    def key_from_proto(self, proto: dict[str, Any]) -> Key:
        path = []
        for step in proto.get("path") or []:
            element = PathElement(kind=step["kind"])
            if step.get("id") is not None:
                element.id = int(step["id"])
            elif step.get("name") is not None:
                element.name = step["name"]
            path.append(element)
        namespace = (proto.get("partitionId") or {}).get("namespaceId") or None
        return Key(path=path, namespace=namespace)

    # --- Values ---

    def encode_value(self, value: Any) -> dict[str, Any]:
        if value is None:
            return {"nullValue": "NULL_VALUE"}
        if isinstance(value, bool):
            return {"booleanValue": value}
        if isinstance(value, Int):
            return {"integerValue": value.value}
        if isinstance(value, int):
            return {"integerValue": str(value)}
        if isinstance(value, float):
            return {"doubleValue": value}
        if isinstance(value, str):
            return {"stringValue": value}
        if isinstance(value, (bytes, bytearray)):
            return {"blobValue": base64.b64encode(bytes(value)).decode("ascii")}
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            moment = value.astimezone(timezone.utc)
            return {"timestampValue": moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")}
        if isinstance(value, Key):
            return {"keyValue": self.key_to_proto(value)}
        if isinstance(value, GeoPoint):
            return {"geoPointValue": {"latitude": value.latitude, "longitude": value.longitude}}
        if isinstance(value, dict):
            return {"entityValue": {"properties": {k: self.encode_value(v) for k, v in value.items()}}}
        if isinstance(value, (list, tuple)):
            return {"arrayValue": {"values": [self.encode_value(v) for v in value]}}
        raise InvalidArgumentError(f"Unsupported value type: {type(value).__name__}")

    def decode_value(self, value: dict[str, Any], wrap_numbers: WrapNumbers = False) -> Any:
        if "nullValue" in value:
            return None
        if "booleanValue" in value:
            return bool(value["booleanValue"])
        if "integerValue" in value:
            return self._decode_integer(value["integerValue"], wrap_numbers)
        if "doubleValue" in value:
            return float(value["doubleValue"])
        if "stringValue" in value:
            return value["stringValue"]
        if "blobValue" in value:
            return base64.b64decode(value["blobValue"])
        if "timestampValue" in value:
            return _parse_timestamp(value["timestampValue"])
        if "keyValue" in value:
            return self.key_from_proto(value["keyValue"])
        if "geoPointValue" in value:
            point = value["geoPointValue"]
            return GeoPoint(latitude=point.get("latitude", 0.0), longitude=point.get("longitude", 0.0))
        if "entityValue" in value:
            properties = value["entityValue"].get("properties") or {}
            return {k: self.decode_value(v, wrap_numbers) for k, v in properties.items()}
        if "arrayValue" in value:
            values = value["arrayValue"].get("values") or []
            return [self.decode_value(v, wrap_numbers) for v in values]
        raise EntityDecodeError(f"Unknown value type in {sorted(value)}")

    def _decode_integer(self, raw: Union[str, int], wrap_numbers: WrapNumbers) -> Any:
        if callable(wrap_numbers):
            return wrap_numbers(str(raw))
        if wrap_numbers:
            return Int(str(raw))
        try:
            return int(raw)
        except (TypeError, ValueError) as e:
            raise EntityDecodeError(f"Invalid integer value {raw!r}") from e

    # --- Entities ---

    def entity_to_proto(self, record: EntityRecord) -> dict[str, Any]:
        excluded = set(record.exclude_from_indexes)
        properties = {}
        for name, value in record.data.items():
            proto = self.encode_value(value)
            if name in excluded or (
                record.exclude_large_properties and _is_large(value)
            ):
                _exclude_from_indexes(proto)
            properties[name] = proto
        return {"key": self.key_to_proto(record.key), "properties": properties}

    def format_array(self, results: list[dict[str, Any]], wrap_numbers: WrapNumbers = False) -> list[Entity]:
        entities = []
        for result in results or []:
            proto = result.get("entity")
            if not proto or "key" not in proto:
                raise EntityDecodeError("Entity result is missing its key.")
            properties = proto.get("properties") or {}
            entities.append(
                Entity(
                    key=self.key_from_proto(proto["key"]),
                    data={k: self.decode_value(v, wrap_numbers) for k, v in properties.items()},
                )
            )
        return entities

    # --- Queries ---

    def query_to_proto(self, query: QuerySpec) -> dict[str, Any]:
        proto: dict[str, Any] = {}

        if query.kinds:
            proto["kind"] = [{"name": kind} for kind in query.kinds]
        if query.select_fields:
            proto["projection"] = [{"property": {"name": f}} for f in query.select_fields]
        if query.orders:
            proto["order"] = [
                {
                    "property": {"name": order.field},
                    "direction": "DESCENDING" if order.dir == "desc" else "ASCENDING",
                }
                for order in query.orders
            ]
        if query.group_by_fields:
            proto["distinctOn"] = [{"name": f} for f in query.group_by_fields]
        if query.start_val:
            proto["startCursor"] = query.start_val
        if query.end_val:
            proto["endCursor"] = query.end_val
        if query.offset_val > 0:
            proto["offset"] = query.offset_val
        if query.limit_val > 0:
            proto["limit"] = query.limit_val
        if query.filters:
            proto["filter"] = {
                "compositeFilter": {
                    "op": "AND",
                    "filters": [self._filter_to_proto(f) for f in query.filters],
                }
            }
        return proto

    def _filter_to_proto(self, query_filter: QueryFilter) -> dict[str, Any]:
        op = FILTER_OPERATORS.get(query_filter.op.upper())
        if op is None:
            raise QueryEncodingError(f"Invalid filter operator: {query_filter.op!r}")
        if query_filter.field == "__key__" and not _is_key_value(query_filter.value):
            raise QueryEncodingError("A key filter requires a Key value.")
        if op == "HAS_ANCESTOR" and not isinstance(query_filter.value, Key):
            raise QueryEncodingError("HAS_ANCESTOR filters require a Key value.")
        return {
            "propertyFilter": {
                "property": {"name": query_filter.field},
                "op": op,
                "value": self.encode_value(query_filter.value),
            }
        }


def _is_key_value(value: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return all(isinstance(v, Key) for v in value)
    return isinstance(value, Key)


def _is_large(value: Any) -> bool:
    if isinstance(value, str):
        return len(value.encode("utf-8")) > MAX_INDEXED_VALUE_BYTES
    if isinstance(value, (bytes, bytearray)):
        return len(value) > MAX_INDEXED_VALUE_BYTES
    return False


def _exclude_from_indexes(proto: dict[str, Any]) -> None:
    # Array values are excluded element by element.
    if "arrayValue" in proto:
        for value in proto["arrayValue"]["values"]:
            value["excludeFromIndexes"] = True
    else:
        proto["excludeFromIndexes"] = True


def _parse_timestamp(raw: str) -> datetime:
    text = raw.replace("Z", "+00:00")
    # datetime only keeps microseconds; the service may send nanoseconds.
    if "." in text:
        head, rest = text.split(".", 1)
        digits = ""
        while rest and rest[0].isdigit():
            digits += rest[0]
            rest = rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise EntityDecodeError(f"Invalid timestamp value {raw!r}") from e

