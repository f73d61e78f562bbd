"""
Application-level keys and entities.

A Key is a hierarchical path of (kind, id-or-name) pairs. An Entity is an
explicit {key, data} record; mutating calls accept a few caller-facing shapes
which are normalized once into an EntityRecord.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .errors import InvalidArgumentError
from .utils import clone


@dataclass
class PathElement:
    """A single (kind, id-or-name) step of a key path."""
    kind: str
    id: Optional[int] = None
    name: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.id is not None or self.name is not None


@dataclass
class Key:
    """
    Hierarchical key identifying a stored record.

    The terminal element may lack an id and a name ("incomplete"): such a key
    can only be used to create records or allocate ids.

    Usage:
        Key.from_path(["Company", 123, "Employee", "alice"])
        Key.from_path(["Company"], namespace="ns-test")  # incomplete
    """
    path: list[PathElement]
    namespace: Optional[str] = None

    def __post_init__(self):
        if not self.path:
            raise InvalidArgumentError("A key should contain at least a kind.")

    @classmethod
    def from_path(cls, path: list[Any], namespace: Optional[str] = None) -> Key:
        """
        Build a key from a flat [kind, identifier, kind, identifier, ...] list.

        A trailing kind without identifier produces an incomplete key.
        """
        elements: list[PathElement] = []
        for i in range(0, len(path), 2):
            kind = path[i]
            if not isinstance(kind, str):
                raise InvalidArgumentError(f"Key kind must be a string, got {kind!r}")
            element = PathElement(kind=kind)
            if i + 1 < len(path):
                identifier = path[i + 1]
                if isinstance(identifier, bool):
                    raise InvalidArgumentError(f"Invalid key identifier {identifier!r}")
                if isinstance(identifier, int):
                    element.id = identifier
                elif isinstance(identifier, str):
                    element.name = identifier
                elif identifier is not None:
                    raise InvalidArgumentError(f"Invalid key identifier {identifier!r}")
            elements.append(element)
        return cls(path=elements, namespace=namespace)

    @property
    def kind(self) -> str:
        return self.path[-1].kind

    @property
    def id(self) -> Optional[int]:
        return self.path[-1].id

    @property
    def name(self) -> Optional[str]:
        return self.path[-1].name

    @property
    def parent(self) -> Optional[Key]:
        if len(self.path) == 1:
            return None
        return Key(path=clone(self.path[:-1]), namespace=self.namespace)

    @property
    def is_complete(self) -> bool:
        return self.path[-1].is_complete

    def flat_path(self) -> list[Any]:
        flat: list[Any] = []
        for element in self.path:
            flat.append(element.kind)
            if element.is_complete:
                flat.append(element.id if element.id is not None else element.name)
        return flat

    def __str__(self) -> str:
        ns = f"{self.namespace}:" if self.namespace else ""
        return ns + "/".join(str(part) for part in self.flat_path())


@dataclass(frozen=True)
class Int:
    """
    Integer value kept in its wire (decimal string) form.

    Returned instead of a plain int when a caller asks for wrapped numbers.
    """
    value: str

    def value_of(self) -> int:
        return int(self.value)


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass
class Entity:
    """A stored record: its key and its property data."""
    key: Key
    data: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        return self.data[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self.data.get(name, default)


@dataclass
class EntityRecord:
    """
    Internal form of a mutation input.

    Attributes:
        key: Target key (may be incomplete for inserts)
        data: Properties to write
        method: "insert", "update" or "upsert"; chosen from the key when unset
        exclude_from_indexes: Property names (or dotted paths) not to index
        exclude_large_properties: Skip indexing of oversized values
    """
    key: Key
    data: dict[str, Any] = field(default_factory=dict)
    method: Optional[str] = None
    exclude_from_indexes: list[str] = field(default_factory=list)
    exclude_large_properties: bool = False


EntityInput = Union[Entity, EntityRecord, dict]


def prepare_entity_object(obj: EntityInput) -> EntityRecord:
    """
    Normalize a caller's mutation input into an EntityRecord.

    Accepts an Entity (as returned by get or a query), an EntityRecord, or a
    dict with "key" and "data" (plus optional "method", "exclude_from_indexes",
    "exclude_large_properties"). The returned record owns a deep copy of the
    data, so later changes never leak back into the caller's object.
    """
    if isinstance(obj, EntityRecord):
        return clone(obj)
    if isinstance(obj, Entity):
        return EntityRecord(key=clone(obj.key), data=clone(obj.data))
    if isinstance(obj, dict):
        key = obj.get("key")
        if not isinstance(key, Key):
            raise InvalidArgumentError("Entity objects must provide a key.")
        return EntityRecord(
            key=clone(key),
            data=clone(obj.get("data") or {}),
            method=obj.get("method"),
            exclude_from_indexes=list(obj.get("exclude_from_indexes") or []),
            exclude_large_properties=bool(obj.get("exclude_large_properties", False)),
        )
    raise InvalidArgumentError(f"Unsupported entity object: {type(obj).__name__}")
