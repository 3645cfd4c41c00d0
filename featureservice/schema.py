"""
Service schema: layers, fields and coded value domains

The schema of a connection is fetched once and shared through
``SchemaCache``. Coded values are decoded into the native type of the field
that first declares the domain, and every field naming the same domain
points to one shared ``Domain`` instance.
"""

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Hashable, Optional, Tuple
from loguru import logger

from .exceptions import CodedValueError, SchemaError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

FIELD_TYPE_OID = "esriFieldTypeOID"
FIELD_TYPE_INTEGER = "esriFieldTypeInteger"
FIELD_TYPE_SMALL_INTEGER = "esriFieldTypeSmallInteger"
FIELD_TYPE_DOUBLE = "esriFieldTypeDouble"
FIELD_TYPE_SINGLE = "esriFieldTypeSingle"
FIELD_TYPE_STRING = "esriFieldTypeString"
FIELD_TYPE_DATE = "esriFieldTypeDate"
FIELD_TYPE_GUID = "esriFieldTypeGUID"
FIELD_TYPE_GLOBAL_ID = "esriFieldTypeGlobalID"

FEATURE_LAYER = "Feature Layer"


def from_epoch_ms(value: Any) -> datetime:
    return EPOCH + timedelta(milliseconds=int(value))


def to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int((value - EPOCH) / timedelta(milliseconds=1))


def to_guid_string(value: uuid.UUID) -> str:
    return "{" + str(value).upper() + "}"


def field_converter(field_type: Optional[str]) -> Callable[[Any], Any]:
    """Function turning a raw wire value into the native type of ``field_type``."""
    converters = {
        FIELD_TYPE_INTEGER: int,
        FIELD_TYPE_SMALL_INTEGER: int,
        FIELD_TYPE_DOUBLE: float,
        FIELD_TYPE_SINGLE: float,
        FIELD_TYPE_STRING: str,
        FIELD_TYPE_DATE: from_epoch_ms,
    }
    return converters.get(field_type, lambda o: o)


@dataclass(frozen=True)
class CodedValue:
    name: str
    code: Any


@dataclass(frozen=True)
class Domain:
    """Coded value domain, looked up by code on decode and by name on encode."""

    name: str
    coded_values: Tuple[CodedValue, ...] = ()
    type: str = "codedValue"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], convert: Callable[[Any], Any] = None) -> "Domain":
        convert = convert or (lambda o: o)
        return cls(
            name=data.get("name"),
            coded_values=tuple(
                CodedValue(name=c.get("name"), code=convert(c.get("code")))
                for c in data.get("codedValues") or []
            ),
            type=data.get("type", "codedValue"),
        )

    def get_by_code(self, code: Any) -> CodedValue:
        matches = [c for c in self.coded_values if c.code == code]

        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise CodedValueError(f"Coded value domain '{self.name}' does not contain code '{code}'.")
        raise CodedValueError(f"Coded value domain '{self.name}' contains {len(matches)} occurrences of code '{code}'.")

    def get_by_name(self, name: Any) -> CodedValue:
        matches = [c for c in self.coded_values if c.name == name]

        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise CodedValueError(f"Coded value domain '{self.name}' does not contain name '{name}'.")
        raise CodedValueError(f"Coded value domain '{self.name}' contains {len(matches)} occurrences of name '{name}'.")


@dataclass(frozen=True)
class Field:
    name: str
    type: str
    alias: Optional[str] = None
    length: Optional[int] = None
    domain: Optional[Domain] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Field":
        domain = data.get("domain")
        return cls(
            name=data["name"],
            type=data.get("type"),
            alias=data.get("alias"),
            length=data.get("length"),
            domain=Domain.from_dict(domain) if domain and domain.get("type", "codedValue") == "codedValue" else None,
        )


@dataclass(frozen=True, eq=False)
class Layer:
    """One feature layer or table. Compared by identity, like the schema it comes from."""

    id: int
    name: str
    type: str
    geometry_type: Optional[str] = None
    has_z: bool = False
    fields: Tuple[Field, ...] = ()
    max_record_count: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Layer":
        return cls(
            id=data["id"],
            name=data.get("name"),
            type=data.get("type"),
            geometry_type=data.get("geometryType"),
            has_z=bool(data.get("hasZ", False)),
            fields=tuple(Field.from_dict(f) for f in data.get("fields") or []),
            max_record_count=data.get("maxRecordCount"),
        )

    @property
    def object_id_field(self) -> str:
        """Name of the single esriFieldTypeOID field."""
        names = [f.name for f in self.fields if f.type == FIELD_TYPE_OID]

        if len(names) != 1:
            raise SchemaError(f"'{self.name}' does not have one (and only one) field of type {FIELD_TYPE_OID}.")

        return names[0]

    def get_field(self, name: str) -> Optional[Field]:
        return next((f for f in self.fields if f.name == name), None)


@dataclass(frozen=True)
class ServiceInfo:
    """Normalized schema of one service connection."""

    layers: Tuple[Layer, ...] = ()
    domains: Tuple[Domain, ...] = ()
    max_record_count: Optional[int] = None
    _domains_by_name: Dict[str, Domain] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ServiceInfo":
        """
        Normalize a ``/layers`` response

        Keeps feature layers and tables, decodes each coded value domain once
        into the type of the first field using it, and makes every field
        reference the shared domain instance.
        """
        raw_layers = [l for l in payload.get("layers") or [] if l.get("type") == FEATURE_LAYER]
        raw_layers += payload.get("tables") or []

        domains: Dict[str, Domain] = {}
        for raw_layer in raw_layers:
            for raw_field in raw_layer.get("fields") or []:
                raw_domain = raw_field.get("domain")
                if not raw_domain or raw_domain.get("type", "codedValue") != "codedValue":
                    continue
                if raw_domain.get("name") not in domains:
                    convert = field_converter(raw_field.get("type"))
                    domains[raw_domain["name"]] = Domain.from_dict(raw_domain, convert)

        layers = []
        for raw_layer in raw_layers:
            layer = Layer.from_dict(raw_layer)
            fields = tuple(
                replace(f, domain=domains[f.domain.name]) if f.domain is not None else f
                for f in layer.fields
            )
            layers.append(replace(layer, fields=fields))

        return cls(
            layers=tuple(layers),
            domains=tuple(domains.values()),
            max_record_count=payload.get("maxRecordCount"),
            _domains_by_name=domains,
        )

    def get_layer(self, layer: Any) -> Layer:
        """Look a layer up by numeric id or by name."""
        if isinstance(layer, Layer):
            return layer

        if isinstance(layer, int):
            found = next((l for l in self.layers if l.id == layer), None)
            if found is None:
                raise SchemaError(f"The service does not contain layer ID '{layer}'.")
            return found

        matches = [l for l in self.layers if l.name == layer]

        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise SchemaError(f"The service does not contain '{layer}'.")
        raise SchemaError(
            f"The service contains {len(matches)} layers called '{layer}'.  Please try specifying the layer ID."
        )

    def get_domain(self, name: str) -> Domain:
        domain = self._domains_by_name.get(name)
        if domain is None:
            raise SchemaError(f"Coded value domain '{name}' does not exist.")
        return domain

    def max_record_count_for(self, layer: Layer) -> Optional[int]:
        if self.max_record_count is not None:
            return self.max_record_count
        return layer.max_record_count


class SchemaCache:
    """
    Read-through cache of ``ServiceInfo`` keyed by connection identity

    Concurrent first requests for one key are serialized so that only one
    of them populates the entry; the others read the populated value.
    """

    def __init__(self):
        self._entries: Dict[Hashable, ServiceInfo] = {}
        self._lock = threading.Lock()
        self._key_locks: Dict[Hashable, threading.Lock] = {}

    def get(self, key: Hashable, fetch: Callable[[], ServiceInfo]) -> ServiceInfo:
        entry = self._entries.get(key)
        if entry is not None:
            return entry

        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = fetch()
                self._entries[key] = entry
                logger.info(f"Schema cached: {len(entry.layers)} layers, {len(entry.domains)} domains")
            return entry

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._key_locks.clear()


schema_cache = SchemaCache()
