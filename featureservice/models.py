"""
Data Models - Type-safe Feature Classes

Base classes for features downloaded from (or sent to) a feature service.
Subclasses declare their fields with ``Mapped``; fields a type does not map
are kept by wire name in ``unmapped_fields``.

Example:
    class Incident(GeometryFeature):
        geometry_class = Point

        req_type = Mapped("req_type", str)
        status = Mapped("status", int)

    incident = Incident(req_type="Graffiti")
    incident.object_id   # -1 until inserted
"""

from functools import lru_cache
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, TYPE_CHECKING

from .exceptions import FieldTypeError, MissingFieldError
from .geometry import Geometry
from .tracking import ChangeTracker, get_mappings, mappings_by_attribute, mappings_by_field

if TYPE_CHECKING:
    from .identity import ServiceIdentity
    from .schema import Layer
    from .service import Service

UNBOUND = -1


class Feature(ChangeTracker):
    """Attribute-only feature (table row)."""

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        get_mappings(cls)

    def __init__(self, **values: Any) -> None:
        super().__init__()
        self._object_id: int = UNBOUND
        self._service: Optional["Service"] = None
        self._layer: Optional["Layer"] = None
        self._unmapped: dict = {}

        attributes = mappings_by_attribute(type(self))
        for name, value in values.items():
            if name not in attributes:
                raise MissingFieldError(f"'{type(self).__name__}' has no mapped attribute '{name}'.")
            setattr(self, name, value)

    @property
    def object_id(self) -> int:
        return self._object_id

    @property
    def is_data_bound(self) -> bool:
        return self._object_id > UNBOUND

    @property
    def service(self) -> Optional["Service"]:
        return self._service

    @property
    def layer(self) -> Optional["Layer"]:
        return self._layer

    @property
    def identity(self) -> Optional["ServiceIdentity"]:
        return self._service.identity if self._service is not None else None

    @property
    def unmapped_fields(self) -> Mapping[str, Any]:
        return MappingProxyType(self._unmapped)

    def _bind(self, service: "Service", layer: "Layer", object_id: int) -> None:
        self._service = service
        self._layer = layer
        self._object_id = object_id

    def _unbind(self) -> None:
        self._service = None
        self._layer = None
        self._object_id = UNBOUND
        self._set_dirty(False)

    def field_names(self) -> List[str]:
        """Wire names of the mapped fields followed by the unmapped ones."""
        return list(mappings_by_field(type(self))) + list(self._unmapped)

    def __getitem__(self, field_name: str) -> Any:
        mapping = mappings_by_field(type(self)).get(field_name)
        if mapping is not None:
            return mapping.__get__(self)

        if field_name in self._unmapped:
            return self._unmapped[field_name]

        raise MissingFieldError(f"Field '{field_name}' does not exist.")

    def __setitem__(self, field_name: str, value: Any) -> None:
        mapping = mappings_by_field(type(self)).get(field_name)
        if mapping is not None:
            mapping.__set__(self, value)
            return

        self._track_change(
            field_name,
            field_name,
            self._unmapped.get(field_name, _MISSING),
            value,
            lambda feature, v: feature._unmapped.__setitem__(field_name, v),
        )

    def changed(self, attribute: str) -> bool:
        """Whether the mapped attribute (or ``"geometry"``) changed since the last sync."""
        if attribute == "geometry":
            return self.geometry_changed

        mapping = mappings_by_attribute(type(self)).get(attribute)
        if mapping is None:
            raise MissingFieldError(f"'{type(self).__name__}' has no mapped attribute '{attribute}'.")

        return mapping.field_name in self._changed_fields

    def __repr__(self) -> str:
        state = " dirty" if self.is_dirty else ""
        return f"<{type(self).__name__} object_id={self._object_id}{state}>"


class GeometryFeature(Feature):
    """
    Feature carrying a geometry

    ``geometry_class`` restricts the geometry to one shape; the generic
    ``Geometry`` accepts any. Assigning the geometry always counts as a
    change.
    """

    geometry_class = Geometry

    def __init__(self, geometry: Optional[Geometry] = None, **values: Any) -> None:
        self._geometry: Optional[Geometry] = None
        super().__init__(**values)
        if geometry is not None:
            self.geometry = geometry

    @property
    def geometry(self) -> Optional[Geometry]:
        return self._geometry

    @geometry.setter
    def geometry(self, value: Optional[Geometry]) -> None:
        self._check_geometry(value)
        self._geometry = value
        self._track_geometry_change()

    def _load_geometry(self, value: Optional[Geometry]) -> None:
        self._check_geometry(value)
        self._geometry = value

    def _check_geometry(self, value: Optional[Geometry]) -> None:
        if value is not None and not isinstance(value, self.geometry_class):
            raise FieldTypeError(
                f"'{type(self).__name__}.geometry' expects {self.geometry_class.__name__}, "
                f"got {type(value).__name__}."
            )


class DynamicFeature(GeometryFeature):
    """Feature without mapped fields; every attribute is reached by name."""


@lru_cache(maxsize=None)
def has_geometry(cls: type) -> bool:
    return issubclass(cls, GeometryFeature)


class _Missing:
    def __repr__(self):
        return "<missing>"


_MISSING = _Missing()
