"""
Mapping between wire records and typed features
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Type, TypeVar, TYPE_CHECKING

from .client import Graphic
from .exceptions import FieldTypeError, MissingFieldError
from .geometry import Geometry, GeometryBase, empty_geometry
from .models import Feature, has_geometry
from .schema import (
    FIELD_TYPE_DATE,
    FIELD_TYPE_GLOBAL_ID,
    FIELD_TYPE_GUID,
    Layer,
    Domain,
    ServiceInfo,
    field_converter,
    from_epoch_ms,
    to_epoch_ms,
    to_guid_string,
)
from .tracking import Mapped, get_mappings

if TYPE_CHECKING:
    from .service import Service

T = TypeVar("T", bound=Feature)


def to_feature(
    feature_type: Type[T],
    graphic: Graphic,
    service: "Service",
    layer: Layer,
    service_info: ServiceInfo,
) -> T:
    """
    Build a clean, bound ``feature_type`` instance from a wire record

    Mapped fields are converted to their declared types (coded values to
    their names); every other attribute except the object id is kept in the
    unmapped fields.
    """
    attributes = graphic.attributes
    object_id_field = layer.object_id_field

    if object_id_field not in attributes:
        raise MissingFieldError(f"Field '{object_id_field}' does not exist in '{layer.name}'.")

    feature = feature_type()
    feature._bind(service, layer, int(attributes[object_id_field]))

    mappings = get_mappings(feature_type)

    for m in mappings:
        if m.field_name not in attributes:
            raise MissingFieldError(f"Field '{m.field_name}' does not exist in '{layer.name}'.")

        value = attributes[m.field_name]

        if value is not None:
            if m.domain is not None:
                value = _decode_code(service_info.get_domain(m.domain), layer, m.field_name, value)
            value = _coerce(feature_type, m, value)

        m.load(feature, value)

    mapped_names = {m.field_name for m in mappings}

    for name, value in attributes.items():
        if name != object_id_field and name not in mapped_names:
            field = layer.get_field(name)
            feature._unmapped[name] = _to_native(value, field.type if field is not None else None)

    if graphic.geometry is not None and has_geometry(feature_type):
        geometry = GeometryBase.from_dict(graphic.geometry)
        if geometry is not None and not isinstance(geometry, Geometry):
            raise FieldTypeError(f"'{layer.name}' returned a {type(geometry).__name__}, which is not a feature geometry.")
        feature._load_geometry(geometry)

    feature._set_dirty(False)

    return feature


def to_graphic(
    feature: Feature,
    layer: Layer,
    changes_only: bool,
    service_info: ServiceInfo,
) -> Optional[Dict[str, Any]]:
    """
    Wire record for ``feature``, or None when ``changes_only`` finds nothing to send

    With ``changes_only`` the record holds the object id, the changed fields
    and, if it changed, the geometry. Otherwise it holds every writable field
    and the geometry (or an empty geometry of the layer's type).
    """
    if changes_only and not feature.changed_fields and not feature.geometry_changed:
        return None

    changed = set(feature.changed_fields)
    attributes: Dict[str, Any] = {}

    if changes_only:
        attributes[layer.object_id_field] = feature.object_id

    for m in get_mappings(type(feature)):
        if changes_only and m.field_name not in changed:
            continue
        if m.read_only:
            continue

        value = m.__get__(feature)

        if value is not None and m.domain is not None:
            value = service_info.get_domain(m.domain).get_by_name(value).code

        attributes[m.field_name] = _to_wire(value)

    for name, value in feature.unmapped_fields.items():
        if not changes_only or name in changed:
            attributes[name] = _to_wire(value)

    graphic: Dict[str, Any] = {"attributes": attributes}

    if has_geometry(type(feature)) and not (changes_only and not feature.geometry_changed):
        geometry = feature.geometry
        graphic["geometry"] = geometry.to_dict() if geometry is not None else empty_geometry(layer.geometry_type, layer.has_z)

    return graphic


def _decode_code(domain: Domain, layer: Layer, field_name: str, value: Any) -> str:
    # Codes were decoded into the native field type when the schema was loaded
    field = layer.get_field(field_name)
    try:
        code = field_converter(field.type if field is not None else None)(value)
    except (TypeError, ValueError, OverflowError):
        code = value
    return domain.get_by_code(code).name


def _coerce(feature_type: type, mapping: Mapped, value: Any) -> Any:
    t = mapping.value_type

    if t is None or isinstance(value, t):
        return value

    try:
        if t is datetime:
            return from_epoch_ms(value)
        if t is uuid.UUID:
            return uuid.UUID(str(value))
        if t is int and isinstance(value, float):
            return int(round(value))
        return t(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise FieldTypeError(
            f"'{feature_type.__name__}.{mapping.attribute}' is not defined with the correct type.  "
            f"Error trying to convert {type(value).__name__} to {t.__name__}."
        ) from e


def _to_native(value: Any, field_type: Optional[str]) -> Any:
    if value is None:
        return None

    if field_type == FIELD_TYPE_DATE:
        return from_epoch_ms(value)

    if field_type in (FIELD_TYPE_GLOBAL_ID, FIELD_TYPE_GUID):
        return uuid.UUID(str(value))

    return value


def _to_wire(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_epoch_ms(value)

    if isinstance(value, uuid.UUID):
        return to_guid_string(value)

    return value
