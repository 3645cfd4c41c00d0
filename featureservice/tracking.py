"""
Change tracking for feature attributes

``Mapped`` declares an attribute bound to a service field. Its setter routes
every write through ``ChangeTracker._track_change``, which ignores writes
that do not change the value and otherwise records the field as changed
and marks the owner dirty. The mapping table of a feature type is built
once, when the class is created, and memoized per type.
"""

from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple


class Mapped:
    """
    Descriptor binding an attribute to a field of the service

    Usage:
        class Incident(GeometryFeature):
            geometry_class = Point

            req_type = Mapped("req_type", str)
            status = Mapped("status", str, domain="Status")
            created = Mapped("created_date", datetime, read_only=True)

    ``value_type`` is the native Python type wire values are converted to
    (``int``, ``float``, ``str``, ``bool``, ``datetime``, ``uuid.UUID``);
    ``None`` keeps wire values as they are. A field with a ``domain`` holds
    the coded value's name; the code is what travels on the wire.
    """

    def __init__(
        self,
        field_name: str,
        value_type: Optional[type] = None,
        domain: Optional[str] = None,
        read_only: bool = False,
    ) -> None:
        self.field_name = field_name
        self.value_type = value_type
        self.domain = domain
        self.read_only = read_only
        self.attribute: Optional[str] = None

    def __set_name__(self, owner, name):
        self.attribute = name

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return instance.__dict__.get(self.attribute)

    def __set__(self, instance, value):
        if self.read_only:
            raise AttributeError(f"'{type(instance).__name__}.{self.attribute}' is read-only.")
        instance._track_change(self.attribute, self.field_name, self.__get__(instance), value, self.load)

    def load(self, instance, value) -> None:
        """Store ``value`` without recording a change."""
        instance.__dict__[self.attribute] = value

    def __repr__(self):
        return f"Mapped({self.field_name!r}, {getattr(self.value_type, '__name__', None)}, domain={self.domain!r})"


@lru_cache(maxsize=None)
def get_mappings(cls: type) -> Tuple[Mapped, ...]:
    """Mapped descriptors of ``cls`` in declaration order, base classes first."""
    seen: Dict[str, Mapped] = {}
    for klass in reversed(cls.__mro__):
        for name, value in vars(klass).items():
            if isinstance(value, Mapped):
                seen[name] = value

    mappings = tuple(seen.values())
    field_names = [m.field_name for m in mappings]
    duplicates = sorted({n for n in field_names if field_names.count(n) > 1})
    if duplicates:
        raise TypeError(f"'{cls.__name__}' maps field(s) {duplicates} more than once.")

    return mappings


@lru_cache(maxsize=None)
def mappings_by_field(cls: type) -> Dict[str, Mapped]:
    return {m.field_name: m for m in get_mappings(cls)}


@lru_cache(maxsize=None)
def mappings_by_attribute(cls: type) -> Dict[str, Mapped]:
    return {m.attribute: m for m in get_mappings(cls)}


class ChangeTracker:
    """
    Dirty state of one feature

    ``is_dirty`` is true iff a field or the geometry changed since the last
    sync. Clearing it clears ``changed_fields`` and ``geometry_changed``
    together.
    """

    def __init__(self) -> None:
        self._changed_fields: List[str] = []
        self._geometry_changed = False
        self._is_dirty = False
        self._listeners: List[Callable[[Any, str], None]] = []

    @property
    def is_dirty(self) -> bool:
        return self._is_dirty

    @property
    def changed_fields(self) -> Tuple[str, ...]:
        return tuple(self._changed_fields)

    @property
    def geometry_changed(self) -> bool:
        return self._geometry_changed

    def add_listener(self, callback: Callable[[Any, str], None]) -> None:
        """Call ``callback(feature, attribute)`` after every effective change."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[Any, str], None]) -> None:
        self._listeners.remove(callback)

    def _notify(self, attribute: str) -> None:
        for callback in list(self._listeners):
            callback(self, attribute)

    def _set_dirty(self, value: bool) -> None:
        if self._is_dirty == value:
            return

        self._is_dirty = value

        if not value:
            self._changed_fields.clear()
            self._geometry_changed = False

        self._notify("is_dirty")

    def _track_change(self, attribute: str, field_name: str, old: Any, new: Any, store: Callable[[Any, Any], None]) -> None:
        """Apply a write through ``store`` unless it leaves the value unchanged."""
        if _same_value(old, new):
            return

        store(self, new)

        if field_name not in self._changed_fields:
            self._changed_fields.append(field_name)

        self._notify(attribute)
        self._set_dirty(True)

    def _track_geometry_change(self) -> None:
        self._geometry_changed = True
        self._notify("geometry")
        self._set_dirty(True)


def _same_value(old: Any, new: Any) -> bool:
    if old is new:
        return True
    if type(old) is not type(new) and not (isinstance(old, (int, float)) and isinstance(new, (int, float))):
        return False
    try:
        return bool(old == new)
    except TypeError:
        return False
