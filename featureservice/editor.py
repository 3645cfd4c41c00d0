"""
Insert, update and delete features

Each operation is one applyEdits call. A protocol failure, including any
single failed record in the batch, is returned as an unsuccessful result
carrying the ``RestError``; invalid input raises ``PreconditionError``
before anything is sent.
"""

from typing import Any, Callable, Generic, List, Optional, Sequence, Type, TypeVar, Union

from loguru import logger

from .config import settings
from .exceptions import PreconditionError, RestError
from .mapper import to_graphic
from .models import Feature
from .service import LayerRef, Service

T = TypeVar("T", bound=Feature)


class EditResultBase:
    """Outcome of one edit call. Truthy when it succeeded."""

    def __init__(self, success: bool, error: Optional[RestError] = None) -> None:
        self.success = success
        self.error = error

    def __bool__(self) -> bool:
        return self.success

    def __repr__(self) -> str:
        return f"<{type(self).__name__} success={self.success}>"


class InsertResult(EditResultBase, Generic[T]):
    """
    Outcome of an insert

    ``inserted_features`` are fresh downloads of the new rows (so they carry
    server-populated values), fetched on first access.
    """

    def __init__(
        self,
        success: bool,
        error: Optional[RestError] = None,
        fetch: Optional[Callable[[], List[T]]] = None,
    ) -> None:
        super().__init__(success, error)
        self._fetch = fetch
        self._inserted: Optional[List[T]] = None

    @property
    def inserted_features(self) -> List[T]:
        if self._inserted is None:
            self._inserted = self._fetch() if self._fetch is not None else []
        return self._inserted

    @property
    def inserted_feature(self) -> Optional[T]:
        features = self.inserted_features
        if len(features) > 1:
            raise ValueError(f"{len(features)} features were inserted; use inserted_features.")
        return features[0] if features else None


class UpdateResult(EditResultBase):
    pass


class DeleteResult(EditResultBase):
    pass


def insert_into(
    features: Union[T, Sequence[T]],
    service: Service,
    layer: LayerRef,
    feature_type: Optional[Type[T]] = None,
) -> InsertResult[T]:
    """
    Insert features into a layer of ``service``

    The original instances are left untouched; the inserted rows are
    re-downloaded as ``feature_type`` (the type of the first feature by
    default).
    """
    features = _as_list(features)

    if not features:
        return InsertResult(True)

    layer = service.get_layer(layer)
    feature_type = feature_type or type(features[0])
    adds = [to_graphic(f, layer, False, service.info) for f in features]

    try:
        result_set = service.client.apply_edits(service.identity, layer.id, "adds", adds)
    except RestError as e:
        logger.warning(f"Insert into '{layer.name}' failed: {e}")
        return InsertResult(False, e)

    object_ids = [r.object_id for r in result_set.add_results]
    logger.info(f"Inserted {len(object_ids)} features into '{layer.name}'")

    return InsertResult(
        True,
        None,
        lambda: list(service.download_by_ids(layer, object_ids, feature_type, settings.INSERT_REFETCH_BATCH_SIZE, 1)),
    )


def update(features: Union[T, Sequence[T]]) -> UpdateResult:
    """
    Send the changed fields of bound features

    Features without changes are skipped; on success every feature is clean.
    """
    features = _as_list(features)

    if not features:
        return UpdateResult(True)

    service, layer = _check_bound(features, "updated")
    updates = [g for g in (to_graphic(f, layer, True, service.info) for f in features) if g is not None]

    if not updates:
        logger.debug(f"Nothing to update in '{layer.name}'")
        return UpdateResult(True)

    try:
        service.client.apply_edits(service.identity, layer.id, "updates", updates)
    except RestError as e:
        logger.warning(f"Update of '{layer.name}' failed: {e}")
        return UpdateResult(False, e)

    for f in features:
        f._set_dirty(False)

    logger.info(f"Updated {len(updates)} features in '{layer.name}'")
    return UpdateResult(True)


def delete(features: Union[T, Sequence[T]]) -> DeleteResult:
    """Delete bound features; on success they are unbound (object id -1)."""
    features = _as_list(features)

    if not features:
        return DeleteResult(True)

    service, layer = _check_bound(features, "deleted")
    object_ids = [f.object_id for f in features]

    try:
        service.client.apply_edits(service.identity, layer.id, "deletes", object_ids)
    except RestError as e:
        logger.warning(f"Delete from '{layer.name}' failed: {e}")
        return DeleteResult(False, e)

    for f in features:
        f._unbind()

    logger.info(f"Deleted {len(object_ids)} features from '{layer.name}'")
    return DeleteResult(True)


def _as_list(features: Union[T, Sequence[T]]) -> List[T]:
    if isinstance(features, Feature):
        return [features]
    return list(features)


def _check_bound(features: List[Feature], action: str):
    if any(not f.is_data_bound for f in features):
        raise PreconditionError(f"All features must be bound to a data source before they can be {action}.")

    _unique(features, lambda f: f.identity, "url and geodatabase version")
    layer = _unique(features, lambda f: f.layer, "layer")

    return features[0].service, layer


def _unique(features: List[Feature], selector: Callable[[Feature], Any], name: str) -> Any:
    values: List[Any] = []
    for f in features:
        value = selector(f)
        if not any(value == v for v in values):
            values.append(value)

    if len(values) > 1:
        raise PreconditionError(f"All features must be bound to the same {name}.")

    return values[0]
