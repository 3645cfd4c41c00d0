"""
Feature Service - querying layers into typed features

A ``Service`` is one connection to a MapServer/FeatureServer url. Its
schema comes from the shared ``SchemaCache``; downloads are lazy sequences
of features in server order. With ``keep_querying`` the remaining object
ids are fetched in batches by a bounded pool of workers and emitted in id
order, whatever order the workers finish in.
"""

import itertools
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from loguru import logger

from .client import EsriClient
from .config import settings
from .geometry import GeometryBase, SpatialRel, spatial_filter
from .identity import ServiceIdentity
from .logging_utils import BatchLogger, log_execution_time
from .mapper import to_feature
from .models import DynamicFeature, Feature, has_geometry
from .schema import Domain, Layer, SchemaCache, ServiceInfo, schema_cache
from .token import Token

T = TypeVar("T", bound=Feature)
R = TypeVar("R")

LayerRef = Union[int, str, Layer]


class Service:
    """Feature service connection"""

    def __init__(
        self,
        url: str,
        credentials: Any = None,
        token: Union[Token, str, None] = None,
        gdb_version: Optional[str] = None,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client: Optional[EsriClient] = None,
        cache: Optional[SchemaCache] = None,
    ) -> None:
        """
        Connect to ``url`` and load its schema (once per connection identity)

        Args:
            url: Service url ending with MapServer or FeatureServer
            credentials: ``requests`` auth object for secured services
            token: Token or literal token string
            gdb_version: Geodatabase version
            username, password: Generate tokens from these credentials
            client: HTTP client (a new ``EsriClient`` by default)
            cache: Schema cache (the process-wide one by default)

        Raises:
            RestError: the schema could not be fetched
        """
        self.client = client or EsriClient()

        if username is not None:
            token = Token.from_credentials(username, password, url=url, client=self.client)
        elif isinstance(token, str):
            token = Token(token)

        if token is not None and token.url is None:
            token.url = url

        self.identity = ServiceIdentity(url, credentials, token, gdb_version)
        self._cache = cache if cache is not None else schema_cache
        self.info: ServiceInfo = self._cache.get(self.identity, self._fetch_schema)

    def _fetch_schema(self) -> ServiceInfo:
        with log_execution_time(f"Schema fetch for {self.identity.url}"):
            return self.client.fetch_schema(self.identity)

    @property
    def url(self) -> str:
        return self.identity.url

    @property
    def layers(self) -> Tuple[Layer, ...]:
        return self.info.layers

    @property
    def domains(self) -> Tuple[Domain, ...]:
        return self.info.domains

    @property
    def max_record_count(self) -> Optional[int]:
        return self.info.max_record_count

    def get_layer(self, layer: LayerRef) -> Layer:
        """Layer by id or name. Raises SchemaError if missing or ambiguous."""
        return self.info.get_layer(layer)

    def download(
        self,
        layer: LayerRef,
        feature_type: Type[T] = DynamicFeature,
        where: Optional[str] = None,
        extra_params: Optional[Dict[str, Any]] = None,
        geometry: Optional[GeometryBase] = None,
        spatial_rel: SpatialRel = SpatialRel.INTERSECTS,
        keep_querying: bool = False,
        degree_of_parallelism: Optional[int] = None,
    ) -> Iterator[T]:
        """
        Lazily download features of a layer

        Args:
            layer: Layer id, name or ``Layer``
            feature_type: Feature class to build (``DynamicFeature`` by default)
            where: Where clause (all features when empty)
            extra_params: Additional query parameters
            geometry: Optional spatial filter geometry
            spatial_rel: Relationship used with ``geometry``
            keep_querying: Keep fetching past the server's page size
            degree_of_parallelism: Concurrent batch fetches for the remaining ids

        Returns:
            Iterator of features; protocol errors surface while iterating
        """
        layer = self.get_layer(layer)

        if geometry is not None:
            extra_params = {**(extra_params or {}), **spatial_filter(geometry, spatial_rel)}

        if degree_of_parallelism is None:
            degree_of_parallelism = settings.DEGREE_OF_PARALLELISM

        return self._download(feature_type, layer, where, extra_params, keep_querying, degree_of_parallelism)

    def _download(
        self,
        feature_type: Type[T],
        layer: Layer,
        where: Optional[str],
        extra_params: Optional[Dict[str, Any]],
        keep_querying: bool,
        degree_of_parallelism: int,
    ) -> Iterator[T]:
        return_geometry = has_geometry(feature_type)

        feature_set = self.client.fetch_features(
            self.identity, layer.id, return_geometry, layer.has_z, where, extra_params, None
        )

        object_ids: List[int] = []
        for graphic in feature_set.features:
            feature = to_feature(feature_type, graphic, self, layer, self.info)
            object_ids.append(feature.object_id)
            yield feature

        max_record_count = self.info.max_record_count_for(layer)

        if not keep_querying or not object_ids or (max_record_count is not None and max_record_count > len(object_ids)):
            logger.debug(f"'{layer.name}': {len(object_ids)} features in a single page")
            return

        downloaded = set(object_ids)
        oid_set = self.client.fetch_object_ids(self.identity, layer.id, where, extra_params)
        remaining = [i for i in oid_set.object_ids if i not in downloaded]

        logger.info(
            f"'{layer.name}': first page held {len(object_ids)} features, "
            f"{len(remaining)} more to fetch"
        )

        yield from self._download_ids(
            feature_type, layer, remaining, return_geometry, where, extra_params,
            len(object_ids), degree_of_parallelism,
        )

    def download_by_ids(
        self,
        layer: LayerRef,
        object_ids: Iterable[int],
        feature_type: Type[T] = DynamicFeature,
        batch_size: Optional[int] = None,
        degree_of_parallelism: int = 1,
    ) -> Iterator[T]:
        """Lazily download the given object ids, in the given order."""
        layer = self.get_layer(layer)
        return self._download_ids(
            feature_type, layer, list(object_ids), has_geometry(feature_type), None, None,
            batch_size or settings.INSERT_REFETCH_BATCH_SIZE, degree_of_parallelism,
        )

    def _download_ids(
        self,
        feature_type: Type[T],
        layer: Layer,
        object_ids: Sequence[int],
        return_geometry: bool,
        where: Optional[str],
        extra_params: Optional[Dict[str, Any]],
        batch_size: int,
        degree_of_parallelism: int,
    ) -> Iterator[T]:
        if not object_ids:
            return

        def fetch_batch(ids: List[int]) -> List[T]:
            feature_set = self.client.fetch_features(
                self.identity, layer.id, return_geometry, layer.has_z, where, extra_params, ids
            )
            position = {oid: i for i, oid in enumerate(ids)}
            features = [to_feature(feature_type, g, self, layer, self.info) for g in feature_set.features]
            features.sort(key=lambda f: position.get(f.object_id, len(ids)))
            return features

        progress = BatchLogger(f"Fetching features of '{layer.name}' by id", total=len(object_ids))

        for features in ordered_parallel_map(fetch_batch, partition(object_ids, batch_size), degree_of_parallelism):
            progress.add(len(features))
            yield from features

        progress.finish()

    def __repr__(self) -> str:
        return f"<Service {self.url} ({len(self.layers)} layers)>"


def partition(items: Sequence[R], size: int) -> Iterator[List[R]]:
    """Consecutive chunks of at most ``size`` items."""
    size = max(1, size)
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def ordered_parallel_map(
    func: Callable[[Any], R],
    items: Iterable[Any],
    degree_of_parallelism: int,
) -> Iterator[R]:
    """
    ``map(func, items)`` on at most ``degree_of_parallelism`` threads

    Results come back in input order. At most ``degree_of_parallelism``
    calls are in flight; closing the iterator cancels the ones not started.
    """
    workers = max(1, degree_of_parallelism or 1)
    items = iter(items)

    if workers == 1:
        for item in items:
            yield func(item)
        return

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="featureservice")
    pending = deque()

    try:
        for item in itertools.islice(items, workers):
            pending.append(executor.submit(func, item))

        while pending:
            result = pending.popleft().result()

            for item in itertools.islice(items, 1):
                pending.append(executor.submit(func, item))

            yield result
    finally:
        for future in pending:
            future.cancel()
        executor.shutdown(wait=False)
