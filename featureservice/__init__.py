"""
featureservice - typed, change-tracked access to ArcGIS REST feature services

Public API:
    Service                    connection + downloads
    Feature, GeometryFeature,  record base classes
    DynamicFeature, Mapped
    insert_into, update,       edits
    delete
"""

from .client import EsriClient
from .config import settings
from .editor import DeleteResult, InsertResult, UpdateResult, delete, insert_into, update
from .exceptions import (
    CodedValueError,
    FeatureServiceError,
    FieldTypeError,
    MissingFieldError,
    PreconditionError,
    RestError,
    SchemaError,
)
from .geometry import Envelope, Geometry, Multipoint, Point, Polygon, Polyline, SpatialReference, SpatialRel
from .identity import ServiceIdentity
from .models import DynamicFeature, Feature, GeometryFeature
from .schema import CodedValue, Domain, Field, Layer, SchemaCache, ServiceInfo, schema_cache
from .service import Service
from .token import Token
from .tracking import Mapped

__version__ = "1.0.0"

__all__ = [
    'Service',
    'ServiceIdentity',
    'EsriClient',
    'Token',
    'Feature',
    'GeometryFeature',
    'DynamicFeature',
    'Mapped',
    'insert_into',
    'update',
    'delete',
    'InsertResult',
    'UpdateResult',
    'DeleteResult',
    'Point',
    'Multipoint',
    'Polyline',
    'Polygon',
    'Envelope',
    'Geometry',
    'SpatialReference',
    'SpatialRel',
    'Layer',
    'Field',
    'Domain',
    'CodedValue',
    'ServiceInfo',
    'SchemaCache',
    'schema_cache',
    'settings',
    'FeatureServiceError',
    'RestError',
    'SchemaError',
    'CodedValueError',
    'PreconditionError',
    'MissingFieldError',
    'FieldTypeError',
]
