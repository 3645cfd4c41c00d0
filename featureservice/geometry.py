"""
Geometry value objects and spatial filter parameters

Geometries are carried to and from the wire verbatim as Esri JSON. Spatial
predicates, WKT and KML live elsewhere; this module only knows the shapes
and how to tell them apart.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import PreconditionError


@dataclass
class SpatialReference:
    wkid: int

    def to_dict(self) -> Dict[str, Any]:
        return {"wkid": self.wkid}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["SpatialReference"]:
        if not data or data.get("wkid") is None:
            return None
        return cls(wkid=data["wkid"])


class GeometryBase:
    """Anything that can be serialized as an Esri JSON geometry."""

    geometry_type: str = ""

    def _members(self) -> Dict[str, Any]:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in self._members().items() if v is not None}
        spatial_reference = getattr(self, "spatial_reference", None)
        if spatial_reference is not None:
            data["spatialReference"] = spatial_reference.to_dict()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def __str__(self) -> str:
        return self.to_json()

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> Optional["GeometryBase"]:
        """
        Build the geometry matching the populated members of ``data``

        x/y -> Point, points -> Multipoint, paths/curvePaths -> Polyline,
        rings/curveRings -> Polygon, xmin.. -> Envelope. Returns None for
        empty or unrecognised payloads (e.g. a point with null x/y).
        """
        if not data:
            return None

        spatial_reference = SpatialReference.from_dict(data.get("spatialReference"))

        if data.get("x") is not None and data.get("y") is not None:
            return Point(data["x"], data["y"], data.get("z"), spatial_reference)
        if data.get("points") is not None:
            return Multipoint(data["points"], spatial_reference)
        if data.get("paths") is not None or data.get("curvePaths") is not None:
            return Polyline(data.get("paths"), data.get("curvePaths"), spatial_reference)
        if data.get("rings") is not None or data.get("curveRings") is not None:
            return Polygon(data.get("rings"), data.get("curveRings"), spatial_reference)
        if data.get("xmin") is not None:
            return Envelope(data["xmin"], data["ymin"], data["xmax"], data["ymax"], spatial_reference)
        return None

    @classmethod
    def from_json(cls, text: Optional[str]) -> Optional["GeometryBase"]:
        if text is None:
            return None
        return GeometryBase.from_dict(json.loads(text))


class Geometry(GeometryBase):
    """Base class of the geometries a feature can carry."""


@dataclass(eq=True)
class Point(Geometry):
    x: float
    y: float
    z: Optional[float] = None
    spatial_reference: Optional[SpatialReference] = None

    geometry_type = "esriGeometryPoint"

    def _members(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "z": self.z}


@dataclass(eq=True)
class Multipoint(Geometry):
    points: List[List[float]] = field(default_factory=list)
    spatial_reference: Optional[SpatialReference] = None

    geometry_type = "esriGeometryMultipoint"

    def _members(self) -> Dict[str, Any]:
        return {"points": self.points}


@dataclass(eq=True)
class Polyline(Geometry):
    paths: Optional[List[List[List[float]]]] = None
    curve_paths: Optional[List[Any]] = None
    spatial_reference: Optional[SpatialReference] = None

    geometry_type = "esriGeometryPolyline"

    def _members(self) -> Dict[str, Any]:
        return {"paths": self.paths, "curvePaths": self.curve_paths}


@dataclass(eq=True)
class Polygon(Geometry):
    rings: Optional[List[List[List[float]]]] = None
    curve_rings: Optional[List[Any]] = None
    spatial_reference: Optional[SpatialReference] = None

    geometry_type = "esriGeometryPolygon"

    def _members(self) -> Dict[str, Any]:
        return {"rings": self.rings, "curveRings": self.curve_rings}


@dataclass(eq=True)
class Envelope(GeometryBase):
    xmin: float
    ymin: float
    xmax: float
    ymax: float
    spatial_reference: Optional[SpatialReference] = None

    geometry_type = "esriGeometryEnvelope"

    def _members(self) -> Dict[str, Any]:
        return {"xmin": self.xmin, "ymin": self.ymin, "xmax": self.xmax, "ymax": self.ymax}


class SpatialRel(Enum):
    INTERSECTS = "Intersects"
    ENVELOPE_INTERSECTS = "EnvelopeIntersects"
    INDEX_INTERSECTS = "IndexIntersects"
    TOUCHES = "Touches"
    OVERLAPS = "Overlaps"
    CROSSES = "Crosses"
    WITHIN = "Within"
    CONTAINS = "Contains"


def spatial_filter(geometry: GeometryBase, spatial_rel: SpatialRel = SpatialRel.INTERSECTS) -> Dict[str, str]:
    """Query parameters restricting a query to features related to ``geometry``."""
    if not isinstance(geometry, GeometryBase) or not geometry.geometry_type:
        raise PreconditionError(f"Geometry type '{type(geometry).__name__}' is not supported in a spatial filter.")

    return {
        "geometry": geometry.to_json(),
        "geometryType": geometry.geometry_type,
        "spatialRel": f"esriSpatialRel{SpatialRel(spatial_rel).value}",
    }


def empty_geometry(geometry_type: Optional[str], has_z: bool = False) -> Optional[Dict[str, Any]]:
    """Wire payload standing in for a missing geometry of the given layer type."""
    if geometry_type == Point.geometry_type:
        empty = {"x": None, "y": None}
        if has_z:
            empty["z"] = None
        return empty
    if geometry_type == Multipoint.geometry_type:
        return {"points": []}
    if geometry_type == Polyline.geometry_type:
        return {"paths": []}
    if geometry_type == Polygon.geometry_type:
        return {"rings": []}
    return None
