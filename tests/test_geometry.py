import json

import pytest

from featureservice import Envelope, Multipoint, Point, Polygon, Polyline, PreconditionError, SpatialReference, SpatialRel
from featureservice.geometry import GeometryBase, empty_geometry, spatial_filter


@pytest.mark.parametrize(
    "data, expected",
    [
        ({"x": 1, "y": 2}, Point),
        ({"points": [[1, 2]]}, Multipoint),
        ({"paths": [[[0, 0], [1, 1]]]}, Polyline),
        ({"curvePaths": [[[0, 0], {"c": [[2, 0], [1, 1]]}]]}, Polyline),
        ({"rings": [[[0, 0], [1, 0], [1, 1], [0, 0]]]}, Polygon),
        ({"curveRings": [[[0, 0], {"a": [[0, 0], [1, 0], 0, 1]}]]}, Polygon),
        ({"xmin": 0, "ymin": 0, "xmax": 1, "ymax": 1}, Envelope),
    ],
)
def test_from_dict_picks_shape(data, expected):
    assert type(GeometryBase.from_dict(data)) is expected


def test_from_dict_unrecognised():
    assert GeometryBase.from_dict(None) is None
    assert GeometryBase.from_dict({}) is None
    assert GeometryBase.from_dict({"x": None, "y": None}) is None


def test_point_round_trip_keeps_spatial_reference():
    point = GeometryBase.from_json('{"x":1.5,"y":2.5,"z":3,"spatialReference":{"wkid":4326}}')

    assert point == Point(1.5, 2.5, 3, SpatialReference(4326))
    assert json.loads(point.to_json()) == {"x": 1.5, "y": 2.5, "z": 3, "spatialReference": {"wkid": 4326}}


def test_to_dict_omits_unset_members():
    assert Point(1, 2).to_dict() == {"x": 1, "y": 2}
    assert Polyline(paths=[[[0, 0], [1, 1]]]).to_dict() == {"paths": [[[0, 0], [1, 1]]]}


def test_spatial_filter_parameters():
    params = spatial_filter(Envelope(0, 0, 10, 10, SpatialReference(3857)), SpatialRel.CONTAINS)

    assert params["geometryType"] == "esriGeometryEnvelope"
    assert params["spatialRel"] == "esriSpatialRelContains"
    assert json.loads(params["geometry"]) == {"xmin": 0, "ymin": 0, "xmax": 10, "ymax": 10, "spatialReference": {"wkid": 3857}}


def test_spatial_filter_rejects_non_geometries():
    with pytest.raises(PreconditionError):
        spatial_filter({"x": 1, "y": 2})


def test_empty_geometry_templates():
    assert empty_geometry("esriGeometryPoint") == {"x": None, "y": None}
    assert empty_geometry("esriGeometryPoint", has_z=True) == {"x": None, "y": None, "z": None}
    assert empty_geometry("esriGeometryPolygon") == {"rings": []}
    assert empty_geometry(None) is None
