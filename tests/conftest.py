"""
Shared fixtures: an in-memory ArcGIS REST endpoint behind a requests-like session.
"""

import json
import re
import threading
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qsl, urlsplit

import pytest
import requests

from featureservice import EsriClient, Service, schema_cache

SERVICE_URL = "https://gis.example.com/arcgis/rest/services/City/Incidents/FeatureServer"
SCHEMA_URL = "https://gis.example.com/arcgis/rest/services/City/Incidents/MapServer/layers"

STATUS_DOMAIN = {
    "type": "codedValue",
    "name": "Status",
    "codedValues": [
        {"name": "Open", "code": 1},
        {"name": "Closed", "code": 2},
    ],
}


def layers_payload(max_record_count: Optional[int] = None) -> Dict[str, Any]:
    payload = {
        "layers": [
            {
                "id": 0,
                "name": "Incidents",
                "type": "Feature Layer",
                "geometryType": "esriGeometryPoint",
                "hasZ": False,
                "fields": [
                    {"name": "OBJECTID", "type": "esriFieldTypeOID", "alias": "OBJECTID"},
                    {"name": "req_type", "type": "esriFieldTypeString", "length": 50},
                    {"name": "status", "type": "esriFieldTypeSmallInteger", "domain": STATUS_DOMAIN},
                    {"name": "created_date", "type": "esriFieldTypeDate"},
                    {"name": "globalid", "type": "esriFieldTypeGlobalID"},
                    {"name": "notes", "type": "esriFieldTypeString", "length": 255},
                ],
            },
            {"id": 2, "name": "Districts", "type": "Group Layer", "fields": None},
        ],
        "tables": [
            {
                "id": 1,
                "name": "Inspections",
                "type": "Table",
                "fields": [
                    {"name": "OBJECTID", "type": "esriFieldTypeOID"},
                    {"name": "inspector", "type": "esriFieldTypeString"},
                    {"name": "outcome", "type": "esriFieldTypeInteger", "domain": STATUS_DOMAIN},
                ],
            }
        ],
    }
    if max_record_count is not None:
        payload["maxRecordCount"] = max_record_count
    return payload


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, text: Optional[str] = None):
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)
        self.encoding = None
        self.headers = {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """
    Stands in for ``requests.Session``

    Handlers are registered per (method, url regex) and receive the decoded
    parameters and the url. Every request is recorded in ``calls``.
    """

    def __init__(self):
        self.headers: Dict[str, str] = {}
        self.calls: List[Dict[str, Any]] = []
        self._routes = []
        self._lock = threading.Lock()

    def route(self, method: str, pattern: str, handler: Callable[[Dict[str, str], str], Any]):
        self._routes.insert(0, (method, re.compile(pattern), handler))

    def get(self, url, **kwargs):
        parts = urlsplit(url)
        base = f"{parts.scheme}://{parts.netloc}{parts.path}"
        return self._dispatch("GET", base, dict(parse_qsl(parts.query, keep_blank_values=True)), kwargs)

    def post(self, url, data=None, **kwargs):
        return self._dispatch("POST", url, dict(parse_qsl(data or "", keep_blank_values=True)), kwargs)

    def _dispatch(self, method, url, params, kwargs):
        with self._lock:
            self.calls.append({"method": method, "url": url, "params": params, "kwargs": kwargs})

        for route_method, pattern, handler in self._routes:
            if route_method == method and pattern.search(url):
                result = handler(params, url)
                return result if isinstance(result, FakeResponse) else FakeResponse(result)

        return FakeResponse(status_code=404, text="Not Found")

    def calls_to(self, suffix: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["url"].endswith(suffix)]

    def close(self):
        pass


class FakeFeatureServer:
    """
    One point layer (0) and one table (1) held in memory

    Queries honour ``objectIds``, ``returnIdsOnly``, ``returnGeometry`` and
    a single ``field = value`` where clause; pages are capped at
    ``max_record_count``. Batches by object id come back in descending id
    order.
    """

    def __init__(self, session: FakeSession, max_record_count: int = 1000):
        self.session = session
        self.max_record_count = max_record_count
        self.records: Dict[int, Dict[int, Dict[str, Any]]] = {0: {}, 1: {}}
        self.fail_adds_at: Optional[int] = None
        self.edit_error: Optional[Dict[str, Any]] = None

        session.route("GET", r"/MapServer/layers$", lambda params, url: layers_payload(self.max_record_count))
        session.route("POST", r"/(\d+)/query$", self._query_handler)
        session.route("POST", r"/(\d+)/applyEdits$", self._apply_edits_handler)

    def add(self, layer_id: int, object_id: int, geometry: Optional[Dict[str, Any]] = None, **attributes):
        record = {"OBJECTID": object_id, **attributes}
        self.records[layer_id][object_id] = {"attributes": record, "geometry": geometry}

    def populate(self, count: int):
        for oid in range(1, count + 1):
            self.add(
                0,
                oid,
                {"x": float(oid), "y": float(-oid)},
                req_type="Pothole" if oid % 2 else "Graffiti",
                status=1 if oid % 3 else 2,
                created_date=1700000000000 + oid,
                globalid="{8D1A2F4C-1111-4A8B-9E0C-%012d}" % oid,
                notes=None,
            )

    def _layer_id(self, url: str) -> int:
        return int(re.search(r"/(\d+)/(query|applyEdits)$", url).group(1))

    def _matching(self, layer_id: int, where: str) -> List[Dict[str, Any]]:
        rows = [self.records[layer_id][oid] for oid in sorted(self.records[layer_id])]
        match = re.match(r"^\s*(\w+)\s*=\s*'?([^']*)'?\s*$", where)
        if where.strip() == "1=1" or match is None:
            return rows
        name, value = match.groups()
        return [r for r in rows if str(r["attributes"].get(name)) == value]

    def _query_handler(self, params, url):
        layer_id = self._layer_id(url)
        rows = self._matching(layer_id, params.get("where", "1=1"))

        if params.get("returnIdsOnly") == "true":
            return {"objectIdFieldName": "OBJECTID", "objectIds": [r["attributes"]["OBJECTID"] for r in rows]}

        if params.get("objectIds"):
            wanted = {int(i) for i in params["objectIds"].split(",")}
            page = [r for r in rows if r["attributes"]["OBJECTID"] in wanted]
            page.reverse()
        else:
            page = rows[:self.max_record_count]

        features = []
        for row in page:
            feature = {"attributes": dict(row["attributes"])}
            if params.get("returnGeometry") == "true" and row["geometry"] is not None:
                feature["geometry"] = dict(row["geometry"])
            features.append(feature)

        return {
            "objectIdFieldName": "OBJECTID",
            "features": features,
            "exceededTransferLimit": len(rows) > len(page),
        }

    def _apply_edits_handler(self, params, url):
        layer_id = self._layer_id(url)
        response = {"addResults": [], "updateResults": [], "deleteResults": []}

        if self.edit_error is not None:
            return {"error": self.edit_error}

        if "adds" in params:
            next_id = max(self.records[layer_id], default=0) + 1
            for i, record in enumerate(json.loads(params["adds"])):
                if i == self.fail_adds_at:
                    response["addResults"].append(
                        {"objectId": -1, "success": False, "error": {"code": 1000, "description": "Invalid value"}}
                    )
                    continue
                attributes = {"created_date": 1700000000000, "globalid": "{00000000-0000-0000-0000-%012d}" % next_id}
                attributes.update(record["attributes"])
                self.add(layer_id, next_id, record.get("geometry"), **attributes)
                response["addResults"].append({"objectId": next_id, "success": True})
                next_id += 1

        if "updates" in params:
            for record in json.loads(params["updates"]):
                oid = record["attributes"]["OBJECTID"]
                stored = self.records[layer_id][oid]
                stored["attributes"].update(record["attributes"])
                if "geometry" in record:
                    stored["geometry"] = record["geometry"]
                response["updateResults"].append({"objectId": oid, "success": True})

        if "deletes" in params:
            for oid in (int(i) for i in params["deletes"].split(",")):
                self.records[layer_id].pop(oid, None)
                response["deleteResults"].append({"objectId": oid, "success": True})

        return response


@pytest.fixture(autouse=True)
def clear_schema_cache():
    schema_cache.clear()
    yield
    schema_cache.clear()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(session):
    return EsriClient(session=session)


@pytest.fixture
def server(session):
    return FakeFeatureServer(session)


@pytest.fixture
def service(server, client):
    return Service(SERVICE_URL, client=client)
