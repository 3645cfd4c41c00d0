"""
ArcGIS REST Feature Service Client

Schema introspection, object id queries, feature queries and applyEdits
against a MapServer/FeatureServer endpoint. Every failure, including an
HTTP 200 carrying an error envelope or a failed edit result, is raised as
``RestError`` with the url, request body and raw response attached.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

import requests
from loguru import logger

from .config import settings
from .exceptions import RestError
from .identity import ServiceIdentity
from .logging_utils import performance_logger
from .schema import ServiceInfo

ARCGIS_ONLINE_TOKEN_URL = "https://www.arcgis.com/sharing/rest/generateToken"
EDIT_OPERATIONS = ("adds", "updates", "deletes")


class ErrorResponse(Exception):
    """The service answered, but the answer says the request failed."""


def is_arcgis_online(url: str) -> bool:
    return re.search(r"\.arcgis\.com/", url, re.IGNORECASE) is not None


@dataclass
class Graphic:
    attributes: Dict[str, Any]
    geometry: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Graphic":
        return cls(attributes=data.get("attributes") or {}, geometry=data.get("geometry"))


@dataclass
class FeatureSet:
    features: List[Graphic] = field(default_factory=list)
    exceeded_transfer_limit: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeatureSet":
        return cls(
            features=[Graphic.from_dict(g) for g in data.get("features") or []],
            exceeded_transfer_limit=bool(data.get("exceededTransferLimit", False)),
        )


@dataclass
class OIDSet:
    object_id_field_name: Optional[str] = None
    object_ids: List[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OIDSet":
        return cls(
            object_id_field_name=data.get("objectIdFieldName"),
            object_ids=list(data.get("objectIds") or []),
        )


@dataclass
class EditResult:
    object_id: Optional[int]
    success: bool
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EditResult":
        return cls(object_id=data.get("objectId"), success=bool(data.get("success")), error=data.get("error"))


@dataclass
class EditResultSet:
    add_results: List[EditResult] = field(default_factory=list)
    update_results: List[EditResult] = field(default_factory=list)
    delete_results: List[EditResult] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EditResultSet":
        for key in ("addResults", "updateResults", "deleteResults"):
            if data.get(key) is None:
                raise ErrorResponse(f"The response does not contain '{key}'.")

        results = {key: [EditResult.from_dict(r) for r in data[key]] for key in ("addResults", "updateResults", "deleteResults")}
        failed = [r for rs in results.values() for r in rs if not r.success]
        if failed:
            raise ErrorResponse(f"{len(failed)} edit(s) failed: {failed[0].error or 'no detail'}")

        return cls(results["addResults"], results["updateResults"], results["deleteResults"])


@dataclass
class TokenInfo:
    token: str
    expires: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenInfo":
        if not data.get("token"):
            raise ErrorResponse("The server did not return a token.")
        return cls(token=data["token"], expires=int(data.get("expires") or 0))


class EsriClient:
    """HTTP client for the ArcGIS REST API"""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Optional[int] = None,
    ) -> None:
        # HTTP session settings
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': settings.USER_AGENT,
            'Accept': 'application/json'
        })
        self.timeout: int = timeout or settings.REQUEST_TIMEOUT

    def _request(
        self,
        url: str,
        data: Optional[Dict[str, Any]],
        identity: Optional[ServiceIdentity],
        parse,
    ):
        """
        Send one request and decode it with ``parse``

        GET when there is no body, POST otherwise with the common parameters
        appended to the body.
        """
        token = identity.token.string_value() if identity is not None and identity.token is not None else None
        common = {
            'token': token,
            'gdbVersion': identity.gdb_version if identity is not None else None,
            'f': 'json',
        }
        common = {k: v for k, v in common.items() if v is not None}
        credentials = identity.credentials if identity is not None else None

        is_post = data is not None
        request_url = url if is_post else f"{url}?{urlencode(common)}"
        request_text = urlencode({**data, **common}) if is_post else None
        http_method = 'POST' if is_post else 'GET'
        response_text = None

        logger.debug(f"{http_method} {url}")

        try:
            if is_post:
                response = self.session.post(
                    request_url,
                    data=request_text,
                    headers={'Content-Type': 'application/x-www-form-urlencoded'},
                    auth=credentials,
                    timeout=self.timeout,
                    verify=settings.VERIFY_SSL,
                )
            else:
                response = self.session.get(
                    request_url, auth=credentials, timeout=self.timeout, verify=settings.VERIFY_SSL
                )

            response.encoding = 'utf-8'
            response_text = response.text
            response.raise_for_status()

            payload = json.loads(response_text)
            if not isinstance(payload, dict):
                raise ErrorResponse("The response is not a JSON object.")
            if payload.get('error') is not None:
                raise ErrorResponse(f"ArcGIS Server returned an error response: {payload['error']}")

            return parse(payload)

        except (requests.RequestException, ValueError, ErrorResponse) as e:
            raise RestError(
                f"An error occurred while processing a request against '{request_url}'.",
                url=request_url,
                request_text=request_text,
                http_method=http_method,
                response_text=response_text,
            ) from e

    def fetch_schema(self, identity: ServiceIdentity) -> ServiceInfo:
        """Layers, tables, fields and domains of the service"""
        url = identity.url
        if not is_arcgis_online(url):
            url = re.sub(r"/FeatureServer($|/)", r"/MapServer\1", url, flags=re.IGNORECASE)

        return self._request(f"{url.rstrip('/')}/layers", None, identity, ServiceInfo.from_dict)

    def fetch_object_ids(
        self,
        identity: ServiceIdentity,
        layer_id: int,
        where_clause: Optional[str] = None,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> OIDSet:
        """Object ids of every feature matching the query"""
        data = {
            'where': _clean_where_clause(where_clause),
            **(extra_params or {}),
            'returnIdsOnly': 'true',
        }
        return self._request(f"{identity.url}/{layer_id}/query", data, identity, OIDSet.from_dict)

    def fetch_features(
        self,
        identity: ServiceIdentity,
        layer_id: int,
        return_geometry: bool,
        return_z: bool,
        where_clause: Optional[str] = None,
        extra_params: Optional[Dict[str, Any]] = None,
        object_ids: Optional[Iterable[int]] = None,
    ) -> FeatureSet:
        """Features matching the query, optionally limited to ``object_ids``"""
        data = {
            'where': _clean_where_clause(where_clause),
            **(extra_params or {}),
            'objectIds': '' if object_ids is None else ','.join(str(i) for i in object_ids),
            'returnGeometry': 'true' if return_geometry else 'false',
            'returnZ': 'true' if return_z else 'false',
            'outFields': '*',
        }
        return self._request(f"{identity.url}/{layer_id}/query", data, identity, FeatureSet.from_dict)

    @performance_logger("applyEdits")
    def apply_edits(
        self,
        identity: ServiceIdentity,
        layer_id: int,
        operation: str,
        payload: Any,
    ) -> EditResultSet:
        """
        Submit one batch of adds, updates or deletes

        ``payload`` is a list of wire records for adds/updates and a list of
        object ids for deletes. Any failed record fails the whole call.
        """
        if operation not in EDIT_OPERATIONS:
            raise ValueError(f"Unknown edit operation '{operation}'.")

        if operation == 'deletes':
            text = ','.join(str(i) for i in payload)
        else:
            text = json.dumps(_remove_null_z(payload), separators=(',', ':'))

        logger.info(f"Submitting {len(payload)} {operation} to layer {layer_id}")
        return self._request(f"{identity.url}/{layer_id}/applyEdits", {operation: text}, identity, EditResultSet.from_dict)

    def generate_token(
        self,
        url: str,
        username: str,
        password: str,
        expiration: Optional[int] = None,
    ) -> TokenInfo:
        """Request a token from the server's (or ArcGIS Online's) generateToken endpoint"""
        if is_arcgis_online(url):
            token_url = ARCGIS_ONLINE_TOKEN_URL
        else:
            match = re.match(r"^http.*?(?=/rest/services/)", url, re.IGNORECASE)
            if match is None:
                raise ValueError(f"Cannot derive a token url from '{url}'.")
            token_url = f"{match.group(0)}/tokens/generateToken"

        data = {'username': username, 'password': password, 'client': 'requestip'}
        if expiration is not None:
            data['expiration'] = expiration

        return self._request(token_url, data, None, TokenInfo.from_dict)

    def close(self) -> None:
        self.session.close()


def _clean_where_clause(where_clause: Optional[str]) -> str:
    return '1=1' if where_clause is None or not where_clause.strip() else where_clause


def _remove_null_z(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop ``z: null`` from point geometries that do have x and y."""
    for record in records:
        geometry = record.get('geometry') if isinstance(record, dict) else None
        if (
            isinstance(geometry, dict)
            and 'z' in geometry
            and geometry['z'] is None
            and geometry.get('x') is not None
            and geometry.get('y') is not None
        ):
            del geometry['z']
    return records
