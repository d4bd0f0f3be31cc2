"""objects_api/lambda_function.py

Lambda API for multi-tenant object CRUD on the single objects table.

Routes (via API Gateway proxy):
    GET     /objects/{type}                  — list (limit, next, sort, q, filter.<field>)
    GET     /objects/registration?eventId=&count=1
                                             — registrations of one event; count=1 returns {count}
    GET     /objects/{type}/search?q=        — substring search
    GET     /objects/{type}/{id}             — retrieve (optional ?fields=a,b)
    POST    /objects/{type}                  — create
    PUT     /objects/{type}/{id}             — replace
    PATCH   /objects/{type}/{id}             — partial update
    DELETE  /objects/{type}/{id}             — delete
    OPTIONS /objects[/*]                     — CORS preflight

Auth:
    ``Authorization: Bearer <jwt>`` plus ``x-tenant-id`` header
    (see mbapp_shared.auth).

Environment variables:
    OBJECTS_TABLE     default: mbapp_objects
    MAX_LIST_LIMIT    default: 100
    DYNAMODB_REGION   default: us-east-1
    JWT_SECRET / JWT_ISSUER
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from mbapp_shared import config, objects_repo
from mbapp_shared.auth import _authenticate
from mbapp_shared.http_utils import (
    _cors_headers,
    _error,
    _json_body,
    _path_method,
    _path_param,
    _query_params,
    _response,
)
from mbapp_shared.pagination import parse_limit

DEFAULT_LIST_LIMIT = 25
FILTER_PARAM_PREFIX = "filter."
# Newest first unless the caller asks otherwise.
DESC_DEFAULT_TYPES = {"product", "event"}

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_PATH_RE = re.compile(r"/objects/(?P<type>[A-Za-z0-9_:-]+)(?:/(?P<id>[A-Za-z0-9_.:-]+))?/?$")


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------


def _parse_request(event: Dict[str, Any]) -> Tuple[str, Optional[str], Optional[str], Dict[str, str]]:
    """Parse method, object type, object id and query params from event."""
    method, raw_path = _path_method(event)
    object_type = _path_param(event, "type")
    object_id = _path_param(event, "id")

    if not object_type:
        match = _PATH_RE.search(raw_path)
        if match:
            object_type = match.group("type")
            object_id = object_id or match.group("id")

    qs = _query_params(event)
    logger.info(
        "request parse: method=%s raw_path=%s type=%s id=%s qs_keys=%s",
        method, raw_path, object_type, object_id, sorted(qs.keys()),
    )
    return method, object_type, object_id, qs


def _fields_param(qs: Dict[str, str]) -> Optional[list]:
    raw = (qs.get("fields") or "").strip()
    fields = [f.strip() for f in raw.split(",") if f.strip()]
    return fields or None


def _scan_forward(object_type: str, qs: Dict[str, str]) -> bool:
    sort = (qs.get("sort") or "").strip().lower()
    if sort == "asc":
        return True
    if sort == "desc":
        return False
    return object_type not in DESC_DEFAULT_TYPES


def _filters_param(qs: Dict[str, str]) -> Dict[str, str]:
    return {
        key[len(FILTER_PARAM_PREFIX):]: value
        for key, value in qs.items()
        if key.startswith(FILTER_PARAM_PREFIX) and key[len(FILTER_PARAM_PREFIX):] and value is not None
    }


def _store_filters(object_type: str, qs: Dict[str, str]) -> Optional[Dict[str, str]]:
    # Registrations can be narrowed to one event by the store itself.
    event_id = (qs.get("eventId") or "").strip()
    if object_type == "registration" and event_id:
        return {"eventId": event_id}
    return None


# ---------------------------------------------------------------------------
# GET
# ---------------------------------------------------------------------------


def _handle_list(tenant_id: str, object_type: str, qs: Dict[str, str], search: bool) -> Dict[str, Any]:
    q = (qs.get("q") or "").strip()
    if search and not q:
        return _error(400, "Query parameter 'q' is required.")

    store_filters = _store_filters(object_type, qs)
    if not search and object_type == "registration" and qs.get("count") == "1":
        count = objects_repo.count_objects(tenant_id, object_type, store_filters)
        return _response(200, {"success": True, "count": count})

    limit = parse_limit(qs.get("limit"), DEFAULT_LIST_LIMIT, 1, config.MAX_LIST_LIMIT)
    page = objects_repo.list_objects(
        tenant_id,
        object_type,
        limit=limit,
        next_token=qs.get("next") or None,
        scan_forward=_scan_forward(object_type, qs),
        q=q or None,
        filters=_filters_param(qs) or None,
        fields=_fields_param(qs),
        filter_attrs=store_filters,
    )
    return _response(200, {
        "success": True,
        "items": page["items"],
        "count": len(page["items"]),
        "next": page["next"],
    })


def _handle_get(tenant_id: str, object_type: str, object_id: Optional[str], qs: Dict[str, str]) -> Dict[str, Any]:
    if object_id == "search":
        return _handle_list(tenant_id, object_type, qs, search=True)
    if not object_id:
        return _handle_list(tenant_id, object_type, qs, search=False)

    item = objects_repo.get_object(tenant_id, object_type, object_id, fields=_fields_param(qs))
    if item is None:
        return _error(404, f"{object_type} not found: {object_id}")
    return _response(200, {"success": True, "item": item})


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _handle_write(
    method: str,
    event: Dict[str, Any],
    tenant_id: str,
    object_type: str,
    object_id: Optional[str],
) -> Dict[str, Any]:
    if method == "DELETE":
        if not object_id:
            return _error(400, "DELETE requires an object id in the path.")
        objects_repo.delete_object(tenant_id, object_type, object_id)
        return _response(200, {"success": True, "id": object_id, "deleted": True})

    try:
        body = _json_body(event)
    except ValueError as exc:
        return _error(400, str(exc))

    if method == "POST":
        if object_id:
            return _error(400, "POST does not accept an object id in the path.")
        item = objects_repo.create_object(tenant_id, object_type, body)
        return _response(201, {"success": True, "item": item})

    if not object_id:
        return _error(400, f"{method} requires an object id in the path.")

    if method == "PUT":
        item = objects_repo.replace_object(tenant_id, object_type, object_id, body)
        return _response(200, {"success": True, "item": item})

    try:
        item = objects_repo.update_object(tenant_id, object_type, object_id, body)
    except objects_repo.ObjectNotFound as exc:
        return _error(404, str(exc))
    return _response(200, {"success": True, "item": item})


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    method, object_type, object_id, qs = _parse_request(event)

    if method == "OPTIONS":
        return {"statusCode": 204, "headers": _cors_headers(), "body": ""}

    auth, auth_err = _authenticate(event)
    if auth_err:
        return auth_err
    tenant_id = auth["tenant_id"]

    if not object_type:
        return _error(400, "type is required")

    try:
        if method == "GET":
            return _handle_get(tenant_id, object_type, object_id, qs)
        if method in ("POST", "PUT", "PATCH", "DELETE"):
            return _handle_write(method, event, tenant_id, object_type, object_id)
    except (BotoCoreError, ClientError) as exc:
        logger.error("objects %s failed: type=%s id=%s err=%s", method, object_type, object_id, exc)
        return _error(500, "Database request failed.")

    return _error(405, f"Method {method} not allowed.")
