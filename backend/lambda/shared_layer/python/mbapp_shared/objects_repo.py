"""mbapp_shared.objects_repo — Tenant/type keyed objects in one DynamoDB table.

Layout:
    pk = <tenantId>
    sk = <type>#<id>
Every item also carries plain ``id``, ``type``, ``tenantId``, ``createdAt``
and ``updatedAt`` attributes for clients.

List functions return ``{"items": [...], "next": token}`` where ``next`` is
an opaque cursor from mbapp_shared.pagination.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from botocore.exceptions import ClientError

from mbapp_shared import config
from mbapp_shared.aws_clients import _get_ddb
from mbapp_shared.pagination import collect_filtered_page, decode_cursor, encode_cursor
from mbapp_shared.patch_lines import ensure_line_ids, reserved_line_ids
from mbapp_shared.serialization import _deserialize, _now_iso, _serialize, _serialize_item

logger = logging.getLogger(__name__)

ORDER_TYPES = {"salesOrder", "purchaseOrder"}
IDENTITY_ATTRS = {"tenantId", "type", "id", "createdAt", "updatedAt"}
FILTERED_MAX_PAGES = 10


class ObjectNotFound(LookupError):
    def __init__(self, object_type: str, object_id: str):
        super().__init__(f"{object_type} not found: {object_id}")
        self.object_type = object_type
        self.object_id = object_id


# ---------------------------------------------------------------------------
# Keys and projection
# ---------------------------------------------------------------------------


def _object_key(tenant_id: str, object_type: str, object_id: str) -> Dict[str, Any]:
    return {
        config.TABLE_PK: _serialize(tenant_id),
        config.TABLE_SK: _serialize(f"{object_type}#{object_id}"),
    }


def _key_attrs(tenant_id: str, object_type: str, object_id: str) -> Dict[str, Any]:
    return {
        config.TABLE_PK: tenant_id,
        config.TABLE_SK: f"{object_type}#{object_id}",
        "id": object_id,
        "type": object_type,
        "tenantId": tenant_id,
    }


def _project(item: Dict[str, Any], fields: Optional[Sequence[str]]) -> Dict[str, Any]:
    if not fields:
        return item
    keep = {"id", "type", *fields}
    return {k: v for k, v in item.items() if k in keep}


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_object(
    tenant_id: str,
    object_type: str,
    object_id: str,
    fields: Optional[Sequence[str]] = None,
) -> Optional[Dict[str, Any]]:
    resp = _get_ddb().get_item(
        TableName=config.OBJECTS_TABLE,
        Key=_object_key(tenant_id, object_type, object_id),
        ConsistentRead=True,
    )
    raw = resp.get("Item")
    if not raw:
        return None
    item = _deserialize(raw)
    if item.get("type") != object_type:
        return None
    return _project(item, fields)


def _type_query(
    tenant_id: str,
    object_type: str,
    filter_attrs: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "TableName": config.OBJECTS_TABLE,
        "KeyConditionExpression": "#pk = :t AND begins_with(#sk, :prefix)",
        "ExpressionAttributeNames": {"#pk": config.TABLE_PK, "#sk": config.TABLE_SK},
        "ExpressionAttributeValues": {
            ":t": _serialize(tenant_id),
            ":prefix": _serialize(f"{object_type}#"),
        },
        "ConsistentRead": True,
    }
    if filter_attrs:
        clauses = []
        for index, (name, value) in enumerate(filter_attrs.items()):
            params["ExpressionAttributeNames"][f"#f{index}"] = name
            params["ExpressionAttributeValues"][f":f{index}"] = _serialize(value)
            clauses.append(f"#f{index} = :f{index}")
        params["FilterExpression"] = " AND ".join(clauses)
    return params


def query_page(
    tenant_id: str,
    object_type: str,
    limit: int,
    next_token: Optional[str] = None,
    scan_forward: bool = True,
    filter_attrs: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """One store page of a type's objects; ``filter_attrs`` become a FilterExpression."""
    params = _type_query(tenant_id, object_type, filter_attrs)
    params["Limit"] = limit
    params["ScanIndexForward"] = scan_forward

    start_key = decode_cursor(next_token)
    if isinstance(start_key, dict) and start_key:
        params["ExclusiveStartKey"] = start_key

    resp = _get_ddb().query(**params)
    return {
        "items": [_deserialize(raw) for raw in resp.get("Items", [])],
        "next": encode_cursor(resp.get("LastEvaluatedKey")),
    }


def count_objects(
    tenant_id: str,
    object_type: str,
    filter_attrs: Optional[Dict[str, Any]] = None,
) -> int:
    """Count a type's objects (after ``filter_attrs``) without reading them back."""
    params = _type_query(tenant_id, object_type, filter_attrs)
    params["Select"] = "COUNT"
    total = 0
    while True:
        resp = _get_ddb().query(**params)
        total += int(resp.get("Count") or 0)
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            return total
        params["ExclusiveStartKey"] = last_key


def _matches_filters(filters: Dict[str, str]) -> Callable[[Dict[str, Any]], bool]:
    def check(item: Dict[str, Any]) -> bool:
        return all(str(item.get(k, "")) == str(v) for k, v in filters.items())

    return check


def _matches_query(q: str) -> Callable[[Dict[str, Any]], bool]:
    needle = q.lower()

    def check(item: Dict[str, Any]) -> bool:
        return needle in json.dumps(item, default=str).lower()

    return check


def list_objects(
    tenant_id: str,
    object_type: str,
    limit: int = 25,
    next_token: Optional[str] = None,
    scan_forward: bool = True,
    q: Optional[str] = None,
    filters: Optional[Dict[str, str]] = None,
    fields: Optional[Sequence[str]] = None,
    filter_attrs: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """List a type's objects.

    ``filter_attrs`` are applied by the store; ``filters`` (exact match on the
    text form) and ``q`` (substring search) are applied in memory through the
    filtered pagination loop.
    """
    if not filters and not q:
        page = query_page(tenant_id, object_type, limit, next_token, scan_forward, filter_attrs)
        return {"items": [_project(i, fields) for i in page["items"]], "next": page["next"]}

    predicates = []
    if filters:
        predicates.append(_matches_filters(filters))
    if q:
        predicates.append(_matches_query(q))

    started = time.monotonic()
    page = collect_filtered_page(
        lambda cursor: query_page(tenant_id, object_type, limit, cursor, scan_forward, filter_attrs),
        predicates,
        limit,
        start=next_token,
        max_pages=FILTERED_MAX_PAGES,
    )
    logger.info(json.dumps({
        "event": "objects:list:filtered",
        "tenantId": tenant_id,
        "type": object_type,
        "limit": limit,
        "itemsReturned": len(page["items"]),
        "hasNext": bool(page["next"]),
        "totalMs": int((time.monotonic() - started) * 1000),
    }))
    return {"items": [_project(i, fields) for i in page["items"]], "next": page["next"]}


def registrations_page(
    tenant_id: str,
    event_id: str,
    limit: int,
    next_token: Optional[str] = None,
) -> Dict[str, Any]:
    """One store page of registrations belonging to an event."""
    return query_page(
        tenant_id,
        "registration",
        limit,
        next_token,
        scan_forward=True,
        filter_attrs={"eventId": event_id},
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _lines_with_ids(lines: Any, existing_lines: Iterable[Dict[str, Any]] = ()) -> Any:
    if not isinstance(lines, list):
        return lines
    existing = [line for line in existing_lines if isinstance(line, dict)]
    reserve = [str(line.get("id")).strip() for line in existing if str(line.get("id") or "").strip()]
    _, max_number = reserved_line_ids(existing, lines)
    return ensure_line_ids(lines, reserve_ids=reserve, start_at=max_number + 1)


def put_object(item: Dict[str, Any]) -> None:
    _get_ddb().put_item(TableName=config.OBJECTS_TABLE, Item=_serialize_item(item))


def create_object(tenant_id: str, object_type: str, body: Dict[str, Any]) -> Dict[str, Any]:
    body = dict(body)
    if object_type in ORDER_TYPES and isinstance(body.get("lines"), list):
        body["lines"] = _lines_with_ids(body["lines"])

    object_id = str(body.get("id") or "").strip() or _new_id()
    now = _now_iso()
    item = {
        **body,
        **_key_attrs(tenant_id, object_type, object_id),
        "createdAt": body.get("createdAt") or now,
        "updatedAt": now,
    }
    put_object(item)
    logger.info("object created: type=%s id=%s", object_type, object_id)
    return item


def replace_object(tenant_id: str, object_type: str, object_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
    existing = get_object(tenant_id, object_type, object_id)
    body = dict(body)
    if object_type in ORDER_TYPES and isinstance(body.get("lines"), list):
        body["lines"] = _lines_with_ids(body["lines"], (existing or {}).get("lines") or [])

    item = {
        **body,
        **_key_attrs(tenant_id, object_type, object_id),
        "createdAt": body.get("createdAt") or (existing or {}).get("createdAt") or _now_iso(),
        "updatedAt": _now_iso(),
    }
    put_object(item)
    logger.info("object replaced: type=%s id=%s", object_type, object_id)
    return item


def update_object(tenant_id: str, object_type: str, object_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
    """Partially update an existing object. Raises ObjectNotFound when it does not exist."""
    body = dict(body)
    if object_type in ORDER_TYPES and isinstance(body.get("lines"), list):
        existing = get_object(tenant_id, object_type, object_id, fields=["lines"])
        if existing is None:
            raise ObjectNotFound(object_type, object_id)
        body["lines"] = _lines_with_ids(body["lines"], existing.get("lines") or [])

    skip = IDENTITY_ATTRS | {config.TABLE_PK, config.TABLE_SK}
    names: Dict[str, str] = {"#pk": config.TABLE_PK}
    values: Dict[str, Any] = {}
    sets: List[str] = []
    removes: List[str] = []
    fields = [(name, value) for name, value in body.items() if name not in skip]
    for index, (name, value) in enumerate(fields):
        names[f"#n{index}"] = name
        if value is None:
            removes.append(f"#n{index}")
            continue
        values[f":v{index}"] = _serialize(value)
        sets.append(f"#n{index} = :v{index}")

    names["#n_updatedAt"] = "updatedAt"
    values[":v_updatedAt"] = _serialize(_now_iso())
    sets.append("#n_updatedAt = :v_updatedAt")

    expression = "SET " + ", ".join(sets)
    if removes:
        expression += " REMOVE " + ", ".join(removes)

    try:
        resp = _get_ddb().update_item(
            TableName=config.OBJECTS_TABLE,
            Key=_object_key(tenant_id, object_type, object_id),
            UpdateExpression=expression,
            ConditionExpression="attribute_exists(#pk)",
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
            raise ObjectNotFound(object_type, object_id) from exc
        raise

    logger.info("object updated: type=%s id=%s fields=%s", object_type, object_id, sorted(body))
    return _deserialize(resp.get("Attributes") or {})


def delete_object(tenant_id: str, object_type: str, object_id: str) -> None:
    _get_ddb().delete_item(
        TableName=config.OBJECTS_TABLE,
        Key=_object_key(tenant_id, object_type, object_id),
    )
    logger.info("object deleted: type=%s id=%s", object_type, object_id)
