"""order_patch_lines/lambda_function.py

Applies minimal line edits to a draft sales or purchase order.

Routes (via API Gateway proxy):
    POST    /so/{id}:patch-lines    body: {"ops": [...]}
    POST    /po/{id}:patch-lines    body: {"ops": [...]}
    OPTIONS /{so|po}/{id}:patch-lines

Ops:
    {"op": "remove", "id": "L3"}
    {"op": "upsert", "id": "L1", "patch": {"qty": 2}}
    {"op": "upsert", "patch": {"itemId": "B", "qty": 1, "uom": "ea"}}

New lines receive the next free ``L{n}`` id; ids of removed lines are not
reused. Only itemId, qty and uom are patchable.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from mbapp_shared import objects_repo
from mbapp_shared.auth import _authenticate
from mbapp_shared.config import PATCHABLE_LINE_FIELDS
from mbapp_shared.http_utils import (
    _cors_headers,
    _error,
    _json_body,
    _path_method,
    _path_param,
    _request_id,
    _response,
)
from mbapp_shared.patch_lines import PatchLinesValidationError, run_patch_lines_engine
from mbapp_shared.serialization import _now_iso

logger = logging.getLogger()
logger.setLevel(logging.INFO)

# route segment -> (object type, label, editable statuses, not-editable code)
ORDER_KINDS: Dict[str, Tuple[str, str, Tuple[str, ...], str]] = {
    "so": ("salesOrder", "SO", ("draft", "submitted", "approved"), "SO_NOT_EDITABLE"),
    "po": ("purchaseOrder", "PO", ("draft",), "PO_NOT_EDITABLE"),
}

_PATH_RE = re.compile(r"/(?P<kind>so|po)/(?P<id>[A-Za-z0-9_.-]+):patch-lines/?$")


def _parse_route(event: Dict[str, Any]) -> Tuple[str, Optional[str], Optional[str]]:
    method, raw_path = _path_method(event)
    match = _PATH_RE.search(raw_path)
    kind = match.group("kind") if match else _path_param(event, "kind")
    order_id = _path_param(event, "id") or (match.group("id") if match else None)
    return method, kind, order_id


def _handle_patch(event: Dict[str, Any], tenant_id: str, kind: str, order_id: str) -> Dict[str, Any]:
    object_type, label, editable, not_editable_code = ORDER_KINDS[kind]
    log_ctx = f"request_id={_request_id(event)} tenant={tenant_id} {kind}={order_id}"

    try:
        body = _json_body(event)
    except ValueError as exc:
        logger.warning("%s-patch-lines bad body: %s %s", kind, log_ctx, exc)
        return _error(400, "Body must include ops[]")
    ops = body.get("ops")
    if not isinstance(ops, list):
        logger.warning("%s-patch-lines bad body: %s reason=missing_ops", kind, log_ctx)
        return _error(400, "Body must include ops[]")

    order = objects_repo.get_object(tenant_id, object_type, order_id)
    if order is None:
        return _error(404, f"{label} not found: {order_id}")

    try:
        next_lines, summary = run_patch_lines_engine(
            order,
            ops,
            entity_label=label,
            editable_statuses=editable,
            not_editable_code=not_editable_code,
            patchable_fields=PATCHABLE_LINE_FIELDS,
        )
    except PatchLinesValidationError as exc:
        logger.warning("%s-patch-lines rejected: %s code=%s", kind, log_ctx, exc.code)
        return _error(exc.status_code, str(exc), code=exc.code, **exc.details)

    updated = {**order, "lines": next_lines, "updatedAt": _now_iso()}
    objects_repo.put_object(updated)

    logger.info(
        "%s-patch-lines saved: %s added=%s updated=%s removed=%s line_count=%s",
        kind, log_ctx, summary["added"], summary["updated"], summary["removed"], len(next_lines),
    )
    return _response(200, {"success": True, "item": updated, "summary": summary})


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    method, kind, order_id = _parse_route(event)

    if method == "OPTIONS":
        return {"statusCode": 204, "headers": _cors_headers(), "body": ""}

    auth, auth_err = _authenticate(event)
    if auth_err:
        return auth_err

    if kind not in ORDER_KINDS or not order_id:
        return _error(400, "Missing order kind or id")
    if method != "POST":
        return _error(405, f"Method {method} not allowed.")

    try:
        return _handle_patch(event, auth["tenant_id"], kind, order_id)
    except (BotoCoreError, ClientError) as exc:
        logger.error("%s-patch-lines failed: id=%s err=%s", kind, order_id, exc)
        return _error(500, "Database request failed.")
