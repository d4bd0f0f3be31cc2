"""checkin_worklist/lambda_function.py

Operator worklist of an event's registrations for check-in.

Routes (via API Gateway proxy):
    GET     /events/{eventId}:checkin-worklist
    OPTIONS /events/{eventId}:checkin-worklist

Query parameters:
    checkedIn     true|false (default false) — checked-in vs. still waiting
    ready         true|false (optional)      — readiness computed at check-in
    blockerCode   comma-separated codes      — any blocker matches; ignored when ready=true
    status        draft|submitted|confirmed|cancelled
    q             substring of id, partyId, divisionId or classId
    limit         1..200 (default 50)
    next          opaque cursor from a previous page

Registrations are read page by page from the objects table and filtered in
memory until ``limit`` matches are found, the table is exhausted, or
MAX_BACKEND_PAGES pages have been read. A capped response still carries a
``next`` cursor so the caller can continue.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from mbapp_shared import objects_repo
from mbapp_shared.auth import _authenticate
from mbapp_shared.http_utils import _cors_headers, _error, _path_method, _path_param, _query_params, _response
from mbapp_shared.pagination import (
    InvalidQueryParameter,
    collect_filtered_page,
    parse_boolean,
    parse_csv_set,
    parse_limit,
)

MAX_BACKEND_PAGES = 10
DEFAULT_LIMIT = 50
MIN_LIMIT = 1
MAX_LIMIT = 200
STATUS_ALLOWLIST = {"draft", "submitted", "confirmed", "cancelled"}
QUERY_FIELDS = ("id", "partyId", "divisionId", "classId")

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_PATH_RE = re.compile(r"/events/(?P<eventId>[A-Za-z0-9_.-]+):checkin-worklist/?$")


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def _check_in_status(reg: Dict[str, Any]) -> Dict[str, Any]:
    status = reg.get("checkInStatus")
    return status if isinstance(status, dict) else {}


def _matches_checked_in(checked_in: bool):
    def check(reg: Dict[str, Any]) -> bool:
        return bool(reg.get("checkedInAt")) == checked_in

    return check


def _matches_ready(ready: Optional[bool]):
    def check(reg: Dict[str, Any]) -> bool:
        if ready is None:
            return True
        return (_check_in_status(reg).get("ready") is True) == ready

    return check


def _matches_blockers(blocker_codes: set, ready: Optional[bool]):
    def check(reg: Dict[str, Any]) -> bool:
        if not blocker_codes or ready is True:
            return True
        blockers = _check_in_status(reg).get("blockers")
        for blocker in blockers if isinstance(blockers, list) else []:
            code = blocker.get("code") if isinstance(blocker, dict) else None
            if isinstance(code, str) and code.lower() in blocker_codes:
                return True
        return False

    return check


def _matches_status(status: Optional[str]):
    def check(reg: Dict[str, Any]) -> bool:
        return not status or str(reg.get("status") or "") == status

    return check


def _matches_query(q: Optional[str]):
    needle = (q or "").lower()

    def check(reg: Dict[str, Any]) -> bool:
        if not needle:
            return True
        return any(
            isinstance(reg.get(field), str) and needle in reg[field].lower()
            for field in QUERY_FIELDS
        )

    return check


# ---------------------------------------------------------------------------
# GET
# ---------------------------------------------------------------------------


def _handle_worklist(tenant_id: str, event_id: str, qs: Dict[str, str]) -> Dict[str, Any]:
    try:
        checked_in_param = parse_boolean(qs.get("checkedIn"), "checkedIn")
        ready = parse_boolean(qs.get("ready"), "ready")
    except InvalidQueryParameter as exc:
        return _error(400, str(exc), parameter=exc.name)
    checked_in = bool(checked_in_param)

    blocker_raw = (qs.get("blockerCode") or "").strip()
    blocker_codes = parse_csv_set(blocker_raw)

    status = (qs.get("status") or "").strip() or None
    if status and status not in STATUS_ALLOWLIST:
        return _error(400, "Invalid status value", parameter="status")

    q = (qs.get("q") or "").strip() or None
    limit = parse_limit(qs.get("limit"), DEFAULT_LIMIT, MIN_LIMIT, MAX_LIMIT)

    predicates: List[Any] = [
        _matches_checked_in(checked_in),
        _matches_ready(ready),
        _matches_blockers(blocker_codes, ready),
        _matches_status(status),
        _matches_query(q),
    ]
    page = collect_filtered_page(
        lambda cursor: objects_repo.registrations_page(tenant_id, event_id, limit, cursor),
        predicates,
        limit,
        start=qs.get("next") or None,
        max_pages=MAX_BACKEND_PAGES,
    )

    logger.info(
        "checkin worklist: event=%s checked_in=%s ready=%s returned=%s has_next=%s",
        event_id, checked_in, ready, len(page["items"]), bool(page["next"]),
    )
    return _response(200, {
        "success": True,
        "eventId": event_id,
        "checkedIn": checked_in,
        "ready": ready,
        "blockerCode": blocker_raw or None,
        "items": page["items"],
        "next": page["next"],
    })


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    method, raw_path = _path_method(event)

    if method == "OPTIONS":
        return {"statusCode": 204, "headers": _cors_headers(), "body": ""}

    auth, auth_err = _authenticate(event)
    if auth_err:
        return auth_err

    event_id = _path_param(event, "eventId", "id")
    if not event_id:
        match = _PATH_RE.search(raw_path)
        event_id = match.group("eventId") if match else None
    if not event_id:
        return _error(400, "Missing eventId")

    if method != "GET":
        return _error(405, f"Method {method} not allowed.")

    try:
        return _handle_worklist(auth["tenant_id"], event_id, _query_params(event))
    except (BotoCoreError, ClientError) as exc:
        logger.error("checkin worklist query failed: event=%s err=%s", event_id, exc)
        return _error(500, "Database query failed.")
