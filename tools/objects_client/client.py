#!/usr/bin/env python3
"""objects_client — Python client for the mbapp objects API.

Session state (API base, tenant, bearer token) lives on an explicit
ApiSession passed to every call: ``login`` sets the token, ``logout``
clears it.

Line editing follows the edit-screen flow: keep the order's lines as
loaded, let the caller edit a copy, then ``submit_line_edits`` diffs the
two and posts only the resulting ops. An empty diff makes no request.

Environment variables (used by ``ApiSession.from_env``):
    MBAPP_API_BASE     default: http://localhost:3000
    MBAPP_TENANT_ID    default: DemoTenant
    MBAPP_BEARER       optional bearer token
"""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from mbapp_shared.line_diff import compute_line_diff
from mbapp_shared.line_identity import resolve_key
from mbapp_shared.pagination import normalize_page

logger = logging.getLogger(__name__)

HTTP_USER_AGENT = "mbapp-objects-client/1.0"
DEFAULT_TIMEOUT_SECONDS = 20
PATCH_LINES_ROUTES = {"salesOrder": "so", "purchaseOrder": "po"}


class ApiError(RuntimeError):
    """Non-2xx response or transport failure."""

    def __init__(self, status: int, code: str, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(f"{status} {code}: {message}")
        self.status = status
        self.code = code
        self.message = message
        self.payload = payload or {}


@dataclass
class ApiSession:
    api_base: str
    tenant_id: str
    token: Optional[str] = None
    timeout: int = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "ApiSession":
        return cls(
            api_base=os.environ.get("MBAPP_API_BASE", "http://localhost:3000"),
            tenant_id=os.environ.get("MBAPP_TENANT_ID", "DemoTenant"),
            token=os.environ.get("MBAPP_BEARER") or None,
        )

    def login(self, token: str) -> None:
        self.token = token

    def logout(self) -> None:
        self.token = None

    @property
    def authenticated(self) -> bool:
        return bool(self.token)

    def url(self, path: str, query: Optional[Mapping[str, Any]] = None) -> str:
        route = path if path.startswith("/") else f"/{path}"
        url = f"{self.api_base.rstrip('/')}{route}"
        if query:
            encoded = urllib.parse.urlencode(
                {k: _query_value(v) for k, v in query.items() if v is not None}
            )
            if encoded:
                url = f"{url}?{encoded}"
        return url

    def headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": HTTP_USER_AGENT,
            "X-Tenant-Id": self.tenant_id,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _error_from_body(status: int, raw: str) -> ApiError:
    try:
        parsed = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        parsed = {"error": raw}
    if not isinstance(parsed, dict):
        parsed = {"error": raw}
    envelope = parsed.get("error_envelope") or {}
    code = str(envelope.get("code") or parsed.get("code") or "HTTP_ERROR")
    message = str(envelope.get("message") or parsed.get("error") or parsed.get("message") or f"HTTP {status}")
    return ApiError(status, code, message, parsed)


def request(
    session: ApiSession,
    method: str,
    path: str,
    payload: Optional[Dict[str, Any]] = None,
    query: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Send one JSON request and return the decoded response body."""
    headers = session.headers()
    if payload is not None:
        headers["Content-Type"] = "application/json"
        body = json.dumps(payload).encode("utf-8")
    else:
        body = None

    req = urllib.request.Request(
        url=session.url(path, query), method=method.upper(), headers=headers, data=body
    )
    try:
        with urllib.request.urlopen(req, timeout=session.timeout) as resp:
            text = resp.read().decode("utf-8")
            return json.loads(text) if text else {"success": True}
    except urllib.error.HTTPError as exc:
        raw = exc.read().decode("utf-8") if hasattr(exc, "read") else ""
        raise _error_from_body(exc.code, raw) from exc
    except urllib.error.URLError as exc:
        raise ApiError(0, "UPSTREAM_ERROR", f"API unreachable: {exc.reason}") from exc


# ---------------------------------------------------------------------------
# Objects
# ---------------------------------------------------------------------------


def list_objects(session: ApiSession, object_type: str, **query: Any) -> Dict[str, Any]:
    """One page of objects as {"items", "next"}; pass ``next`` to continue."""
    quoted = urllib.parse.quote(object_type, safe="")
    return normalize_page(request(session, "GET", f"/objects/{quoted}", query=query))


def get_object(session: ApiSession, object_type: str, object_id: str) -> Dict[str, Any]:
    quoted_type = urllib.parse.quote(object_type, safe="")
    quoted_id = urllib.parse.quote(object_id, safe="")
    resp = request(session, "GET", f"/objects/{quoted_type}/{quoted_id}")
    return resp.get("item") or {}


# ---------------------------------------------------------------------------
# Line editing
# ---------------------------------------------------------------------------


def editable_lines(lines: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Copies of ``lines`` that each carry a stable render key.

    Lines without a server id get a cid here, once, so editor rows keep
    their identity across re-renders and retries.
    """
    out = []
    for line in lines:
        copy = dict(line)
        resolve_key(copy)
        out.append(copy)
    return out


def submit_line_edits(
    session: ApiSession,
    object_type: str,
    order_id: str,
    original_lines: Sequence[Mapping[str, Any]],
    current_lines: Sequence[Mapping[str, Any]],
) -> Optional[Dict[str, Any]]:
    """Post the patch-lines ops for an edit session.

    Returns the updated order, or None when nothing changed (no request is
    sent in that case).
    """
    route = PATCH_LINES_ROUTES.get(object_type)
    if route is None:
        raise ValueError(f"Line editing not supported for type: {object_type}")

    ops = compute_line_diff(original_lines, current_lines)
    if not ops:
        logger.info("no line changes for %s %s; skipping submit", object_type, order_id)
        return None

    quoted = urllib.parse.quote(order_id, safe="")
    resp = request(session, "POST", f"/{route}/{quoted}:patch-lines", payload={"ops": ops})
    return resp.get("item") or resp
