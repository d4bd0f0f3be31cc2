"""test_lambda_function.py — Mock-based tests for checkin_worklist.

Registrations are served from a fake paged store in place of the objects
table, so the filtered pagination behaves as it would against DynamoDB.

Run: python3 -m pytest test_lambda_function.py -v
"""

from __future__ import annotations

import importlib.util
import json
import os
import sys
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(__file__))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "shared_layer", "python"))

from mbapp_shared.pagination import decode_cursor, encode_cursor

_spec = importlib.util.spec_from_file_location(
    "checkin_worklist",
    os.path.join(os.path.dirname(__file__), "lambda_function.py"),
)
checkin_worklist = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(checkin_worklist)

_AUTH = ({"user_id": "user-1", "tenant_id": "T1", "roles": [], "claims": {}}, None)


def _make_event(event_id="evt1", query_params=None, method="GET"):
    path = f"/events/{event_id}:checkin-worklist"
    return {
        "requestContext": {"http": {"method": method, "path": path}},
        "headers": {"authorization": "Bearer token", "x-tenant-id": "T1"},
        "rawPath": path,
        "queryStringParameters": query_params or {},
    }


def _registration(n, **extra):
    reg = {"id": f"reg-{n}", "type": "registration", "eventId": "evt1", "status": "confirmed", "partyId": f"party-{n}"}
    reg.update(extra)
    return reg


class _FakeRegistrations:
    def __init__(self, items, page_size):
        self.items = items
        self.page_size = page_size
        self.calls = []

    def page(self, tenant_id, event_id, limit, next_token=None):
        self.calls.append((tenant_id, event_id, next_token))
        start = decode_cursor(next_token)["offset"] if next_token else 0
        end = start + self.page_size
        nxt = encode_cursor({"offset": end}) if end < len(self.items) else None
        return {"items": self.items[start:end], "next": nxt}


@patch.object(checkin_worklist, "_authenticate", return_value=_AUTH)
class WorklistTests(unittest.TestCase):
    def _run(self, store, **qs):
        with patch.object(checkin_worklist.objects_repo, "registrations_page", side_effect=store.page):
            resp = checkin_worklist.lambda_handler(_make_event(query_params=qs), None)
        return resp, json.loads(resp["body"])

    def test_default_lists_waiting_registrations(self, _auth):
        items = [_registration(i, checkedInAt="2026-01-01T00:00:00Z" if i % 2 else None) for i in range(6)]
        resp, body = self._run(_FakeRegistrations(items, page_size=10))
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual([r["id"] for r in body["items"]], ["reg-0", "reg-2", "reg-4"])
        self.assertFalse(body["checkedIn"])
        self.assertIsNone(body["ready"])
        self.assertEqual(body["eventId"], "evt1")
        self.assertIsNone(body["next"])

    def test_fills_limit_across_store_pages(self, _auth):
        items = [_registration(i, checkInStatus={"ready": i % 3 == 0}) for i in range(30)]
        store = _FakeRegistrations(items, page_size=10)
        resp, body = self._run(store, ready="true", limit="5")
        self.assertEqual([r["id"] for r in body["items"]], ["reg-0", "reg-3", "reg-6", "reg-9", "reg-12"])
        self.assertIsNotNone(body["next"])
        self.assertEqual(len(store.calls), 2)
        self.assertEqual(store.calls[0][:2], ("T1", "evt1"))

    def test_page_cap_returns_cursor(self, _auth):
        items = [_registration(i) for i in range(200)]
        store = _FakeRegistrations(items, page_size=5)
        resp, body = self._run(store, q="no-such-party")
        self.assertEqual(body["items"], [])
        self.assertEqual(len(store.calls), checkin_worklist.MAX_BACKEND_PAGES)
        self.assertEqual(decode_cursor(body["next"]), {"offset": 50})

    def test_blocker_codes_match_any(self, _auth):
        items = [
            _registration(1, checkInStatus={"ready": False, "blockers": [{"code": "unpaid"}]}),
            _registration(2, checkInStatus={"ready": False, "blockers": [{"code": "waiver"}]}),
            _registration(3, checkInStatus={"ready": False, "blockers": [{"code": "docs"}]}),
        ]
        _, body = self._run(_FakeRegistrations(items, page_size=10), blockerCode="Unpaid,docs")
        self.assertEqual([r["id"] for r in body["items"]], ["reg-1", "reg-3"])
        self.assertEqual(body["blockerCode"], "Unpaid,docs")

    def test_blocker_codes_ignored_when_ready(self, _auth):
        items = [
            _registration(1, checkInStatus={"ready": True, "blockers": []}),
            _registration(2, checkInStatus={"ready": False, "blockers": [{"code": "unpaid"}]}),
        ]
        _, body = self._run(_FakeRegistrations(items, page_size=10), ready="true", blockerCode="unpaid")
        self.assertEqual([r["id"] for r in body["items"]], ["reg-1"])

    def test_status_and_query_filters(self, _auth):
        items = [
            _registration(1, status="draft", divisionId="Open"),
            _registration(2, status="confirmed", divisionId="Open"),
            _registration(3, status="confirmed", divisionId="Junior"),
        ]
        _, body = self._run(_FakeRegistrations(items, page_size=10), status="confirmed", q="open")
        self.assertEqual([r["id"] for r in body["items"]], ["reg-2"])

    def test_invalid_boolean_names_parameter(self, _auth):
        resp, body = self._run(_FakeRegistrations([], page_size=10), checkedIn="maybe")
        self.assertEqual(resp["statusCode"], 400)
        self.assertEqual(body["parameter"], "checkedIn")
        self.assertIn("checkedIn", body["error"])

    def test_invalid_status_rejected(self, _auth):
        resp, body = self._run(_FakeRegistrations([], page_size=10), status="archived")
        self.assertEqual(resp["statusCode"], 400)
        self.assertEqual(body["error"], "Invalid status value")

    def test_post_not_allowed(self, _auth):
        resp = checkin_worklist.lambda_handler(_make_event(method="POST"), None)
        self.assertEqual(resp["statusCode"], 405)


class OptionsTests(unittest.TestCase):
    def test_options_returns_204(self):
        resp = checkin_worklist.lambda_handler(_make_event(method="OPTIONS"), None)
        self.assertEqual(resp["statusCode"], 204)


if __name__ == "__main__":
    unittest.main()
