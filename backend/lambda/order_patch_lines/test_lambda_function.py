"""test_lambda_function.py — Mock-based tests for order_patch_lines.

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

_spec = importlib.util.spec_from_file_location(
    "order_patch_lines",
    os.path.join(os.path.dirname(__file__), "lambda_function.py"),
)
order_patch_lines = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(order_patch_lines)

_AUTH = ({"user_id": "user-1", "tenant_id": "T1", "roles": [], "claims": {}}, None)


def _make_event(kind="so", order_id="so-1", body=None, method="POST"):
    path = f"/{kind}/{order_id}:patch-lines"
    event = {
        "requestContext": {"http": {"method": method, "path": path}, "requestId": "req-1"},
        "headers": {"authorization": "Bearer token", "x-tenant-id": "T1"},
        "rawPath": path,
    }
    if body is not None:
        event["body"] = json.dumps(body) if isinstance(body, dict) else body
    return event


def _order(status="draft", object_type="salesOrder"):
    return {
        "id": "so-1",
        "type": object_type,
        "status": status,
        "lines": [
            {"id": "L1", "itemId": "A", "qty": 1, "uom": "ea"},
            {"id": "L2", "itemId": "B", "qty": 2, "uom": "ea"},
        ],
    }


@patch.object(order_patch_lines, "_authenticate", return_value=_AUTH)
class PatchLinesTests(unittest.TestCase):
    def test_applies_ops_and_saves(self, _auth):
        ops = [
            {"op": "remove", "id": "L2"},
            {"op": "upsert", "id": "L1", "patch": {"qty": 2}},
            {"op": "upsert", "patch": {"itemId": "C", "qty": 1, "uom": "ea"}},
        ]
        with patch.object(order_patch_lines.objects_repo, "get_object", return_value=_order()) as mock_get, \
                patch.object(order_patch_lines.objects_repo, "put_object") as mock_put:
            resp = order_patch_lines.lambda_handler(_make_event(body={"ops": ops}), None)

        self.assertEqual(resp["statusCode"], 200)
        body = json.loads(resp["body"])
        self.assertEqual(body["summary"], {"added": 1, "updated": 1, "removed": 1})
        self.assertEqual(
            body["item"]["lines"],
            [{"id": "L1", "itemId": "A", "qty": 2, "uom": "ea"}, {"id": "L3", "itemId": "C", "qty": 1, "uom": "ea"}],
        )
        mock_get.assert_called_once_with("T1", "salesOrder", "so-1")
        saved = mock_put.call_args.args[0]
        self.assertEqual([l["id"] for l in saved["lines"]], ["L1", "L3"])
        self.assertIn("updatedAt", saved)

    def test_purchase_order_route(self, _auth):
        ops = [{"op": "remove", "id": "L1"}]
        with patch.object(order_patch_lines.objects_repo, "get_object", return_value=_order(object_type="purchaseOrder")) as mock_get, \
                patch.object(order_patch_lines.objects_repo, "put_object"):
            resp = order_patch_lines.lambda_handler(_make_event(kind="po", order_id="po-9", body={"ops": ops}), None)
        self.assertEqual(resp["statusCode"], 200)
        mock_get.assert_called_once_with("T1", "purchaseOrder", "po-9")

    def test_purchase_order_must_be_draft(self, _auth):
        ops = [{"op": "remove", "id": "L1"}]
        with patch.object(order_patch_lines.objects_repo, "get_object", return_value=_order(status="approved")), \
                patch.object(order_patch_lines.objects_repo, "put_object") as mock_put:
            resp = order_patch_lines.lambda_handler(_make_event(kind="po", body={"ops": ops}), None)
        self.assertEqual(resp["statusCode"], 409)
        self.assertEqual(json.loads(resp["body"])["error_envelope"]["code"], "PO_NOT_EDITABLE")
        mock_put.assert_not_called()

    def test_sales_order_editable_when_submitted(self, _auth):
        ops = [{"op": "upsert", "id": "L1", "patch": {"uom": "bx"}}]
        with patch.object(order_patch_lines.objects_repo, "get_object", return_value=_order(status="submitted")), \
                patch.object(order_patch_lines.objects_repo, "put_object"):
            resp = order_patch_lines.lambda_handler(_make_event(body={"ops": ops}), None)
        self.assertEqual(resp["statusCode"], 200)

    def test_missing_ops_returns_400(self, _auth):
        resp = order_patch_lines.lambda_handler(_make_event(body={"lines": []}), None)
        self.assertEqual(resp["statusCode"], 400)
        self.assertEqual(json.loads(resp["body"])["error"], "Body must include ops[]")

    def test_tmp_id_rejected(self, _auth):
        ops = [{"op": "upsert", "id": "tmp-123", "patch": {"qty": 1}}]
        with patch.object(order_patch_lines.objects_repo, "get_object", return_value=_order()):
            resp = order_patch_lines.lambda_handler(_make_event(body={"ops": ops}), None)
        self.assertEqual(resp["statusCode"], 400)
        body = json.loads(resp["body"])
        self.assertEqual(body["error_envelope"]["code"], "PATCH_LINES_INVALID_ID")
        self.assertEqual(body["id"], "tmp-123")

    def test_missing_order_returns_404(self, _auth):
        ops = [{"op": "remove", "id": "L1"}]
        with patch.object(order_patch_lines.objects_repo, "get_object", return_value=None):
            resp = order_patch_lines.lambda_handler(_make_event(body={"ops": ops}), None)
        self.assertEqual(resp["statusCode"], 404)

    def test_get_not_allowed(self, _auth):
        resp = order_patch_lines.lambda_handler(_make_event(method="GET"), None)
        self.assertEqual(resp["statusCode"], 405)

    def test_unknown_route_returns_400(self, _auth):
        event = _make_event()
        event["rawPath"] = event["requestContext"]["http"]["path"] = "/invoice/x:patch-lines"
        resp = order_patch_lines.lambda_handler(event, None)
        self.assertEqual(resp["statusCode"], 400)


if __name__ == "__main__":
    unittest.main()
