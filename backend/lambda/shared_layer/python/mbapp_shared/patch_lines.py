"""mbapp_shared.patch_lines — Server-side application of patch-lines ops.

Validates the ops posted to ``:patch-lines`` endpoints, applies them to an
order's stored lines, and assigns stable ``L{n}`` ids to new lines. Ids of
removed lines are never handed out again for the same order.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from mbapp_shared.config import TEMP_ID_PREFIX
from mbapp_shared.line_identity import line_key, server_id_of

logger = logging.getLogger(__name__)

_SERVER_LINE_ID_RE = re.compile(r"^L(\d+)$")


class PatchLinesValidationError(ValueError):
    """Rejected patch-lines request; carries an error code and HTTP status."""

    def __init__(
        self,
        message: str,
        code: str = "PATCH_LINES_INVALID",
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 400,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.status_code = status_code


def _trim(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_editable(status: Any, editable_statuses: Iterable[str], entity_label: str, code: str) -> None:
    normalized = str(status or "").lower()
    allowed = {s.lower() for s in editable_statuses}
    if normalized not in allowed:
        raise PatchLinesValidationError(
            f"{entity_label} not editable in current status",
            code,
            {"status": status},
            409,
        )


def validate_ops(ops: Any, patchable_fields: Sequence[str]) -> List[Dict[str, Any]]:
    """Validate raw ops and return normalized copies.

    An upsert without ``id`` creates a line; ``cid`` is optional and only
    accepted with the tmp- prefix.
    """
    if not isinstance(ops, list) or not ops:
        raise PatchLinesValidationError("Body must include non-empty ops[]", "PATCH_LINES_INVALID_BODY")

    allowed_fields = set(patchable_fields)
    normalized: List[Dict[str, Any]] = []

    for raw in ops:
        if not isinstance(raw, dict):
            raise PatchLinesValidationError("Each op must be an object", "PATCH_LINES_INVALID_OP")

        op = raw.get("op")
        if op not in ("upsert", "remove"):
            raise PatchLinesValidationError("op must be upsert or remove", "PATCH_LINES_INVALID_OP")

        line_id = _trim(raw.get("id"))
        cid = _trim(raw.get("cid"))
        patch = raw.get("patch")

        if line_id.startswith(TEMP_ID_PREFIX):
            raise PatchLinesValidationError(
                f"id cannot start with {TEMP_ID_PREFIX} (reserved for cid)",
                "PATCH_LINES_INVALID_ID",
                {"id": line_id},
            )

        if op == "remove":
            if not line_id:
                raise PatchLinesValidationError("remove op requires id", "PATCH_LINES_REMOVE_REQUIRES_ID")
            if cid or patch is not None:
                raise PatchLinesValidationError("remove op forbids cid or patch", "PATCH_LINES_REMOVE_SHAPE")
            normalized.append({"op": "remove", "id": line_id})
            continue

        if cid and not cid.startswith(TEMP_ID_PREFIX):
            raise PatchLinesValidationError(
                f"cid must start with {TEMP_ID_PREFIX}", "PATCH_LINES_INVALID_CID", {"cid": cid}
            )
        if not isinstance(patch, dict):
            raise PatchLinesValidationError("upsert op requires patch object", "PATCH_LINES_UPSERT_REQUIRES_PATCH")
        for field in patch:
            if field not in allowed_fields:
                raise PatchLinesValidationError(
                    "patch contains non-patchable field", "PATCH_LINES_INVALID_FIELD", {"field": field}
                )
        if not patch:
            raise PatchLinesValidationError(
                "upsert patch must include at least one patchable field", "PATCH_LINES_EMPTY_PATCH"
            )

        entry: Dict[str, Any] = {"op": "upsert", "patch": dict(patch)}
        if line_id:
            entry["id"] = line_id
        if cid:
            entry["cid"] = cid
        normalized.append(entry)

    return normalized


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------


def _find_by_id(lines: List[Dict[str, Any]], line_id: str) -> int:
    for idx, line in enumerate(lines):
        if _trim(line.get("id")) == line_id:
            return idx
    return -1


def apply_patch_lines(
    existing: Optional[Sequence[Dict[str, Any]]],
    ops: Sequence[Dict[str, Any]],
) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
    """Apply normalized ops to copies of ``existing`` lines.

    Order is preserved; new lines are appended in op order without ids.
    Returns (lines, summary) where summary counts added/updated/removed.
    """
    lines = [dict(line) for line in existing or []]
    summary = {"added": 0, "updated": 0, "removed": 0}

    for op in ops:
        line_id = _trim(op.get("id"))
        if op.get("op") == "remove":
            idx = _find_by_id(lines, line_id) if line_id else -1
            if idx >= 0:
                del lines[idx]
                summary["removed"] += 1
            continue

        if line_id:
            idx = _find_by_id(lines, line_id)
            if idx >= 0:
                current = lines[idx]
                lines[idx] = {**current, **(op.get("patch") or {}), "id": current.get("id")}
                summary["updated"] += 1
                continue

        lines.append(dict(op.get("patch") or {}))
        summary["added"] += 1

    return lines, summary


# ---------------------------------------------------------------------------
# Stable line ids
# ---------------------------------------------------------------------------


def _line_number(value: Any) -> Optional[int]:
    match = _SERVER_LINE_ID_RE.match(_trim(value))
    return int(match.group(1)) if match else None


def ensure_line_ids(
    lines: Sequence[Dict[str, Any]],
    reserve_ids: Iterable[str] = (),
    start_at: int = 1,
) -> List[Dict[str, Any]]:
    """Give every line without a server id a fresh ``L{n}`` id.

    Lines with a server id keep it. Client-only identities (``cid`` or a
    tmp- placeholder id) are replaced, since stored lines are keyed by
    server id only. Reserved ids and ids in use are skipped.
    """
    used = {_trim(v) for v in reserve_ids if _trim(v)}
    for line in lines:
        server_id = server_id_of(line) if isinstance(line, dict) else None
        if server_id:
            used.add(server_id)

    counter = max(start_at, 1)
    out: List[Dict[str, Any]] = []
    for line in lines:
        if not isinstance(line, dict) or server_id_of(line):
            out.append(line)
            continue
        while f"L{counter}" in used:
            counter += 1
        new_id = f"L{counter}"
        used.add(new_id)
        counter += 1
        fresh = {k: v for k, v in line.items() if k != "cid"}
        fresh["id"] = new_id
        out.append(fresh)
    return out


def reserved_line_ids(
    before: Sequence[Dict[str, Any]],
    after: Sequence[Dict[str, Any]],
) -> Tuple[List[str], int]:
    """Removed ``L{n}`` ids and the highest ``n`` seen before or after patching."""
    before_keys = [k for k in (line_key(line) for line in before) if k]
    after_keys = {k for k in (line_key(line) for line in after) if k}

    removed = [k for k in before_keys if k not in after_keys and _line_number(k) is not None]
    numbers = [n for n in (_line_number(k) for k in [*before_keys, *after_keys]) if n is not None]
    return removed, max(numbers, default=0)


def run_patch_lines_engine(
    order: Dict[str, Any],
    ops: Any,
    *,
    entity_label: str,
    editable_statuses: Iterable[str],
    not_editable_code: str,
    patchable_fields: Sequence[str],
) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
    """Validate, apply, and renumber; returns (next_lines, summary)."""
    validate_editable(order.get("status"), editable_statuses, entity_label, not_editable_code)
    normalized = validate_ops(ops, patchable_fields)

    before = [line for line in order.get("lines") or [] if isinstance(line, dict)]
    patched, summary = apply_patch_lines(before, normalized)
    removed, max_number = reserved_line_ids(before, patched)
    next_lines = ensure_line_ids(patched, reserve_ids=removed, start_at=max_number + 1)

    logger.info(
        "patch-lines applied: entity=%s added=%s updated=%s removed=%s",
        entity_label,
        summary["added"],
        summary["updated"],
        summary["removed"],
    )
    return next_lines, summary
