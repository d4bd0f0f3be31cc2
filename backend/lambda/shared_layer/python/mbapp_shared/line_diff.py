"""mbapp_shared.line_diff — Minimal patch-lines ops for order line edits.

Compares the lines an edit session started from with the lines currently
in the editor and produces the ``{"ops": [...]}`` payload accepted by the
``/so/{id}:patch-lines`` and ``/po/{id}:patch-lines`` endpoints.

Ops contract:
    - removals come first, then upserts in editor order
    - a remove names the line by server id only
    - an update carries the server id and only the changed tracked fields
    - a new line carries every defined tracked field and no id
    - lines whose tracked fields did not change produce no op
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from mbapp_shared.config import PATCHABLE_LINE_FIELDS
from mbapp_shared.line_identity import server_id_of

PatchOp = Dict[str, Any]


def comparable_text(value: Any) -> str:
    """Render a field value for change detection.

    Values compare by their text form, so ``3``, ``3.0`` and ``"3"`` are
    equal and a missing value equals the empty string.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return str(value)


def _index_by_server_id(lines: Optional[Iterable[Mapping[str, Any]]]) -> Dict[str, Mapping[str, Any]]:
    indexed: Dict[str, Mapping[str, Any]] = {}
    for line in lines or []:
        server_id = server_id_of(line)
        if server_id:
            indexed[server_id] = line
    return indexed


def compute_line_diff(
    original_lines: Optional[Sequence[Mapping[str, Any]]],
    current_lines: Optional[Sequence[Mapping[str, Any]]],
    tracked_fields: Sequence[str] = PATCHABLE_LINE_FIELDS,
) -> List[PatchOp]:
    """Compute patch-lines ops that turn ``original_lines`` into ``current_lines``.

    An empty result means there is nothing to submit.
    """
    original = _index_by_server_id(original_lines)
    current = _index_by_server_id(current_lines)

    removals: List[PatchOp] = [
        {"op": "remove", "id": line_id} for line_id in original if line_id not in current
    ]

    upserts: List[PatchOp] = []
    for line in current_lines or []:
        line_id = server_id_of(line)
        base = original.get(line_id) if line_id else None

        if base is not None:
            patch = {
                field: line.get(field)
                for field in tracked_fields
                if comparable_text(base.get(field)) != comparable_text(line.get(field))
            }
            if patch:
                upserts.append({"op": "upsert", "id": line_id, "patch": patch})
            continue

        # New line; the backend assigns its id. The cid stays client-side.
        patch = {field: line[field] for field in tracked_fields if line.get(field) is not None}
        if patch:
            upserts.append({"op": "upsert", "patch": patch})

    return removals + upserts
