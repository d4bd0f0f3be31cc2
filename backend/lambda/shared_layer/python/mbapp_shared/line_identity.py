"""mbapp_shared.line_identity — Stable identity for order lines.

A line is identified either by a server-assigned id (``L{n}``) once it has
been saved, or by a client-assigned temporary id (``tmp-<uuid>``, kept in
the ``cid`` field) until then. Rendering and diffing always go through
this identity, never through list position.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from mbapp_shared.config import TEMP_ID_PREFIX


@dataclass(frozen=True)
class ServerId:
    """Identity assigned by the backend; the line is known server-side."""
    value: str


@dataclass(frozen=True)
class ClientId:
    """Temporary identity assigned by the client before the first save."""
    value: str


LineIdentity = Union[ServerId, ClientId]


def _trimmed(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def is_client_only_id(value: Any) -> bool:
    """True for temporary ids (tmp-* prefix)."""
    return _trimmed(value).startswith(TEMP_ID_PREFIX)


def server_id_of(line: Mapping[str, Any]) -> Optional[str]:
    """The line's real server id, or None for unsaved/placeholder lines."""
    line_id = _trimmed(line.get("id"))
    if line_id and not is_client_only_id(line_id):
        return line_id
    return None


def generate_cid() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4()}"


def line_identity(line: Optional[Mapping[str, Any]]) -> Optional[LineIdentity]:
    """Classify a line's identity without generating one."""
    if not isinstance(line, Mapping):
        return None
    server_id = server_id_of(line)
    if server_id:
        return ServerId(server_id)
    cid = _trimmed(line.get("cid"))
    if cid:
        return ClientId(cid)
    line_id = _trimmed(line.get("id"))
    if line_id:
        return ClientId(line_id)
    return None


def line_key(line: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Canonical key for a line, or None when it has no identity yet."""
    identity = line_identity(line)
    return identity.value if identity else None


def resolve_key(line: Dict[str, Any]) -> str:
    """Canonical key for a line, generating and storing a cid if it has none.

    Precedence is server id, then cid, then a tmp-* placeholder id. A line
    with no identity at all gets a fresh cid written onto it, so repeated
    calls for the same line return the same key.
    """
    key = line_key(line)
    if key:
        return key
    cid = generate_cid()
    line["cid"] = cid
    return cid


def ensure_line_cid(line: Dict[str, Any]) -> Dict[str, Any]:
    """Return the line, or a copy with a cid when it has neither server id nor cid."""
    if server_id_of(line) or _trimmed(line.get("cid")):
        return line
    return {**line, "cid": generate_cid()}
