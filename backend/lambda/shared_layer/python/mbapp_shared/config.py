"""mbapp_shared.config — Environment variables, constants, logging.

Values are read once at import time; tests override module attributes
directly when they need a different value.
"""
from __future__ import annotations

import logging
import os

__all__ = [
    "AUTH_DISABLED",
    "CORS_ORIGIN",
    "DYNAMODB_REGION",
    "JWT_ISSUER",
    "JWT_SECRET",
    "LOG_LEVEL",
    "MAX_LIST_LIMIT",
    "OBJECTS_TABLE",
    "PATCHABLE_LINE_FIELDS",
    "TABLE_PK",
    "TABLE_SK",
    "TEMP_ID_PREFIX",
    "logger",
]


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name, "")
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    return max(minimum, value)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

OBJECTS_TABLE = os.environ.get("OBJECTS_TABLE", os.environ.get("MBAPP_OBJECTS_TABLE", "mbapp_objects"))
TABLE_PK = os.environ.get("TABLE_PK", "pk")
TABLE_SK = os.environ.get("TABLE_SK", "sk")
DYNAMODB_REGION = os.environ.get("DYNAMODB_REGION", "us-east-1")
MAX_LIST_LIMIT = _env_int("MAX_LIST_LIMIT", 100)
CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "*")
JWT_SECRET = os.environ.get("JWT_SECRET", "")
JWT_ISSUER = os.environ.get("JWT_ISSUER", "mbapp")
AUTH_DISABLED = os.environ.get("AUTH_DISABLED", "").strip().lower() in {"1", "true", "yes"}
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Client-assigned line ids carry this prefix; server ids never do.
TEMP_ID_PREFIX = "tmp-"
PATCHABLE_LINE_FIELDS = ("itemId", "qty", "uom")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger()
logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
