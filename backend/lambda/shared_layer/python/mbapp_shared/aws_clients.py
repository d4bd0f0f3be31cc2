"""mbapp_shared.aws_clients — Lazy-singleton AWS service clients.

Creates the boto3 DynamoDB client on first call and caches it for
subsequent invocations, so cold starts only pay for the client when a
handler actually touches the table.
"""

from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config

from mbapp_shared.config import DYNAMODB_REGION

# ---------------------------------------------------------------------------
# Client singletons
# ---------------------------------------------------------------------------

_ddb = None


def _get_ddb(region: Optional[str] = None):
    """Get (or create) the DynamoDB client singleton."""
    global _ddb
    if _ddb is None:
        _ddb = boto3.client(
            "dynamodb",
            region_name=region or DYNAMODB_REGION,
            config=Config(retries={"max_attempts": 5, "mode": "standard"}),
        )
    return _ddb
