"""mbapp_shared — Shared utilities for mbapp objects Lambda functions.

Provides:
    - Environment configuration and logging setup
    - Bearer JWT authentication and tenant resolution
    - DynamoDB client singleton and serialization helpers
    - HTTP response helpers with CORS
    - Cursor pagination codec and the filtered pagination loop
    - Order line identity, line diffing, and server-side patch-lines engine
    - Tenant/type keyed object repository over the single objects table
"""

__version__ = "1.0.0"
