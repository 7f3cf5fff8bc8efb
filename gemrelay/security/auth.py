"""Access key authentication for relay callers.

Validates the `Authorization: Bearer sk-...` header against the access key
store and returns the caller's access key id. Admin endpoints use a
separate static key in the X-Admin-Key header.
"""

import hmac

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from gemrelay.config.settings import get_settings
from gemrelay.proxy.errors import Unauthorized
from gemrelay.store.base import StoreError
from gemrelay.store.factory import get_store

bearer_scheme = HTTPBearer(auto_error=False)
admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)


async def verify_access_key(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> str:
    """FastAPI dependency that resolves the caller's access key id."""
    if credentials is None or not credentials.credentials:
        raise Unauthorized()

    secret = credentials.credentials
    if not secret.startswith(get_settings().access_key_prefix):
        raise Unauthorized()

    try:
        key_id = await get_store().lookup_by_secret(secret)
    except StoreError:
        # Treat a lookup failure as an unknown key rather than leaking storage state
        raise Unauthorized()

    if key_id is None:
        raise Unauthorized()
    return key_id


async def verify_admin_key(api_key: str | None = Security(admin_key_header)) -> None:
    """FastAPI dependency guarding the admin API. Disabled when no admin key is configured."""
    expected = get_settings().admin_api_key
    if not expected:
        raise HTTPException(status_code=404, detail="Not Found")
    if api_key is None:
        raise HTTPException(status_code=401, detail="Missing admin key")
    if not hmac.compare_digest(api_key, expected):
        raise HTTPException(status_code=403, detail="Invalid admin key")
