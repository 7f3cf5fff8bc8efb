"""Admin API: runtime settings, credentials, access keys, call logs and usage stats.

JSON only, guarded by the X-Admin-Key header. Disabled (404) unless
ADMIN_API_KEY is set.
"""

import asyncio
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from gemrelay.config.runtime import (
    load_runtime_settings,
    save_disguise_enabled,
    save_streaming_config,
)
from gemrelay.config.settings import get_settings
from gemrelay.proxy.errors import BadRequest, NotFound, UpstreamError
from gemrelay.security.auth import verify_admin_key
from gemrelay.services import Services, get_services
from gemrelay.store.base import StoreError
from gemrelay.store.models import AccessKey, Credential

logger = logging.getLogger("gemrelay.admin")

router = APIRouter(prefix="/admin", dependencies=[Depends(verify_admin_key)])

HEALTH_CHECK_MODEL = "gemini-2.0-flash"
HEALTH_CHECK_REQUEST = {"contents": [{"role": "user", "parts": [{"text": "Hello, this is a test message."}]}]}


class SettingsUpdate(BaseModel):
    stream_enabled: bool | None = None
    fake_stream_enabled: bool | None = None
    disguise_enabled: bool | None = None


class CredentialsCreate(BaseModel):
    keys: list[str] | str


class ActiveUpdate(BaseModel):
    is_active: bool


class AccessKeyCreate(BaseModel):
    secret: str | None = None  # generated when omitted


def _credential_view(credential: Credential) -> dict:
    return {
        "id": credential.credential_id,
        "key_suffix": credential.key_suffix,
        "is_active": credential.is_active,
        "is_valid": credential.is_valid,
        "request_count": credential.request_count,
        "last_used_at": credential.last_used_at,
        "created_at": credential.created_at,
    }


def _access_key_view(access_key: AccessKey, request_count: int) -> dict:
    return {
        "id": access_key.key_id,
        "secret_suffix": access_key.secret_suffix,
        "is_active": access_key.is_active,
        "created_at": access_key.created_at,
        "request_count": request_count,
    }


def parse_keys(raw: list[str] | str) -> list[str]:
    """Accept a list or a newline/comma separated string; strip blanks and duplicates."""
    items = re.split(r"[\s,]+", raw) if isinstance(raw, str) else raw
    keys: list[str] = []
    for item in items:
        key = item.strip()
        if key and key not in keys:
            keys.append(key)
    return keys


def quota_period_start(now: datetime, reset_hour: int) -> datetime:
    """Start of the daily upstream quota window containing `now`."""
    start = now.replace(hour=reset_hour, minute=0, second=0, microsecond=0)
    if now < start:
        start -= timedelta(days=1)
    return start


# --- Runtime settings ---

@router.get("/settings")
async def get_runtime_settings(services: Services = Depends(get_services)):
    runtime = await load_runtime_settings(services.store, get_settings())
    return {
        "stream_enabled": runtime.streaming.real_enabled,
        "fake_stream_enabled": runtime.streaming.fake_enabled,
        "disguise_enabled": runtime.disguise_enabled,
    }


@router.put("/settings")
async def update_runtime_settings(update: SettingsUpdate, services: Services = Depends(get_services)):
    """Update streaming and disguise flags. The two streaming modes are mutually exclusive."""
    if update.stream_enabled and update.fake_stream_enabled:
        raise BadRequest("Real streaming and fake streaming cannot both be enabled")

    runtime = await load_runtime_settings(services.store, get_settings())
    streaming = runtime.streaming

    if update.stream_enabled is not None:
        streaming.real_enabled = update.stream_enabled
        if update.stream_enabled:
            streaming.fake_enabled = False
    if update.fake_stream_enabled is not None:
        streaming.fake_enabled = update.fake_stream_enabled
        if update.fake_stream_enabled:
            streaming.real_enabled = False

    await save_streaming_config(services.store, streaming)
    if update.disguise_enabled is not None:
        await save_disguise_enabled(services.store, update.disguise_enabled)
        runtime.disguise_enabled = update.disguise_enabled

    return {
        "stream_enabled": streaming.real_enabled,
        "fake_stream_enabled": streaming.fake_enabled,
        "disguise_enabled": runtime.disguise_enabled,
    }


# --- Upstream credentials ---

@router.get("/credentials")
async def list_credentials(services: Services = Depends(get_services)):
    credentials = await services.store.list_all()
    return {"credentials": [_credential_view(c) for c in credentials]}


@router.post("/credentials", status_code=201)
async def add_credentials(payload: CredentialsCreate, services: Services = Depends(get_services)):
    keys = parse_keys(payload.keys)
    if not keys:
        raise BadRequest("No keys provided")

    added = await services.store.add_credentials(keys)
    services.pool.clear_cache()
    return {
        "added": len(added),
        "skipped": len(keys) - len(added),
        "credentials": [_credential_view(c) for c in added],
    }


@router.put("/credentials/{credential_id}")
async def update_credential(
    credential_id: str, update: ActiveUpdate, services: Services = Depends(get_services)
):
    if not await services.store.set_active(credential_id, update.is_active):
        raise NotFound("Credential not found")
    services.pool.clear_cache()
    return {"id": credential_id, "is_active": update.is_active}


@router.delete("/credentials/{credential_id}")
async def delete_credential(credential_id: str, services: Services = Depends(get_services)):
    if not await services.store.delete_credential(credential_id):
        raise NotFound("Credential not found")
    services.pool.clear_cache()
    return {"status": "ok"}


@router.post("/credentials/test")
async def test_credentials(services: Services = Depends(get_services)):
    """Health-check every active credential concurrently and record the outcome.

    A credential whose outcome could not be written back is reported with
    `recorded: false`; the other results are unaffected.
    """
    credentials = [c for c in await services.store.list_all() if c.is_active]

    async def check(credential: Credential) -> dict:
        result = {"id": credential.credential_id, "key_suffix": credential.key_suffix,
                  "success": True, "status_code": 200, "error": None, "recorded": True}
        try:
            await services.provider.generate(
                credential.api_key, HEALTH_CHECK_MODEL, HEALTH_CHECK_REQUEST
            )
        except UpstreamError as e:
            result.update(success=False, status_code=e.status_code, error=e.message)

        try:
            if result["success"]:
                await services.store.set_valid(credential.credential_id)
            else:
                await services.store.set_invalid(credential.credential_id)
        except StoreError as e:
            logger.warning("Could not record health check for credential %s: %s",
                           credential.credential_id, e)
            result["recorded"] = False
        return result

    results = await asyncio.gather(*(check(c) for c in credentials))
    services.pool.clear_cache()

    success = sum(1 for r in results if r["success"])
    return {
        "total": len(results),
        "success": success,
        "failed": len(results) - success,
        "results": list(results),
    }


@router.post("/credentials/reset-stats")
async def reset_credential_stats(services: Services = Depends(get_services)):
    await services.store.reset_stats()
    return {"status": "ok"}


# --- Caller access keys ---

@router.get("/access-keys")
async def list_access_keys(services: Services = Depends(get_services)):
    """Access keys, newest first, each with its recorded call count."""
    access_keys = sorted(
        await services.store.list_access_keys(), key=lambda k: k.created_at, reverse=True
    )
    counts = await asyncio.gather(
        *(services.store.count_logs(access_key_id=k.key_id) for k in access_keys)
    )
    return {"access_keys": [_access_key_view(k, n) for k, n in zip(access_keys, counts)]}


@router.post("/access-keys", status_code=201)
async def create_access_key(payload: AccessKeyCreate, services: Services = Depends(get_services)):
    """Create an access key. The full secret is only ever returned here."""
    prefix = get_settings().access_key_prefix
    secret = payload.secret.strip() if payload.secret else f"{prefix}{secrets.token_hex(24)}"
    if not secret.startswith(prefix) or len(secret) <= len(prefix):
        raise BadRequest(f"Access keys must start with '{prefix}'")

    access_key = await services.store.create_access_key(secret)
    if access_key is None:
        raise BadRequest("Access key already exists")
    return {
        "id": access_key.key_id,
        "secret": access_key.secret,
        "is_active": access_key.is_active,
        "created_at": access_key.created_at,
    }


@router.put("/access-keys/{key_id}")
async def update_access_key(key_id: str, update: ActiveUpdate, services: Services = Depends(get_services)):
    if not await services.store.set_access_key_active(key_id, update.is_active):
        raise NotFound("Access key not found")
    return {"id": key_id, "is_active": update.is_active}


@router.delete("/access-keys/{key_id}")
async def delete_access_key(key_id: str, services: Services = Depends(get_services)):
    if not await services.store.delete_access_key(key_id):
        raise NotFound("Access key not found")
    return {"status": "ok"}


# --- Call logs and stats ---

@router.get("/logs")
async def recent_logs(limit: int = 50, services: Services = Depends(get_services)):
    limit = max(1, min(limit, get_settings().max_log_count))
    return {"logs": await services.store.recent_logs(limit)}


@router.delete("/logs")
async def clear_logs(services: Services = Depends(get_services)):
    removed = await services.store.clear_logs()
    return {"status": "ok", "removed": removed}


@router.get("/stats")
async def usage_stats(services: Services = Depends(get_services)):
    now = datetime.now(timezone.utc)
    period_start = quota_period_start(now, get_settings().quota_reset_hour_utc)

    total_calls, period_calls, credentials = await asyncio.gather(
        services.store.count_logs(),
        services.store.count_logs(since=period_start.isoformat()),
        services.store.list_all(),
    )
    return {
        "total_calls": total_calls,
        "period_calls": period_calls,
        "period_start": period_start.isoformat(),
        "active_keys": sum(1 for c in credentials if c.eligible),
        "total_keys": len(credentials),
        "timestamp": now.isoformat(),
    }
