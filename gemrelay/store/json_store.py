"""File-backed store. One JSON document holds every table; reloads on mtime change."""

import asyncio
import hmac
import json
import os
import uuid

from gemrelay.store.base import Store, StoreError
from gemrelay.store.models import AccessKey, AttemptRecord, Credential, utc_now

_EMPTY = {"credentials": [], "access_keys": [], "settings": {}, "call_logs": []}


class JSONStore(Store):
    """JSON document store for local deployments and tests.

    Writes go through a single asyncio lock and an atomic file replace, so
    usage increments from concurrent requests never lose updates within
    one process.
    """

    def __init__(self, path: str, max_log_count: int = 300):
        self._path = path
        self._max_log_count = max_log_count
        self._data: dict = {key: list(value) if isinstance(value, list) else dict(value)
                            for key, value in _EMPTY.items()}
        self._last_mtime: float = 0.0
        self._lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        """Load the document from disk if it changed since the last read."""
        try:
            mtime = os.path.getmtime(self._path)
        except OSError:
            return  # no file yet = empty store

        if mtime == self._last_mtime:
            return

        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read store file {self._path}: {e}") from e

        for key, default in _EMPTY.items():
            data.setdefault(key, type(default)())
        self._data = data
        self._last_mtime = mtime

    def _save(self) -> None:
        tmp_path = f"{self._path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp_path, self._path)
            self._last_mtime = os.path.getmtime(self._path)
        except OSError as e:
            raise StoreError(f"Cannot write store file {self._path}: {e}") from e

    def _credentials(self) -> list[Credential]:
        return [Credential(**entry) for entry in self._data["credentials"]]

    def _find_credential(self, credential_id: str) -> dict:
        for entry in self._data["credentials"]:
            if entry["credential_id"] == credential_id:
                return entry
        raise StoreError(f"Unknown credential: {credential_id}")

    async def _update(self, table: str, id_field: str, record_id: str, **changes) -> bool:
        async with self._lock:
            self._load()
            for entry in self._data[table]:
                if entry[id_field] == record_id:
                    entry.update(changes)
                    self._save()
                    return True
            return False

    async def _delete(self, table: str, id_field: str, record_id: str) -> bool:
        async with self._lock:
            self._load()
            entries = self._data[table]
            kept = [entry for entry in entries if entry[id_field] != record_id]
            if len(kept) == len(entries):
                return False
            self._data[table] = kept
            self._save()
            return True

    # --- CredentialStore ---

    async def list_active_and_valid(self) -> list[Credential]:
        self._load()
        return [c for c in self._credentials() if c.eligible]

    async def list_all(self) -> list[Credential]:
        self._load()
        return self._credentials()

    async def set_invalid(self, credential_id: str) -> None:
        async with self._lock:
            self._load()
            entry = self._find_credential(credential_id)
            entry["is_valid"] = False
            entry["last_used_at"] = utc_now()
            self._save()

    async def set_valid(self, credential_id: str) -> None:
        async with self._lock:
            self._load()
            self._find_credential(credential_id)["is_valid"] = True
            self._save()

    async def set_active(self, credential_id: str, is_active: bool) -> bool:
        return await self._update("credentials", "credential_id", credential_id, is_active=is_active)

    async def delete_credential(self, credential_id: str) -> bool:
        return await self._delete("credentials", "credential_id", credential_id)

    async def increment_usage(self, credential_id: str) -> None:
        async with self._lock:
            self._load()
            entry = self._find_credential(credential_id)
            entry["request_count"] = entry.get("request_count", 0) + 1
            entry["last_used_at"] = utc_now()
            self._save()

    async def add_credentials(self, api_keys: list[str]) -> list[Credential]:
        async with self._lock:
            self._load()
            existing = {entry["api_key"] for entry in self._data["credentials"]}
            added = []
            for api_key in api_keys:
                if api_key in existing:
                    continue
                credential = Credential(credential_id=uuid.uuid4().hex, api_key=api_key)
                self._data["credentials"].append(vars(credential).copy())
                existing.add(api_key)
                added.append(credential)
            if added:
                self._save()
            return added

    async def reset_stats(self) -> None:
        async with self._lock:
            self._load()
            for entry in self._data["credentials"]:
                entry["request_count"] = 0
                entry["last_used_at"] = None
            self._save()

    # --- AccessKeyStore ---

    async def lookup_by_secret(self, secret: str) -> str | None:
        """Constant-time lookup across all access keys."""
        self._load()

        match: str | None = None
        for entry in self._data["access_keys"]:
            # Always iterate all keys to maintain constant-time behavior
            if hmac.compare_digest(secret, entry["secret"]) and entry.get("is_active", True):
                match = entry["key_id"]

        return match

    async def list_access_keys(self) -> list[AccessKey]:
        self._load()
        return [AccessKey(**entry) for entry in self._data["access_keys"]]

    async def create_access_key(self, secret: str) -> AccessKey | None:
        async with self._lock:
            self._load()
            if any(entry["secret"] == secret for entry in self._data["access_keys"]):
                return None
            access_key = AccessKey(key_id=uuid.uuid4().hex, secret=secret)
            self._data["access_keys"].append(vars(access_key).copy())
            self._save()
            return access_key

    async def set_access_key_active(self, key_id: str, is_active: bool) -> bool:
        return await self._update("access_keys", "key_id", key_id, is_active=is_active)

    async def delete_access_key(self, key_id: str) -> bool:
        return await self._delete("access_keys", "key_id", key_id)

    # --- SettingsStore ---

    async def get_setting(self, key: str) -> str | None:
        self._load()
        return self._data["settings"].get(key)

    async def put_setting(self, key: str, value: str) -> None:
        async with self._lock:
            self._load()
            self._data["settings"][key] = value
            self._save()

    # --- CallLogStore ---

    async def append_log(self, record: AttemptRecord) -> None:
        async with self._lock:
            self._load()
            logs = self._data["call_logs"]
            logs.append(record.to_dict())
            # Keep only the newest max_log_count entries
            del logs[:-self._max_log_count]
            self._save()

    async def recent_logs(self, limit: int = 50) -> list[dict]:
        self._load()
        return list(reversed(self._data["call_logs"][-limit:]))

    async def count_logs(self, since: str | None = None, access_key_id: str | None = None) -> int:
        self._load()
        return sum(
            1 for entry in self._data["call_logs"]
            if (since is None or entry.get("timestamp", "") >= since)
            and (access_key_id is None or entry.get("access_key_id") == access_key_id)
        )

    async def clear_logs(self) -> int:
        async with self._lock:
            self._load()
            removed = len(self._data["call_logs"])
            self._data["call_logs"] = []
            self._save()
            return removed
