"""Storage contracts consumed by the credential pool, auth, dispatcher and admin API.

Each backend implements all four contracts; callers depend only on the
narrow one they need so tests can substitute small fakes.
"""

from abc import ABC, abstractmethod

from gemrelay.store.models import AccessKey, AttemptRecord, Credential


class StoreError(Exception):
    """Durable storage could not be read or written."""


class CredentialStore(ABC):

    @abstractmethod
    async def list_active_and_valid(self) -> list[Credential]:
        """Return every credential with is_active and is_valid set."""
        ...

    @abstractmethod
    async def list_all(self) -> list[Credential]:
        ...

    @abstractmethod
    async def set_invalid(self, credential_id: str) -> None:
        ...

    @abstractmethod
    async def set_valid(self, credential_id: str) -> None:
        ...

    @abstractmethod
    async def set_active(self, credential_id: str, is_active: bool) -> bool:
        """Set the administrator flag. Returns False if the credential does not exist."""
        ...

    @abstractmethod
    async def delete_credential(self, credential_id: str) -> bool:
        ...

    @abstractmethod
    async def increment_usage(self, credential_id: str) -> None:
        """Atomically bump request_count and last_used_at."""
        ...

    @abstractmethod
    async def add_credentials(self, api_keys: list[str]) -> list[Credential]:
        """Insert new credentials, skipping keys already present. Returns the inserted ones."""
        ...

    @abstractmethod
    async def reset_stats(self) -> None:
        ...


class AccessKeyStore(ABC):

    @abstractmethod
    async def lookup_by_secret(self, secret: str) -> str | None:
        """Return the id of the active access key with this secret, or None."""
        ...

    @abstractmethod
    async def list_access_keys(self) -> list[AccessKey]:
        ...

    @abstractmethod
    async def create_access_key(self, secret: str) -> AccessKey | None:
        """Insert an active access key. Returns None if the secret is already taken."""
        ...

    @abstractmethod
    async def set_access_key_active(self, key_id: str, is_active: bool) -> bool:
        ...

    @abstractmethod
    async def delete_access_key(self, key_id: str) -> bool:
        ...


class SettingsStore(ABC):

    @abstractmethod
    async def get_setting(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def put_setting(self, key: str, value: str) -> None:
        ...


class CallLogStore(ABC):

    @abstractmethod
    async def append_log(self, record: AttemptRecord) -> None:
        ...

    @abstractmethod
    async def recent_logs(self, limit: int = 50) -> list[dict]:
        ...

    @abstractmethod
    async def count_logs(self, since: str | None = None, access_key_id: str | None = None) -> int:
        """Count attempt records, optionally from an ISO timestamp onwards or for one caller."""
        ...

    @abstractmethod
    async def clear_logs(self) -> int:
        """Delete every attempt record. Returns how many were removed."""
        ...


class Store(CredentialStore, AccessKeyStore, SettingsStore, CallLogStore):
    """A backend implementing every storage contract."""

    async def close(self) -> None:
        pass
