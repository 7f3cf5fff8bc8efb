"""Credential pool: eligible upstream keys behind an in-memory TTL cache."""

import asyncio
import logging
import time

from gemrelay.store.base import CredentialStore, StoreError
from gemrelay.store.models import Credential

logger = logging.getLogger("gemrelay.pool")


class PoolUnavailable(Exception):
    """The credential store could not be read and no cached snapshot exists."""


class CredentialPool:
    """Supplies eligible credentials and accepts health/usage updates.

    The cache is an immutable tuple swapped in whole on reload, so concurrent
    readers always see a complete snapshot. Invalidation drops the snapshot
    and the next read reloads from the store.

    Every invalidation or cache clear bumps a generation counter. A reload
    whose store read overlapped such a bump serves its result once, minus
    the ids invalidated meanwhile, and does not cache it.
    """

    def __init__(self, store: CredentialStore, cache_ttl: float = 300.0):
        self._store = store
        self.cache_ttl = cache_ttl
        self._snapshot: tuple[Credential, ...] | None = None
        self._expires_at: float = 0.0
        # Last good snapshot, kept across invalidation for use when the store is down
        self._fallback: tuple[Credential, ...] | None = None
        self._generation = 0
        # Invalidated since the last reload that saw no concurrent change
        self._recently_invalidated: set[str] = set()
        self._reload_lock = asyncio.Lock()

    async def list_eligible(self) -> list[Credential]:
        snapshot = self._snapshot
        if snapshot is not None and time.monotonic() < self._expires_at:
            return list(snapshot)

        async with self._reload_lock:
            # Another request may have reloaded while we waited
            snapshot = self._snapshot
            if snapshot is not None and time.monotonic() < self._expires_at:
                return list(snapshot)
            return list(await self._reload())

    async def _reload(self) -> tuple[Credential, ...]:
        generation = self._generation
        try:
            credentials = await self._store.list_active_and_valid()
        except StoreError as e:
            if self._fallback is None:
                raise PoolUnavailable(str(e)) from e
            logger.warning("Credential reload failed, serving stale snapshot: %s", e)
            return self._fallback

        snapshot = tuple(
            c for c in credentials
            if c.eligible and c.credential_id not in self._recently_invalidated
        )
        self._fallback = snapshot
        if generation != self._generation:
            logger.debug("Pool changed during reload, not caching the result")
            return snapshot

        self._recently_invalidated.clear()
        self._snapshot = snapshot
        self._expires_at = time.monotonic() + self.cache_ttl
        return snapshot

    def clear_cache(self) -> None:
        self._generation += 1
        self._snapshot = None
        self._expires_at = 0.0

    async def invalidate(self, credential_id: str, reason: str = "") -> None:
        """Mark a credential invalid and drop the cache. Never raises."""
        self._recently_invalidated.add(credential_id)
        # An invalidated key never returns through the fallback
        if self._fallback is not None:
            self._fallback = tuple(c for c in self._fallback if c.credential_id != credential_id)
        self.clear_cache()

        try:
            await self._store.set_invalid(credential_id)
        except StoreError as e:
            logger.warning("Failed to mark credential %s invalid: %s", credential_id, e)
        else:
            logger.info("Marked credential %s invalid: %s", credential_id, reason or "unknown error")

    async def record_usage(self, credential_id: str) -> None:
        """Increment the usage counter. Never raises."""
        try:
            await self._store.increment_usage(credential_id)
        except StoreError as e:
            logger.warning("Failed to record usage for credential %s: %s", credential_id, e)
