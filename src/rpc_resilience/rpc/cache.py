"""Dual-tier TTL cache for RPC reads."""

import hashlib
import json
import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from rpc_resilience.core.models import CacheEntry
from rpc_resilience.rpc.storage import SharedStore

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600.0
DEFAULT_NAMESPACE = "pusd_cache_"
DEFAULT_SHARED_PREFIXES = ("lottery-", "tvl-", "project-")


def make_cache_key(method: str, params: list[Any]) -> str:
    """
    Generate cache key from method and parameters.

    Parameters
    ----------
    method : str
        RPC method name
    params : list[Any]
        Method parameters

    Returns
    -------
    str
        Cache key

    """
    # Create a deterministic string representation
    key_data = {"method": method, "params": params}
    key_str = json.dumps(key_data, sort_keys=True, default=str)
    # Hash for consistent key length
    return f"rpc-{hashlib.sha256(key_str.encode()).hexdigest()}"


class TTLCache:
    """
    Key/value cache with expiry and an optional shared persistent tier.

    Every entry lives in the process-local tier. Keys starting with one of
    ``shared_prefixes`` (public data such as lottery stats or TVL) are also
    written to ``shared_store`` so other processes, and this one after a
    restart, can reuse them.

    Parameters
    ----------
    default_ttl : float
        Default time-to-live in seconds for cache entries
    shared_store : SharedStore | None
        Shared persistent tier. Shared keys stay process-local if None.
    shared_prefixes : Iterable[str]
        Key prefixes that are persisted to the shared tier
    namespace : str
        Prefix of every key written to the shared tier
    clock : Callable[[], float]
        Source of the current unix time

    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        shared_store: SharedStore | None = None,
        shared_prefixes: Iterable[str] = DEFAULT_SHARED_PREFIXES,
        namespace: str = DEFAULT_NAMESPACE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.default_ttl = default_ttl
        self.shared_store = shared_store
        self.shared_prefixes = tuple(shared_prefixes)
        self.namespace = namespace
        self._clock = clock
        self._cache: dict[str, CacheEntry] = {}

    def is_shared(self, key: str) -> bool:
        """Whether ``key`` is persisted to the shared tier."""
        return self.shared_store is not None and key.startswith(self.shared_prefixes)

    def _storage_key(self, key: str) -> str:
        return self.namespace + key

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """
        Store value in cache with TTL.

        Parameters
        ----------
        key : str
            Cache key
        value : Any
            Value to cache
        ttl : float | None
            Time-to-live in seconds. Uses default_ttl if None.

        """
        now = self._clock()
        ttl = self.default_ttl if ttl is None else ttl
        entry = CacheEntry(data=value, expires_at=now + ttl, created_at=now)
        self._cache[key] = entry

        if self.is_shared(key):
            try:
                self.shared_store.set_item(self._storage_key(key), entry.model_dump_json())
            except Exception as e:
                # Full disk, read-only dir, unserializable value: local tier stays authoritative
                logger.debug("Shared cache write failed for %s: %s", key, e)

    def get(self, key: str) -> Any | None:
        """
        Get cached value if it exists and hasn't expired.

        Parameters
        ----------
        key : str
            Cache key

        Returns
        -------
        Any | None
            Cached value if found and valid, None otherwise

        """
        entry = self._get_entry(key)
        return entry.data if entry is not None else None

    def get_timestamp(self, key: str) -> float | None:
        """Creation time of a live entry, or None."""
        entry = self._get_entry(key)
        return entry.created_at if entry is not None else None

    def get_age(self, key: str) -> float | None:
        """
        Seconds elapsed since the entry was stored.

        Parameters
        ----------
        key : str
            Cache key

        Returns
        -------
        float | None
            Age in seconds, or None if absent or expired

        """
        created_at = self.get_timestamp(key)
        if created_at is None:
            return None
        return self._clock() - created_at

    def delete(self, key: str) -> None:
        """Remove ``key`` from both tiers."""
        self._cache.pop(key, None)
        if self.is_shared(key):
            try:
                self.shared_store.remove_item(self._storage_key(key))
            except Exception as e:
                logger.debug("Shared cache delete failed for %s: %s", key, e)

    def clear(self) -> None:
        """Clear the local tier and every shared entry under this namespace."""
        self._cache.clear()
        if self.shared_store is None:
            return
        try:
            for storage_key in self.shared_store.keys():
                if storage_key.startswith(self.namespace):
                    self.shared_store.remove_item(storage_key)
        except Exception as e:
            logger.debug("Shared cache clear failed: %s", e)

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries from the local tier.

        Returns
        -------
        int
            Number of entries removed

        """
        now = self._clock()
        expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._cache[key]
        return len(expired_keys)

    def __contains__(self, key: str) -> bool:
        return self._get_entry(key) is not None

    def __len__(self) -> int:
        return len(self._cache)

    def _get_entry(self, key: str) -> CacheEntry | None:
        now = self._clock()
        entry = self._cache.get(key)
        if entry is not None:
            if not entry.is_expired(now):
                return entry
            # Clean up expired entry
            del self._cache[key]

        if not self.is_shared(key):
            return None

        storage_key = self._storage_key(key)
        try:
            stored = self.shared_store.get_item(storage_key)
            if stored is None:
                return None
            entry = CacheEntry.model_validate_json(stored)
        except Exception as e:
            logger.debug("Shared cache entry %s unreadable, dropping it: %s", key, e)
            self._remove_shared(storage_key)
            return None

        if entry.is_expired(now):
            self._remove_shared(storage_key)
            return None

        # Promote to the local tier
        self._cache[key] = entry
        return entry

    def _remove_shared(self, storage_key: str) -> None:
        try:
            self.shared_store.remove_item(storage_key)
        except Exception as e:
            logger.debug("Shared cache purge failed for %s: %s", storage_key, e)
