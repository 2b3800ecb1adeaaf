# app/services/cache/backends.py
"""
Cache storage backends.

InMemoryCacheBackend keeps entries in a process-local dict; RedisCacheBackend
shares them across instances. Both expire lazily on read. Neither is ever a
source of truth: any failure reads as a miss.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID
import json
import logging
import threading

import redis.asyncio as redis

from app.config.redis import RedisKeys
from app.services.cache.keys import CacheKey

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Entries deleted per lock acquisition during a sweep
SWEEP_BATCH_SIZE = 50


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheEntry:
    data: Any
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class CacheBackend(ABC):
    """get / set / invalidate / sweep over structured keys"""

    name = "abstract"

    @abstractmethod
    async def get(self, key: CacheKey) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: CacheKey, value: Any, ttl: timedelta) -> None:
        ...

    @abstractmethod
    async def delete(self, key: CacheKey) -> None:
        ...

    @abstractmethod
    async def invalidate_account(self, account_id: UUID, appointment_type_id: Optional[UUID] = None) -> int:
        """Remove every entry for the account (optionally only one appointment type)."""
        ...

    @abstractmethod
    async def sweep(self) -> int:
        """Evict expired entries, returning how many were removed."""
        ...

    @abstractmethod
    async def size(self) -> int:
        ...

    async def close(self) -> None:
        return None


def _matches(key: CacheKey, account_id: UUID, appointment_type_id: Optional[UUID]) -> bool:
    if key.account_id != account_id:
        return False
    if appointment_type_id is None:
        return True
    return key.appointment_type_id == appointment_type_id


class InMemoryCacheBackend(CacheBackend):
    name = "memory"

    def __init__(self, clock: Clock = utc_clock):
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()

    async def get(self, key: CacheKey) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                del self._entries[key]
                return None
            return entry.data

    async def set(self, key: CacheKey, value: Any, ttl: timedelta) -> None:
        now = self._clock()
        entry = CacheEntry(data=value, created_at=now, expires_at=now + ttl)
        with self._lock:
            self._entries[key] = entry

    async def delete(self, key: CacheKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def invalidate_account(self, account_id: UUID, appointment_type_id: Optional[UUID] = None) -> int:
        with self._lock:
            doomed = [k for k in self._entries if _matches(k, account_id, appointment_type_id)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    async def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            snapshot: List[Tuple[CacheKey, CacheEntry]] = list(self._entries.items())

        expired = [k for k, entry in snapshot if entry.is_expired(now)]
        removed = 0
        for i in range(0, len(expired), SWEEP_BATCH_SIZE):
            with self._lock:
                for k in expired[i:i + SWEEP_BATCH_SIZE]:
                    entry = self._entries.get(k)
                    # Re-check: the entry may have been refreshed since the snapshot
                    if entry is not None and entry.is_expired(now):
                        del self._entries[k]
                        removed += 1
        return removed

    async def size(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisCacheBackend(CacheBackend):
    """Shared backend; Redis TTLs do the expiry, the envelope guards reads."""

    name = "redis"

    # Index sets outlive the entries they list
    INDEX_TTL = timedelta(hours=2)

    def __init__(self, client: redis.Redis, clock: Clock = utc_clock):
        self.client = client
        self._clock = clock

    @staticmethod
    def _entry_key(key: CacheKey) -> str:
        return RedisKeys.AVAILABILITY_ENTRY.format(key=key.to_string())

    @staticmethod
    def _index_key(account_id: UUID, appointment_type_id: Optional[UUID] = None) -> str:
        if appointment_type_id is None:
            return RedisKeys.AVAILABILITY_ACCOUNT_INDEX.format(account_id=account_id)
        return RedisKeys.AVAILABILITY_TYPE_INDEX.format(
            account_id=account_id, appointment_type_id=appointment_type_id
        )

    async def get(self, key: CacheKey) -> Optional[Any]:
        redis_key = self._entry_key(key)
        try:
            raw = await self.client.get(redis_key)
        except redis.RedisError as e:
            logger.error(f"[Cache] Redis read error for {redis_key}: {e}")
            return None
        if raw is None:
            return None

        try:
            envelope = json.loads(raw)
            expires_at = datetime.fromisoformat(envelope["expires_at"])
            data = envelope["data"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"[Cache] Dropping undecodable entry {redis_key}: {e}")
            await self.delete(key)
            return None

        if self._clock() > expires_at:
            return None
        return data

    async def set(self, key: CacheKey, value: Any, ttl: timedelta) -> None:
        now = self._clock()
        envelope = json.dumps({
            "data": value,
            "created_at": now.isoformat(),
            "expires_at": (now + ttl).isoformat(),
        })
        redis_key = self._entry_key(key)
        index_keys = [self._index_key(key.account_id)]
        if key.appointment_type_id is not None:
            index_keys.append(self._index_key(key.account_id, key.appointment_type_id))
        index_seconds = int(max(ttl, self.INDEX_TTL).total_seconds())

        try:
            async with self.client.pipeline(transaction=False) as pipe:
                pipe.set(redis_key, envelope, ex=max(1, int(ttl.total_seconds())))
                for index_key in index_keys:
                    pipe.sadd(index_key, redis_key)
                    pipe.expire(index_key, index_seconds)
                await pipe.execute()
        except redis.RedisError as e:
            logger.error(f"[Cache] Redis write error for {redis_key}: {e}")

    async def delete(self, key: CacheKey) -> None:
        try:
            await self.client.delete(self._entry_key(key))
        except redis.RedisError as e:
            logger.error(f"[Cache] Redis delete error: {e}")

    async def invalidate_account(self, account_id: UUID, appointment_type_id: Optional[UUID] = None) -> int:
        index_key = self._index_key(account_id, appointment_type_id)
        try:
            members = await self.client.smembers(index_key)
            names = sorted(m.decode() if isinstance(m, bytes) else m for m in members)
            if not names:
                return 0
            await self.client.delete(*names, index_key)
            return len(names)
        except redis.RedisError as e:
            logger.error(f"[Cache] Redis invalidation error for account {account_id}: {e}")
            return 0

    async def sweep(self) -> int:
        return 0

    async def size(self) -> int:
        try:
            count = 0
            async for _ in self.client.scan_iter(match=RedisKeys.AVAILABILITY_ENTRY.format(key="*")):
                count += 1
            return count
        except redis.RedisError as e:
            logger.error(f"[Cache] Redis size error: {e}")
            return 0

    async def close(self) -> None:
        await self.client.aclose()
