"""Optimization result cache with TTL backends and a single-flight guard."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError

from hospital_os.observability import EventType, ObservabilityLogger, get_observability_logger
from hospital_os.scheduling.models import OptimizationResult

logger = logging.getLogger(__name__)


class CacheBackendError(Exception):
    """The cache backend could not be read or written."""

    pass


class CacheBackend(ABC):
    """Byte store with per-key expiry."""

    name: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        pass

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        pass

    async def close(self) -> None:
        return None


class InMemoryCacheBackend(CacheBackend):
    """Process-local store; entries expire lazily on read."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, bytes]] = {}

    async def get(self, key: str) -> Optional[bytes]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self._entries[key] = (self._clock() + ttl_seconds, value)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend(CacheBackend):
    """Shared store on Redis using ``SET key value EX ttl``."""

    name = "redis"

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheBackend":
        return cls(redis.from_url(url, decode_responses=False))

    async def get(self, key: str) -> Optional[bytes]:
        try:
            value = await self.client.get(key)
        except redis.RedisError as e:
            raise CacheBackendError(f"Redis GET failed: {e}") from e
        if isinstance(value, str):
            return value.encode("utf-8")
        return value

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        try:
            await self.client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as e:
            raise CacheBackendError(f"Redis SET failed: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()


class ResultCache:
    """Read-through cache of optimization results keyed by request fingerprint.

    With single-flight enabled, concurrent misses for one fingerprint share a
    single computation; its result or exception reaches every caller.
    """

    def __init__(
        self,
        backend: CacheBackend,
        key_prefix: str = "appointment_optimization",
        single_flight: bool = True,
        obs: Optional[ObservabilityLogger] = None,
    ) -> None:
        self.backend = backend
        self.key_prefix = key_prefix
        self.single_flight = single_flight
        self.obs = obs or get_observability_logger()
        self._inflight: dict[str, asyncio.Task] = {}

    def key_for(self, fingerprint: str) -> str:
        return f"{self.key_prefix}:{fingerprint}"

    async def get_or_compute(
        self,
        fingerprint: str,
        ttl_seconds: int,
        compute: Callable[[], Awaitable[OptimizationResult]],
    ) -> OptimizationResult:
        key = self.key_for(fingerprint)

        if self.single_flight and key in self._inflight:
            return await self._join(key, fingerprint)

        cached = await self._read(key)
        if cached is not None:
            logger.info(f"Retrieved cached optimization {fingerprint[:12]}")
            self.obs.log_cache_event(EventType.CACHE_HIT, fingerprint, self.backend.name)
            return cached

        self.obs.log_cache_event(EventType.CACHE_MISS, fingerprint, self.backend.name)
        if not self.single_flight:
            return await self._compute_and_store(key, ttl_seconds, compute)

        if key in self._inflight:
            return await self._join(key, fingerprint)

        task = asyncio.ensure_future(self._compute_and_store(key, ttl_seconds, compute))
        self._inflight[key] = task
        task.add_done_callback(lambda t: self._forget(key, t))
        return await asyncio.shield(task)

    async def _join(self, key: str, fingerprint: str) -> OptimizationResult:
        self.obs.log_cache_event(EventType.CACHE_SHARED, fingerprint, self.backend.name)
        return await asyncio.shield(self._inflight[key])

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark the exception retrieved when every waiter was cancelled.
            task.exception()

    async def _read(self, key: str) -> Optional[OptimizationResult]:
        try:
            raw = await self.backend.get(key)
        except CacheBackendError as e:
            logger.warning(f"Cache read failed, recomputing: {e}")
            return None
        if raw is None:
            return None
        try:
            return OptimizationResult.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            return None

    async def _compute_and_store(
        self,
        key: str,
        ttl_seconds: int,
        compute: Callable[[], Awaitable[OptimizationResult]],
    ) -> OptimizationResult:
        result = await compute()
        payload = result.model_dump_json().encode("utf-8")
        try:
            await self.backend.set(key, payload, ttl_seconds)
        except CacheBackendError as e:
            logger.warning(f"Cache write failed for {key}: {e}")
        # Hits return the stored snapshot; misses return the same snapshot.
        return OptimizationResult.model_validate_json(payload)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)
