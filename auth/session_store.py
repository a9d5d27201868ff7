from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from typing import Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from auth.errors import InvalidTransition, StorageUnavailable
from auth.models import AuthorizationSession, SweepResult
from auth.state_token import state_prefix
from patreon_bridge.constants import LOGGER

Mutator = Callable[[AuthorizationSession], AuthorizationSession]

DEFAULT_KEY_PREFIX = "patreon:session:"
DEFAULT_SWEEP_BATCH_SIZE = 100


def _encode(record: AuthorizationSession) -> str:
    return json.dumps(record.to_dict(), separators=(",", ":"), sort_keys=True)


def _decode(raw: str | bytes | None) -> AuthorizationSession | None:
    """Parse a stored record; ``None`` means the payload is corrupted."""
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            return None
        return AuthorizationSession.from_dict(data)
    except (ValueError, KeyError, TypeError):
        return None


class SessionStore(ABC):
    name = "abstract"

    @abstractmethod
    async def put(self, token: str, record: AuthorizationSession, ttl: float) -> str:
        """Upsert ``record`` under ``token`` and return the backend name that took it."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, token: str) -> AuthorizationSession | None:
        raise NotImplementedError

    @abstractmethod
    async def update(self, token: str, mutator: Mutator) -> AuthorizationSession | None:
        """Read-modify-write, keeping the remaining TTL.

        Returns the stored result, or ``None`` when the record is missing or
        expired. Exceptions raised by ``mutator`` propagate and nothing is
        written.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete(self, token: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def sweep(self) -> SweepResult:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemorySessionStore(SessionStore):
    """Process-local store. Records are kept serialised so callers never share state."""

    name = "memory"

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def put(self, token: str, record: AuthorizationSession, ttl: float) -> str:
        self._entries[token] = (_encode(record), time.time() + ttl)
        return self.name

    def _load(self, token: str) -> tuple[AuthorizationSession, float] | None:
        entry = self._entries.get(token)
        if entry is None:
            return None

        raw, deadline = entry
        record = _decode(raw)
        if record is None or time.time() >= deadline or record.is_expired():
            del self._entries[token]
            LOGGER.info("Session %s expired or unreadable; removed", state_prefix(token))
            return None
        return record, deadline

    async def get(self, token: str) -> AuthorizationSession | None:
        loaded = self._load(token)
        return None if loaded is None else loaded[0]

    async def update(self, token: str, mutator: Mutator) -> AuthorizationSession | None:
        loaded = self._load(token)
        if loaded is None:
            return None
        record, deadline = loaded
        updated = mutator(record)
        self._entries[token] = (_encode(updated), deadline)
        return updated

    async def delete(self, token: str) -> bool:
        return self._entries.pop(token, None) is not None

    async def sweep(self) -> SweepResult:
        now = time.time()
        result = SweepResult(total=len(self._entries))
        for token, (raw, deadline) in list(self._entries.items()):
            record = _decode(raw)
            if record is None or now >= deadline or record.is_expired(now):
                del self._entries[token]
                result.removed += 1
        return result


class RedisSessionStore(SessionStore):
    name = "redis"

    def __init__(
        self,
        redis: Redis,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        sweep_batch_size: int = DEFAULT_SWEEP_BATCH_SIZE,
    ) -> None:
        self._redis = redis
        self._key_prefix = key_prefix
        self._sweep_batch_size = sweep_batch_size

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisSessionStore":
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        return cls(client, **kwargs)

    def _key(self, token: str) -> str:
        return f"{self._key_prefix}{token}"

    async def put(self, token: str, record: AuthorizationSession, ttl: float) -> str:
        try:
            await self._redis.set(self._key(token), _encode(record), px=max(1, int(ttl * 1000)))
        except RedisError as error:
            raise StorageUnavailable(f"Redis write failed: {error}") from error
        return self.name

    async def get(self, token: str) -> AuthorizationSession | None:
        key = self._key(token)
        try:
            raw = await self._redis.get(key)
            if raw is None:
                return None
            record = _decode(raw)
            if record is None or record.is_expired():
                await self._redis.delete(key)
                LOGGER.info("Session %s expired or unreadable; removed", state_prefix(token))
                return None
        except RedisError as error:
            raise StorageUnavailable(f"Redis read failed: {error}") from error
        return record

    async def update(self, token: str, mutator: Mutator) -> AuthorizationSession | None:
        key = self._key(token)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    return None
                record = _decode(raw)
                if record is None or record.is_expired():
                    await self._redis.delete(key)
                    return None

                updated = mutator(record)
                pipe.multi()
                pipe.set(key, _encode(updated), keepttl=True)
                await pipe.execute()
        except WatchError as error:
            raise InvalidTransition("Session was modified concurrently.") from error
        except RedisError as error:
            raise StorageUnavailable(f"Redis update failed: {error}") from error
        return updated

    async def delete(self, token: str) -> bool:
        try:
            return bool(await self._redis.delete(self._key(token)))
        except RedisError as error:
            raise StorageUnavailable(f"Redis delete failed: {error}") from error

    async def sweep(self) -> SweepResult:
        result = SweepResult()
        now = time.time()
        batch: list[str] = []
        try:
            async for key in self._redis.scan_iter(
                match=f"{self._key_prefix}*", count=self._sweep_batch_size
            ):
                batch.append(key)
                if len(batch) >= self._sweep_batch_size:
                    result += await self._sweep_batch(batch, now)
                    batch = []
            if batch:
                result += await self._sweep_batch(batch, now)
        except RedisError as error:
            raise StorageUnavailable(f"Redis sweep failed: {error}") from error
        return result

    async def _sweep_batch(self, keys: list[str], now: float) -> SweepResult:
        # Expired keys are dropped by Redis itself; this catches unreadable
        # records and records whose own deadline passed first.
        values = await self._redis.mget(keys)
        live = [(key, raw) for key, raw in zip(keys, values) if raw is not None]
        stale = []
        for key, raw in live:
            record = _decode(raw)
            if record is None or record.is_expired(now):
                stale.append(key)
        if stale:
            await self._redis.delete(*stale)
        return SweepResult(total=len(live), removed=len(stale))

    async def close(self) -> None:
        await self._redis.aclose()


class FallbackSessionStore(SessionStore):
    """Shared primary store with a process-local fallback.

    A write the primary cannot take is retried once against the fallback and
    the backend that accepted it is returned. Records written that way are
    only visible to this process and do not survive a restart. A lookup that
    misses the fallback while the primary is down raises the primary's
    StorageUnavailable rather than reporting the session as missing.
    """

    def __init__(self, primary: SessionStore, fallback: SessionStore) -> None:
        self.primary = primary
        self.fallback = fallback
        self.name = f"{primary.name}+{fallback.name}"

    async def put(self, token: str, record: AuthorizationSession, ttl: float) -> str:
        try:
            return await self.primary.put(token, record, ttl)
        except StorageUnavailable as error:
            LOGGER.warning(
                "Session %s written to %s fallback; %s unavailable: %s",
                state_prefix(token),
                self.fallback.name,
                self.primary.name,
                error,
            )
            return await self.fallback.put(token, record, ttl)

    async def get(self, token: str) -> AuthorizationSession | None:
        outage = None
        try:
            record = await self.primary.get(token)
        except StorageUnavailable as error:
            LOGGER.warning("Reading session from %s fallback: %s", self.fallback.name, error)
            outage = error
            record = None
        if record is not None:
            return record
        record = await self.fallback.get(token)
        # A miss on the fallback says nothing about a primary that never answered.
        if record is None and outage is not None:
            raise outage
        return record

    async def update(self, token: str, mutator: Mutator) -> AuthorizationSession | None:
        outage = None
        try:
            updated = await self.primary.update(token, mutator)
        except StorageUnavailable as error:
            LOGGER.warning("Updating session in %s fallback: %s", self.fallback.name, error)
            outage = error
            updated = None
        if updated is not None:
            return updated
        updated = await self.fallback.update(token, mutator)
        if updated is None and outage is not None:
            raise outage
        return updated

    async def delete(self, token: str) -> bool:
        outage = None
        removed = False
        try:
            removed = await self.primary.delete(token)
        except StorageUnavailable as error:
            LOGGER.warning("Delete skipped on %s: %s", self.primary.name, error)
            outage = error
        removed = await self.fallback.delete(token) or removed
        if not removed and outage is not None:
            raise outage
        return removed

    async def sweep(self) -> SweepResult:
        try:
            result = await self.primary.sweep()
        except StorageUnavailable as error:
            LOGGER.warning("Sweep skipped on %s: %s", self.primary.name, error)
            result = SweepResult()
        return result + await self.fallback.sweep()

    async def close(self) -> None:
        await self.primary.close()
        await self.fallback.close()
