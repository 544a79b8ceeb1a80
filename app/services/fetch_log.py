"""Fetch freshness ledger: when was each logical upstream fetch last run."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ..db_models import FetchLogEntry
from ..models import ContentType


def discover_key(content_type: ContentType) -> str:
    return f"DISCOVER_{content_type.value}"


def trending_key(content_type: ContentType) -> str:
    return f"TRENDING_{content_type.value}"


def details_key(content_type: ContentType, external_id: str) -> str:
    return f"DETAILS_{content_type.value}_{external_id}"


def genres_key(content_type: ContentType) -> str:
    return f"GENRES_{content_type.value}"


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class FetchLedger:
    """Answers whether a fetch key was refreshed within the TTL.

    Staleness is evaluated lazily at read time; entries are overwritten on
    each refresh and never swept. The ledger also hands out one lock per key
    so that concurrent refreshes of the same key run one at a time.
    """

    def __init__(
        self,
        ttl: timedelta,
        *,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._locks: dict[str, _KeyLock] = {}

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def now(self) -> datetime:
        return self._clock()

    @property
    def active_locks(self) -> int:
        """Number of keys currently held or awaited."""

        return len(self._locks)

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """Serialize work on ``key``; the lock is dropped once nobody waits on it."""

        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    async def last_fetched(self, session: AsyncSession, key: str) -> datetime | None:
        entry = await session.get(FetchLogEntry, key)
        if entry is None:
            return None
        return entry.last_fetched_at

    async def is_fresh(
        self, session: AsyncSession, key: str, now: datetime | None = None
    ) -> bool:
        last_fetched_at = await self.last_fetched(session, key)
        if last_fetched_at is None:
            return False
        current = now or self.now()
        return current - last_fetched_at < self._ttl

    async def mark_fetched(
        self, session: AsyncSession, key: str, now: datetime | None = None
    ) -> None:
        """Stamp ``key`` as fetched; the caller commits the session."""

        stamp = now or self.now()
        entry = await session.get(FetchLogEntry, key)
        if entry is None:
            session.add(FetchLogEntry(key=key, last_fetched_at=stamp))
        else:
            entry.last_fetched_at = stamp
