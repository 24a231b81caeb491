"""Local cache store — offline-first key-value persistence of users and trips.

One record per user (``user:<id>``), one per trip (``trip:<id>``) and one
scalar current-user record, each stored as JSON in a single SQLAlchemy
table. Writes to the same key are serialised through a per-key
``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from datetime import datetime, timedelta
from typing import Any, AsyncIterator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tripsync.db.codec import dump_trip, dump_user, dumps, load_trip, load_user, utcnow
from tripsync.db.models import Base, CacheEntry
from tripsync.state import Trip, User

logger = logging.getLogger(__name__)

KIND_USER = "user"
KIND_TRIP = "trip"
KIND_META = "meta"

CURRENT_USER_KEY = "meta:current_user"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def trip_key(trip_id: int) -> str:
    return f"trip:{trip_id}"


class LocalCache:
    """Async key-value cache backed by SQLAlchemy."""

    def __init__(self, database_url: str, retention_days: int = 30) -> None:
        self.engine = create_async_engine(database_url, echo=False)
        self.async_session = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
        self.retention = timedelta(days=retention_days)
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: dict[str, int] = {}

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Local cache tables initialised.")

    async def close(self) -> None:
        await self.engine.dispose()

    @contextlib.asynccontextmanager
    async def _lock(self, key: str) -> AsyncIterator[None]:
        """Hold the key's lock. The entry is dropped once nobody holds or waits for it."""
        # No await between lookup and insert, so this is atomic under asyncio
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
            self._lock_holders[key] = 0
        lock = self._locks[key]
        self._lock_holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[key] -= 1
            if not self._lock_holders[key]:
                del self._locks[key]
                del self._lock_holders[key]

    # ─── Raw key-value ──────────────────────────────────

    async def get(self, key: str) -> Any | None:
        async with self.async_session() as session:
            entry = await session.get(CacheEntry, key)
            if entry is None:
                return None
            try:
                return json.loads(entry.value_json)
            except json.JSONDecodeError:
                logger.warning("Unreadable cache record %s, ignoring", key)
                return None

    async def put(self, key: str, value: Any, kind: str = KIND_META) -> None:
        async with self._lock(key):
            await self._write(key, value, kind)

    async def delete(self, key: str) -> None:
        async with self._lock(key):
            await self._remove(key)

    async def _write(self, key: str, value: Any, kind: str) -> None:
        async with self.async_session() as session:
            entry = await session.get(CacheEntry, key)
            if entry is None:
                session.add(CacheEntry(key=key, kind=kind, value_json=dumps(value)))
            else:
                entry.value_json = dumps(value)
                entry.kind = kind
            await session.commit()

    async def _remove(self, key: str) -> None:
        async with self.async_session() as session:
            entry = await session.get(CacheEntry, key)
            if entry is not None:
                await session.delete(entry)
                await session.commit()

    async def _scan(self, kind: str) -> list[tuple[str, Any]]:
        """Return (key, decoded value) for every record of a kind, skipping unreadable ones."""
        async with self.async_session() as session:
            result = await session.execute(select(CacheEntry).where(CacheEntry.kind == kind))
            entries = list(result.scalars().all())
        records = []
        for entry in entries:
            try:
                records.append((entry.key, json.loads(entry.value_json)))
            except json.JSONDecodeError:
                logger.warning("Unreadable cache record %s, ignoring", entry.key)
        return records

    # ─── Users ──────────────────────────────────────────

    async def list_users(self) -> list[User]:
        users = []
        for key, raw in await self._scan(KIND_USER):
            try:
                users.append(load_user(raw))
            except (KeyError, TypeError, ValueError):
                logger.warning("Malformed user record %s, ignoring", key)
        return users

    async def find_user_by_email(self, email: str) -> User | None:
        wanted = email.strip().lower()
        for user in await self.list_users():
            if user.get("email", "").lower() == wanted:
                return user
        return None

    async def find_user_by_id(self, user_id: str) -> User | None:
        raw = await self.get(user_key(user_id))
        if raw is None:
            return None
        try:
            return load_user(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("Malformed user record %s, ignoring", user_id)
            return None

    async def put_user(self, user: User) -> None:
        await self.put(user_key(user["id"]), dump_user(user), kind=KIND_USER)

    # ─── Trips ──────────────────────────────────────────

    def is_expired(self, trip: Trip, now: datetime | None = None) -> bool:
        """True once the trip's creation date (or last update) leaves the retention window."""
        now = now or utcnow()
        reference = trip.get("created_at") or trip.get("updated_at")
        return reference is None or reference <= now - self.retention

    async def list_trips(self, now: datetime | None = None) -> list[Trip]:
        """All cached trips, rehydrated. Expired trips are pruned from the cache as a side effect."""
        trips: list[Trip] = []
        expired: list[str] = []
        for key, raw in await self._scan(KIND_TRIP):
            try:
                trip = load_trip(raw)
            except (KeyError, TypeError, ValueError):
                logger.warning("Malformed trip record %s, ignoring", key)
                continue
            if self.is_expired(trip, now):
                expired.append(key)
            else:
                trips.append(trip)

        pruned = 0
        for key in expired:
            if await self._prune(key, now):
                pruned += 1
        if pruned:
            logger.info("Pruned %d expired trip(s) from local cache", pruned)
        return trips

    async def _prune(self, key: str, now: datetime | None) -> bool:
        """Delete an expired trip unless a fresh write replaced it since the scan."""
        async with self._lock(key):
            raw = await self.get(key)
            if raw is not None:
                try:
                    if not self.is_expired(load_trip(raw), now):
                        return False
                except (KeyError, TypeError, ValueError):
                    pass
            await self._remove(key)
            return True

    async def list_trips_for_user(self, user_id: str, now: datetime | None = None) -> list[Trip]:
        return [t for t in await self.list_trips(now) if user_id in t.get("users", [])]

    async def get_trip(self, trip_id: int) -> Trip | None:
        raw = await self.get(trip_key(trip_id))
        if raw is None:
            return None
        try:
            return load_trip(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("Malformed trip record %s, ignoring", trip_id)
            return None

    async def put_trip(self, trip: Trip) -> None:
        """Upsert by id; last write wins."""
        await self.put(trip_key(trip["id"]), dump_trip(trip), kind=KIND_TRIP)
        logger.debug("Cached trip %s", trip["id"])

    async def put_trip_if_newer(self, trip: Trip) -> bool:
        """Write only if no cached copy has an equal or newer ``updated_at``.

        Compare and write happen under the trip's lock, so a merge can never
        overwrite a fresher local edit that landed while it was in flight.
        """
        key = trip_key(trip["id"])
        async with self._lock(key):
            raw = await self.get(key)
            if raw is not None:
                try:
                    current = load_trip(raw)
                except (KeyError, TypeError, ValueError):
                    current = None
                if current is not None and current["updated_at"] >= trip["updated_at"]:
                    return False
            await self._write(key, dump_trip(trip), KIND_TRIP)
            return True

    async def set_share_token(self, trip_id: int, token: str) -> bool:
        """Record a share token on the cached trip. False if the trip is not cached."""
        key = trip_key(trip_id)
        async with self._lock(key):
            raw = await self.get(key)
            if raw is None:
                return False
            try:
                trip = load_trip(raw)
            except (KeyError, TypeError, ValueError):
                logger.warning("Malformed trip record %s, not sharing", trip_id)
                return False
            await self._write(key, dump_trip({**trip, "share_token": token}), KIND_TRIP)
            return True

    async def delete_trip(self, trip_id: int) -> None:
        await self.delete(trip_key(trip_id))
        logger.info("Deleted trip %s from local cache", trip_id)

    # ─── Current user ───────────────────────────────────

    async def get_current_user_id(self) -> str | None:
        value = await self.get(CURRENT_USER_KEY)
        return str(value) if value else None

    async def set_current_user_id(self, user_id: str | None) -> None:
        if user_id is None:
            await self.delete(CURRENT_USER_KEY)
        else:
            await self.put(CURRENT_USER_KEY, user_id)
