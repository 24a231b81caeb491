"""Fallback store — the read/write contract the UI layer calls.

Two tiers: the remote store is tried first, the local cache is the
fallback and the write-through copy. All remote calls go through
``_remote``, which bounds them with a timeout and turns every failure
into None, so remote trouble is never visible to the caller.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Any, Awaitable, Callable

from tripsync.db.cache import LocalCache
from tripsync.db.codec import utcnow
from tripsync.db.remote import RemoteTripStore
from tripsync.errors import TripValidationError
from tripsync.state import Trip, User
from tripsync.sync import merge_trip_lists
from tripsync.tools.identifiers import new_entity_id, new_share_token, share_url
from tripsync.tools.trip_ops import add_member, calculate_progress

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


class FallbackStore:
    """Remote-first, cache-backed repository for users and trips."""

    def __init__(
        self,
        cache: LocalCache,
        remote: RemoteTripStore,
        share_base_url: str = "http://localhost:5173",
        remote_timeout: float = 10.0,
    ) -> None:
        self.cache = cache
        self.remote = remote
        self.share_base_url = share_base_url
        self.remote_timeout = remote_timeout

    async def _remote(self, what: str, call: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        try:
            return await asyncio.wait_for(call(*args), timeout=self.remote_timeout)
        except Exception as exc:
            logger.warning("Remote %s unavailable, using local cache: %r", what, exc)
            return None

    async def close(self) -> None:
        await self.cache.close()

    # ─── Users ──────────────────────────────────────────

    async def get_user_by_email(self, email: str) -> User | None:
        user = await self._remote("user lookup", self.remote.find_user_by_email, email)
        if user is not None:
            await self.cache.put_user(user)
            return user
        return await self.cache.find_user_by_email(email)

    async def get_user_by_id(self, user_id: str) -> User | None:
        user = await self._remote("user lookup", self.remote.find_user_by_id, user_id)
        if user is not None:
            await self.cache.put_user(user)
            return user
        return await self.cache.find_user_by_id(user_id)

    async def create_user(self, email: str, name: str, password: str) -> User:
        """Register a new user. Raises TripValidationError for missing fields or a taken email."""
        errors: dict[str, str] = {}
        for field, value in (("email", email), ("name", name), ("password", password)):
            if not value or not value.strip():
                errors[field] = "field_required"
        if errors:
            raise TripValidationError(errors)
        if await self.get_user_by_email(email) is not None:
            raise TripValidationError({"email": "user_exists"})

        user = User(
            id=new_entity_id(),
            email=email.strip().lower(),
            name=name.strip(),
            password_hash=hash_password(password),
            created_at=utcnow(),
        )
        await self.cache.put_user(user)
        await self._remote("user save", self.remote.upsert_user, user)
        logger.info("Registered user %s", user["id"])
        return user

    async def login(self, email: str, password: str) -> User:
        errors: dict[str, str] = {}
        if not email or not email.strip():
            errors["email"] = "field_required"
        if not password or not password.strip():
            errors["password"] = "field_required"
        if errors:
            raise TripValidationError(errors)

        user = await self.get_user_by_email(email)
        if user is None or user.get("password_hash") != hash_password(password):
            raise TripValidationError({"auth": "invalid_credentials"})
        await self.set_current_user(user)
        return user

    async def get_current_user(self) -> User | None:
        user_id = await self.cache.get_current_user_id()
        if user_id is None:
            return None
        return await self.get_user_by_id(user_id)

    async def set_current_user(self, user: User | None) -> None:
        await self.cache.set_current_user_id(user["id"] if user else None)

    async def logout(self) -> None:
        await self.set_current_user(None)

    # ─── Trips ──────────────────────────────────────────

    async def save_trip(self, trip: Trip) -> Trip:
        """Write-through save: cache first, then a best-effort remote write.

        ``updated_at`` never moves backwards, the creator is always a member
        and progress is recomputed. Returns the trip as saved.
        """
        if "id" not in trip:
            raise ValueError("Trip id is required")
        previous = trip.get("updated_at")
        now = utcnow()
        saved = Trip(**trip)
        saved["updated_at"] = max(now, previous) if previous else now
        saved.setdefault("created_at", saved["updated_at"])
        users = list(saved.get("users", []))
        creator = saved.get("created_by")
        if creator and creator not in users:
            users.insert(0, creator)
        saved["users"] = users
        saved["progress"] = calculate_progress(saved)

        await self.cache.put_trip(saved)
        await self._remote("trip save", self.remote.upsert_trip, saved)
        return saved

    async def get_trip(self, trip_id: int) -> Trip | None:
        trip = await self.cache.get_trip(trip_id)
        if trip is not None:
            return trip
        trip = await self._remote("trip lookup", self.remote.get_trip, trip_id)
        if trip is not None:
            await self.cache.put_trip_if_newer(trip)
        return trip

    async def get_trips_for_user(self, user_id: str) -> list[Trip]:
        """Cached trips for the user, merged with the remote snapshot when one is available."""
        local = await self.cache.list_trips_for_user(user_id)
        remote = await self._remote("trip list", self.remote.list_trips_for_user, user_id)
        if remote is None:
            return local

        merged, adopted = merge_trip_lists(local, remote)
        for trip in adopted:
            await self.cache.put_trip_if_newer(trip)
        if adopted:
            logger.debug("Adopted %d remote trip version(s) for user %s", len(adopted), user_id)
        return merged

    async def delete_trip(self, trip_id: int) -> bool:
        """Remove locally and remotely; True only when the remote delete succeeded too."""
        await self.cache.delete_trip(trip_id)
        return bool(await self._remote("trip delete", self.remote.delete_trip, trip_id))

    async def refresh_all(self) -> tuple[int, int]:
        """Bulk cache-fill from the remote store. Returns (users, trips) written."""
        users = await self._remote("user list", self.remote.list_all_users) or []
        for user in users:
            await self.cache.put_user(user)
        trips = await self._remote("trip list", self.remote.list_all_trips) or []
        written = 0
        for trip in trips:
            if await self.cache.put_trip_if_newer(trip):
                written += 1
        return len(users), written

    # ─── Sharing ────────────────────────────────────────

    async def issue_share_token(self, trip_id: int) -> str:
        """Always returns a token, remote-backed when possible, and records it on the cached trip."""
        token = await self._remote("share token", self.remote.issue_share_token, trip_id)
        if not token:
            token = new_share_token()
        await self.cache.set_share_token(trip_id, token)
        return token

    async def share_link(self, trip_id: int) -> str:
        return share_url(self.share_base_url, await self.issue_share_token(trip_id))

    async def resolve_share_token(self, token: str) -> Trip | None:
        if not token:
            return None
        trip = await self._remote("share lookup", self.remote.resolve_share_token, token)
        if trip is not None:
            await self.cache.put_trip_if_newer(trip)
            return trip
        for cached in await self.cache.list_trips():
            if cached.get("share_token") == token:
                return cached
        return None

    async def join_trip(self, token: str, user_id: str) -> Trip | None:
        """Resolve a share token and add the user to the trip if needed. None if the token is unknown."""
        trip = await self.resolve_share_token(token)
        if trip is None:
            return None
        joined = add_member(trip, user_id)
        if joined is trip:
            return trip
        logger.info("User %s joined trip %s via share link", user_id, trip["id"])
        return await self.save_trip(joined)
