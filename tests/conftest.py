"""Shared test fixtures — users, trips, a temp-file cache and an in-memory remote."""

from __future__ import annotations

import copy
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from tripsync.db.cache import LocalCache
from tripsync.db.codec import utcnow
from tripsync.db.remote import RemoteTripStore
from tripsync.db.repository import FallbackStore, hash_password
from tripsync.state import Trip, User
from tripsync.tools.identifiers import new_share_token

REMOTE_METHODS = (
    "upsert_trip",
    "get_trip",
    "list_trips_for_user",
    "list_all_trips",
    "delete_trip",
    "upsert_user",
    "find_user_by_email",
    "find_user_by_id",
    "list_all_users",
    "issue_share_token",
    "resolve_share_token",
)


class FakeRemote:
    """In-memory stand-in for RemoteTripStore with the same async surface."""

    configured = True

    def __init__(self) -> None:
        self.trips: dict[int, Trip] = {}
        self.users: dict[str, User] = {}

    async def upsert_trip(self, trip):
        self.trips[trip["id"]] = copy.deepcopy(trip)
        return True

    async def get_trip(self, trip_id):
        trip = self.trips.get(trip_id)
        return copy.deepcopy(trip) if trip else None

    async def list_trips_for_user(self, user_id):
        return [copy.deepcopy(t) for t in self.trips.values() if user_id in t.get("users", [])]

    async def list_all_trips(self):
        return sorted((copy.deepcopy(t) for t in self.trips.values()), key=lambda t: t["updated_at"], reverse=True)

    async def delete_trip(self, trip_id):
        return self.trips.pop(trip_id, None) is not None

    async def upsert_user(self, user):
        self.users[user["id"]] = {**user, "email": user["email"].lower()}
        return True

    async def find_user_by_email(self, email):
        for user in self.users.values():
            if user["email"] == email.strip().lower():
                return dict(user)
        return None

    async def find_user_by_id(self, user_id):
        user = self.users.get(user_id)
        return dict(user) if user else None

    async def list_all_users(self):
        return [dict(u) for u in self.users.values()]

    async def issue_share_token(self, trip_id):
        token = new_share_token()
        if trip_id in self.trips:
            self.trips[trip_id]["share_token"] = token
        return token

    async def resolve_share_token(self, token):
        for trip in self.trips.values():
            if trip.get("share_token") == token:
                return copy.deepcopy(trip)
        return None


def _make_trip(trip_id: int = 1001, users: list[str] | None = None, **overrides) -> Trip:
    now = utcnow()
    trip = Trip(
        id=trip_id,
        name="Lisbon Long Weekend",
        users=users or ["alice", "bob"],
        created_by="alice",
        created_at=now,
        updated_at=now,
        currency="EUR",
        progress=0,
        chat=[],
        places=[],
        activities=[],
        accommodations=[],
        transports=[],
        expenses=[],
        cover_image=None,
        share_token=None,
    )
    trip.update(overrides)
    return trip


@pytest.fixture
def make_trip():
    """Factory for trips created just now; pass overrides as keyword arguments."""
    return _make_trip


@pytest.fixture
def trip() -> Trip:
    return _make_trip()


@pytest.fixture
def alice() -> User:
    return User(
        id="alice",
        email="alice@example.com",
        name="Alice",
        password_hash=hash_password("s3cret"),
        created_at=utcnow() - timedelta(days=2),
    )


@pytest.fixture
def bob() -> User:
    return User(
        id="bob",
        email="bob@example.com",
        name="Bob",
        password_hash=hash_password("hunter2"),
        created_at=utcnow() - timedelta(days=1),
    )


@pytest_asyncio.fixture
async def local_cache(tmp_path):
    """A file-backed SQLite cache per test."""
    cache = LocalCache(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")
    await cache.init_db()
    yield cache
    await cache.close()


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def failing_remote():
    """Remote whose every call raises, as a dead network would."""
    remote = MagicMock(spec=RemoteTripStore)
    for name in REMOTE_METHODS:
        setattr(remote, name, AsyncMock(side_effect=ConnectionError("remote down")))
    return remote


@pytest.fixture
def store(local_cache, fake_remote) -> FallbackStore:
    return FallbackStore(local_cache, fake_remote, share_base_url="https://trips.example.com")


@pytest.fixture
def offline_store(local_cache, failing_remote) -> FallbackStore:
    return FallbackStore(local_cache, failing_remote, share_base_url="https://trips.example.com")
