"""Remote trip store — the shared, authoritative copy of every trip.

Talks to a PostgREST-compatible endpoint (Supabase conventions) with two
tables:

* ``trips``: ``id``, ``name``, ``users`` (text[]), ``progress``, ``chat``,
  ``created_by``, ``trip_data`` (full document), ``share_token``,
  ``created_at``, ``updated_at`` (server write time)
* ``users``: ``id``, ``email`` (lower-cased), ``name``, ``password_hash``,
  ``created_at``

Graceful degradation: when the store is not configured every operation
returns None/False without touching the network, and every transport,
HTTP or decoding failure is logged as a warning and converted the same way.
Nothing here raises.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from tripsync.config.settings import Settings
from tripsync.db.codec import dump_trip, encode, load_trip, load_user, to_iso, utcnow
from tripsync.state import Trip, User
from tripsync.tools.identifiers import new_share_token

logger = logging.getLogger(__name__)

# Errors that mean "remote not available this time"
_REMOTE_ERRORS = (httpx.HTTPError, ValueError, KeyError, TypeError)


class RemoteTripStore:
    """Async client for the remote trip/user tables."""

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 10.0,
        configured: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = f"{url.rstrip('/')}/rest/v1/"
        self.api_key = api_key
        self.timeout = timeout
        self.configured = configured and bool(url) and bool(api_key)
        self._transport = transport
        if not self.configured:
            logger.warning("Remote store is not configured; running on the local cache only.")

    @classmethod
    def from_settings(cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> RemoteTripStore:
        return cls(
            settings.SUPABASE_URL,
            settings.SUPABASE_ANON_KEY,
            timeout=settings.REMOTE_TIMEOUT,
            configured=settings.remote_configured,
            transport=transport,
        )

    # ─── HTTP plumbing ──────────────────────────────────

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Send one request; returns the decoded body or None for an empty one. Raises on failure."""
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            resp = await client.request(method, table, params=params, json=json, headers=self._headers(prefer))
            resp.raise_for_status()
            if not resp.content:
                return None
            return resp.json()

    async def _select(self, table: str, params: dict[str, str]) -> list[dict]:
        rows = await self._request("GET", table, params={"select": "*", **params})
        if not isinstance(rows, list):
            raise ValueError(f"Expected a list of rows from {table}, got {type(rows).__name__}")
        return rows

    # ─── Row mapping ────────────────────────────────────

    @staticmethod
    def _trip_row(trip: Trip) -> dict:
        document = dump_trip(trip)
        return {
            "id": trip["id"],
            "name": trip.get("name", ""),
            "users": list(trip.get("users", [])),
            "progress": trip.get("progress", 0),
            "chat": document.get("chat", []),
            "created_by": trip.get("created_by"),
            "trip_data": document,
            "created_at": to_iso(trip.get("created_at")),
            "updated_at": to_iso(utcnow()),
        }

    @staticmethod
    def _trip_from_row(row: dict) -> Trip | None:
        """Rehydrate the document column; the share_token column wins over a stale copy in the blob."""
        try:
            trip = load_trip(row["trip_data"])
        except _REMOTE_ERRORS:
            logger.warning("Skipping malformed remote trip row %s", row.get("id"))
            return None
        if row.get("share_token"):
            trip["share_token"] = row["share_token"]
        return trip

    def _trips_from_rows(self, rows: list[dict]) -> list[Trip]:
        return [t for t in (self._trip_from_row(r) for r in rows) if t is not None]

    # ─── Users ──────────────────────────────────────────

    async def upsert_user(self, user: User) -> bool | None:
        if not self.configured:
            return None
        row = encode({
            "id": user["id"],
            "email": user["email"].lower(),
            "name": user.get("name", ""),
            "password_hash": user.get("password_hash", ""),
            "created_at": user.get("created_at") or utcnow(),
        })
        try:
            await self._request(
                "POST", "users", params={"on_conflict": "id"}, json=row,
                prefer="resolution=merge-duplicates,return=minimal",
            )
            return True
        except _REMOTE_ERRORS as exc:
            logger.warning("Error saving user %s to remote store: %s", user["id"], exc)
            return None

    async def _find_user(self, column: str, value: str) -> User | None:
        if not self.configured:
            return None
        try:
            rows = await self._select("users", {column: f"eq.{value}", "limit": "1"})
            if not rows:
                return None
            return load_user(rows[0])
        except _REMOTE_ERRORS as exc:
            logger.warning("Error looking up user by %s in remote store: %s", column, exc)
            return None

    async def find_user_by_email(self, email: str) -> User | None:
        return await self._find_user("email", email.strip().lower())

    async def find_user_by_id(self, user_id: str) -> User | None:
        return await self._find_user("id", user_id)

    async def list_all_users(self) -> list[User] | None:
        if not self.configured:
            return None
        try:
            rows = await self._select("users", {"order": "created_at.desc"})
        except _REMOTE_ERRORS as exc:
            logger.warning("Error listing users from remote store: %s", exc)
            return None
        users = []
        for row in rows:
            try:
                users.append(load_user(row))
            except _REMOTE_ERRORS:
                logger.warning("Skipping malformed remote user row %s", row.get("id"))
        return users

    # ─── Trips ──────────────────────────────────────────

    async def upsert_trip(self, trip: Trip) -> bool | None:
        """Insert or overwrite the row with this id. No server-side merge."""
        if not self.configured:
            return None
        try:
            await self._request(
                "POST", "trips", params={"on_conflict": "id"}, json=self._trip_row(trip),
                prefer="resolution=merge-duplicates,return=minimal",
            )
            logger.debug("Trip %s written to remote store", trip["id"])
            return True
        except _REMOTE_ERRORS as exc:
            logger.warning("Error saving trip %s to remote store: %s", trip["id"], exc)
            return None

    async def get_trip(self, trip_id: int) -> Trip | None:
        if not self.configured:
            return None
        try:
            rows = await self._select("trips", {"id": f"eq.{trip_id}", "limit": "1"})
        except _REMOTE_ERRORS as exc:
            logger.warning("Error getting trip %s from remote store: %s", trip_id, exc)
            return None
        return self._trip_from_row(rows[0]) if rows else None

    async def list_trips_for_user(self, user_id: str) -> list[Trip] | None:
        """Trips whose ``users`` column contains the user.

        None means "not configured or unreachable"; an empty list means the
        store answered and holds no trips for this user.
        """
        if not self.configured:
            return None
        try:
            rows = await self._select("trips", {"users": f'cs.{{"{user_id}"}}'})
        except _REMOTE_ERRORS as exc:
            logger.warning("Error getting trips for user %s from remote store: %s", user_id, exc)
            return None
        return self._trips_from_rows(rows)

    async def list_all_trips(self) -> list[Trip] | None:
        if not self.configured:
            return None
        try:
            rows = await self._select("trips", {"order": "updated_at.desc"})
        except _REMOTE_ERRORS as exc:
            logger.warning("Error listing trips from remote store: %s", exc)
            return None
        return self._trips_from_rows(rows)

    async def delete_trip(self, trip_id: int) -> bool:
        if not self.configured:
            return False
        try:
            await self._request("DELETE", "trips", params={"id": f"eq.{trip_id}"})
            return True
        except _REMOTE_ERRORS as exc:
            logger.warning("Error deleting trip %s from remote store: %s", trip_id, exc)
            return False

    # ─── Share tokens ───────────────────────────────────

    async def issue_share_token(self, trip_id: int) -> str:
        """Always returns a token; it only resolves remotely if the write succeeded."""
        token = new_share_token()
        if not self.configured:
            return token
        try:
            await self._request(
                "PATCH", "trips", params={"id": f"eq.{trip_id}"}, json={"share_token": token},
                prefer="return=minimal",
            )
            logger.info("Share token issued for trip %s", trip_id)
        except _REMOTE_ERRORS as exc:
            logger.warning("Error storing share token for trip %s: %s", trip_id, exc)
        return token

    async def resolve_share_token(self, token: str) -> Trip | None:
        if not self.configured or not token:
            return None
        try:
            rows = await self._select("trips", {"share_token": f"eq.{token}", "limit": "1"})
        except _REMOTE_ERRORS as exc:
            logger.warning("Error resolving share token: %s", exc)
            return None
        return self._trip_from_row(rows[0]) if rows else None
