"""JSON codec for users and trips.

Every ``datetime`` is written as an ISO-8601 string and parsed back on
every read, including the nested chat entries and each sub-entity's
``created_at``.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from tripsync.state import Trip, User

# Sub-entity lists whose items carry a created_at timestamp
ENTITY_LISTS = ("places", "activities", "accommodations", "transports", "expenses")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO string (``Z`` suffix allowed) or pass a datetime through.

    Naive values are assumed to be UTC. Returns None for empty input.
    Raises ValueError for strings that are not ISO-8601.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def encode(value: Any) -> Any:
    """Recursively convert datetimes to ISO strings so the value is JSON-safe."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode(v) for v in value]
    return value


def dumps(value: Any) -> str:
    return json.dumps(encode(value), ensure_ascii=False)


# ─── Users ──────────────────────────────────────────────


def dump_user(user: User) -> dict:
    return encode(dict(user))


def load_user(raw: dict) -> User:
    """Rehydrate a stored user. Raises KeyError/ValueError on malformed input."""
    user = dict(raw)
    user["id"] = str(raw["id"])
    user["email"] = str(raw.get("email", "")).lower()
    user["created_at"] = parse_timestamp(raw.get("created_at")) or utcnow()
    return User(**user)


# ─── Trips ──────────────────────────────────────────────


def dump_trip(trip: Trip) -> dict:
    return encode(dict(trip))


def load_trip(raw: dict) -> Trip:
    """Rehydrate a stored trip document.

    ``created_at`` falls back to ``updated_at`` and vice versa; a trip with
    neither is malformed. Missing lists come back empty.
    Raises KeyError/TypeError/ValueError on malformed input.
    """
    if not isinstance(raw, dict):
        raise TypeError(f"Trip document must be an object, got {type(raw).__name__}")

    updated_at = parse_timestamp(raw.get("updated_at"))
    created_at = parse_timestamp(raw.get("created_at")) or updated_at
    if created_at is None:
        raise ValueError(f"Trip {raw.get('id')!r} has no timestamps")

    trip = dict(raw)
    trip["id"] = int(raw["id"])
    trip["users"] = [str(u) for u in raw.get("users") or []]
    trip["created_at"] = created_at
    trip["updated_at"] = updated_at or created_at
    trip["progress"] = int(raw.get("progress") or 0)
    trip["chat"] = [
        {**entry, "time": parse_timestamp(entry.get("time"))}
        for entry in raw.get("chat") or []
    ]
    for key in ENTITY_LISTS:
        trip[key] = [
            {**item, "created_at": parse_timestamp(item.get("created_at"))}
            for item in raw.get(key) or []
        ]
    return Trip(**trip)
