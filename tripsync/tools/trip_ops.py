"""Trip aggregate operations — pure functions over a Trip dict.

Every mutating operation returns a new Trip with ``updated_at`` bumped and
``progress`` recomputed; the input trip is never modified. Invalid input
raises TripValidationError before anything is built. Unknown entity ids
raise ValueError.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from tripsync.db.codec import utcnow
from tripsync.errors import TripValidationError
from tripsync.state import (
    CARD_LISTS,
    PROGRESS_CATEGORIES,
    Accommodation,
    Activity,
    ApprovalPolicy,
    CardKind,
    CardStatus,
    Expense,
    Place,
    Transport,
    TransportType,
    Trip,
    User,
)
from tripsync.tools.identifiers import new_entity_id, new_trip_id

DEFAULT_TRIP_NAME = "New Trip"
PROGRESS_STEP = 20


# ─── Progress ───────────────────────────────────────────


def calculate_progress(trip: Trip) -> int:
    """20 points for each of the five categories holding at least one entry."""
    return PROGRESS_STEP * sum(1 for key in PROGRESS_CATEGORIES if trip.get(key))


def touch(trip: Trip, now: datetime | None = None, **changes: Any) -> Trip:
    """Copy with changes applied, progress recomputed and updated_at bumped."""
    updated = Trip(**{**trip, **changes})
    previous = trip.get("updated_at")
    stamp = now or utcnow()
    updated["updated_at"] = max(stamp, previous) if previous else stamp
    updated["progress"] = calculate_progress(updated)
    return updated


# ─── Validation helpers ─────────────────────────────────


def _require(errors: dict[str, str], field: str, value: Any) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        errors[field] = "field_required"


def _check_status(errors: dict[str, str], status: str) -> str:
    try:
        return CardStatus(status).value
    except ValueError:
        errors["status"] = "invalid_status"
        return status


def _raise_if(errors: dict[str, str]) -> None:
    if errors:
        raise TripValidationError(errors)


def _check_changes(changes: dict[str, Any], required: tuple[str, ...] = ("name",)) -> None:
    """Validate the fields an update touches the way the add operations do."""
    errors: dict[str, str] = {}
    for field in required:
        if field in changes:
            _require(errors, field, changes[field])
    if "status" in changes:
        changes["status"] = _check_status(errors, changes["status"])
    _raise_if(errors)


def _find(items: list[dict], item_id: str, what: str) -> dict:
    for item in items:
        if item["id"] == item_id:
            return item
    raise ValueError(f"{what} {item_id} not found")


def _replace_item(trip: Trip, list_name: str, item_id: str, **changes: Any) -> Trip:
    items = trip.get(list_name, [])
    _find(items, item_id, list_name)
    return touch(trip, **{list_name: [{**i, **changes} if i["id"] == item_id else i for i in items]})


def _remove_item(trip: Trip, list_name: str, item_id: str) -> Trip:
    items = trip.get(list_name, [])
    _find(items, item_id, list_name)
    return touch(trip, **{list_name: [i for i in items if i["id"] != item_id]})


# ─── Trip ───────────────────────────────────────────────


def new_trip(
    user_id: str,
    name: str = DEFAULT_TRIP_NAME,
    currency: str = "EUR",
    now: datetime | None = None,
) -> Trip:
    if not user_id:
        raise ValueError("user_id is required to create a trip")
    now = now or utcnow()
    return Trip(
        id=new_trip_id(),
        name=name,
        users=[user_id],
        created_by=user_id,
        created_at=now,
        updated_at=now,
        currency=currency,
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


def rename_trip(trip: Trip, name: str) -> Trip:
    errors: dict[str, str] = {}
    _require(errors, "name", name)
    _raise_if(errors)
    return touch(trip, name=name.strip())


def set_dates(trip: Trip, start_date: str | None, end_date: str | None) -> Trip:
    return touch(trip, start_date=start_date or None, end_date=end_date or None)


def set_cover_image(trip: Trip, image: str | None, size_bytes: int = 0, max_bytes: int = 5 * 1024 * 1024) -> Trip:
    """Set (or clear with None) the cover image, a data URI or URL."""
    if size_bytes > max_bytes:
        raise TripValidationError({"cover_image": "file_too_large"})
    return touch(trip, cover_image=image or None)


def is_trip_past(trip: Trip, now: datetime | None = None) -> bool:
    end = trip.get("end_date")
    if not end:
        return False
    try:
        end_date = datetime.fromisoformat(end).date()
    except ValueError:
        return False
    return end_date < (now or utcnow()).date()


# ─── Members & chat ─────────────────────────────────────


def add_member(trip: Trip, user_id: str) -> Trip:
    """Idempotent: a trip that already lists the user comes back unchanged."""
    if user_id in trip.get("users", []):
        return trip
    return touch(trip, users=[*trip.get("users", []), user_id])


def invite_user(trip: Trip, user: User | None) -> Trip:
    """Add a registered user found by email; the UI reports the error keys."""
    if user is None:
        raise TripValidationError({"invite": "user_email_not_found"})
    if user["id"] in trip.get("users", []):
        raise TripValidationError({"invite": "user_already_added"})
    return add_member(trip, user["id"])


def add_chat_message(trip: Trip, display_name: str, text: str, now: datetime | None = None) -> Trip:
    if not text or not text.strip():
        raise TripValidationError({"message": "field_required"})
    now = now or utcnow()
    entry = {"user": display_name, "text": text.strip(), "time": now}
    return touch(trip, now=now, chat=[*trip.get("chat", []), entry])


# ─── Places ─────────────────────────────────────────────


def add_place(
    trip: Trip,
    name: str,
    address: str = "",
    image_url: str = "",
    google_maps_link: str = "",
    status: str = CardStatus.NEW.value,
    price: float = 0.0,
    currency: str | None = None,
) -> Trip:
    """Append a place at the end of the manual order (max order + 1)."""
    errors: dict[str, str] = {}
    _require(errors, "name", name)
    status = _check_status(errors, status)
    _raise_if(errors)

    places = trip.get("places", [])
    place = Place(
        id=new_entity_id(),
        name=name.strip(),
        address=address,
        image_url=image_url,
        google_maps_link=google_maps_link,
        order=max((p["order"] for p in places), default=0) + 1,
        status=status,
        price=price,
        currency=currency or trip.get("currency", "EUR"),
        created_at=utcnow(),
    )
    return touch(trip, places=[*places, place])


def update_place(trip: Trip, place_id: str, **changes: Any) -> Trip:
    changes.pop("order", None)  # only move_place changes the order
    changes.pop("id", None)
    _check_changes(changes)
    return _replace_item(trip, "places", place_id, **changes)


def remove_place(trip: Trip, place_id: str) -> Trip:
    """Remove a place and close the gap so orders stay exactly 1..N."""
    remaining = sorted(
        (p for p in trip.get("places", []) if p["id"] != place_id),
        key=lambda p: p["order"],
    )
    if len(remaining) == len(trip.get("places", [])):
        raise ValueError(f"places {place_id} not found")
    return touch(trip, places=[{**p, "order": rank} for rank, p in enumerate(remaining, start=1)])


def move_place(trip: Trip, place_id: str, step: int) -> Trip:
    """Swap a place's order with its neighbour (step -1 = up, +1 = down).

    Moving past either end returns the trip unchanged.
    """
    if step not in (-1, 1):
        raise ValueError("step must be -1 or 1")
    places = trip.get("places", [])
    place = _find(places, place_id, "places")
    target = place["order"] + step
    neighbour = next((p for p in places if p["order"] == target), None)
    if neighbour is None:
        return trip

    swapped = []
    for p in places:
        if p["id"] == place["id"]:
            swapped.append({**p, "order": neighbour["order"]})
        elif p["id"] == neighbour["id"]:
            swapped.append({**p, "order": place["order"]})
        else:
            swapped.append(p)
    return touch(trip, places=swapped)


def move_place_up(trip: Trip, place_id: str) -> Trip:
    return move_place(trip, place_id, -1)


def move_place_down(trip: Trip, place_id: str) -> Trip:
    return move_place(trip, place_id, 1)


def ordered_places(trip: Trip) -> list[Place]:
    return sorted(trip.get("places", []), key=lambda p: p["order"])


# ─── Activities ─────────────────────────────────────────


def propose_activity(
    trip: Trip,
    created_by: str,
    name: str,
    day: int = 1,
    time: str = "",
    description: str = "",
    address: str = "",
    link: str = "",
    image_url: str = "",
    price: float = 0.0,
    currency: str | None = None,
) -> Trip:
    """New activity in the proposed state: not approved, no votes."""
    errors: dict[str, str] = {}
    _require(errors, "name", name)
    if not isinstance(day, int) or day < 1:
        errors["day"] = "invalid_day"
    _raise_if(errors)

    activity = Activity(
        id=new_entity_id(),
        name=name.strip(),
        description=description,
        address=address,
        link=link,
        image_url=image_url,
        day=day,
        time=time,
        votes=[],
        created_by=created_by,
        approved=False,
        status=CardStatus.NEW.value,
        price=price,
        currency=currency or trip.get("currency", "EUR"),
        created_at=utcnow(),
    )
    return touch(trip, activities=[*trip.get("activities", []), activity])


def update_activity(trip: Trip, activity_id: str, **changes: Any) -> Trip:
    """Edit activity details. Votes, approval and status have their own operations."""
    for locked in ("id", "votes", "approved", "status", "created_by"):
        changes.pop(locked, None)
    errors: dict[str, str] = {}
    if "name" in changes:
        _require(errors, "name", changes["name"])
    if "day" in changes and (not isinstance(changes["day"], int) or changes["day"] < 1):
        errors["day"] = "invalid_day"
    _raise_if(errors)
    return _replace_item(trip, "activities", activity_id, **changes)


def _open_activity(trip: Trip, activity_id: str) -> Activity:
    activity = _find(trip.get("activities", []), activity_id, "activities")
    if activity.get("approved"):
        raise TripValidationError({"activity": "activity_already_approved"})
    return activity


def vote_activity(trip: Trip, activity_id: str, user_id: str) -> Trip:
    activity = _open_activity(trip, activity_id)
    votes = list(activity.get("votes", []))
    if user_id in votes:
        return trip
    return _replace_item(trip, "activities", activity_id, votes=[*votes, user_id])


def unvote_activity(trip: Trip, activity_id: str, user_id: str) -> Trip:
    activity = _open_activity(trip, activity_id)
    votes = list(activity.get("votes", []))
    if user_id not in votes:
        return trip
    return _replace_item(trip, "activities", activity_id, votes=[v for v in votes if v != user_id])


def toggle_vote(trip: Trip, activity_id: str, user_id: str) -> Trip:
    activity = _find(trip.get("activities", []), activity_id, "activities")
    if user_id in activity.get("votes", []):
        return unvote_activity(trip, activity_id, user_id)
    return vote_activity(trip, activity_id, user_id)


def approve_activity(
    trip: Trip,
    activity_id: str,
    user_id: str,
    policy: ApprovalPolicy = ApprovalPolicy.INDEPENDENT,
) -> Trip:
    """Move an activity from proposal to itinerary. Trip creator only.

    INDEPENDENT touches only the target; EXCLUSIVE leaves the target as the
    single approved activity of the trip.
    """
    if user_id != trip.get("created_by"):
        raise TripValidationError({"activity": "not_trip_creator"})
    activities = trip.get("activities", [])
    _find(activities, activity_id, "activities")
    approved = CardStatus.APPROVED.value

    updated = []
    for a in activities:
        if a["id"] == activity_id:
            updated.append({**a, "approved": True, "status": approved})
        elif ApprovalPolicy(policy) is ApprovalPolicy.EXCLUSIVE and a.get("approved"):
            updated.append({**a, "approved": False, "status": CardStatus.POSSIBLE.value})
        else:
            updated.append(a)
    return touch(trip, activities=updated)


def remove_activity(trip: Trip, activity_id: str) -> Trip:
    """Rejecting an activity deletes it; activities have no retained rejected state."""
    return _remove_item(trip, "activities", activity_id)


def itinerary_by_day(trip: Trip) -> dict[int, list[Activity]]:
    """Approved activities grouped by day, each day sorted by time."""
    days: dict[int, list[Activity]] = {}
    for activity in trip.get("activities", []):
        if activity.get("approved") or activity.get("status") == CardStatus.APPROVED.value:
            days.setdefault(activity.get("day", 1), []).append(activity)
    return {day: sorted(items, key=lambda a: a.get("time") or "") for day, items in sorted(days.items())}


# ─── Accommodations & transports ────────────────────────


def add_accommodation(
    trip: Trip,
    name: str,
    address: str = "",
    check_in: str = "",
    check_out: str = "",
    price: float = 0.0,
    guests: int = 1,
    booking_link: str = "",
    description: str = "",
    image_url: str = "",
    status: str = CardStatus.NEW.value,
    currency: str | None = None,
) -> Trip:
    errors: dict[str, str] = {}
    _require(errors, "name", name)
    status = _check_status(errors, status)
    _raise_if(errors)

    accommodation = Accommodation(
        id=new_entity_id(),
        name=name.strip(),
        address=address,
        image_url=image_url,
        booking_link=booking_link,
        description=description,
        check_in=check_in,
        check_out=check_out,
        price=price,
        guests=guests,
        status=status,
        votes=[],
        currency=currency or trip.get("currency", "EUR"),
        created_at=utcnow(),
    )
    return touch(trip, accommodations=[*trip.get("accommodations", []), accommodation])


def update_accommodation(trip: Trip, accommodation_id: str, **changes: Any) -> Trip:
    changes.pop("id", None)
    _check_changes(changes)
    return _replace_item(trip, "accommodations", accommodation_id, **changes)


def remove_accommodation(trip: Trip, accommodation_id: str) -> Trip:
    return _remove_item(trip, "accommodations", accommodation_id)


def add_transport(
    trip: Trip,
    type: str,
    origin: str,
    destination: str,
    departure_time: str = "",
    departure_place: str = "",
    arrival_time: str = "",
    arrival_place: str = "",
    passengers: int = 1,
    description: str = "",
    image_url: str = "",
    price: float = 0.0,
    status: str = CardStatus.NEW.value,
    currency: str | None = None,
) -> Trip:
    errors: dict[str, str] = {}
    _require(errors, "from", origin)
    _require(errors, "to", destination)
    try:
        type = TransportType(type).value
    except ValueError:
        errors["type"] = "invalid_transport_type"
    status = _check_status(errors, status)
    _raise_if(errors)

    transport = Transport(**{
        "id": new_entity_id(),
        "type": type,
        "from": origin,
        "to": destination,
        "departure_time": departure_time,
        "departure_place": departure_place,
        "arrival_time": arrival_time,
        "arrival_place": arrival_place,
        "passengers": passengers,
        "description": description,
        "image_url": image_url,
        "price": price,
        "currency": currency or trip.get("currency", "EUR"),
        "status": status,
        "created_at": utcnow(),
    })
    return touch(trip, transports=[*trip.get("transports", []), transport])


def update_transport(trip: Trip, transport_id: str, **changes: Any) -> Trip:
    changes.pop("id", None)
    _check_changes(changes, required=("from", "to"))
    if "type" in changes:
        try:
            changes["type"] = TransportType(changes["type"]).value
        except ValueError:
            raise TripValidationError({"type": "invalid_transport_type"}) from None
    return _replace_item(trip, "transports", transport_id, **changes)


def remove_transport(trip: Trip, transport_id: str) -> Trip:
    return _remove_item(trip, "transports", transport_id)


# ─── Card status ────────────────────────────────────────


def set_card_status(
    trip: Trip,
    kind: CardKind | str,
    item_id: str,
    status: CardStatus | str,
    user_id: str | None = None,
    policy: ApprovalPolicy = ApprovalPolicy.INDEPENDENT,
) -> Trip:
    """Flat status field, settable by any member.

    Activities are the exception: approving one goes through
    ``approve_activity`` and moving an approved one back is also left to the
    trip creator. ``approved`` mirrors the status.
    """
    errors: dict[str, str] = {}
    value = _check_status(errors, status)
    _raise_if(errors)
    kind = CardKind(kind)
    if kind is not CardKind.ACTIVITY:
        return _replace_item(trip, CARD_LISTS[kind], item_id, status=value)

    approved = CardStatus.APPROVED.value
    if value == approved:
        return approve_activity(trip, item_id, user_id, policy)
    activity = _find(trip.get("activities", []), item_id, "activities")
    if (activity.get("approved") or activity.get("status") == approved) and user_id != trip.get("created_by"):
        raise TripValidationError({"activity": "not_trip_creator"})
    return _replace_item(trip, "activities", item_id, status=value, approved=False)


def approved_items(trip: Trip) -> dict[str, list[dict]]:
    approved = CardStatus.APPROVED.value
    return {
        "places": [p for p in ordered_places(trip) if p.get("status") == approved],
        "activities": [
            a for a in trip.get("activities", []) if a.get("approved") or a.get("status") == approved
        ],
        "accommodations": [a for a in trip.get("accommodations", []) if a.get("status") == approved],
        "transports": [t for t in trip.get("transports", []) if t.get("status") == approved],
    }


# ─── Expenses ───────────────────────────────────────────


def _build_expense(
    trip: Trip,
    description: str,
    amount: float,
    paid_by: str,
    shared_by: list[str] | None,
    category: str,
    currency: str | None,
) -> Expense:
    errors: dict[str, str] = {}
    _require(errors, "description", description)
    _require(errors, "paid_by", paid_by)
    if (
        not isinstance(amount, (int, float))
        or isinstance(amount, bool)
        or not math.isfinite(amount)
        or amount <= 0
    ):
        errors["amount"] = "amount_must_be_positive"
    sharers = list(dict.fromkeys(shared_by or trip.get("users", [])))
    if not sharers:
        errors["shared_by"] = "field_required"
    _raise_if(errors)
    return Expense(
        id=new_entity_id(),
        description=description.strip(),
        amount=float(amount),
        category=category,
        paid_by=paid_by,
        shared_by=sharers,
        currency=currency or trip.get("currency", "EUR"),
        created_at=utcnow(),
    )


def add_expense(
    trip: Trip,
    description: str,
    amount: float,
    paid_by: str,
    shared_by: list[str] | None = None,
    category: str = "",
    currency: str | None = None,
) -> Trip:
    """Record an expense; an empty ``shared_by`` splits it across all trip members."""
    expense = _build_expense(trip, description, amount, paid_by, shared_by, category, currency)
    return touch(trip, expenses=[*trip.get("expenses", []), expense])


def replace_expense(
    trip: Trip,
    expense_id: str,
    description: str,
    amount: float,
    paid_by: str,
    shared_by: list[str] | None = None,
    category: str = "",
    currency: str | None = None,
) -> Trip:
    """Full replace; keeps the original id and created_at."""
    current = _find(trip.get("expenses", []), expense_id, "expenses")
    expense = _build_expense(trip, description, amount, paid_by, shared_by, category, currency)
    expense["id"] = current["id"]
    expense["created_at"] = current.get("created_at") or expense["created_at"]
    return touch(trip, expenses=[expense if e["id"] == expense_id else e for e in trip.get("expenses", [])])


def remove_expense(trip: Trip, expense_id: str) -> Trip:
    return _remove_item(trip, "expenses", expense_id)
