"""
Record schema — users, trips and trip sub-entities.

Records are TypedDicts so they stay plain JSON-shaped dicts.
Timestamps are timezone-aware ``datetime`` values in memory and ISO-8601
strings on disk / on the wire (see ``tripsync.db.codec``).
Enums use str mixin for easy serialisation.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, TypedDict


# ─── Enums ────────────────────────────────────────


class CardStatus(str, Enum):
    NEW = "new"
    POSSIBLE = "possible"
    REJECTED = "rejected"
    APPROVED = "approved"


class TransportType(str, Enum):
    PLANE = "plane"
    TRAIN = "train"
    BUS = "bus"
    CAR = "car"
    SHIP = "ship"
    OTHER = "other"


class ApprovalPolicy(str, Enum):
    INDEPENDENT = "independent"  # approving one activity leaves the others alone
    EXCLUSIVE = "exclusive"  # approving one activity un-approves every other


class CardKind(str, Enum):
    PLACE = "place"
    ACTIVITY = "activity"
    ACCOMMODATION = "accommodation"
    TRANSPORT = "transport"


# Trip list attribute for each card kind
CARD_LISTS: dict[CardKind, str] = {
    CardKind.PLACE: "places",
    CardKind.ACTIVITY: "activities",
    CardKind.ACCOMMODATION: "accommodations",
    CardKind.TRANSPORT: "transports",
}

# The five planning categories counted by trip progress
PROGRESS_CATEGORIES = ("places", "activities", "accommodations", "transports", "expenses")


# ─── Users ────────────────────────────────────────


class User(TypedDict, total=False):
    id: str
    email: str  # stored lower-cased
    name: str
    password_hash: str
    created_at: datetime


# ─── Trip sub-entities ────────────────────────────


class ChatMessage(TypedDict, total=False):
    user: str  # display name, not id
    text: str
    time: datetime


class Place(TypedDict, total=False):
    id: str
    name: str
    address: str
    image_url: str
    google_maps_link: str
    order: int  # 1-based, dense within a trip
    status: str  # CardStatus value
    price: float
    currency: str
    created_at: datetime


class Activity(TypedDict, total=False):
    id: str
    name: str
    description: str
    address: str
    link: str
    image_url: str
    day: int  # >= 1
    time: str  # free text "HH:MM"
    votes: list[str]  # user ids, no duplicates
    created_by: str
    approved: bool
    status: str  # CardStatus value
    price: float
    currency: str
    created_at: datetime


class Accommodation(TypedDict, total=False):
    id: str
    name: str
    address: str
    image_url: str
    booking_link: str
    description: str
    check_in: str
    check_out: str
    price: float
    guests: int
    status: str
    votes: list[str]
    currency: str
    created_at: datetime


# "from" is a keyword, hence the functional form
Transport = TypedDict(
    "Transport",
    {
        "id": str,
        "type": str,  # TransportType value
        "from": str,
        "to": str,
        "departure_time": str,
        "departure_place": str,
        "arrival_time": str,
        "arrival_place": str,
        "passengers": int,
        "description": str,
        "image_url": str,
        "price": float,
        "currency": str,
        "status": str,
        "created_at": datetime,
    },
    total=False,
)


class Expense(TypedDict, total=False):
    id: str
    description: str
    amount: float  # > 0
    category: str
    paid_by: str  # user id
    shared_by: list[str]  # user ids, non-empty
    currency: str
    created_at: datetime


# ─── Trip aggregate ───────────────────────────────


class Trip(TypedDict, total=False):
    """The shared document every participant edits."""

    id: int
    name: str
    users: list[str]  # ordered set, always contains created_by
    created_by: str
    created_at: datetime
    updated_at: datetime
    currency: str
    progress: int  # 0..100, derived
    chat: list[ChatMessage]
    places: list[Place]
    activities: list[Activity]
    accommodations: list[Accommodation]
    transports: list[Transport]
    expenses: list[Expense]
    start_date: Optional[str]
    end_date: Optional[str]
    cover_image: Optional[str]
    share_token: Optional[str]
