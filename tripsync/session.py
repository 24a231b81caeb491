"""Session context — who is logged in and which trip is open.

Created at login and dropped at logout; passed explicitly to the
synchronizer instead of living in module globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from tripsync.state import Trip, User


@dataclass
class Session:
    user: User
    trips: list[Trip] = field(default_factory=list)
    active_trip: Optional[Trip] = None

    @property
    def user_id(self) -> str:
        return self.user["id"]

    def open_trip(self, trip_id: int) -> Trip:
        for trip in self.trips:
            if trip["id"] == trip_id:
                self.active_trip = trip
                return trip
        raise ValueError(f"Trip {trip_id} not found")

    def close_trip(self) -> None:
        self.active_trip = None

    def apply(self, trip: Trip) -> None:
        """Reflect a freshly saved trip in the list and, if open, as the active trip."""
        for i, existing in enumerate(self.trips):
            if existing["id"] == trip["id"]:
                self.trips[i] = trip
                break
        else:
            self.trips.append(trip)
        if self.active_trip is not None and self.active_trip["id"] == trip["id"]:
            self.active_trip = trip
