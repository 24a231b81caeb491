"""Trip planner — applies trip operations for the logged-in user and persists them.

Each call runs one pure operation from ``tripsync.tools.trip_ops`` against
the session's active trip, saves the result through the fallback store and
reflects the saved copy back into the session.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from tripsync.config.settings import Settings
from tripsync.db.repository import FallbackStore
from tripsync.session import Session
from tripsync.state import ApprovalPolicy, Trip
from tripsync.tools import trip_ops

logger = logging.getLogger(__name__)


class TripPlanner:
    def __init__(
        self,
        store: FallbackStore,
        session: Session,
        default_currency: str = "EUR",
        approval_policy: ApprovalPolicy = ApprovalPolicy.INDEPENDENT,
        max_image_bytes: int = 5 * 1024 * 1024,
    ) -> None:
        self.store = store
        self.session = session
        self.default_currency = default_currency
        self.approval_policy = ApprovalPolicy(approval_policy)
        self.max_image_bytes = max_image_bytes

    @classmethod
    def from_settings(cls, store: FallbackStore, session: Session, settings: Settings) -> TripPlanner:
        return cls(
            store,
            session,
            default_currency=settings.DEFAULT_CURRENCY,
            approval_policy=settings.approval_policy,
            max_image_bytes=settings.MAX_IMAGE_BYTES,
        )

    @property
    def active_trip(self) -> Trip:
        if self.session.active_trip is None:
            raise ValueError("No trip is open")
        return self.session.active_trip

    async def _save(self, trip: Trip) -> Trip:
        saved = await self.store.save_trip(trip)
        self.session.apply(saved)
        return saved

    async def apply(self, operation: Callable[..., Trip], *args: Any, **kwargs: Any) -> Trip:
        """Run ``operation(active_trip, ...)`` and save the result. No-op results are not saved."""
        current = self.active_trip
        updated = operation(current, *args, **kwargs)
        if updated is current:
            return current
        return await self._save(updated)

    # ─── Trip lifecycle ─────────────────────────────────

    async def create_trip(self, name: str = trip_ops.DEFAULT_TRIP_NAME) -> Trip:
        trip = trip_ops.new_trip(self.session.user_id, name=name, currency=self.default_currency)
        saved = await self.store.save_trip(trip)
        self.session.apply(saved)
        self.session.active_trip = saved
        logger.info("User %s created trip %s", self.session.user_id, saved["id"])
        return saved

    async def delete_trip(self, trip_id: int) -> None:
        await self.store.delete_trip(trip_id)
        self.session.trips = [t for t in self.session.trips if t["id"] != trip_id]
        if self.session.active_trip is not None and self.session.active_trip["id"] == trip_id:
            self.session.close_trip()

    # ─── Operations that need the session or settings ───

    async def send_message(self, text: str) -> Trip:
        return await self.apply(trip_ops.add_chat_message, self.session.user.get("name", ""), text)

    async def propose_activity(self, name: str, **details: Any) -> Trip:
        return await self.apply(trip_ops.propose_activity, self.session.user_id, name, **details)

    async def toggle_vote(self, activity_id: str) -> Trip:
        return await self.apply(trip_ops.toggle_vote, activity_id, self.session.user_id)

    async def approve_activity(self, activity_id: str) -> Trip:
        return await self.apply(trip_ops.approve_activity, activity_id, self.session.user_id, self.approval_policy)

    async def set_card_status(self, kind: str, item_id: str, status: str) -> Trip:
        return await self.apply(
            trip_ops.set_card_status, kind, item_id, status, self.session.user_id, self.approval_policy
        )

    async def set_cover_image(self, image: str | None, size_bytes: int = 0) -> Trip:
        return await self.apply(trip_ops.set_cover_image, image, size_bytes, self.max_image_bytes)

    async def invite(self, email: str) -> Trip:
        user = await self.store.get_user_by_email(email)
        return await self.apply(trip_ops.invite_user, user)

    # ─── Sharing ────────────────────────────────────────

    async def share_link(self) -> str:
        return await self.store.share_link(self.active_trip["id"])

    async def join(self, token: str) -> Trip | None:
        """Join a trip from a share link and open it."""
        trip = await self.store.join_trip(token, self.session.user_id)
        if trip is None:
            return None
        self.session.apply(trip)
        self.session.active_trip = trip
        return trip
