"""Synchronizer — polling convergence between the local cache and the remote store.

The merge is whole-document last-writer-wins on ``updated_at``: the newer
document replaces the older one entirely, and the local copy wins ties.
Everything that decides between two versions of a trip goes through
``merge_trip`` so a finer-grained merge can replace it in one place.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from tripsync.state import Trip

if TYPE_CHECKING:
    from tripsync.db.repository import FallbackStore
    from tripsync.session import Session

logger = logging.getLogger(__name__)

TripListListener = Callable[[list[Trip]], Optional[Awaitable[None]]]


def merge_trip(local: Trip, remote: Trip) -> Trip:
    """Return whichever version wins: remote only if strictly newer."""
    if remote["updated_at"] > local["updated_at"]:
        return remote
    return local


def merge_trip_lists(local: list[Trip], remote: list[Trip]) -> tuple[list[Trip], list[Trip]]:
    """Fold a remote snapshot into the local list.

    Returns ``(merged, adopted)`` where ``adopted`` holds the remote trips
    that were new or newer and must be written back to the cache. Local
    trips missing from the remote snapshot are kept; deletions do not
    propagate in this direction. Local order is preserved and new trips are
    appended in remote order.
    """
    merged = list(local)
    index = {trip["id"]: i for i, trip in enumerate(merged)}
    adopted: list[Trip] = []

    for remote_trip in remote:
        i = index.get(remote_trip["id"])
        if i is None:
            index[remote_trip["id"]] = len(merged)
            merged.append(remote_trip)
            adopted.append(remote_trip)
            continue
        winner = merge_trip(merged[i], remote_trip)
        if winner is not merged[i]:
            merged[i] = remote_trip
            adopted.append(remote_trip)

    return merged, adopted


def newer_version(current: Trip, trips: list[Trip]) -> Trip | None:
    """The copy of ``current`` in ``trips`` if it is strictly newer, else None."""
    for trip in trips:
        if trip["id"] == current["id"]:
            return trip if trip["updated_at"] > current["updated_at"] else None
    return None


class Synchronizer:
    """Runs a merge cycle for the session's user every ``interval`` seconds."""

    def __init__(
        self,
        store: FallbackStore,
        session: Session,
        interval: float = 10.0,
        on_update: TripListListener | None = None,
    ) -> None:
        self.store = store
        self.session = session
        self.interval = interval
        self.on_update = on_update
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> list[Trip]:
        """One cycle: merge, publish the list, refresh the active trip if a newer copy arrived.

        Replacing the active trip drops any in-memory edits that were not
        saved yet; the newer saved document wins.
        """
        trips = await self.store.get_trips_for_user(self.session.user_id)
        self.session.trips = trips

        active = self.session.active_trip
        if active is not None:
            newer = newer_version(active, trips)
            if newer is not None:
                logger.info("Active trip %s replaced by a newer version", active["id"])
                self.session.active_trip = newer

        if self.on_update is not None:
            result = self.on_update(trips)
            if asyncio.iscoroutine(result):
                await result
        return trips

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Sync cycle failed for user %s", self.session.user_id)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"sync-{self.session.user_id}")
        logger.info("Synchronizer started for user %s (every %.1fs)", self.session.user_id, self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Synchronizer stopped for user %s", self.session.user_id)
