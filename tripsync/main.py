"""Entry point — open the stores and keep one user's trips in sync.

Usage: python -m tripsync.main <email> [share-token]
"""

from __future__ import annotations

import asyncio
import logging
import logging.handlers
import os
import signal
import sys

from dotenv import load_dotenv


def main() -> None:
    load_dotenv()

    from tripsync.config.settings import get_settings
    settings = get_settings()

    if len(sys.argv) not in (2, 3):
        print("Usage: python -m tripsync.main <email> [share-token]", file=sys.stderr)
        sys.exit(2)
    email = sys.argv[1]
    share_token = sys.argv[2] if len(sys.argv) == 3 else None

    os.makedirs("data/logs", exist_ok=True)

    log_format = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Console handler
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(console)

    # File handler (rotating, persistent)
    file_handler = logging.handlers.RotatingFileHandler(
        "data/logs/tripsync.log", maxBytes=5_000_000, backupCount=3
    )
    file_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(file_handler)

    logger = logging.getLogger(__name__)

    async def _start() -> None:
        from tripsync.db.migrations import init_db
        from tripsync.planner import TripPlanner
        from tripsync.session import Session
        from tripsync.sync import Synchronizer

        store = await init_db(settings)
        logger.info("Stores ready.")

        user = await store.get_user_by_email(email)
        if user is None:
            logger.error("No user registered with email %s", email)
            await store.close()
            return
        await store.set_current_user(user)

        def _publish(trips: list) -> None:
            summary = ", ".join(f"{t['name']} ({t['progress']}%)" for t in trips) or "no trips"
            logger.info("Trips for %s: %s", user["name"], summary)

        session = Session(user=user)
        if share_token:
            planner = TripPlanner.from_settings(store, session, settings)
            joined = await planner.join(share_token)
            if joined is None:
                logger.warning("Share link %s did not match any trip", share_token)
            else:
                logger.info("Joined trip %s", joined["name"])

        synchronizer = Synchronizer(store, session, interval=settings.SYNC_INTERVAL, on_update=_publish)
        synchronizer.start()

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except (NotImplementedError, AttributeError):
                pass

        logger.info("Syncing. Press Ctrl+C to stop.")
        await stop_event.wait()

        logger.info("Shutting down...")
        await synchronizer.stop()
        await store.close()

    try:
        asyncio.run(_start())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Stopped.")


if __name__ == "__main__":
    main()
