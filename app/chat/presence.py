"""
Presence: derived online status plus the heartbeat that keeps it fresh.

There is no presence channel. A profile is online while its
``last_active_at`` is younger than the freshness window, so the status seen by
others can lag by up to one heartbeat interval.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.chat.change_feed import UPDATE, ChangeFeed
from app.chat.identity import Actor, Authenticated
from app.core.config import settings
from app.crud import profile_crud
from app.utils.timestamps import as_utc, utcnow

logger = logging.getLogger(__name__)

PRESENCE_WINDOW = timedelta(seconds=settings.PRESENCE_WINDOW_SECONDS)


def is_online(last_active_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True iff ``now - last_active_at`` is strictly under the presence window."""
    if last_active_at is None:
        return False
    now = as_utc(now) if now is not None else utcnow()
    return now - as_utc(last_active_at) < PRESENCE_WINDOW


class Heartbeat:
    """Periodically refreshes the actor's ``last_active_at`` while a view is open."""

    def __init__(
        self,
        actor: Actor,
        session_factory: sessionmaker,
        feed: ChangeFeed,
        interval: float = settings.HEARTBEAT_INTERVAL_SECONDS,
    ) -> None:
        self.actor = actor
        self.interval = interval
        self._session_factory = session_factory
        self._feed = feed
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def beat(self) -> None:
        """One write of "now". Anonymous actors have no profile, so nothing happens."""
        if not isinstance(self.actor, Authenticated):
            return
        try:
            with self._session_factory() as db:
                profile = profile_crud.touch_last_active(db, user_id=self.actor.user_id)
                if profile is None:
                    return
                row = {
                    "id": str(profile.id),
                    "last_active_at": as_utc(profile.last_active_at).isoformat(),
                }
        except SQLAlchemyError as e:
            # Idempotent write; the next tick tries again.
            logger.warning("Heartbeat write failed for %s: %s", self.actor.user_id, e)
            return
        self._feed.publish("profiles", UPDATE, row)

    async def _run(self) -> None:
        while True:
            await self.beat()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running or not isinstance(self.actor, Authenticated):
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
