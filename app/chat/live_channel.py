"""
Live update channel: per-room message queues, per-profile presence callbacks
and per-user inbox wakeups.

A room subscription is a bounded, single-consumer queue of ``LiveEvent``.
Inserts arrive as ``NEW_MESSAGE``. Updates and deletes arrive as a
``REFRESH`` sentinel that tells the consumer to re-pull the room, and removal
of the room itself arrives as ``ROOM_DELETED``. Delivery is at-least-once, so
consumers deduplicate by message id.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Set

from app.chat.change_feed import DELETE, INSERT, UPDATE, ChangeEvent, ChangeFeed
from app.chat.presence import is_online
from app.core.config import settings
from app.schema.chat import MessageResponse
from app.utils.timestamps import parse_timestamp

logger = logging.getLogger(__name__)


class LiveEventKind(str, Enum):
    NEW_MESSAGE = "new_message"
    REFRESH = "refresh"
    ROOM_DELETED = "room_deleted"


@dataclass(frozen=True)
class LiveEvent:
    kind: LiveEventKind
    room_id: uuid.UUID
    message: Optional[MessageResponse] = None


_CLOSED = object()


class RoomSubscription:
    """Queue of live events for one room. Owned by exactly one consumer."""

    def __init__(self, room_id: uuid.UUID, feed: ChangeFeed, maxsize: int) -> None:
        self.room_id = room_id
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._handles = [
            feed.subscribe("chat_messages", self._on_message_change, filters={"room_id": room_id}),
            feed.subscribe("chat_rooms", self._on_room_change, filters={"id": room_id}, events=[DELETE]),
        ]
        self._closed = False
        self._last_put: Optional[LiveEventKind] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    def _on_message_change(self, change: ChangeEvent) -> None:
        if change.event == INSERT:
            self._offer(LiveEvent(
                kind=LiveEventKind.NEW_MESSAGE,
                room_id=self.room_id,
                message=MessageResponse.model_validate(change.row),
            ))
        else:
            self._offer(LiveEvent(kind=LiveEventKind.REFRESH, room_id=self.room_id))

    def _on_room_change(self, change: ChangeEvent) -> None:
        self._offer(LiveEvent(kind=LiveEventKind.ROOM_DELETED, room_id=self.room_id))

    def _offer(self, event: LiveEvent) -> None:
        if self._closed:
            return
        if event.kind == LiveEventKind.REFRESH and self._last_put == LiveEventKind.REFRESH and self._queue.qsize():
            return
        if self._queue.full():
            # A full re-pull covers everything dropped here.
            logger.warning("Live queue for room %s overflowed; collapsing to refresh", self.room_id)
            self._drain()
            if event.kind != LiveEventKind.ROOM_DELETED:
                event = LiveEvent(kind=LiveEventKind.REFRESH, room_id=self.room_id)
        self._queue.put_nowait(event)
        self._last_put = event.kind

    def _drain(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()

    async def get(self) -> LiveEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if self._queue.empty():
            self._last_put = None
        return item

    def get_nowait(self) -> Optional[LiveEvent]:
        if self._queue.empty():
            return None
        item = self._queue.get_nowait()
        if item is _CLOSED:
            return None
        if self._queue.empty():
            self._last_put = None
        return item

    def __aiter__(self) -> "RoomSubscription":
        return self

    async def __anext__(self) -> LiveEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        return await self.get()

    def unsubscribe(self) -> None:
        if self._closed:
            logger.debug("Room subscription %s already closed", self.room_id)
            return
        self._closed = True
        for handle in self._handles:
            self._feed.unsubscribe(handle)
        self._drain()
        self._queue.put_nowait(_CLOSED)


class LiveUpdateChannel:
    """Entry point for live subscriptions over the change feed."""

    def __init__(self, feed: ChangeFeed, queue_size: int = settings.LIVE_QUEUE_SIZE) -> None:
        self._feed = feed
        self._queue_size = queue_size

    def subscribe_messages(self, room_id: uuid.UUID) -> RoomSubscription:
        return RoomSubscription(room_id, self._feed, self._queue_size)

    def subscribe_profile(
        self, user_id: uuid.UUID, on_presence_change: Callable[[bool], None]
    ) -> Callable[[], None]:
        """Call ``on_presence_change(online)`` whenever the profile's ``last_active_at`` changes."""
        last_seen = {"value": None}

        def on_change(change: ChangeEvent) -> None:
            if "last_active_at" not in change.row:
                return
            value = change.row["last_active_at"]
            if value == last_seen["value"]:
                return
            last_seen["value"] = value
            on_presence_change(is_online(parse_timestamp(value)))

        handle = self._feed.subscribe("profiles", on_change, filters={"id": user_id}, events=[UPDATE])
        return _once(lambda: self._feed.unsubscribe(handle), f"presence {user_id}")

    def subscribe_inbox(
        self, user_id: uuid.UUID, on_change: Callable[[ChangeEvent], None]
    ) -> "InboxSubscription":
        """Message and room changes in the user's rooms; directory views re-fetch on it."""
        return InboxSubscription(user_id, self._feed, on_change)


class InboxSubscription:
    """Forwards changes for the rooms one user takes part in.

    Rooms are learned from ``track`` (the caller's last directory listing) and
    from participant rows inserted for the user after subscribing.
    """

    def __init__(self, user_id: uuid.UUID, feed: ChangeFeed, on_change: Callable[[ChangeEvent], None]) -> None:
        self.user_id = user_id
        self._feed = feed
        self._on_change = on_change
        self._rooms = set()
        self._handles = [
            feed.subscribe("chat_participants", self._on_joined, filters={"user_id": user_id}, events=[INSERT]),
            feed.subscribe("chat_messages", self._on_message_change),
            feed.subscribe("chat_rooms", self._on_room_change, events=[UPDATE, DELETE]),
        ]
        self._closed = False

    @property
    def rooms(self) -> Set[str]:
        return set(self._rooms)

    def track(self, room_ids: Iterable[uuid.UUID]) -> None:
        self._rooms.update(str(r) for r in room_ids)

    def _on_joined(self, change: ChangeEvent) -> None:
        self._rooms.add(str(change.row["room_id"]))
        self._on_change(change)

    def _on_message_change(self, change: ChangeEvent) -> None:
        if str(change.row.get("room_id")) in self._rooms:
            self._on_change(change)

    def _on_room_change(self, change: ChangeEvent) -> None:
        room_id = str(change.row.get("id"))
        if room_id not in self._rooms:
            return
        if change.event == DELETE:
            self._rooms.discard(room_id)
        self._on_change(change)

    def unsubscribe(self) -> None:
        if self._closed:
            logger.debug("Inbox subscription for %s already closed", self.user_id)
            return
        self._closed = True
        for handle in self._handles:
            self._feed.unsubscribe(handle)


def _once(fn: Callable[[], None], label: str) -> Callable[[], None]:
    called = {"done": False}

    def wrapper() -> None:
        if called["done"]:
            logger.debug("Subscription %s already closed", label)
            return
        called["done"] = True
        fn()

    return wrapper
