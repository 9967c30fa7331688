"""
Conversation orchestrator: the authoritative ordered message list for one open room.

One instance per open conversation view. It seeds from the store, merges live
events with id-based deduplication, keeps unread counts correct while the room
is open, and owns the heartbeat and both live subscriptions until closed.

States: LOADING -> READY -> UNSUBSCRIBED (terminal).
"""
import asyncio
import bisect
import logging
import uuid
from enum import Enum
from typing import Callable, List, Optional

from app.chat.errors import ChatError, ChatErrorCode, OperationResult
from app.chat.identity import Actor, Anonymous, Authenticated
from app.chat.live_channel import LiveEvent, LiveEventKind, LiveUpdateChannel, RoomSubscription
from app.chat.message_store import MessageStore
from app.chat.presence import Heartbeat, is_online
from app.chat.room_directory import RoomDirectory
from app.schema.chat import MessageResponse

logger = logging.getLogger(__name__)


class ConversationState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    UNSUBSCRIBED = "unsubscribed"


def _sort_key(msg: MessageResponse):
    return (msg.created_at, str(msg.id))


class ConversationOrchestrator:
    def __init__(
        self,
        room_id: uuid.UUID,
        viewer: Actor,
        *,
        store: MessageStore,
        channel: LiveUpdateChannel,
        directory: Optional[RoomDirectory] = None,
        heartbeat: Optional[Heartbeat] = None,
        on_change: Optional[Callable[[List[MessageResponse]], None]] = None,
        on_notice: Optional[Callable[[ChatError], None]] = None,
        on_presence: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self.room_id = room_id
        self.viewer = viewer
        self.state = ConversationState.LOADING
        self.counterpart_id: Optional[uuid.UUID] = None
        self.counterpart_online = False
        self._store = store
        self._channel = channel
        self._directory = directory
        self._heartbeat = heartbeat
        self._on_change = on_change
        self._on_notice = on_notice
        self._on_presence = on_presence
        self._messages: List[MessageResponse] = []
        self._ids = set()
        self._subscription: Optional[RoomSubscription] = None
        self._unsubscribe_presence: Optional[Callable[[], None]] = None
        self._drain_task: Optional[asyncio.Task] = None

    @property
    def messages(self) -> List[MessageResponse]:
        return list(self._messages)

    def is_own_message(self, msg: MessageResponse) -> bool:
        if isinstance(self.viewer, Authenticated):
            return msg.sender_id == self.viewer.user_id
        # Anonymous senders share no stable id; the room binding is the identity.
        return msg.is_anonymous and msg.sender_id is None

    # --- lifecycle ---

    async def open(self) -> bool:
        """Seed, mark read, subscribe. Returns False if the room could not be opened."""
        # Subscribe first so nothing committed during the seed is missed;
        # the queue buffers until draining starts.
        self._subscription = self._channel.subscribe_messages(self.room_id)

        seeded = await self._store.list(self.room_id)
        if not seeded.success:
            self._notice(seeded.error)
            await self.close()
            return False
        self._replace(seeded.value)

        await self._mark_read()
        await self._watch_counterpart()
        if self._heartbeat is not None:
            self._heartbeat.start()

        self.state = ConversationState.READY
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())
        return True

    async def close(self) -> None:
        if self.state == ConversationState.UNSUBSCRIBED:
            return
        self.state = ConversationState.UNSUBSCRIBED
        task, self._drain_task = self._drain_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._unsubscribe_presence is not None:
            self._unsubscribe_presence()
            self._unsubscribe_presence = None
        if self._heartbeat is not None:
            await self._heartbeat.stop()
        logger.debug("Conversation %s closed", self.room_id)

    async def __aenter__(self) -> "ConversationOrchestrator":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --- live events ---

    async def _drain(self) -> None:
        try:
            async for event in self._subscription:
                await self.handle_event(event)
                if self.state == ConversationState.UNSUBSCRIBED:
                    break
        except Exception as e:
            logger.exception("Live updates for conversation %s stopped: %s", self.room_id, e)
            self._notice(ChatError(ChatErrorCode.STORE_UNAVAILABLE, "Live updates stopped. Reopen the conversation."))
            await self.close()

    async def handle_event(self, event: LiveEvent) -> None:
        if self.state == ConversationState.UNSUBSCRIBED:
            return
        if event.kind == LiveEventKind.NEW_MESSAGE and event.message is not None:
            self._merge(event.message)
            # Also for duplicates: a refresh may have pulled it in still unread.
            if not self.is_own_message(event.message):
                await self._mark_read()
        elif event.kind == LiveEventKind.REFRESH:
            await self.refresh()
        elif event.kind == LiveEventKind.ROOM_DELETED:
            self._notice(ChatError(ChatErrorCode.NOT_FOUND, "This conversation was deleted."))
            await self.close()

    async def refresh(self) -> None:
        """Re-pull the room and replace the list wholesale."""
        result = await self._store.list(self.room_id)
        if not result.success:
            self._notice(result.error)
            if result.error.code == ChatErrorCode.NOT_FOUND:
                await self.close()
            return
        self._replace(result.value)

    # --- user actions ---

    async def send(self, text: str) -> OperationResult:
        """Awaited send. Local state changes only on success."""
        result = await self._store.append(self.room_id, text, self.viewer)
        if result.success:
            self._merge(result.value)
        else:
            self._notice(result.error)
        return result

    async def edit(self, message_id: uuid.UUID, text: str) -> OperationResult:
        result = await self._store.edit(message_id, text)
        if result.success:
            self._replace_one(result.value)
        else:
            self._notice(result.error)
        return result

    async def delete(self, message_id: uuid.UUID) -> OperationResult:
        result = await self._store.delete(message_id)
        if result.success:
            if message_id in self._ids:
                self._ids.discard(message_id)
                self._messages = [m for m in self._messages if m.id != message_id]
                self._changed()
        else:
            self._notice(result.error)
        return result

    async def mark_read(self) -> OperationResult:
        return await self._mark_read()

    # --- internals ---

    def _merge(self, msg: MessageResponse) -> bool:
        """Insert at the sorted position unless the id is already present."""
        if msg.id in self._ids:
            return False
        keys = [_sort_key(m) for m in self._messages]
        self._messages.insert(bisect.bisect_right(keys, _sort_key(msg)), msg)
        self._ids.add(msg.id)
        self._changed()
        return True

    def _replace(self, messages: List[MessageResponse]) -> None:
        self._messages = sorted(messages, key=_sort_key)
        self._ids = {m.id for m in self._messages}
        self._changed()

    def _replace_one(self, msg: MessageResponse) -> None:
        for i, existing in enumerate(self._messages):
            if existing.id == msg.id:
                self._messages[i] = msg
                self._changed()
                return

    async def _mark_read(self) -> OperationResult:
        result = await self._store.mark_read(self.room_id, self.viewer)
        if not result.success:
            self._notice(result.error)
            return result
        changed = False
        for i, msg in enumerate(self._messages):
            if not msg.is_read and self._counts_as_read(msg):
                self._messages[i] = msg.model_copy(update={"is_read": True})
                changed = True
        if changed:
            self._changed()
        return result

    def _counts_as_read(self, msg: MessageResponse) -> bool:
        if isinstance(self.viewer, Anonymous):
            return not msg.is_anonymous
        return msg.sender_id != self.viewer.user_id

    async def _watch_counterpart(self) -> None:
        if self._directory is None:
            return
        result = await self._directory.get_room_summary(self.room_id, self.viewer)
        if not result.success or result.value.counterpart is None:
            return
        counterpart = result.value.counterpart
        if counterpart.user_id is None:
            return
        self.counterpart_id = counterpart.user_id
        self._set_presence(
            is_online(counterpart.profile.last_active_at) if counterpart.profile else False
        )
        self._unsubscribe_presence = self._channel.subscribe_profile(
            counterpart.user_id, self._set_presence
        )

    def _set_presence(self, online: bool) -> None:
        self.counterpart_online = online
        if self._on_presence is not None:
            self._on_presence(online)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.messages)

    def _notice(self, error: Optional[ChatError]) -> None:
        if error is None:
            return
        logger.info("Conversation %s notice: %s", self.room_id, error.message)
        if self._on_notice is not None:
            self._on_notice(error)
