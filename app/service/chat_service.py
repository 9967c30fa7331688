"""
Chat service wiring: one store, channel, directory and initiation flow per process.
"""
from dataclasses import dataclass
from typing import Callable, List, Optional
import uuid

from sqlalchemy.orm import sessionmaker

from app.chat.change_feed import ChangeFeed, change_feed
from app.chat.conversation import ConversationOrchestrator
from app.chat.errors import ChatError
from app.chat.identity import Actor
from app.chat.live_channel import LiveUpdateChannel
from app.chat.message_store import MessageStore
from app.chat.presence import Heartbeat
from app.chat.room_directory import RoomDirectory
from app.chat.room_initiation import AnonymousBinder, RoomInitiation
from app.core.config import settings
from app.core.database import SessionLocal
from app.schema.chat import MessageResponse


@dataclass
class ChatServices:
    session_factory: sessionmaker
    feed: ChangeFeed
    store: MessageStore
    channel: LiveUpdateChannel
    directory: RoomDirectory
    initiation: RoomInitiation
    heartbeat_interval: float = settings.HEARTBEAT_INTERVAL_SECONDS

    def heartbeat(self, actor: Actor) -> Heartbeat:
        return Heartbeat(actor, self.session_factory, self.feed, interval=self.heartbeat_interval)

    def conversation(
        self,
        room_id: uuid.UUID,
        viewer: Actor,
        *,
        on_change: Optional[Callable[[List[MessageResponse]], None]] = None,
        on_notice: Optional[Callable[[ChatError], None]] = None,
        on_presence: Optional[Callable[[bool], None]] = None,
    ) -> ConversationOrchestrator:
        return ConversationOrchestrator(
            room_id,
            viewer,
            store=self.store,
            channel=self.channel,
            directory=self.directory,
            heartbeat=self.heartbeat(viewer),
            on_change=on_change,
            on_notice=on_notice,
            on_presence=on_presence,
        )


def build_chat_services(
    session_factory: sessionmaker,
    feed: Optional[ChangeFeed] = None,
    bind_anonymous: Optional[AnonymousBinder] = None,
    heartbeat_interval: float = settings.HEARTBEAT_INTERVAL_SECONDS,
) -> ChatServices:
    feed = feed or ChangeFeed()
    store = MessageStore(session_factory, feed)
    return ChatServices(
        session_factory=session_factory,
        feed=feed,
        store=store,
        channel=LiveUpdateChannel(feed),
        directory=RoomDirectory(session_factory, feed),
        initiation=RoomInitiation(session_factory, store, bind_anonymous=bind_anonymous, feed=feed),
        heartbeat_interval=heartbeat_interval,
    )


_services: Optional[ChatServices] = None


def get_chat_services() -> ChatServices:
    """FastAPI dependency. Built lazily so importing the app needs no Redis or DB."""
    global _services
    if _services is None:
        from app.session import create_anonymous_binding

        _services = build_chat_services(
            SessionLocal,
            feed=change_feed,
            bind_anonymous=create_anonymous_binding,
        )
    return _services
