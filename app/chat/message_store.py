"""
Message store adapter: append, list, mark-read, edit and delete for one room.

Every operation opens its own session, converts store failures into an
``OperationResult`` and publishes the committed change on the change feed.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.chat.change_feed import DELETE, INSERT, UPDATE, ChangeFeed
from app.chat.errors import (
    ChatErrorCode,
    OperationResult,
    not_found,
    store_unavailable,
    unauthenticated,
)
from app.chat.identity import Actor, Anonymous, Authenticated, anonymous_name_or_default
from app.core.config import settings
from app.crud import chat_message_crud, chat_participant_crud, chat_room_crud
from app.model.chat_message import ChatMessage
from app.schema.chat import MessageResponse
from app.utils.timestamps import as_utc

logger = logging.getLogger(__name__)


def message_to_payload(msg: ChatMessage) -> Dict[str, Any]:
    """Serialize message for change-feed subscribers and WebSocket frames."""
    return {
        "id": str(msg.id),
        "room_id": str(msg.room_id),
        "sender_id": str(msg.sender_id) if msg.sender_id else None,
        "is_anonymous": bool(msg.is_anonymous),
        "anonymous_name": msg.anonymous_name,
        "content": msg.content,
        "is_read": bool(msg.is_read),
        "property_id": str(msg.property_id) if msg.property_id else None,
        "created_at": as_utc(msg.created_at).isoformat() if msg.created_at else None,
    }


def _clean_text(text: Any) -> Union[str, OperationResult]:
    """Stripped content, or an ``INVALID_MESSAGE`` failure."""
    if not isinstance(text, str) or not text.strip():
        return OperationResult.fail(
            ChatErrorCode.INVALID_MESSAGE,
            "Message content cannot be empty or whitespace only.",
        )
    text = text.strip()
    if len(text) > settings.MAX_MESSAGE_LENGTH:
        return OperationResult.fail(
            ChatErrorCode.INVALID_MESSAGE,
            f"Message content is limited to {settings.MAX_MESSAGE_LENGTH} characters.",
        )
    return text


class MessageStore:
    """Reads and writes ``chat_messages`` rows for rooms."""

    def __init__(self, session_factory: sessionmaker, feed: ChangeFeed) -> None:
        self._session_factory = session_factory
        self._feed = feed

    async def append(
        self,
        room_id: uuid.UUID,
        text: str,
        sender: Optional[Actor],
        property_id: Optional[uuid.UUID] = None,
    ) -> OperationResult:
        """Insert a message, then advance the room's ``last_message_at``.

        The two steps commit separately. If the room touch fails the message
        is kept and only directory ordering goes stale.
        """
        content = _clean_text(text)
        if isinstance(content, OperationResult):
            return content
        if sender is None:
            # No identity: only a default-named visitor inside a listing context.
            sender = Anonymous()

        try:
            with self._session_factory() as db:
                if not chat_room_crud.get_by_id(db, room_id=room_id):
                    return not_found("Room")
                if property_id is None:
                    property_id = chat_participant_crud.get_room_property_id(db, room_id=room_id)
                if isinstance(sender, Anonymous) and property_id is None:
                    return unauthenticated()

                anonymous = isinstance(sender, Anonymous)
                msg = chat_message_crud.create_from_dict(
                    db,
                    obj_in={
                        "room_id": room_id,
                        "sender_id": None if anonymous else sender.user_id,
                        "is_anonymous": anonymous,
                        "anonymous_name": anonymous_name_or_default(sender.display_name) if anonymous else None,
                        "content": content,
                        "is_read": False,
                        "property_id": property_id,
                    },
                )
                payload = message_to_payload(msg)
        except SQLAlchemyError as e:
            logger.exception("Failed to save chat message: %s", e)
            return store_unavailable()

        self._feed.publish("chat_messages", INSERT, payload)
        self._touch_room(room_id)
        return OperationResult.ok(MessageResponse.model_validate(payload))

    def _touch_room(self, room_id: uuid.UUID) -> None:
        try:
            with self._session_factory() as db:
                room = chat_room_crud.touch_last_message_at(db, room_id=room_id)
                if room is None:
                    return
                row = {
                    "id": str(room.id),
                    "last_message_at": as_utc(room.last_message_at).isoformat(),
                }
        except SQLAlchemyError as e:
            logger.warning("Failed to advance last_message_at for room %s: %s", room_id, e)
            return
        self._feed.publish("chat_rooms", UPDATE, row)

    async def list(self, room_id: uuid.UUID) -> OperationResult:
        """All messages, oldest first. ``value`` is a list of ``MessageResponse``."""
        try:
            with self._session_factory() as db:
                if not chat_room_crud.get_by_id(db, room_id=room_id):
                    return not_found("Room")
                items = chat_message_crud.list_by_room(db, room_id=room_id)
                messages: List[MessageResponse] = [MessageResponse.model_validate(m) for m in items]
        except SQLAlchemyError as e:
            logger.exception("Failed to list messages for room %s: %s", room_id, e)
            return store_unavailable()
        return OperationResult.ok(messages)

    async def mark_read(self, room_id: uuid.UUID, reader: Optional[Actor]) -> OperationResult:
        """Mark everything the reader did not write as read. ``value`` is the number changed.

        Anonymous readers only mark messages from authenticated senders, which
        keeps their own messages unread for the listing owner.
        """
        if reader is None:
            return unauthenticated()
        user_id = reader.user_id if isinstance(reader, Authenticated) else None
        try:
            with self._session_factory() as db:
                ids = chat_message_crud.mark_read(db, room_id=room_id, user_id=user_id)
        except SQLAlchemyError as e:
            logger.exception("Failed to mark messages read in room %s: %s", room_id, e)
            return store_unavailable()
        if ids:
            self._feed.publish(
                "chat_messages",
                UPDATE,
                {"room_id": str(room_id), "ids": [str(i) for i in ids], "is_read": True},
            )
        return OperationResult.ok(len(ids))

    async def get(self, message_id: uuid.UUID) -> OperationResult:
        try:
            with self._session_factory() as db:
                msg = chat_message_crud.get_by_id(db, message_id=message_id)
                if not msg:
                    return not_found("Message")
                return OperationResult.ok(MessageResponse.model_validate(msg))
        except SQLAlchemyError as e:
            logger.exception("Failed to load message %s: %s", message_id, e)
            return store_unavailable()

    async def edit(self, message_id: uuid.UUID, new_text: str) -> OperationResult:
        """Replace the text. Caller is trusted to have checked authorship."""
        content = _clean_text(new_text)
        if isinstance(content, OperationResult):
            return content
        try:
            with self._session_factory() as db:
                msg = chat_message_crud.get_by_id(db, message_id=message_id)
                if not msg:
                    return not_found("Message")
                msg = chat_message_crud.update(db, db_obj=msg, obj_in={"content": content})
                payload = message_to_payload(msg)
        except SQLAlchemyError as e:
            logger.exception("Failed to edit message %s: %s", message_id, e)
            return store_unavailable()
        self._feed.publish("chat_messages", UPDATE, payload)
        return OperationResult.ok(MessageResponse.model_validate(payload))

    async def delete(self, message_id: uuid.UUID) -> OperationResult:
        try:
            with self._session_factory() as db:
                msg = chat_message_crud.get_by_id(db, message_id=message_id)
                if not msg:
                    return not_found("Message")
                payload = message_to_payload(msg)
                chat_message_crud.remove(db, db_obj=msg)
        except SQLAlchemyError as e:
            logger.exception("Failed to delete message %s: %s", message_id, e)
            return store_unavailable()
        self._feed.publish("chat_messages", DELETE, payload)
        return OperationResult.ok(uuid.UUID(payload["id"]))
