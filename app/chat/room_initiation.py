"""
Room initiation: find or create the room between a visitor and a listing's owner.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.chat.change_feed import INSERT, ChangeFeed
from app.chat.errors import ChatErrorCode, OperationResult, store_unavailable
from app.chat.identity import Actor, Anonymous, Authenticated, anonymous_name_or_default
from app.chat.message_store import MessageStore
from app.crud import chat_participant_crud, chat_room_crud, property_crud

logger = logging.getLogger(__name__)

# (room_id, anonymous_name) -> opaque session token
AnonymousBinder = Callable[[uuid.UUID, str], str]


@dataclass(frozen=True)
class InitiationOutcome:
    room_id: uuid.UUID
    created: bool
    session_token: Optional[str] = None


class RoomInitiation:
    def __init__(
        self,
        session_factory: sessionmaker,
        store: MessageStore,
        bind_anonymous: Optional[AnonymousBinder] = None,
        feed: Optional[ChangeFeed] = None,
    ) -> None:
        self._session_factory = session_factory
        self._store = store
        self._bind_anonymous = bind_anonymous
        self._feed = feed

    async def start_or_resume(
        self, listing_id: uuid.UUID, initial_message: str, actor: Actor
    ) -> OperationResult:
        """Resume the visitor's room for this listing, or create it, then send the message.

        Anonymous visitors are recognized by their session binding or, failing
        that, by re-entering the same display name on the same listing.
        Creation is not transactional: a failure between the room and its
        participants leaves the partial rows in place.
        """
        if isinstance(actor, Anonymous):
            actor = Anonymous(
                display_name=anonymous_name_or_default(actor.display_name),
                room_id=actor.room_id,
                session_token=actor.session_token,
            )

        owner_id = self._resolve_owner(listing_id)
        if owner_id is None:
            return OperationResult.fail(
                ChatErrorCode.OWNER_LOOKUP_FAILED,
                "Listing not found or has no owner.",
            )

        try:
            with self._session_factory() as db:
                room_id = self._find_existing(db, listing_id, actor)
                created = room_id is None
                joined = []
                if created:
                    room_id, joined = self._create_room(db, listing_id, owner_id, actor)
        except SQLAlchemyError as e:
            logger.exception("Failed to start conversation for listing %s: %s", listing_id, e)
            return store_unavailable()

        if self._feed is not None:
            for row in joined:
                self._feed.publish("chat_participants", INSERT, row)

        if (initial_message or "").strip():
            sent = await self._store.append(room_id, initial_message, actor, property_id=listing_id)
            if not sent.success:
                return sent

        token = None
        if isinstance(actor, Anonymous):
            if actor.room_id == room_id and actor.session_token:
                token = actor.session_token
            elif self._bind_anonymous is not None:
                token = self._bind_anonymous(room_id, actor.display_name)

        logger.info("Conversation %s %s for listing %s", room_id, "created" if created else "resumed", listing_id)
        return OperationResult.ok(InitiationOutcome(room_id=room_id, created=created, session_token=token))

    def _resolve_owner(self, listing_id: uuid.UUID) -> Optional[uuid.UUID]:
        try:
            with self._session_factory() as db:
                return property_crud.get_owner_id(db, property_id=listing_id)
        except SQLAlchemyError as e:
            logger.warning("Owner lookup failed for listing %s: %s", listing_id, e)
            return None

    def _find_existing(self, db: Session, listing_id: uuid.UUID, actor: Actor) -> Optional[uuid.UUID]:
        if isinstance(actor, Authenticated):
            return chat_participant_crud.find_room_for_user(
                db, property_id=listing_id, user_id=actor.user_id
            )
        if actor.room_id is not None:
            bound = chat_participant_crud.get_room_property_id(db, room_id=actor.room_id)
            if bound == listing_id:
                return actor.room_id
        return chat_participant_crud.find_room_for_anonymous(
            db, property_id=listing_id, anonymous_name=actor.display_name
        )

    def _create_room(
        self, db: Session, listing_id: uuid.UUID, owner_id: uuid.UUID, actor: Actor
    ) -> Tuple[uuid.UUID, List[Dict[str, Any]]]:
        """Create the room and both participants. Also returns the participant rows to publish."""
        room = chat_room_crud.create_from_dict(db, obj_in={"id": uuid.uuid4()})
        owner = chat_participant_crud.create_from_dict(
            db,
            obj_in={"room_id": room.id, "user_id": owner_id, "property_id": listing_id},
        )
        anonymous = isinstance(actor, Anonymous)
        visitor = chat_participant_crud.create_from_dict(
            db,
            obj_in={
                "room_id": room.id,
                "user_id": None if anonymous else actor.user_id,
                "is_anonymous": anonymous,
                "anonymous_name": actor.display_name if anonymous else None,
                "property_id": listing_id,
            },
        )
        rows = [
            {
                "id": str(p.id),
                "room_id": str(room.id),
                "user_id": str(p.user_id) if p.user_id else None,
                "is_anonymous": bool(p.is_anonymous),
            }
            for p in (owner, visitor)
        ]
        return room.id, rows
