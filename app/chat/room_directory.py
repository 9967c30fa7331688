"""
Room directory: which rooms an actor may see, and each room's display-ready summary.

Authenticated actors see every room they have a participant row in.
Anonymous actors have no identity to query by, so they see at most the one
room their session token is bound to. Enrichment (last message, unread count,
profiles) degrades per room: a failed lookup leaves that field empty rather
than failing the listing.
"""
import logging
import uuid
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.chat.change_feed import DELETE, ChangeFeed
from app.chat.errors import OperationResult, not_found, store_unavailable
from app.chat.identity import Actor, Anonymous, Authenticated
from app.chat.presence import is_online
from app.crud import chat_message_crud, chat_participant_crud, chat_room_crud, profile_crud
from app.model.chat_participant import ChatParticipant
from app.model.chat_room import ChatRoom
from app.schema.chat import MessageResponse, ParticipantSummary, ProfileProjection, RoomSummary

logger = logging.getLogger(__name__)


def _viewer_user_id(actor: Actor) -> Optional[uuid.UUID]:
    return actor.user_id if isinstance(actor, Authenticated) else None


def _dedupe_participants(participants: List[ChatParticipant]) -> List[ChatParticipant]:
    """Drop duplicate rows for the same side (same user, or same anonymous name)."""
    seen = set()
    unique = []
    for p in participants:
        key = ("user", p.user_id) if p.user_id else ("anon", p.anonymous_name)
        if key in seen:
            continue
        seen.add(key)
        unique.append(p)
    return unique


def _is_viewer(participant: ParticipantSummary, actor: Actor) -> bool:
    if isinstance(actor, Authenticated):
        return participant.user_id == actor.user_id
    return participant.user_id is None and participant.is_anonymous


def pick_counterpart(
    participants: List[ParticipantSummary], actor: Actor
) -> Optional[ParticipantSummary]:
    """The other side of the room; prefers the first non-anonymous match."""
    others = [p for p in participants if not _is_viewer(p, actor)]
    for p in others:
        if not p.is_anonymous and p.user_id is not None:
            return p
    return others[0] if others else None


class RoomDirectory:
    """Lists and summarizes rooms for an actor."""

    def __init__(self, session_factory: sessionmaker, feed: ChangeFeed) -> None:
        self._session_factory = session_factory
        self._feed = feed

    async def list_rooms_for_actor(self, actor: Actor) -> OperationResult:
        """Room summaries, most recent ``last_message_at`` first."""
        try:
            with self._session_factory() as db:
                rooms = self._visible_rooms(db, actor)
                summaries = [self._summarize(db, room, actor) for room in rooms]
        except SQLAlchemyError as e:
            logger.exception("Failed to list rooms: %s", e)
            return store_unavailable()
        return OperationResult.ok(summaries)

    async def get_room_summary(self, room_id: uuid.UUID, actor: Actor) -> OperationResult:
        try:
            with self._session_factory() as db:
                if not self._can_access(db, room_id, actor):
                    return not_found("Room")
                room = chat_room_crud.get_by_id(db, room_id=room_id)
                if not room:
                    return not_found("Room")
                return OperationResult.ok(self._summarize(db, room, actor))
        except SQLAlchemyError as e:
            logger.exception("Failed to load room %s: %s", room_id, e)
            return store_unavailable()

    async def can_access(self, room_id: uuid.UUID, actor: Actor) -> bool:
        try:
            with self._session_factory() as db:
                return self._can_access(db, room_id, actor)
        except SQLAlchemyError as e:
            logger.warning("Access check failed for room %s: %s", room_id, e)
            return False

    async def total_unread(self, actor: Actor) -> OperationResult:
        result = await self.list_rooms_for_actor(actor)
        if not result.success:
            return result
        return OperationResult.ok(sum(room.unread_count for room in result.value))

    async def delete_conversation(self, room_id: uuid.UUID, actor: Actor) -> OperationResult:
        """Delete the room with its participants and messages."""
        try:
            with self._session_factory() as db:
                if not self._can_access(db, room_id, actor):
                    return not_found("Room")
                room = chat_room_crud.get_by_id(db, room_id=room_id)
                if not room:
                    return not_found("Room")
                chat_room_crud.remove(db, db_obj=room)
        except SQLAlchemyError as e:
            logger.exception("Failed to delete room %s: %s", room_id, e)
            return store_unavailable()
        logger.info("Conversation %s deleted", room_id)
        self._feed.publish("chat_rooms", DELETE, {"id": str(room_id)})
        return OperationResult.ok(room_id)

    # --- internals ---

    def _can_access(self, db: Session, room_id: uuid.UUID, actor: Actor) -> bool:
        if isinstance(actor, Authenticated):
            return chat_participant_crud.get_by_room_and_user(
                db, room_id=room_id, user_id=actor.user_id
            ) is not None
        if actor.room_id != room_id:
            return False
        return chat_room_crud.get_by_id(db, room_id=room_id) is not None

    def _visible_rooms(self, db: Session, actor: Actor) -> List[ChatRoom]:
        if isinstance(actor, Authenticated):
            return chat_room_crud.list_rooms_for_user(db, user_id=actor.user_id)
        if isinstance(actor, Anonymous) and actor.room_id:
            room = chat_room_crud.get_by_id(db, room_id=actor.room_id)
            return [room] if room else []
        return []

    def _summarize(self, db: Session, room: ChatRoom, actor: Actor) -> RoomSummary:
        summary = RoomSummary(
            id=room.id,
            created_at=room.created_at,
            last_message_at=room.last_message_at,
        )
        viewer_id = _viewer_user_id(actor)

        try:
            last = chat_message_crud.get_last_in_room(db, room_id=room.id)
            if last:
                summary.last_message = MessageResponse.model_validate(last)
            summary.unread_count = chat_message_crud.count_unread(db, room_id=room.id, user_id=viewer_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Room %s: message enrichment failed: %s", room.id, e)

        try:
            participants = _dedupe_participants(
                chat_participant_crud.list_by_room(db, room_id=room.id)
            )
            profiles = profile_crud.get_many(
                db, ids=[p.user_id for p in participants if p.user_id]
            )
            summary.participants = [self._participant_summary(p, profiles) for p in participants]
            summary.property_id = next(
                (p.property_id for p in participants if p.property_id), None
            )
            summary.counterpart = pick_counterpart(summary.participants, actor)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Room %s: participant enrichment failed: %s", room.id, e)

        return summary

    @staticmethod
    def _participant_summary(p: ChatParticipant, profiles: Dict[uuid.UUID, object]) -> ParticipantSummary:
        profile = profiles.get(p.user_id) if p.user_id else None
        projection = ProfileProjection.model_validate(profile) if profile else None
        if projection:
            display_name = projection.name
        else:
            display_name = p.anonymous_name if p.is_anonymous else None
        return ParticipantSummary(
            id=p.id,
            user_id=p.user_id,
            is_anonymous=bool(p.is_anonymous),
            anonymous_name=p.anonymous_name,
            property_id=p.property_id,
            display_name=display_name,
            profile=projection,
            is_online=is_online(projection.last_active_at) if projection else False,
        )
