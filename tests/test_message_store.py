"""Tests for the message store adapter."""

import uuid
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.chat.change_feed import DELETE, INSERT, UPDATE
from app.chat.errors import ChatErrorCode
from app.chat.identity import Anonymous
from app.core.config import settings
from app.crud import chat_room_crud
from app.model import ChatMessage, ChatRoom


def _down(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def _messages(session_factory, room_id):
    with session_factory() as db:
        return db.query(ChatMessage).filter(ChatMessage.room_id == room_id).all()


# ── append ──────────────────────────────────────────────────────────

class TestAppend:

    @pytest.mark.asyncio
    async def test_authenticated_message_is_stored_unread(self, services, buyer_room, buyer_actor, listing):
        result = await services.store.append(buyer_room, "  Is this still available?  ", buyer_actor)

        assert result.success is True
        msg = result.value
        assert msg.content == "Is this still available?"
        assert msg.sender_id == buyer_actor.user_id
        assert msg.is_anonymous is False
        assert msg.is_read is False
        assert msg.property_id == listing.id

    @pytest.mark.asyncio
    async def test_advances_room_last_message_at(self, services, session_factory, buyer_room, buyer_actor):
        result = await services.store.append(buyer_room, "Oi", buyer_actor)

        with session_factory() as db:
            room = db.get(ChatRoom, buyer_room)
            assert room.last_message_at is not None
            assert room.last_message_at.replace(tzinfo=None) >= result.value.created_at.replace(tzinfo=None)

    @pytest.mark.asyncio
    async def test_publishes_insert(self, services, feed, buyer_room, buyer_actor):
        seen = []
        feed.subscribe("chat_messages", seen.append, filters={"room_id": buyer_room})

        result = await services.store.append(buyer_room, "Oi", buyer_actor)

        assert [c.event for c in seen] == [INSERT]
        assert seen[0].row["id"] == str(result.value.id)

    @pytest.mark.asyncio
    async def test_anonymous_message_uses_room_listing(self, services, anonymous_room, carlos, listing):
        result = await services.store.append(anonymous_room, "Ainda está à venda?", carlos)

        assert result.success is True
        assert result.value.is_anonymous is True
        assert result.value.sender_id is None
        assert result.value.anonymous_name == "Carlos"
        assert result.value.property_id == listing.id

    @pytest.mark.asyncio
    async def test_anonymous_without_listing_context_is_rejected(self, services, make_room, session_factory):
        room = make_room({"is_anonymous": True, "anonymous_name": "Carlos"})

        result = await services.store.append(room, "Oi", Anonymous(display_name="Carlos", room_id=room))

        assert result.success is False
        assert result.error.code == ChatErrorCode.UNAUTHENTICATED
        assert _messages(session_factory, room) == []

    @pytest.mark.asyncio
    async def test_whitespace_only_is_invalid(self, services, session_factory, buyer_room, buyer_actor):
        result = await services.store.append(buyer_room, " \n\t ", buyer_actor)

        assert result.success is False
        assert result.error.code == ChatErrorCode.INVALID_MESSAGE
        assert _messages(session_factory, buyer_room) == []

    @pytest.mark.asyncio
    async def test_missing_sender_without_listing_is_unauthenticated(self, services, make_room, session_factory):
        room = make_room({"is_anonymous": True, "anonymous_name": "Carlos"})

        result = await services.store.append(room, "Oi", None)

        assert result.error.code == ChatErrorCode.UNAUTHENTICATED
        assert _messages(session_factory, room) == []

    @pytest.mark.asyncio
    async def test_missing_sender_with_listing_writes_visitor_message(self, services, anonymous_room, listing):
        result = await services.store.append(anonymous_room, "oi", None, property_id=listing.id)

        assert result.success is True
        assert result.value.is_anonymous is True
        assert result.value.sender_id is None
        assert result.value.anonymous_name == "Visitante"
        assert result.value.property_id == listing.id

    @pytest.mark.asyncio
    async def test_missing_sender_uses_room_listing(self, services, anonymous_room, listing):
        result = await services.store.append(anonymous_room, "oi", None)

        assert result.success is True
        assert result.value.property_id == listing.id

    @pytest.mark.asyncio
    async def test_non_text_content_is_invalid(self, services, buyer_room, buyer_actor):
        result = await services.store.append(buyer_room, 5, buyer_actor)

        assert result.success is False
        assert result.error.code == ChatErrorCode.INVALID_MESSAGE

    @pytest.mark.asyncio
    async def test_over_long_content_is_rejected_not_cut(self, services, session_factory, buyer_room, buyer_actor):
        with patch.object(settings, "MAX_MESSAGE_LENGTH", 5):
            result = await services.store.append(buyer_room, "  123456  ", buyer_actor)
            at_limit = await services.store.append(buyer_room, "12345", buyer_actor)

        assert result.success is False
        assert result.error.code == ChatErrorCode.INVALID_MESSAGE
        assert at_limit.success is True
        assert [m.content for m in _messages(session_factory, buyer_room)] == ["12345"]

    @pytest.mark.asyncio
    async def test_missing_room_is_not_found(self, services, buyer_actor):
        result = await services.store.append(uuid.uuid4(), "Oi", buyer_actor)
        assert result.error.code == ChatErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_store_down_is_unavailable(self, services, buyer_room, buyer_actor):
        services.store._session_factory = MagicMock(side_effect=_down)

        result = await services.store.append(buyer_room, "Oi", buyer_actor)

        assert result.success is False
        assert result.error.code == ChatErrorCode.STORE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_room_touch_failure_keeps_message(self, services, session_factory, buyer_room, buyer_actor):
        with patch.object(chat_room_crud, "touch_last_message_at", side_effect=_down):
            result = await services.store.append(buyer_room, "Oi", buyer_actor)

        assert result.success is True
        assert len(_messages(session_factory, buyer_room)) == 1


# ── list ────────────────────────────────────────────────────────────

class TestList:

    @pytest.mark.asyncio
    async def test_oldest_first(self, services, buyer_room, buyer_actor, owner_actor):
        for actor, text in [(buyer_actor, "a"), (owner_actor, "b"), (buyer_actor, "c")]:
            await services.store.append(buyer_room, text, actor)

        result = await services.store.list(buyer_room)

        assert [m.content for m in result.value] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_empty_room(self, services, buyer_room):
        result = await services.store.list(buyer_room)
        assert result.success is True
        assert result.value == []

    @pytest.mark.asyncio
    async def test_missing_room(self, services):
        result = await services.store.list(uuid.uuid4())
        assert result.error.code == ChatErrorCode.NOT_FOUND


# ── mark_read ───────────────────────────────────────────────────────

class TestMarkRead:

    @pytest.mark.asyncio
    async def test_marks_only_other_sides_messages(self, services, buyer_room, buyer_actor, owner_actor):
        await services.store.append(buyer_room, "from buyer 1", buyer_actor)
        await services.store.append(buyer_room, "from buyer 2", buyer_actor)
        await services.store.append(buyer_room, "from owner", owner_actor)

        result = await services.store.mark_read(buyer_room, owner_actor)

        assert result.value == 2
        read = {m.content: m.is_read for m in (await services.store.list(buyer_room)).value}
        assert read == {"from buyer 1": True, "from buyer 2": True, "from owner": False}

    @pytest.mark.asyncio
    async def test_read_is_monotonic(self, services, buyer_room, buyer_actor, owner_actor):
        await services.store.append(buyer_room, "Oi", buyer_actor)

        assert (await services.store.mark_read(buyer_room, owner_actor)).value == 1
        assert (await services.store.mark_read(buyer_room, owner_actor)).value == 0
        assert (await services.store.list(buyer_room)).value[0].is_read is True

    @pytest.mark.asyncio
    async def test_publishes_one_update_per_call(self, services, feed, buyer_room, buyer_actor, owner_actor):
        await services.store.append(buyer_room, "1", buyer_actor)
        await services.store.append(buyer_room, "2", buyer_actor)
        seen = []
        feed.subscribe("chat_messages", seen.append, events=[UPDATE])

        await services.store.mark_read(buyer_room, owner_actor)
        await services.store.mark_read(buyer_room, owner_actor)

        assert len(seen) == 1
        assert len(seen[0].row["ids"]) == 2

    @pytest.mark.asyncio
    async def test_anonymous_reader_keeps_own_messages_unread(self, services, anonymous_room, carlos, owner_actor):
        await services.store.append(anonymous_room, "from Carlos", carlos)
        await services.store.append(anonymous_room, "from owner", owner_actor)

        result = await services.store.mark_read(anonymous_room, carlos)

        assert result.value == 1
        read = {m.content: m.is_read for m in (await services.store.list(anonymous_room)).value}
        assert read == {"from Carlos": False, "from owner": True}

    @pytest.mark.asyncio
    async def test_missing_reader_is_unauthenticated(self, services, buyer_room):
        result = await services.store.mark_read(buyer_room, None)
        assert result.error.code == ChatErrorCode.UNAUTHENTICATED


# ── edit / delete ───────────────────────────────────────────────────

class TestEditDelete:

    @pytest.mark.asyncio
    async def test_edit_replaces_text_and_publishes(self, services, feed, buyer_room, buyer_actor):
        sent = (await services.store.append(buyer_room, "Oi", buyer_actor)).value
        seen = []
        feed.subscribe("chat_messages", seen.append)

        result = await services.store.edit(sent.id, "Olá")

        assert result.value.content == "Olá"
        assert result.value.created_at == sent.created_at
        assert [c.event for c in seen] == [UPDATE]

    @pytest.mark.asyncio
    async def test_edit_to_blank_is_invalid(self, services, buyer_room, buyer_actor):
        sent = (await services.store.append(buyer_room, "Oi", buyer_actor)).value
        result = await services.store.edit(sent.id, "   ")
        assert result.error.code == ChatErrorCode.INVALID_MESSAGE

    @pytest.mark.asyncio
    async def test_delete_removes_and_publishes(self, services, feed, session_factory, buyer_room, buyer_actor):
        sent = (await services.store.append(buyer_room, "Oi", buyer_actor)).value
        seen = []
        feed.subscribe("chat_messages", seen.append)

        result = await services.store.delete(sent.id)

        assert result.value == sent.id
        assert [c.event for c in seen] == [DELETE]
        assert _messages(session_factory, buyer_room) == []

    @pytest.mark.asyncio
    async def test_unknown_message(self, services):
        assert (await services.store.get(uuid.uuid4())).error.code == ChatErrorCode.NOT_FOUND
        assert (await services.store.edit(uuid.uuid4(), "x")).error.code == ChatErrorCode.NOT_FOUND
        assert (await services.store.delete(uuid.uuid4())).error.code == ChatErrorCode.NOT_FOUND
