"""Tests for the change feed and the live update channel built on it."""

import uuid

import pytest

from app.chat.change_feed import DELETE, INSERT, UPDATE, ChangeFeed
from app.chat.live_channel import LiveEventKind, LiveUpdateChannel
from app.utils.timestamps import utcnow


def _row(room_id, **overrides):
    row = {
        "id": str(uuid.uuid4()),
        "room_id": str(room_id),
        "sender_id": None,
        "is_anonymous": True,
        "anonymous_name": "Carlos",
        "content": "Oi",
        "is_read": False,
        "property_id": None,
        "created_at": utcnow().isoformat(),
    }
    row.update(overrides)
    return row


# ── ChangeFeed ──────────────────────────────────────────────────────

class TestChangeFeed:

    def test_filters_by_table_and_field(self):
        feed = ChangeFeed()
        room = uuid.uuid4()
        seen = []
        feed.subscribe("chat_messages", seen.append, filters={"room_id": room})

        feed.publish("chat_messages", INSERT, _row(room))
        feed.publish("chat_messages", INSERT, _row(uuid.uuid4()))
        feed.publish("chat_rooms", INSERT, {"room_id": str(room)})

        assert len(seen) == 1
        assert seen[0].row["room_id"] == str(room)

    def test_filters_by_event(self):
        feed = ChangeFeed()
        seen = []
        feed.subscribe("chat_rooms", seen.append, events=[DELETE])

        feed.publish("chat_rooms", UPDATE, {"id": "r1"})
        feed.publish("chat_rooms", DELETE, {"id": "r1"})

        assert [c.event for c in seen] == [DELETE]

    def test_unsubscribe(self):
        feed = ChangeFeed()
        seen = []
        handle = feed.subscribe("profiles", seen.append)

        assert feed.unsubscribe(handle) is True
        assert feed.unsubscribe(handle) is False
        feed.publish("profiles", UPDATE, {"id": "p1"})

        assert seen == []
        assert feed.subscriber_count() == 0

    def test_failing_callback_is_dropped(self):
        feed = ChangeFeed()
        seen = []

        def broken(change):
            raise RuntimeError("boom")

        feed.subscribe("profiles", broken)
        feed.subscribe("profiles", seen.append)

        feed.publish("profiles", UPDATE, {"id": "p1"})
        feed.publish("profiles", UPDATE, {"id": "p1"})

        assert len(seen) == 2
        assert feed.subscriber_count("profiles") == 1


# ── Room subscriptions ──────────────────────────────────────────────

class TestRoomSubscription:

    @pytest.mark.asyncio
    async def test_insert_arrives_as_new_message(self):
        feed = ChangeFeed()
        room = uuid.uuid4()
        sub = LiveUpdateChannel(feed).subscribe_messages(room)
        row = _row(room, content="Ainda disponível?")

        feed.publish("chat_messages", INSERT, row)
        event = await sub.get()

        assert event.kind == LiveEventKind.NEW_MESSAGE
        assert str(event.message.id) == row["id"]
        assert event.message.content == "Ainda disponível?"
        sub.unsubscribe()

    @pytest.mark.asyncio
    async def test_other_rooms_are_ignored(self):
        feed = ChangeFeed()
        sub = LiveUpdateChannel(feed).subscribe_messages(uuid.uuid4())

        feed.publish("chat_messages", INSERT, _row(uuid.uuid4()))

        assert sub.pending() == 0
        sub.unsubscribe()

    @pytest.mark.asyncio
    async def test_updates_and_deletes_become_one_refresh(self):
        feed = ChangeFeed()
        room = uuid.uuid4()
        sub = LiveUpdateChannel(feed).subscribe_messages(room)

        feed.publish("chat_messages", UPDATE, {"room_id": str(room), "ids": [], "is_read": True})
        feed.publish("chat_messages", UPDATE, _row(room))
        feed.publish("chat_messages", DELETE, _row(room))

        assert sub.pending() == 1
        event = await sub.get()
        assert event.kind == LiveEventKind.REFRESH
        assert event.message is None
        sub.unsubscribe()

    @pytest.mark.asyncio
    async def test_refresh_after_message_is_kept(self):
        feed = ChangeFeed()
        room = uuid.uuid4()
        sub = LiveUpdateChannel(feed).subscribe_messages(room)

        feed.publish("chat_messages", UPDATE, _row(room))
        feed.publish("chat_messages", INSERT, _row(room))
        feed.publish("chat_messages", UPDATE, _row(room))

        kinds = [sub.get_nowait().kind for _ in range(sub.pending())]
        assert kinds == [LiveEventKind.REFRESH, LiveEventKind.NEW_MESSAGE, LiveEventKind.REFRESH]
        sub.unsubscribe()

    @pytest.mark.asyncio
    async def test_overflow_collapses_to_refresh(self):
        feed = ChangeFeed()
        room = uuid.uuid4()
        sub = LiveUpdateChannel(feed, queue_size=2).subscribe_messages(room)

        for _ in range(3):
            feed.publish("chat_messages", INSERT, _row(room))

        assert sub.pending() == 1
        assert sub.get_nowait().kind == LiveEventKind.REFRESH
        sub.unsubscribe()

    @pytest.mark.asyncio
    async def test_room_delete_is_signalled(self):
        feed = ChangeFeed()
        room = uuid.uuid4()
        sub = LiveUpdateChannel(feed).subscribe_messages(room)

        feed.publish("chat_rooms", DELETE, {"id": str(uuid.uuid4())})
        feed.publish("chat_rooms", DELETE, {"id": str(room)})

        event = await sub.get()
        assert event.kind == LiveEventKind.ROOM_DELETED
        assert sub.pending() == 0
        sub.unsubscribe()

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent_and_ends_iteration(self):
        feed = ChangeFeed()
        room = uuid.uuid4()
        sub = LiveUpdateChannel(feed).subscribe_messages(room)
        assert feed.subscriber_count() == 2

        sub.unsubscribe()
        sub.unsubscribe()

        assert sub.closed is True
        assert feed.subscriber_count() == 0
        feed.publish("chat_messages", INSERT, _row(room))
        assert [event async for event in sub] == []


# ── Profile and inbox subscriptions ─────────────────────────────────

class TestProfileAndInbox:

    def test_profile_presence_changes(self):
        feed = ChangeFeed()
        user = uuid.uuid4()
        seen = []
        unsubscribe = LiveUpdateChannel(feed).subscribe_profile(user, seen.append)
        stamp = utcnow().isoformat()

        feed.publish("profiles", UPDATE, {"id": str(user), "last_active_at": stamp})
        feed.publish("profiles", UPDATE, {"id": str(user), "last_active_at": stamp})
        feed.publish("profiles", UPDATE, {"id": str(user), "name": "Renamed"})
        feed.publish("profiles", UPDATE, {"id": str(uuid.uuid4()), "last_active_at": stamp})

        assert seen == [True]
        unsubscribe()
        unsubscribe()
        assert feed.subscriber_count() == 0

    def test_stale_heartbeat_reports_offline(self):
        feed = ChangeFeed()
        user = uuid.uuid4()
        seen = []
        LiveUpdateChannel(feed).subscribe_profile(user, seen.append)

        feed.publish("profiles", UPDATE, {"id": str(user), "last_active_at": "2020-01-01T00:00:00+00:00"})

        assert seen == [False]

    def test_inbox_sees_only_tracked_rooms(self):
        feed = ChangeFeed()
        mine, other = uuid.uuid4(), uuid.uuid4()
        seen = []
        inbox = LiveUpdateChannel(feed).subscribe_inbox(uuid.uuid4(), seen.append)
        inbox.track([mine])

        feed.publish("chat_messages", INSERT, _row(other))
        feed.publish("chat_rooms", UPDATE, {"id": str(other)})
        feed.publish("chat_messages", INSERT, _row(mine))
        feed.publish("chat_messages", DELETE, _row(mine))
        feed.publish("chat_rooms", DELETE, {"id": str(mine)})
        feed.publish("profiles", UPDATE, {"id": "p1"})

        assert [(c.table, c.event) for c in seen] == [
            ("chat_messages", INSERT),
            ("chat_messages", DELETE),
            ("chat_rooms", DELETE),
        ]
        assert inbox.rooms == set()

    def test_inbox_learns_rooms_the_user_joins(self):
        feed = ChangeFeed()
        user, room = uuid.uuid4(), uuid.uuid4()
        seen = []
        inbox = LiveUpdateChannel(feed).subscribe_inbox(user, seen.append)

        feed.publish("chat_participants", INSERT, {"room_id": str(room), "user_id": str(uuid.uuid4())})
        feed.publish("chat_participants", INSERT, {"room_id": str(room), "user_id": str(user)})
        feed.publish("chat_messages", INSERT, _row(room))

        assert [c.table for c in seen] == ["chat_participants", "chat_messages"]
        assert inbox.rooms == {str(room)}

    def test_inbox_unsubscribe_is_idempotent(self):
        feed = ChangeFeed()
        inbox = LiveUpdateChannel(feed).subscribe_inbox(uuid.uuid4(), lambda change: None)
        assert feed.subscriber_count() == 3

        inbox.unsubscribe()
        inbox.unsubscribe()

        assert feed.subscriber_count() == 0
