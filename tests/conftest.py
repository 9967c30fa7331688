"""Shared fixtures: in-memory SQLite store, a private change feed, seeded owner + listing."""

import asyncio
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.model import ChatParticipant, ChatRoom, Profile, Property
from app.chat.change_feed import ChangeFeed
from app.chat.identity import Anonymous, Authenticated
from app.service.chat_service import build_chat_services


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def bindings():
    """Anonymous tokens issued during a test: token -> (room_id, name)."""
    return {}


@pytest.fixture
def services(session_factory, feed, bindings):
    def bind(room_id, name):
        token = f"anon-{len(bindings) + 1}"
        bindings[token] = (room_id, name)
        return token

    return build_chat_services(
        session_factory,
        feed=feed,
        bind_anonymous=bind,
        heartbeat_interval=0.05,
    )


def _add(session_factory, obj):
    with session_factory() as db:
        db.add(obj)
        db.commit()
        db.refresh(obj)
    return obj


@pytest.fixture
def owner(session_factory):
    return _add(session_factory, Profile(id=uuid.uuid4(), email="owner@imoveis.test", name="Ana Owner"))


@pytest.fixture
def buyer(session_factory):
    return _add(session_factory, Profile(id=uuid.uuid4(), email="buyer@imoveis.test", name="Bruno Buyer"))


@pytest.fixture
def listing(session_factory, owner):
    return _add(
        session_factory,
        Property(id=uuid.uuid4(), owner_id=owner.id, title="Apartamento 2 quartos", city="Recife", state="PE"),
    )


@pytest.fixture
def owner_actor(owner):
    return Authenticated(user_id=owner.id)


@pytest.fixture
def buyer_actor(buyer):
    return Authenticated(user_id=buyer.id)


@pytest.fixture
def make_room(session_factory):
    """Room with explicit participant rows; each argument is a dict of ChatParticipant fields."""
    def _make(*participants):
        room = _add(session_factory, ChatRoom(id=uuid.uuid4()))
        for fields in participants:
            _add(session_factory, ChatParticipant(room_id=room.id, **fields))
        return room.id

    return _make


@pytest.fixture
def buyer_room(make_room, owner, buyer, listing):
    return make_room(
        {"user_id": owner.id, "property_id": listing.id},
        {"user_id": buyer.id, "property_id": listing.id},
    )


@pytest.fixture
def anonymous_room(make_room, owner, listing):
    return make_room(
        {"user_id": owner.id, "property_id": listing.id},
        {"is_anonymous": True, "anonymous_name": "Carlos", "property_id": listing.id},
    )


@pytest.fixture
def carlos(anonymous_room):
    return Anonymous(display_name="Carlos", room_id=anonymous_room, session_token="carlos-token")


@pytest.fixture
def wait_until():
    """Poll a predicate while letting background tasks run."""
    async def _wait(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)

    return _wait
