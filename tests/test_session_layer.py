"""Tests for the Redis session layer (Redis client mocked)."""

import json
import uuid
from unittest.mock import MagicMock, patch

import pytest

from app.session import session_layer
from app.session.session_layer import (
    create_anonymous_binding,
    extract_token,
    get_anonymous_binding,
    get_session,
)


@pytest.fixture
def redis_client():
    client = MagicMock()
    with patch.object(session_layer, "_redis_client", client), \
         patch.object(session_layer, "_anonymous_ttl", 600):
        yield client


class TestAnonymousBindings:

    def test_create_stores_room_and_name_with_ttl(self, redis_client):
        room_id = uuid.uuid4()

        token = create_anonymous_binding(room_id, "Carlos")

        key, ttl, payload = redis_client.setex.call_args.args
        assert key == f"anon:{token}"
        assert ttl == 600
        assert json.loads(payload) == {"room_id": str(room_id), "anonymous_name": "Carlos"}

    def test_tokens_are_unique(self, redis_client):
        room_id = uuid.uuid4()
        assert create_anonymous_binding(room_id, "Carlos") != create_anonymous_binding(room_id, "Carlos")

    def test_lookup_refreshes_ttl(self, redis_client):
        redis_client.get.return_value = json.dumps({"room_id": "r1", "anonymous_name": "Carlos"})

        binding = get_anonymous_binding("tok")

        assert binding == {"room_id": "r1", "anonymous_name": "Carlos"}
        redis_client.get.assert_called_once_with("anon:tok")
        redis_client.expire.assert_called_once_with("anon:tok", 600)

    def test_unknown_token(self, redis_client):
        redis_client.get.return_value = None
        assert get_anonymous_binding("tok") is None
        redis_client.expire.assert_not_called()


class TestSessions:

    def test_get_session(self, redis_client):
        redis_client.get.return_value = json.dumps({"user_id": "u1"})
        assert get_session("abc") == {"user_id": "u1"}
        redis_client.get.assert_called_once_with("session:abc")

    def test_uninitialized_redis_raises(self):
        with patch.object(session_layer, "_redis_client", None):
            with pytest.raises(RuntimeError):
                get_session("abc")

    @pytest.mark.parametrize("header,expected", [
        ("Bearer abc", "abc"),
        ("bearer abc", "abc"),
        ("Token abc", None),
        ("Bearer", None),
        (None, None),
    ])
    def test_extract_token(self, header, expected):
        assert extract_token(header) == expected
