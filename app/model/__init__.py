from app.model.profile import Profile
from app.model.property import Property
from app.model.chat_room import ChatRoom
from app.model.chat_participant import ChatParticipant
from app.model.chat_message import ChatMessage

__all__ = ["Profile", "Property", "ChatRoom", "ChatParticipant", "ChatMessage"]
