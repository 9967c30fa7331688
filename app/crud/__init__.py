from app.crud.profile_crud import profile_crud
from app.crud.property_crud import property_crud
from app.crud.chat_room_crud import chat_room_crud
from app.crud.chat_participant_crud import chat_participant_crud
from app.crud.chat_message_crud import chat_message_crud

__all__ = [
    "profile_crud",
    "property_crud",
    "chat_room_crud",
    "chat_participant_crud",
    "chat_message_crud",
]
