"""
Chat API: rooms, messages and presence (REST). WebSockets in same module.
"""
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from app.chat.errors import ChatError, ChatErrorCode, OperationResult
from app.chat.identity import Actor, Anonymous, Authenticated
from app.chat.presence import is_online
from app.core.dependencies import get_current_actor, require_authenticated, resolve_actor
from app.core.exceptions import BadRequest, Forbidden, NotAuthenticated, NotFound, ServiceUnavailable
from app.crud import profile_crud
from app.schema.chat import (
    MarkReadResponse,
    MessageCreateBody,
    MessageEditBody,
    MessageListResponse,
    MessageResponse,
    PresenceResponse,
    RoomCreateBody,
    RoomListResponse,
    RoomStartResponse,
    RoomSummary,
    UnreadCountResponse,
)
from app.service.chat_service import ChatServices, get_chat_services

router = APIRouter()
logger = logging.getLogger(__name__)


def _unwrap(result: OperationResult, resource: str = "Resource") -> Any:
    """Return the value of a successful result, or raise the matching HTTP error."""
    if result.success:
        return result.value
    error = result.error
    if error.code == ChatErrorCode.UNAUTHENTICATED:
        raise NotAuthenticated(error.message)
    if error.code in (ChatErrorCode.NOT_FOUND, ChatErrorCode.OWNER_LOOKUP_FAILED):
        raise NotFound(resource)
    if error.code == ChatErrorCode.INVALID_MESSAGE:
        raise BadRequest(error.code.value, error.message)
    raise ServiceUnavailable(error.message)


async def _require_room_access(services: ChatServices, room_id: uuid.UUID, actor: Actor) -> None:
    if not await services.directory.can_access(room_id, actor):
        raise NotFound("Room")


def _is_author(message: MessageResponse, actor: Actor) -> bool:
    if isinstance(actor, Authenticated):
        return message.sender_id == actor.user_id
    return message.is_anonymous and message.sender_id is None and message.room_id == actor.room_id


async def _load_own_message(services: ChatServices, message_id: uuid.UUID, actor: Actor) -> MessageResponse:
    message = _unwrap(await services.store.get(message_id), "Message")
    if not _is_author(message, actor):
        raise Forbidden("Only the author can change this message.")
    return message


# --- REST: Rooms ---

@router.get("/rooms", response_model=RoomListResponse)
async def list_rooms(
    actor: Actor = Depends(get_current_actor),
    services: ChatServices = Depends(get_chat_services),
):
    """Rooms visible to the caller, most recent activity first."""
    rooms = _unwrap(await services.directory.list_rooms_for_actor(actor))
    return RoomListResponse(items=rooms, total=len(rooms))


@router.get("/rooms/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    actor: Actor = Depends(get_current_actor),
    services: ChatServices = Depends(get_chat_services),
):
    """Total unread messages across the caller's rooms (badge)."""
    total = _unwrap(await services.directory.total_unread(actor))
    return UnreadCountResponse(unread_count=total)


@router.post("/rooms", response_model=RoomStartResponse, status_code=status.HTTP_201_CREATED)
async def start_conversation(
    body: RoomCreateBody,
    actor: Actor = Depends(get_current_actor),
    services: ChatServices = Depends(get_chat_services),
):
    """Start or resume the caller's conversation with a listing's owner."""
    if isinstance(actor, Anonymous) and body.anonymous_name:
        actor = Anonymous(
            display_name=body.anonymous_name,
            room_id=actor.room_id,
            session_token=actor.session_token,
        )
    outcome = _unwrap(
        await services.initiation.start_or_resume(body.property_id, body.message, actor),
        "Listing",
    )
    return RoomStartResponse(
        room_id=outcome.room_id,
        created=outcome.created,
        session_token=outcome.session_token,
    )


@router.get("/rooms/{room_id}", response_model=RoomSummary)
async def get_room(
    room_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    services: ChatServices = Depends(get_chat_services),
):
    return _unwrap(await services.directory.get_room_summary(room_id, actor), "Room")


@router.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_room(
    room_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    services: ChatServices = Depends(get_chat_services),
):
    """Delete the conversation with all its messages and participants."""
    _unwrap(await services.directory.delete_conversation(room_id, actor), "Room")


# --- REST: Messages ---

@router.get("/rooms/{room_id}/messages", response_model=MessageListResponse)
async def list_messages(
    room_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    services: ChatServices = Depends(get_chat_services),
):
    """All messages for a room, oldest first. Marks room as read for the caller."""
    await _require_room_access(services, room_id, actor)
    items: List[MessageResponse] = _unwrap(await services.store.list(room_id), "Room")
    read = await services.store.mark_read(room_id, actor)
    if not read.success:
        logger.warning("Mark read failed for room %s: %s", room_id, read.error.message)
    return MessageListResponse(items=items, total=len(items))


@router.post("/rooms/{room_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def create_message(
    room_id: uuid.UUID,
    body: MessageCreateBody,
    actor: Actor = Depends(get_current_actor),
    services: ChatServices = Depends(get_chat_services),
):
    """Send a message. Live subscribers of the room receive it as well."""
    await _require_room_access(services, room_id, actor)
    return _unwrap(await services.store.append(room_id, body.content, actor), "Room")


@router.post("/rooms/{room_id}/read", response_model=MarkReadResponse)
async def mark_room_read(
    room_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    services: ChatServices = Depends(get_chat_services),
):
    await _require_room_access(services, room_id, actor)
    updated = _unwrap(await services.store.mark_read(room_id, actor), "Room")
    return MarkReadResponse(updated=updated)


@router.patch("/messages/{message_id}", response_model=MessageResponse)
async def edit_message(
    message_id: uuid.UUID,
    body: MessageEditBody,
    actor: Actor = Depends(get_current_actor),
    services: ChatServices = Depends(get_chat_services),
):
    await _load_own_message(services, message_id, actor)
    return _unwrap(await services.store.edit(message_id, body.content), "Message")


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    services: ChatServices = Depends(get_chat_services),
):
    await _load_own_message(services, message_id, actor)
    _unwrap(await services.store.delete(message_id), "Message")


# --- REST: Presence ---

@router.post("/presence/heartbeat", status_code=status.HTTP_204_NO_CONTENT)
async def heartbeat(
    actor: Authenticated = Depends(require_authenticated),
    services: ChatServices = Depends(get_chat_services),
):
    """Refresh the caller's last_active_at once (clients call this every minute)."""
    await services.heartbeat(actor).beat()


@router.get("/presence/{user_id}", response_model=PresenceResponse)
async def get_presence(
    user_id: uuid.UUID,
    services: ChatServices = Depends(get_chat_services),
):
    with services.session_factory() as db:
        profile = profile_crud.get(db, user_id)
        if not profile:
            raise NotFound("Profile")
        last_active_at = profile.last_active_at
    return PresenceResponse(
        user_id=user_id,
        online=is_online(last_active_at),
        last_active_at=last_active_at,
    )


# --- WebSocket ---

def _frame(event: str, payload: Any) -> str:
    return json.dumps({"event": event, "payload": payload}, default=str)


def _messages_payload(messages: List[MessageResponse]) -> List[Dict[str, Any]]:
    return [m.model_dump(mode="json") for m in messages]


def _ws_actor(token: Optional[str], session: Optional[str]) -> Optional[Actor]:
    try:
        return resolve_actor(token, session)
    except HTTPException:
        return None


async def _writer(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        frame = await outbox.get()
        await websocket.send_text(frame)


async def _until_disconnect(websocket: WebSocket) -> None:
    """Read and ignore client frames until the peer goes away."""
    while True:
        await websocket.receive_text()


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None and not isinstance(error, WebSocketDisconnect):
        logger.error("Socket task %s failed: %r", task.get_name(), error)


def _spawn(coro, name: str) -> asyncio.Task:
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(_log_task_failure)
    return task


async def _stop(task: asyncio.Task) -> None:
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


@router.websocket("/ws/rooms/{room_id}")
async def conversation_socket(
    websocket: WebSocket,
    room_id: uuid.UUID,
    token: Optional[str] = None,
    session: Optional[str] = None,
    services: ChatServices = Depends(get_chat_services),
):
    """Open conversation view. Auth via ?token= (user) or ?session= (anonymous visitor).

    Server frames: messages, presence, notice, result. Client actions: send,
    edit, delete, mark_read. Closing the socket closes the conversation.
    """
    await websocket.accept()
    actor = _ws_actor(token, session)
    if actor is None or not await services.directory.can_access(room_id, actor):
        await websocket.close(code=4001)
        return

    outbox: asyncio.Queue = asyncio.Queue()

    def push(event: str, payload: Any) -> None:
        outbox.put_nowait(_frame(event, payload))

    conversation = services.conversation(
        room_id,
        actor,
        on_change=lambda messages: push("messages", _messages_payload(messages)),
        on_notice=lambda error: push("notice", error.to_dict()),
        on_presence=lambda online: push("presence", {"online": online}),
    )
    writer = _spawn(_writer(websocket, outbox), f"writer:{room_id}")

    async def reply(action: str, result: OperationResult) -> None:
        push("result", {
            "action": action,
            "success": result.success,
            "error": result.error.to_dict() if result.error else None,
        })

    opened = False
    try:
        opened = await conversation.open()
        if not opened:
            return
        while True:
            data = await websocket.receive_text()
            try:
                obj = json.loads(data)
            except json.JSONDecodeError:
                push("notice", {"code": "INVALID_JSON", "message": "Request body must be valid JSON."})
                continue
            if not isinstance(obj, dict):
                push("notice", {"code": "INVALID_JSON", "message": "Request body must be a JSON object."})
                continue
            action = obj.get("action")
            content = obj.get("content", "")
            if action in ("send", "edit") and not isinstance(content, str):
                push("notice", {"code": "INVALID_MESSAGE", "message": "content must be a string."})
                continue
            if action == "send":
                await reply(action, await conversation.send(content))
            elif action in ("edit", "delete"):
                try:
                    message_id = uuid.UUID(obj.get("message_id"))
                except (TypeError, ValueError, AttributeError):
                    push("notice", {"code": "INVALID_MESSAGE_ID", "message": "message_id must be a valid UUID."})
                    continue
                own = next((m for m in conversation.messages if m.id == message_id), None)
                if own is None or not _is_author(own, actor):
                    await reply(action, OperationResult(
                        success=False,
                        error=ChatError(ChatErrorCode.NOT_FOUND, "Message not found."),
                    ))
                elif action == "edit":
                    await reply(action, await conversation.edit(message_id, content))
                else:
                    await reply(action, await conversation.delete(message_id))
            elif action == "mark_read":
                await reply(action, await conversation.mark_read())
            else:
                push("notice", {
                    "code": "UNKNOWN_ACTION",
                    "message": "Expected action: send, edit, delete or mark_read.",
                })
    except WebSocketDisconnect:
        logger.debug("Conversation socket for room %s disconnected", room_id)
    finally:
        await conversation.close()
        await _stop(writer)
        if not opened:
            # Flush the notice explaining why, then close.
            while not outbox.empty():
                await websocket.send_text(outbox.get_nowait())
            await websocket.close(code=4004)


@router.websocket("/ws/inbox")
async def inbox_socket(
    websocket: WebSocket,
    token: Optional[str] = None,
    services: ChatServices = Depends(get_chat_services),
):
    """Pushes the caller's total unread count whenever one of their conversations changes."""
    await websocket.accept()
    actor = _ws_actor(token, None)
    if not isinstance(actor, Authenticated):
        await websocket.close(code=4001)
        return

    changed = asyncio.Event()
    inbox = services.channel.subscribe_inbox(actor.user_id, lambda change: changed.set())
    peer = _spawn(_until_disconnect(websocket), f"inbox:{actor.user_id}")
    try:
        while True:
            changed.clear()
            result = await services.directory.list_rooms_for_actor(actor)
            if result.success:
                inbox.track(room.id for room in result.value)
                unread = sum(room.unread_count for room in result.value)
                await websocket.send_text(_frame("inbox", {"unread_count": unread}))
            wake = asyncio.ensure_future(changed.wait())
            done, _ = await asyncio.wait({wake, peer}, return_when=asyncio.FIRST_COMPLETED)
            await _stop(wake)
            if peer in done:
                break
    except WebSocketDisconnect:
        logger.debug("Inbox socket for %s disconnected", actor.user_id)
    finally:
        inbox.unsubscribe()
        await _stop(peer)
