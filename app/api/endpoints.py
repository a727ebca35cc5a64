"""
API endpoint implementations.
Defines the REST endpoints for users, chats, messages and image uploads, and
the WebSocket endpoint carrying real-time chat subscriptions.
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session, sessionmaker

from api.dependencies import (
    get_chat_service, get_current_user, get_db, get_gateway, get_image_storage, get_message_pipeline,
    get_session_factory
)
from api.metrics import image_upload_size_bytes, image_uploads_total, websocket_events_delivered_total
from api.schemas import (
    ChatResponse, CreateDirectChatRequest, CreateGroupChatRequest,
    ImageUploadResponse, MessageResponse, SendMessageRequest, UserResponse
)
from api.subscription_gateway import ConnectionSession, SubscriptionGateway
from core.config import settings
from core.exceptions import ChatError, NotFoundError, ValidationError
from db.models import User
from db.repository import ChatRepository, UserRepository
from services.authorization import AuthorizationGuard
from services.chat_service import ChatService
from services.image_upload import generate_image_name, is_safe_image_name, validate_image
from services.message_pipeline import MessagePipeline
from services.minio_client import MinIOClient

logger = logging.getLogger(__name__)

# Create routers
users_router = APIRouter()
chats_router = APIRouter()
messages_router = APIRouter()
uploads_router = APIRouter()
websocket_router = APIRouter()


# User Endpoints
@users_router.get("", response_model=List[UserResponse])
def list_users(
    search: Optional[str] = Query(None, description="Case-insensitive match on username or email"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List users, optionally filtered by a search string."""
    return [UserResponse.from_model(user) for user in UserRepository(db).search_users(search)]


@users_router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Get one user.

    Raises:
        NotFoundError: 404 if the user does not exist
    """
    user = UserRepository(db).get_user_by_id(user_id)
    if not user:
        raise NotFoundError("User not found")
    return UserResponse.from_model(user)


# Chat Endpoints
@chats_router.get("", response_model=List[ChatResponse])
async def list_chats(
    current_user: User = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """Chats of the caller, most recent activity first, each with its last message."""
    return await chat_service.list_chats(current_user.id)


@chats_router.post("/group", response_model=ChatResponse, status_code=status.HTTP_201_CREATED)
async def create_group_chat(
    request: CreateGroupChatRequest,
    current_user: User = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """
    Create a group chat.

    The caller is always a participant; together with participantIds there
    must be at least 3 distinct participants, all of them existing users.

    Example Request:
        ```json
        POST /v1/chats/group
        Authorization: Bearer <token>
        {
            "name": "Project Team",
            "participantIds": ["<id>", "<id>"]
        }
        ```
    """
    return await chat_service.create_group_chat(current_user.id, request.name, request.participant_ids)


@chats_router.post("/direct", response_model=ChatResponse, status_code=status.HTTP_200_OK)
async def create_direct_chat(
    request: CreateDirectChatRequest,
    current_user: User = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """Open a direct chat with another user, or return the existing one."""
    return await chat_service.create_direct_chat(current_user.id, request.participant_id)


@chats_router.get("/{chat_id}", response_model=ChatResponse)
async def get_chat(
    chat_id: str,
    current_user: User = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """
    Chat detail.

    Raises:
        NotFoundError: 404 if the chat does not exist
        ForbiddenError: 403 if the caller is not a participant
    """
    return await chat_service.get_chat(current_user.id, chat_id)


@chats_router.get("/{chat_id}/messages", response_model=List[MessageResponse])
async def get_chat_messages(
    chat_id: str,
    limit: int = Query(settings.default_page_size, ge=1, le=200, description="Maximum messages per page"),
    offset: int = Query(0, ge=0, description="Number of newest messages to skip"),
    current_user: User = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """
    Message history, oldest first.

    The page holds the newest ``limit`` messages after skipping the newest
    ``offset``; increase offset to page back in time.
    """
    return await chat_service.get_messages(current_user.id, chat_id, limit=limit, offset=offset)


# Message Endpoints
@messages_router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    request: SendMessageRequest,
    current_user: User = Depends(get_current_user),
    pipeline: MessagePipeline = Depends(get_message_pipeline)
):
    """
    Send a message to a chat.

    The message is stored first and then pushed to every live subscription
    of the chat. Delivery failures never fail the request.

    Example Request:
        ```json
        POST /v1/messages
        Authorization: Bearer <token>
        {
            "chatId": "<id>",
            "content": "Hello!"
        }
        ```

    Raises:
        ValidationError: 400 if neither content nor imageUrl, or content too long
        NotFoundError: 404 if the chat does not exist
        ForbiddenError: 403 if the caller is not a participant
    """
    return await pipeline.send_message(
        current_user.id,
        request.chat_id,
        content=request.content,
        image_url=request.image_url
    )


# Upload Endpoints
@uploads_router.post("/api/image", response_model=ImageUploadResponse)
async def upload_image(
    image: Optional[UploadFile] = File(None, description="Image file (png, jpg, jpeg, webp)"),
    current_user: User = Depends(get_current_user),
    storage: MinIOClient = Depends(get_image_storage)
):
    """
    Store an image for use as a message attachment.

    Returns:
        ImageUploadResponse with the /uploads URL to put in imageUrl

    Raises:
        ValidationError: 400 if no file, disallowed type, or over the size limit
    """
    if image is None:
        image_uploads_total.labels(status="rejected").inc()
        raise ValidationError("No file uploaded")

    data = await image.read(settings.max_file_size + 1)
    try:
        extension = validate_image(image.filename, image.content_type, len(data), settings.max_file_size)
    except ValidationError:
        image_uploads_total.labels(status="rejected").inc()
        raise

    filename = generate_image_name(extension)
    await asyncio.to_thread(storage.put_image, filename, data, image.content_type)

    image_uploads_total.labels(status="stored").inc()
    image_upload_size_bytes.observe(len(data))
    logger.info(f"User {current_user.id} uploaded image {filename} ({len(data)} bytes)")
    return ImageUploadResponse(image_url=f"/uploads/{filename}")


@uploads_router.get("/uploads/{filename}")
async def get_uploaded_image(filename: str, storage: MinIOClient = Depends(get_image_storage)):
    """Serve a stored image."""
    if not is_safe_image_name(filename):
        raise NotFoundError("Image not found")

    stored = await asyncio.to_thread(storage.get_image, filename)
    if stored is None:
        raise NotFoundError("Image not found")

    data, content_type = stored
    return Response(content=data, media_type=content_type)


# WebSocket Endpoint
def error_frame(operation_id: Optional[str], message: str, code: str) -> Dict[str, Any]:
    return {"type": "error", "id": operation_id, "payload": [{"message": message, "code": code}]}


@websocket_router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    gateway: SubscriptionGateway = Depends(get_gateway),
    session_factory: sessionmaker = Depends(get_session_factory)
):
    """
    WebSocket endpoint for real-time chat subscriptions.

    Connection Flow:
        1. Client opens ws://api/ws and sends
           {"type": "connection_init", "payload": {"authorization": "Bearer <jwt>"}}
        2. Server answers {"type": "connection_ack", "payload": {"authenticated": true, "userId": "..."}}
           A missing or invalid token still connects, as anonymous.
        3. Client subscribes: {"type": "subscribe", "id": "1", "payload": {"chatId": "..."}}
        4. Server pushes each new message: {"type": "next", "id": "1", "payload": {...}}
        5. Client stops one subscription: {"type": "complete", "id": "1"}
        6. Client sends {"type": "ping"}, server answers {"type": "pong"}

    Errors arrive as {"type": "error", "id": "<op>", "payload": [{"message": ..., "code": ...}]}
    with codes UNAUTHENTICATED, FORBIDDEN, NOT_FOUND, BAD_USER_INPUT,
    INVALID_MESSAGE and INTERNAL_SERVER_ERROR.

    Close Codes:
        - 4400: First frame was not connection_init
        - 4429: connection_init sent twice
    """
    await websocket.accept()
    ip_address = websocket.client.host if websocket.client else None
    session: Optional[ConnectionSession] = None
    pumps: Dict[str, asyncio.Task] = {}
    send_lock = asyncio.Lock()

    async def send(frame: Dict[str, Any]) -> None:
        async with send_lock:
            await websocket.send_json(frame)

    async def pump(operation_id: str, subscription) -> None:
        try:
            async for payload in subscription:
                await send({"type": "next", "id": operation_id, "payload": payload})
                websocket_events_delivered_total.inc()
            await send({"type": "complete", "id": operation_id})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Delivery on operation {operation_id} stopped: {e}")

    async def handle_subscribe(frame: Dict[str, Any]) -> None:
        operation_id = frame.get("id")
        payload = frame.get("payload")
        chat_id = payload.get("chatId") if isinstance(payload, dict) else None
        if not isinstance(operation_id, str) or not operation_id:
            await send(error_frame(None, "Subscribe requires an id", "INVALID_MESSAGE"))
            return
        if not isinstance(chat_id, str) or not chat_id:
            await send(error_frame(operation_id, "Subscribe requires payload.chatId", "INVALID_MESSAGE"))
            return

        try:
            # Membership is checked on a session scoped to this subscribe only
            with session_factory() as db:
                guard = AuthorizationGuard(ChatRepository(db))
                subscription = await gateway.subscribe(session, operation_id, chat_id, guard)
        except ChatError as e:
            await send(error_frame(operation_id, e.message, e.code))
            return
        except Exception:
            logger.exception(f"Subscribing operation {operation_id} to chat {chat_id} failed")
            await send(error_frame(operation_id, "Internal server error", ChatError.code))
            return

        pumps[operation_id] = asyncio.create_task(pump(operation_id, subscription))

    async def handle_complete(frame: Dict[str, Any]) -> None:
        operation_id = frame.get("id")
        if not isinstance(operation_id, str):
            await send(error_frame(None, "Complete requires an id", "INVALID_MESSAGE"))
            return
        task = pumps.pop(operation_id, None)
        if task is not None:
            task.cancel()
        gateway.unsubscribe(session, operation_id)
        await send({"type": "complete", "id": operation_id})

    try:
        frame = _parse_frame(await websocket.receive_text())
        if frame is None or frame.get("type") != "connection_init":
            logger.warning(f"WebSocket from {ip_address} did not initialise, closing")
            await websocket.close(code=4400, reason="Connection initialisation required")
            return

        params = frame.get("payload")
        session = await gateway.connect(params if isinstance(params, dict) else None, ip_address=ip_address)
        await send({
            "type": "connection_ack",
            "payload": {"authenticated": session.authenticated, "userId": session.identity}
        })

        # Message loop
        while True:
            frame = _parse_frame(await websocket.receive_text())
            if frame is None:
                await send(error_frame(None, "Invalid JSON frame", "INVALID_MESSAGE"))
                continue

            frame_type = frame.get("type")
            if frame_type == "subscribe":
                await handle_subscribe(frame)
            elif frame_type == "complete":
                await handle_complete(frame)
            elif frame_type == "ping":
                await send({"type": "pong"})
            elif frame_type == "pong":
                continue
            elif frame_type == "connection_init":
                await websocket.close(code=4429, reason="Too many initialisation requests")
                return
            else:
                await send(error_frame(frame.get("id"), f"Unknown message type: {frame_type}", "INVALID_MESSAGE"))

    except WebSocketDisconnect:
        logger.info(f"WebSocket {session.connection_id if session else ip_address} disconnected")
    finally:
        for task in pumps.values():
            task.cancel()
        if session is not None:
            gateway.close(session)


def _parse_frame(raw: str) -> Optional[Dict[str, Any]]:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return frame if isinstance(frame, dict) else None
