"""API endpoints for the Blocks chat service."""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import HTMLResponse, StreamingResponse

from blocks import __version__
from blocks.models.conversation import (
    ChatRequest,
    ConversationCreateRequest,
    ConversationDetailResponse,
    ConversationListResponse,
    ConversationOut,
    ConversationRecord,
    ConversationResponse,
    ConversationUpdateRequest,
    DeleteResponse,
    HealthResponse,
    MessageOut,
)
from blocks.services.chat import ChatService, get_chat_service
from blocks.services.conversation_store import ConversationStore, get_conversation_store
from blocks.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

DEFAULT_USER_ID = "local"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Identity of the caller; authentication happens in front of this service."""
    return x_user_id or DEFAULT_USER_ID


UserId = Annotated[str, Depends(get_user_id)]
Store = Annotated[ConversationStore, Depends(get_conversation_store)]


def _get_owned_conversation(store: ConversationStore, conversation_id: str, user_id: str) -> ConversationRecord:
    conversation = store.get_conversation(conversation_id, user_id)
    if conversation is None:
        logger.warning(f"Conversation {conversation_id} not found for user {user_id}")
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.get("/conversations", response_model=ConversationListResponse, tags=["Conversations"])
async def list_conversations(user_id: UserId, store: Store) -> ConversationListResponse:
    """List the caller's conversations, most recently updated first."""
    conversations = store.list_conversations(user_id)
    return ConversationListResponse(conversations=[ConversationOut.model_validate(c) for c in conversations])


@router.post("/conversations", response_model=ConversationResponse, status_code=201, tags=["Conversations"])
async def create_conversation(
    request: ConversationCreateRequest,
    user_id: UserId,
    store: Store,
) -> ConversationResponse:
    conversation = store.create_conversation(user_id, request.title)
    return ConversationResponse(conversation=ConversationOut.model_validate(conversation))


@router.get("/conversations/{conversation_id}", response_model=ConversationDetailResponse, tags=["Conversations"])
async def get_conversation(conversation_id: str, user_id: UserId, store: Store) -> ConversationDetailResponse:
    """Get a conversation with its committed messages, oldest first."""
    conversation = _get_owned_conversation(store, conversation_id, user_id)
    messages = store.list_messages(conversation_id)
    return ConversationDetailResponse(
        conversation=ConversationOut.model_validate(conversation),
        messages=[MessageOut.model_validate(m) for m in messages],
    )


@router.patch("/conversations/{conversation_id}", response_model=ConversationResponse, tags=["Conversations"])
async def update_conversation(
    conversation_id: str,
    request: ConversationUpdateRequest,
    user_id: UserId,
    store: Store,
) -> ConversationResponse:
    _get_owned_conversation(store, conversation_id, user_id)
    conversation = store.update_title(conversation_id, request.title)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ConversationResponse(conversation=ConversationOut.model_validate(conversation))


@router.delete("/conversations/{conversation_id}", response_model=DeleteResponse, tags=["Conversations"])
async def delete_conversation(conversation_id: str, user_id: UserId, store: Store) -> DeleteResponse:
    """Delete a conversation together with its messages."""
    _get_owned_conversation(store, conversation_id, user_id)
    store.delete_conversation(conversation_id)
    return DeleteResponse(success=True)


@router.post("/chat/{conversation_id}", tags=["Chat"])
async def chat(
    conversation_id: str,
    request: ChatRequest,
    http_request: Request,
    user_id: UserId,
    store: Store,
    chat_service: Annotated[ChatService, Depends(get_chat_service)],
) -> StreamingResponse:
    """Send a message and stream the assistant's turn as server-sent events.

    Every frame is ``data: <json>`` followed by a blank line; the stream
    always ends with a ``{"type":"done"}`` frame.
    """
    try:
        chat_service.validate_message(request.message)
    except ValueError as e:
        logger.warning(f"Message validation error for conversation {conversation_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e

    conversation = _get_owned_conversation(store, conversation_id, user_id)
    logger.info(f"Processing message for conversation {conversation_id}: {request.message[:50]}...")

    return StreamingResponse(
        chat_service.stream_turn(conversation, request.message, http_request.is_disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/pages/{page_id}", response_class=HTMLResponse, tags=["Pages"])
async def get_page(page_id: str, user_id: UserId, store: Store) -> HTMLResponse:
    """Serve a generated page as a standalone HTML document."""
    page = store.get_page(page_id, user_id)
    if page is None:
        raise HTTPException(status_code=404, detail="Page not found")
    return HTMLResponse(content=page.html_content)


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
