"""Async HTTP client for the Blocks API."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx

from blocks.clients.chat_state import ChatStreamState
from blocks.clients.sse import SSELineBuffer, parse_event
from blocks.models.conversation import (
    ConversationDetailResponse,
    ConversationListResponse,
    ConversationOut,
    ConversationResponse,
    MessageOut,
)
from blocks.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"


class BlocksAPIClient:
    """Client for conversation management and streaming chat turns."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        user_id: str | None = None,
        timeout: float = 300.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        if user_id:
            self._client.headers["X-User-Id"] = user_id

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BlocksAPIClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def health(self) -> bool:
        try:
            response = await self._client.get("/api/health")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def list_conversations(self) -> list[ConversationOut]:
        response = await self._client.get("/api/conversations")
        response.raise_for_status()
        return ConversationListResponse.model_validate(response.json()).conversations

    async def create_conversation(self, title: str | None = None) -> ConversationOut:
        response = await self._client.post("/api/conversations", json={"title": title})
        response.raise_for_status()
        return ConversationResponse.model_validate(response.json()).conversation

    async def get_conversation(self, conversation_id: str) -> tuple[ConversationOut, list[MessageOut]]:
        response = await self._client.get(f"/api/conversations/{conversation_id}")
        response.raise_for_status()
        detail = ConversationDetailResponse.model_validate(response.json())
        return detail.conversation, detail.messages

    async def rename_conversation(self, conversation_id: str, title: str) -> ConversationOut:
        response = await self._client.patch(f"/api/conversations/{conversation_id}", json={"title": title})
        response.raise_for_status()
        return ConversationResponse.model_validate(response.json()).conversation

    async def delete_conversation(self, conversation_id: str) -> None:
        response = await self._client.delete(f"/api/conversations/{conversation_id}")
        response.raise_for_status()

    async def stream_chat(self, conversation_id: str, message: str) -> AsyncIterator[str]:
        """Send a message and yield the raw ``data:`` payloads of the response stream.

        Raises:
            httpx.HTTPStatusError: If the server rejects the message
        """
        buffer = SSELineBuffer()
        async with self._client.stream("POST", f"/api/chat/{conversation_id}", json={"message": message}) as response:
            if response.is_error:
                await response.aread()
            response.raise_for_status()

            async for data in response.aiter_bytes():
                for payload in buffer.feed(data):
                    yield payload

        for payload in buffer.flush():
            yield payload

    async def send_message(
        self,
        conversation_id: str,
        message: str,
        state: ChatStreamState,
    ) -> AsyncIterator[dict[str, Any]]:
        """Run one turn, reducing its events into ``state`` and yielding each for display.

        Payloads that are not JSON objects are skipped. Once the stream closes
        after a terminal event, the committed conversation is refetched into
        ``state.messages``. Cancelling, closing early with ``aclose()`` or an
        HTTP failure closes the response stream and resets ``state`` before
        the exception propagates. Breaking out of ``async for`` alone does not
        close the generator; wrap it in ``contextlib.aclosing`` to stop early.
        """
        state.begin()
        refetch = False

        try:
            async with aclosing(self.stream_chat(conversation_id, message)) as payloads:
                async for data in payloads:
                    event = parse_event(data)
                    if event is None:
                        logger.debug(f"Skipping non-JSON stream payload: {data[:50]}")
                        continue
                    refetch = state.apply(event) or refetch
                    yield event
        except (asyncio.CancelledError, GeneratorExit, httpx.HTTPError):
            state.abort()
            raise

        if state.is_streaming:
            logger.warning(f"Stream for conversation {conversation_id} ended without a terminal event")
            state.abort()
            refetch = True

        if refetch:
            try:
                _, messages = await self.get_conversation(conversation_id)
            except httpx.HTTPError as e:
                logger.warning(f"Could not reload conversation {conversation_id}: {e}")
                return
            state.replace_messages(messages)
