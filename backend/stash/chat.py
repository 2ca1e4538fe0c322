"""Action-taking assistant endpoints (`POST /chat`, `GET /chat`)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from .ai.gemini_client import GeminiClient, GeminiError, GeminiRequestError
from .ai.orchestrator import ChatOrchestrator
from .auth import get_current_user_id
from .config import settings
from .errors import StoreError, TooManyActionsError
from .store import PostgresStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

MAX_MESSAGE_LENGTH = 1000
DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200


class ChatHistoryItem(BaseModel):
    role: Literal["user", "assistant"]
    message: str


class ChatRequest(BaseModel):
    message: str
    conversation_history: list[ChatHistoryItem] | None = Field(default=None, alias="conversationHistory")


class ChatReply(BaseModel):
    message: str
    role: Literal["assistant"] = "assistant"


class ChatResponse(BaseModel):
    success: bool = True
    data: ChatReply


class ChatTurnItem(BaseModel):
    id: Any
    role: Literal["user", "assistant"]
    message: str
    timestamp: datetime


class ChatHistoryResponse(BaseModel):
    success: bool = True
    data: list[ChatTurnItem] = Field(default_factory=list)


def get_gemini_client() -> GeminiClient:
    return GeminiClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        timeout_seconds=settings.gemini_timeout_seconds,
    )


@router.post("/chat", response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    user_id: UUID = Depends(get_current_user_id),
    store: PostgresStore = Depends(get_store),
    client: GeminiClient = Depends(get_gemini_client),
) -> ChatResponse:
    """
    Chat with the assistant; it may record income or move money between goals.

    Example request:
    {
      "message": "Yes, add the $600 from crypto",
      "conversationHistory": [
        {"role": "user", "message": "I earned $600 from crypto"},
        {"role": "assistant", "message": "I'll add $600 from crypto to your income. Should I proceed?"}
      ]
    }

    Example response:
    {"success": true, "data": {"message": "Done! I added $600.00 ...", "role": "assistant"}}
    """
    if not payload.message or not payload.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    if len(payload.message) > MAX_MESSAGE_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Message too long (max {MAX_MESSAGE_LENGTH} characters)",
        )

    if not settings.gemini_api_key:
        raise HTTPException(status_code=500, detail="AI assistant is not configured")

    history = [
        {"role": item.role, "message": item.message}
        for item in payload.conversation_history or []
    ]
    orchestrator = ChatOrchestrator(client, store, history_limit=settings.chat_history_limit)

    try:
        result = await orchestrator.run(user_id, payload.message.strip(), history)
    except TooManyActionsError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except GeminiRequestError as exc:
        logger.exception("Gemini request failed with status %s", exc.status_code)
        raise HTTPException(status_code=500, detail="Failed to process chat message") from exc
    except GeminiError as exc:
        logger.exception("Gemini response could not be processed")
        raise HTTPException(status_code=500, detail="Failed to process chat message") from exc
    except StoreError as exc:
        logger.exception("Store failure during chat turn")
        raise HTTPException(status_code=500, detail="Failed to process chat message") from exc

    return ChatResponse(data=ChatReply(message=result.reply))


@router.get("/chat", response_model=ChatHistoryResponse)
async def chat_history(
    limit: int = Query(default=DEFAULT_HISTORY_LIMIT, ge=1),
    user_id: UUID = Depends(get_current_user_id),
    store: PostgresStore = Depends(get_store),
) -> ChatHistoryResponse:
    """Most recent `limit` turns for the caller, oldest first. `limit` is capped at 200."""
    limit = min(limit, MAX_HISTORY_LIMIT)
    try:
        rows = await store.recent_turns(user_id, limit)
    except StoreError as exc:
        logger.exception("Failed to fetch chat history")
        raise HTTPException(status_code=500, detail="Failed to fetch chat history") from exc

    return ChatHistoryResponse(
        data=[
            ChatTurnItem(
                id=row["id"],
                role=row["role"],
                message=row["message"],
                timestamp=row["timestamp"],
            )
            for row in rows
        ]
    )
