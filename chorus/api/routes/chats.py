"""
Chat API Routes - conversation and turn endpoints

Endpoints:
- POST /v1/chats - create a chat
- GET /v1/chats - list chats
- GET /v1/chats/{id} - chat with messages in timestamp order
- DELETE /v1/chats/{id} - delete a chat
- POST /v1/chats/{id}/turns - run one user turn
- POST /v1/chats/{id}/cancel - cancel the active turn
- POST /v1/chats/{id}/summary - regenerate the title
- POST /v1/dsl/validate - validate DSL YAML
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from chorus.conversation.orchestrator import ConversationOrchestrator
from chorus.conversation.store import InMemoryConversationStore
from chorus.core.exceptions import ChatNotFoundError
from chorus.dsl.loader import load_dsl
from chorus.modes.base import ModeType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["chats"])

# Set by the application lifespan; tests override the dependency.
_orchestrator: ConversationOrchestrator | None = None


def set_orchestrator(orchestrator: ConversationOrchestrator | None) -> None:
    global _orchestrator
    _orchestrator = orchestrator


def get_orchestrator() -> ConversationOrchestrator:
    if _orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestrator not initialized",
        )
    return _orchestrator


def _memory_store(orchestrator: ConversationOrchestrator) -> InMemoryConversationStore:
    store = orchestrator.store
    if not isinstance(store, InMemoryConversationStore):
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="Chat management requires the in-memory store",
        )
    return store


# =============================================================================
# Request/Response Models
# =============================================================================


class CreateChatRequest(BaseModel):
    chat_id: str | None = Field(default=None, description="Explicit chat id")


class TurnRequestBody(BaseModel):
    """Body of ``POST /v1/chats/{id}/turns``.

    At most one of ``mode`` and ``dsl`` drives the turn; with neither, the
    orchestrator's default mode (isolated, or the configured DSL file) is used.
    """

    content: str = Field(..., min_length=1, description="User message")
    model_ids: list[str] = Field(default_factory=list, description="Respondent model ids")
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    mode: ModeType | None = Field(default=None, description="Fixed conversation mode")
    dsl: str | None = Field(default=None, description="DSL conversation as YAML")

    @model_validator(mode="after")
    def check_mode_or_dsl(self) -> TurnRequestBody:
        if self.mode is not None and self.dsl is not None:
            raise ValueError("Specify either mode or dsl, not both")
        return self


class TurnResponse(BaseModel):
    chat_id: str
    message_ids: list[str]
    messages: list[dict[str, Any]]


class SummaryResponse(BaseModel):
    chat_id: str
    summary: str


class CancelResponse(BaseModel):
    chat_id: str
    cancelled: int


class DSLValidateRequest(BaseModel):
    yaml: str = Field(..., description="DSL document")


class DSLValidateResponse(BaseModel):
    valid: bool
    name: str
    phases: int
    dsl: dict[str, Any]


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/chats", status_code=status.HTTP_201_CREATED)
async def create_chat(
    request: CreateChatRequest | None = None,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    store = _memory_store(orchestrator)
    try:
        chat = store.create_chat(request.chat_id if request else None)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    logger.info("Created chat %s", chat.id)
    return chat.to_dict()


@router.get("/chats")
async def list_chats(
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> list[dict[str, Any]]:
    store = _memory_store(orchestrator)
    return [
        {
            "id": chat.id,
            "summary": chat.summary,
            "is_starred": chat.is_starred,
            "last_updated": chat.last_updated,
            "message_count": len(chat.messages),
        }
        for chat in store.list_chats()
    ]


@router.get("/chats/{chat_id}")
async def get_chat(
    chat_id: str,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    chat = orchestrator.store.get_chat(chat_id)
    if chat is None:
        raise ChatNotFoundError(chat_id)
    return chat.to_dict()


@router.delete("/chats/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat(
    chat_id: str,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> None:
    store = _memory_store(orchestrator)
    orchestrator.cancel_turn(chat_id)
    if not store.delete_chat(chat_id):
        raise ChatNotFoundError(chat_id)


@router.post("/chats/{chat_id}/turns", response_model=TurnResponse)
async def send_turn(
    chat_id: str,
    body: TurnRequestBody,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> TurnResponse:
    """Run one turn and return once every respondent has settled."""
    mode = load_dsl(body.dsl) if body.dsl is not None else body.mode
    message_ids = await orchestrator.send_turn(
        chat_id,
        body.content,
        body.model_ids,
        temperature=body.temperature,
        mode=mode,
    )
    chat = orchestrator.store.get_chat(chat_id)
    if chat is None:
        raise ChatNotFoundError(chat_id)
    return TurnResponse(
        chat_id=chat_id,
        message_ids=message_ids,
        messages=[message.to_dict() for message in chat.sorted_messages()],
    )


@router.post("/chats/{chat_id}/cancel", response_model=CancelResponse)
async def cancel_turn(
    chat_id: str,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> CancelResponse:
    if orchestrator.store.get_chat(chat_id) is None:
        raise ChatNotFoundError(chat_id)
    return CancelResponse(chat_id=chat_id, cancelled=orchestrator.cancel_turn(chat_id))


@router.post("/chats/{chat_id}/summary", response_model=SummaryResponse)
async def regenerate_summary(
    chat_id: str,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> SummaryResponse:
    summary = await orchestrator.regenerate_summary(chat_id)
    return SummaryResponse(chat_id=chat_id, summary=summary)


@router.post("/dsl/validate", response_model=DSLValidateResponse)
async def validate_dsl(body: DSLValidateRequest) -> DSLValidateResponse:
    dsl = load_dsl(body.yaml)
    return DSLValidateResponse(valid=True, name=dsl.name, phases=len(dsl.phases), dsl=dsl.to_dict())
