"""Chat route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from tenant_rag.api.dependencies import get_chat_orchestrator
from tenant_rag.chat.orchestrator import ChatOrchestrator
from tenant_rag.models.dto import ChatRequest, ChatResponse

router = APIRouter()


@router.post("/chat", response_model=ChatResponse, summary="Answer a message from the tenant's knowledge")
def chat(
    tenant_id: str,
    request: ChatRequest,
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
) -> ChatResponse:
    answer = orchestrator.chat(tenant_id, request.message)
    return ChatResponse(
        answer=answer.answer,
        origin=answer.origin,
        tokens_charged=answer.tokens_charged,
        balance=answer.balance,
        source_ids=list(answer.source_ids),
    )


__all__ = ["router"]
