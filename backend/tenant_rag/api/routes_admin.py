"""Tenant administration routes: manual Q&A and the token ledger."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from tenant_rag.api.dependencies import get_ledger, get_manual_qa
from tenant_rag.chat.manual_qa import ManualQARepository
from tenant_rag.core.errors import ValidationError
from tenant_rag.ledger.usage import UsageLedger, tokens_for_amount
from tenant_rag.models.dto import (
    BalanceResponse,
    DeleteResponse,
    QACreateRequest,
    QAResponse,
    QAUpdateRequest,
    RechargeRequest,
    UsageEventResponse,
)

router = APIRouter()


@router.get("/qa", response_model=list[QAResponse], summary="List manual Q&A entries")
def list_qa(tenant_id: str, repo: ManualQARepository = Depends(get_manual_qa)) -> list[QAResponse]:
    return [QAResponse.from_entry(entry) for entry in repo.list_entries(tenant_id)]


@router.post("/qa", response_model=QAResponse, status_code=201, summary="Add a manual Q&A entry")
def create_qa(
    tenant_id: str,
    request: QACreateRequest,
    repo: ManualQARepository = Depends(get_manual_qa),
) -> QAResponse:
    entry = repo.create(tenant_id, request.question, request.answer, request.category)
    return QAResponse.from_entry(entry)


@router.put("/qa/{entry_id}", response_model=QAResponse, summary="Edit a manual Q&A entry")
def update_qa(
    tenant_id: str,
    entry_id: str,
    request: QAUpdateRequest,
    repo: ManualQARepository = Depends(get_manual_qa),
) -> QAResponse:
    entry = repo.update(tenant_id, entry_id, request.question, request.answer, request.category)
    return QAResponse.from_entry(entry)


@router.delete("/qa/{entry_id}", response_model=DeleteResponse, summary="Delete a manual Q&A entry")
def delete_qa(tenant_id: str, entry_id: str, repo: ManualQARepository = Depends(get_manual_qa)) -> DeleteResponse:
    repo.delete(tenant_id, entry_id)
    return DeleteResponse(deleted=entry_id)


@router.get("/balance", response_model=BalanceResponse, summary="Current token balance")
def get_balance(tenant_id: str, ledger: UsageLedger = Depends(get_ledger)) -> BalanceResponse:
    return _balance_response(ledger, tenant_id)


@router.post("/recharge", response_model=BalanceResponse, summary="Credit tokens to the tenant")
def recharge(
    tenant_id: str,
    request: RechargeRequest,
    ledger: UsageLedger = Depends(get_ledger),
) -> BalanceResponse:
    if (request.tokens is None) == (request.amount is None):
        raise ValidationError("Provide exactly one of tokens or amount")
    if request.amount is not None:
        ledger.recharge(tenant_id, tokens_for_amount(request.amount), description=f"Recharge of {request.amount}")
    else:
        ledger.recharge(tenant_id, request.tokens)
    return _balance_response(ledger, tenant_id)


@router.get("/usage", response_model=list[UsageEventResponse], summary="Recent deductions and recharges")
def usage_history(
    tenant_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    ledger: UsageLedger = Depends(get_ledger),
) -> list[UsageEventResponse]:
    return [UsageEventResponse.from_event(event) for event in ledger.history(tenant_id, limit)]


def _balance_response(ledger: UsageLedger, tenant_id: str) -> BalanceResponse:
    snapshot = ledger.snapshot(tenant_id)
    return BalanceResponse(
        tenant_id=tenant_id,
        balance=snapshot.balance,
        reserved=snapshot.reserved,
        available=snapshot.available,
        estimated_chats=snapshot.estimated_chats,
        knowledge_version=snapshot.knowledge_version,
    )


__all__ = ["router"]
