from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status

from ..core.dependencies import get_coordinator, get_idempotency_key, get_ledger_service
from ..models import (
    AccountCreate,
    AccountResponse,
    HistoryResponse,
    StatsResponse,
    TransferRecord,
    TransferRequest,
)
from ..services import LedgerService, MutationRequest, RequestCoordinator


router = APIRouter(prefix="/accounts", tags=["accounts"])

@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: AccountCreate,
    service: LedgerService = Depends(get_ledger_service),
) -> AccountResponse:
    return service.create_account(payload)

@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: UUID,
    service: LedgerService = Depends(get_ledger_service),
) -> AccountResponse:
    return service.get_account(account_id)

@router.get("/{account_id}/transfers", response_model=HistoryResponse)
def get_history(
    account_id: UUID,
    limit: int = Query(default=50, ge=1, le=200),
    cursor: str | None = None,
    service: LedgerService = Depends(get_ledger_service),
) -> HistoryResponse:
    return service.get_history(account_id, limit=limit, cursor=cursor)

@router.get("/{account_id}/stats", response_model=StatsResponse)
def get_stats(
    account_id: UUID,
    service: LedgerService = Depends(get_ledger_service),
) -> StatsResponse:
    return service.get_stats(account_id)

transfer_router = APIRouter(prefix="/transfers", tags=["transfers"])

@transfer_router.post("", status_code=status.HTTP_201_CREATED)
def create_transfer(
    request: Request,
    payload: TransferRequest,
    service: LedgerService = Depends(get_ledger_service),
    coordinator: RequestCoordinator = Depends(get_coordinator),
    key: Optional[str] = Depends(get_idempotency_key),
) -> Response:
    """Submit a transfer under at-most-once semantics for its idempotency key.

    The key format is checked before the body is validated. Body validation
    failures are answered directly and never recorded against the key, so a
    corrected body may reuse it.
    """
    mutation = MutationRequest(
        path=request.url.path,
        payload=payload,
        owner_id=payload.sender_id,
        idempotency_key=key,
    )
    outcome, dedup_status = coordinator.execute(
        mutation, lambda: service.submit_transfer(payload, key)
    )
    return Response(
        content=outcome.body,
        status_code=outcome.status_code,
        media_type="application/json",
        headers={"Idempotency-Status": dedup_status.value},
    )

@transfer_router.get("/{transfer_id}", response_model=TransferRecord)
def get_transfer(
    transfer_id: UUID,
    service: LedgerService = Depends(get_ledger_service),
) -> TransferRecord:
    return service.get_transfer(transfer_id)

__all__ = ["router", "transfer_router"]
