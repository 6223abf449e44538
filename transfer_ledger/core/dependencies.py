from typing import Optional

from fastapi import Header, Request

from ..services import LedgerService, RequestCoordinator

def get_ledger_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service

def get_coordinator(request: Request) -> RequestCoordinator:
    return request.app.state.coordinator

def get_idempotency_key(
    request: Request,
    idempotency_key: Optional[str] = Header(
        default=None, convert_underscores=False, alias="Idempotency-Key"
    ),
    x_idempotency_key: Optional[str] = Header(
        default=None, convert_underscores=False, alias="X-Idempotency-Key"
    ),
) -> Optional[str]:
    # Dependencies resolve before the body is validated, so a malformed key
    # wins over a malformed body.
    key = idempotency_key or x_idempotency_key
    get_coordinator(request).check_key(key)
    return key
