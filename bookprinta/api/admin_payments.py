# FILE: bookprinta/api/admin_payments.py
from fastapi import APIRouter, Depends

from bookprinta.api.deps import require_admin, get_payment_service, http_error
from bookprinta.core.errors import PaymentError
from bookprinta.schemas.payments import (
    AdminActionResponse,
    ApproveBankTransferRequest,
    PendingBankTransferList,
    RejectBankTransferRequest,
)
from bookprinta.services.payment_service import PaymentService

router = APIRouter(prefix="/api/admin/payments", tags=["admin-payments"])


@router.get("/bank-transfers/pending", response_model=PendingBankTransferList)
async def list_pending_bank_transfers(
    admin: dict = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    items = await service.list_pending_bank_transfers()
    return PendingBankTransferList(items=items, total=len(items))


@router.post("/{payment_id}/approve", response_model=AdminActionResponse)
async def approve_bank_transfer(
    payment_id: str,
    body: ApproveBankTransferRequest,
    admin: dict = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    try:
        return await service.approve_bank_transfer(payment_id, admin["id"], body.admin_note)
    except PaymentError as e:
        raise http_error(e)


@router.post("/{payment_id}/reject", response_model=AdminActionResponse)
async def reject_bank_transfer(
    payment_id: str,
    body: RejectBankTransferRequest,
    admin: dict = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    try:
        return await service.reject_bank_transfer(payment_id, admin["id"], body.admin_note)
    except PaymentError as e:
        raise http_error(e)
