# FILE: bookprinta/api/payments.py
"""Checkout payment endpoints and provider webhook receivers."""
import json
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from bookprinta.api.deps import get_current_user, get_payment_service, http_error
from bookprinta.core.errors import PaymentError
from bookprinta.models.enums import PaymentProvider
from bookprinta.schemas.payments import (
    BankTransferRequest,
    BankTransferResponse,
    GatewaySummary,
    InitializePaymentRequest,
    InitializePaymentResponse,
    PayExtraPagesRequest,
    PayReprintRequest,
    VerifyPaymentResponse,
    WebhookAck,
)
from bookprinta.services.payment_service import PaymentService, ReceiptUpload

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.get("/gateways", response_model=List[GatewaySummary])
async def list_gateways(service: PaymentService = Depends(get_payment_service)):
    return await service.list_gateways()


@router.post("/initialize", response_model=InitializePaymentResponse)
async def initialize_payment(
    body: InitializePaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    try:
        return await service.initialize(
            provider=body.provider.value,
            email=body.email,
            amount=body.amount,
            currency=body.currency,
            order_id=body.order_id,
            callback_url=body.callback_url,
            metadata=body.metadata,
        )
    except PaymentError as e:
        raise http_error(e)


@router.post("/extra-pages", response_model=InitializePaymentResponse)
async def pay_extra_pages(
    body: PayExtraPagesRequest,
    user: dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    try:
        return await service.pay_extra_pages(
            user_id=user["id"],
            book_id=body.book_id,
            provider=body.provider.value,
            extra_pages=body.extra_pages,
            callback_url=body.callback_url,
        )
    except PaymentError as e:
        raise http_error(e)


@router.post("/reprint", response_model=InitializePaymentResponse)
async def pay_reprint(
    body: PayReprintRequest,
    user: dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    try:
        return await service.pay_reprint(
            user_id=user["id"],
            order_id=body.order_id,
            provider=body.provider.value,
            callback_url=body.callback_url,
        )
    except PaymentError as e:
        raise http_error(e)


@router.get("/verify/{reference}", response_model=VerifyPaymentResponse)
async def verify_payment(
    reference: str,
    provider: Optional[PaymentProvider] = None,
    service: PaymentService = Depends(get_payment_service),
):
    try:
        return await service.verify(reference, provider_hint=provider.value if provider else None)
    except PaymentError as e:
        raise http_error(e)


@router.post("/bank-transfer", response_model=BankTransferResponse)
async def submit_bank_transfer(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    """Accepts multipart (with an optional ``receipt`` file) or a JSON body."""
    receipt = None
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        fields = {k: v for k, v in form.items() if not isinstance(v, UploadFile)}
        upload = form.get("receipt")
        if isinstance(upload, UploadFile):
            receipt = ReceiptUpload(
                content=await upload.read(),
                filename=upload.filename or "receipt",
                content_type=upload.content_type or "",
            )
        if isinstance(fields.get("metadata"), str):
            try:
                fields["metadata"] = json.loads(fields["metadata"] or "{}")
            except ValueError:
                raise HTTPException(status_code=400, detail="metadata must be a JSON object")
        raw = fields
    else:
        try:
            raw = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")

    try:
        body = BankTransferRequest.model_validate(raw)
    except ValidationError as e:
        raise RequestValidationError(e.errors())

    try:
        return await service.submit_bank_transfer(
            payer_name=body.payer_name,
            payer_email=body.payer_email,
            payer_phone=body.payer_phone,
            amount=body.amount,
            currency=body.currency,
            metadata=body.metadata,
            receipt=receipt,
            receipt_url=body.receipt_url,
        )
    except PaymentError as e:
        raise http_error(e)


async def _receive_webhook(provider: str, request: Request, signature_header: str, service: PaymentService):
    raw_body = await request.body()
    try:
        event = service.parse_webhook(provider, raw_body, request.headers.get(signature_header))
        result = await service.handle_webhook(event)
    except PaymentError as e:
        raise http_error(e)
    return WebhookAck(received=True, message=result.get("message", "ok"))


@router.post("/webhooks/paystack", response_model=WebhookAck)
async def paystack_webhook(request: Request, service: PaymentService = Depends(get_payment_service)):
    return await _receive_webhook(PaymentProvider.PAYSTACK.value, request, "x-paystack-signature", service)


@router.post("/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(request: Request, service: PaymentService = Depends(get_payment_service)):
    return await _receive_webhook(PaymentProvider.STRIPE.value, request, "stripe-signature", service)
