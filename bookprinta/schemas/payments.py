from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from bookprinta.models.enums import PaymentProvider


def _upper_currency(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().upper()
    return value or None


class GatewaySummary(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    provider: str
    name: str
    is_test_mode: bool
    priority: int
    bank_details: Optional[Dict[str, Any]] = None
    instructions: Optional[str] = None


class InitializePaymentRequest(BaseModel):
    provider: PaymentProvider
    email: Optional[str] = None
    amount: Decimal = Field(gt=0)
    currency: Optional[str] = None
    order_id: Optional[str] = None
    callback_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: Optional[str]) -> Optional[str]:
        return _upper_currency(value)


class PayExtraPagesRequest(BaseModel):
    book_id: str
    provider: PaymentProvider
    extra_pages: int = Field(gt=0)
    callback_url: Optional[str] = None


class PayReprintRequest(BaseModel):
    order_id: str
    provider: PaymentProvider
    callback_url: Optional[str] = None


class InitializePaymentResponse(BaseModel):
    authorization_url: str
    reference: str
    provider: str
    access_code: Optional[str] = None


class VerifyPaymentResponse(BaseModel):
    status: str
    reference: str
    amount: Optional[float] = None
    currency: Optional[str] = None
    verified: bool
    provider: Optional[str] = None
    signup_url: Optional[str] = None
    awaiting_webhook: bool = False


class BankTransferRequest(BaseModel):
    payer_name: str = Field(min_length=1, max_length=120)
    payer_email: str = Field(min_length=3, max_length=190)
    payer_phone: str = Field(min_length=5, max_length=30)
    amount: Decimal = Field(gt=0)
    currency: Optional[str] = None
    receipt_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: Optional[str]) -> Optional[str]:
        return _upper_currency(value)


class BankTransferResponse(BaseModel):
    id: str
    status: str
    message: str


class PendingBankTransfer(BaseModel):
    id: str
    amount: float
    currency: str
    status: str
    provider_ref: str
    payer_name: Optional[str] = None
    payer_email: Optional[str] = None
    payer_phone: Optional[str] = None
    receipt_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: str


class PendingBankTransferList(BaseModel):
    items: List[PendingBankTransfer]
    total: int


class ApproveBankTransferRequest(BaseModel):
    admin_note: Optional[str] = Field(default=None, max_length=1000)


class RejectBankTransferRequest(BaseModel):
    admin_note: str = Field(min_length=1, max_length=1000)


class AdminActionResponse(BaseModel):
    id: str
    status: str
    message: str


class WebhookAck(BaseModel):
    received: bool = True
    message: str = "ok"
