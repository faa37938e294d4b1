# /bookprinta/schemas/checkout.py
"""Typed view over the checkout metadata bag.

Metadata travels through provider round-trips as an untyped mapping (Stripe
even forces every value to a string), so nothing here raises. Every field is
coerced in a before-validator and falls back to its default when it is
missing or malformed.
"""
import json
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

BOOK_SIZES = ("A4", "A5", "A6")
PAPER_COLORS = ("white", "cream")
LAMINATIONS = ("matt", "gloss")
LOCALES = ("en", "fr", "es")

DEFAULT_BOOK_SIZE = "A5"
DEFAULT_PAPER_COLOR = "white"
DEFAULT_LAMINATION = "gloss"
DEFAULT_LOCALE = "en"

_PLACEHOLDERS = ("null", "none", "undefined")
_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off")


def _clean_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    if not text or text.lower() in _PLACEHOLDERS:
        return None
    return text


def _clean_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def _default_of(model, info: ValidationInfo) -> Any:
    return model.model_fields[info.field_name].default


class CheckoutAddonLine(BaseModel):
    id: Optional[str] = None
    slug: Optional[str] = None
    name: Optional[str] = None
    price: Optional[Decimal] = None

    @field_validator("id", "slug", "name", mode="before")
    @classmethod
    def clean_text(cls, value):
        return _clean_text(value)

    @field_validator("price", mode="before")
    @classmethod
    def clean_price(cls, value):
        return _clean_decimal(value)


class CheckoutMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    package_id: Optional[str] = Field(default=None, alias="packageId")
    package_slug: Optional[str] = Field(default=None, alias="packageSlug")
    tier: Optional[str] = None

    has_cover: bool = Field(default=True, alias="hasCover")
    has_formatting: bool = Field(default=True, alias="hasFormatting")
    book_size: str = Field(default=DEFAULT_BOOK_SIZE, alias="bookSize")
    paper_color: str = Field(default=DEFAULT_PAPER_COLOR, alias="paperColor")
    lamination: str = DEFAULT_LAMINATION
    formatting_word_count: int = Field(default=0, alias="formattingWordCount")

    coupon_code: Optional[str] = Field(default=None, alias="couponCode")
    discount_amount: Decimal = Field(default=Decimal("0"), alias="discountAmount")
    total_price: Optional[Decimal] = Field(default=None, alias="totalPrice")

    addons: List[CheckoutAddonLine] = Field(default_factory=list)

    full_name: Optional[str] = Field(default=None, alias="fullName")
    phone: Optional[str] = None
    locale: str = DEFAULT_LOCALE

    @field_validator("package_id", "package_slug", "tier", "coupon_code", "full_name", "phone", mode="before")
    @classmethod
    def clean_text(cls, value):
        return _clean_text(value)

    @field_validator("has_cover", "has_formatting", mode="before")
    @classmethod
    def coerce_flag(cls, value, info: ValidationInfo):
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        text = (_clean_text(value) or "").lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        return _default_of(cls, info)

    @field_validator("book_size", mode="before")
    @classmethod
    def coerce_book_size(cls, value):
        text = (_clean_text(value) or "").upper()
        return text if text in BOOK_SIZES else DEFAULT_BOOK_SIZE

    @field_validator("paper_color", "lamination", "locale", mode="before")
    @classmethod
    def coerce_choice(cls, value, info: ValidationInfo):
        allowed = {"paper_color": PAPER_COLORS, "lamination": LAMINATIONS, "locale": LOCALES}[info.field_name]
        text = (_clean_text(value) or "").lower()
        return text if text in allowed else _default_of(cls, info)

    @field_validator("formatting_word_count", mode="before")
    @classmethod
    def coerce_word_count(cls, value):
        number = _clean_decimal(value)
        return max(int(number), 0) if number is not None else 0

    @field_validator("discount_amount", mode="before")
    @classmethod
    def coerce_discount(cls, value):
        number = _clean_decimal(value)
        return number if number is not None and number > 0 else Decimal("0")

    @field_validator("total_price", mode="before")
    @classmethod
    def coerce_amount(cls, value):
        return _clean_decimal(value)

    @field_validator("addons", mode="before")
    @classmethod
    def coerce_addons(cls, value):
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                return []
        if not isinstance(value, list):
            return []
        # Lines that name no catalog addon are dropped, not rejected
        return [
            dict(item) for item in value
            if isinstance(item, Mapping) and (_clean_text(item.get("id")) or _clean_text(item.get("slug")))
        ]

    @classmethod
    def parse(cls, raw: Optional[Mapping[str, Any]]) -> "CheckoutMetadata":
        if not isinstance(raw, Mapping):
            return cls()
        return cls.model_validate(dict(raw))


def stringify_metadata(metadata: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Flatten metadata to string values (Stripe only accepts strings)."""
    out: Dict[str, str] = {}
    for key, value in (metadata or {}).items():
        if value is None:
            continue
        if isinstance(value, str):
            out[str(key)] = value
        elif isinstance(value, Decimal):
            out[str(key)] = str(value)
        else:
            out[str(key)] = json.dumps(value, default=str)
    return out
