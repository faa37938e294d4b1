# /bookprinta/models/enums.py
import enum


class PaymentProvider(str, enum.Enum):
    PAYSTACK = "PAYSTACK"
    STRIPE = "STRIPE"
    PAYPAL = "PAYPAL"
    BANK_TRANSFER = "BANK_TRANSFER"


# Fixed order used when the provider of a reference is unknown
ONLINE_PROVIDERS = (PaymentProvider.PAYSTACK, PaymentProvider.STRIPE, PaymentProvider.PAYPAL)


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentType(str, enum.Enum):
    INITIAL = "INITIAL"
    EXTRA_PAGES = "EXTRA_PAGES"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
    CUSTOM_QUOTE = "CUSTOM_QUOTE"
    REFUND = "REFUND"
    REPRINT = "REPRINT"


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


ADMIN_ROLES = (UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value)


class OrderStatus(str, enum.Enum):
    PAID = "PAID"
    IN_PRODUCTION = "IN_PRODUCTION"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class BookStatus(str, enum.Enum):
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    AWAITING_UPLOAD = "AWAITING_UPLOAD"
    IN_PRODUCTION = "IN_PRODUCTION"
    DELIVERED = "DELIVERED"
