from bookprinta.models.user import User
from bookprinta.models.payment_gateway import PaymentGateway
from bookprinta.models.payment import Payment
from bookprinta.models.catalog import Package, Addon
from bookprinta.models.order import Order, OrderAddon
from bookprinta.models.book import Book
from bookprinta.models.notification import Notification

__all__ = [
    "User", "PaymentGateway", "Payment", "Package", "Addon",
    "Order", "OrderAddon", "Book", "Notification"
]
