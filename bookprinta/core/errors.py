# bookprinta/core/errors.py
"""Service-level errors.

Services raise these; routers translate them into HTTP responses using
``status_code``.
"""


class PaymentError(Exception):
    status_code = 400


class BadRequestError(PaymentError):
    status_code = 400


class NotFoundError(PaymentError):
    status_code = 404


class InvalidTransition(PaymentError):
    status_code = 409


class ServiceUnavailableError(PaymentError):
    status_code = 503


class ProviderError(PaymentError):
    """A payment provider call failed (network, auth or unexpected payload)."""

    status_code = 502


class ReferenceNotRecognized(ProviderError):
    """The provider answered, but it does not know the reference."""

    status_code = 404
