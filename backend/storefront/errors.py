# Overview: Service error taxonomy shared by services and routes.

from __future__ import annotations


# Reason codes carried on ServiceError.reason
OUT_OF_STOCK = "OUT_OF_STOCK"
NO_PRODUCT_IN_CART = "NO_PRODUCT_IN_CART"
COUPON_NOT_FOUND = "COUPON_NOT_FOUND"
COUPON_BELOW_MINIMUM = "COUPON_BELOW_MINIMUM"
COUPON_ALREADY_USED = "COUPON_ALREADY_USED"
COUPON_EXPIRED = "COUPON_EXPIRED"
PAYMENT_URL_FAILED = "PAYMENT_URL_FAILED"
SEQUENCE_FAILED = "SEQUENCE_FAILED"
INVALID_TRANSITION = "INVALID_TRANSITION"
WEBHOOK_UNAUTHORIZED = "WEBHOOK_UNAUTHORIZED"


class ServiceError(Exception):
    """Raised by services; routes translate it into the response envelope."""

    status_code = 400
    default_reason = "BAD_REQUEST"

    def __init__(self, message: str, reason: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason
        self.details = details or {}


class ValidationError(ServiceError):
    """400-level input problem."""
    status_code = 400
    default_reason = "VALIDATION"


class UnauthorizedError(ServiceError):
    status_code = 401
    default_reason = "UNAUTHORIZED"


class ForbiddenError(ServiceError):
    status_code = 403
    default_reason = "FORBIDDEN"


class NotFoundError(ServiceError):
    status_code = 404
    default_reason = "NOT_FOUND"


class ConflictError(ServiceError):
    """409-level business rule conflict (e.g., duplicate coupon)."""
    status_code = 409
    default_reason = "CONFLICT"


class StaleDocumentError(ConflictError):
    """Replace attempted against an outdated document version."""
    default_reason = "STALE_DOCUMENT"


class OutOfStockError(ServiceError):
    """Business rejection: reported as success:false with HTTP 200."""
    status_code = 200
    default_reason = OUT_OF_STOCK


class UpstreamError(ServiceError):
    """Payment gateway, SMS or maps provider failure."""
    status_code = 502
    default_reason = "UPSTREAM_FAILURE"


class PersistenceError(ServiceError):
    status_code = 500
    default_reason = "PERSISTENCE_FAILURE"
