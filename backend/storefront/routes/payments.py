# Overview: Flask API routes for payments; gateway webhook receiver and refunds.

from flask import Blueprint, current_app, g, request

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..responses import envelope, from_error, ok, request_json
from ..services import payment_service
from ..services.session_service import ROLE_CUSTOMER, ROLE_STORE_ADMIN


payments_bp = Blueprint("payments", __name__, url_prefix="/api")


@payments_bp.post("/phonepe/webhook")
def webhook_route():
    """
    Payment gateway callback. Authenticated by the Authorization header
    carrying sha256("user:pass"), not by a session token.
    """
    try:
        result = payment_service.handle_webhook(request.headers.get("Authorization"), request_json(request))
        return ok(result["message"], result["data"])
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to process payment webhook")
        return envelope(False, "Internal server error", status=500)


@payments_bp.get("/refund/<order_id>")
@require_auth
@require_role(ROLE_STORE_ADMIN)
def refund_route(order_id: str):
    try:
        details = payment_service.refund_order(order_id, g.user_id)
        return ok(payment_service.MSG_REFUND_SUCCESS, details)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to refund order")
        return envelope(False, "Internal server error", status=500)


@payments_bp.get("/refundStatus/<order_id>")
@require_auth
@require_role(ROLE_CUSTOMER)
def refund_status_route(order_id: str):
    try:
        result = payment_service.refund_status(order_id, g.user_id)
        if result["completed"]:
            return ok(payment_service.MSG_REFUND_SUCCESS, result["refundDetails"])
        return envelope(False, payment_service.MSG_REFUNDING, result["refundDetails"])
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to fetch refund status")
        return envelope(False, "Internal server error", status=500)
