# Overview: Flask API routes for coupons; administration and apply-to-cart.

from flask import Blueprint, current_app, g, request

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..responses import envelope, from_error, ok, request_json
from ..services import cart_service, coupon_service
from ..services.session_service import ROLE_ADMIN, ROLE_STORE_ADMIN


coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


@coupons_bp.post("/")
@require_auth
@require_role(ROLE_ADMIN, ROLE_STORE_ADMIN)
def create_coupon_route():
    try:
        coupon = coupon_service.create_coupon(request_json(request))
        return ok("Coupon created successfully", coupon, status=201)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to create coupon")
        return envelope(False, "Internal server error", status=500)


@coupons_bp.get("/")
@require_auth
@require_role(ROLE_ADMIN, ROLE_STORE_ADMIN)
def list_coupons_route():
    try:
        return ok("Coupons fetched successfully", coupon_service.list_coupons())
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to list coupons")
        return envelope(False, "Internal server error", status=500)


@coupons_bp.delete("/<coupon_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_STORE_ADMIN)
def delete_coupon_route(coupon_id: str):
    try:
        coupon_service.delete_coupon(coupon_id)
        return ok("Coupon deleted successfully")
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to delete coupon")
        return envelope(False, "Internal server error", status=500)


@coupons_bp.post("/apply")
@require_auth
def apply_coupon_route():
    """
    Evaluate a coupon against the caller's cart for one store.

    Body: couponCode, storeId. A rejection returns 400 with the evaluator's
    message.
    """
    try:
        data = request_json(request)
        if not data.get("couponCode") or not data.get("storeId"):
            return envelope(False, "couponCode and storeId required", status=400)

        priced = cart_service.price(g.phone, data["storeId"])
        evaluation = coupon_service.evaluate(data["couponCode"], g.user_id, priced.subTotal)
        if not evaluation.success:
            return envelope(False, evaluation.message, {"reason": evaluation.reason}, status=400)
        return ok(evaluation.message, evaluation.to_dict())
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to apply coupon")
        return envelope(False, "Internal server error", status=500)
