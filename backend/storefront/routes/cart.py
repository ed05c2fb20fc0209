# Overview: Flask API routes for the cart and charge preview; parses input and returns the envelope.

from flask import Blueprint, current_app, g, request

from ..decorators import require_auth
from ..errors import ServiceError
from ..responses import envelope, from_error, ok, request_json
from ..services import cart_service, order_service


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("/")
@require_auth
def view_cart_route():
    """Cart priced against one store (?storeId=)."""
    try:
        store_id = request.args.get("storeId")
        if not store_id:
            return envelope(False, "storeId required", status=400)
        priced = cart_service.price(g.phone, store_id)
        return ok("Cart fetched successfully", priced.to_dict())
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to fetch cart")
        return envelope(False, "Internal server error", status=500)


@cart_bp.post("/add")
@require_auth
def add_item_route():
    try:
        data = request_json(request)
        cart = cart_service.add_item(g.phone, data.get("storeId"), data.get("productId"), data.get("variantId"))
        return ok("Item added to cart", cart)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return envelope(False, "Internal server error", status=500)


@cart_bp.post("/remove")
@require_auth
def remove_item_route():
    try:
        data = request_json(request)
        cart = cart_service.remove_item(g.phone, data.get("productId"), data.get("variantId"))
        return ok("Item removed from cart", cart)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return envelope(False, "Internal server error", status=500)


@cart_bp.post("/delete")
@require_auth
def delete_item_route():
    try:
        data = request_json(request)
        cart = cart_service.delete_item(g.phone, data.get("productId"), data.get("variantId"))
        return ok("Item deleted from cart", cart)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to delete cart item")
        return envelope(False, "Internal server error", status=500)


@cart_bp.post("/clear")
@require_auth
def clear_cart_route():
    try:
        if not cart_service.clear_cart(g.phone):
            return envelope(False, "Cart not found", status=404)
        return ok("Cart cleared")
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return envelope(False, "Internal server error", status=500)


@cart_bp.post("/orderCharges")
@require_auth
def order_charges_route():
    """
    Itemised charges for the current cart.

    Body: storeId, customerAddress, couponCode?, isSubscription?, weekCount?
    """
    try:
        data = request_json(request)
        is_subscription = bool(data.get("isSubscription"))
        weeks = data.get("weekCount", 1)
        if not data.get("storeId") or not data.get("customerAddress") or (is_subscription and not weeks):
            return envelope(False, "Bad request", status=400)

        charges = order_service.preview_charges(
            phone=g.phone,
            customer_id=g.user_id,
            store_id=data["storeId"],
            customer_address=data["customerAddress"],
            coupon_code=data.get("couponCode"),
            is_subscription=is_subscription,
            weeks_count=weeks,
        )
        return ok("Charges fetched successfully", charges)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to compute order charges")
        return envelope(False, "Internal server error", status=500)
