# Overview: Flask API routes for orders; creation, listing, status, returns and transactions.

from flask import Blueprint, current_app, g, request

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..responses import envelope, from_error, ok, request_json
from ..services import order_service, subscription_service
from ..services.session_service import (
    ROLE_ADMIN,
    ROLE_CUSTOMER,
    ROLE_DRIVER,
    ROLE_STORE_ADMIN,
    ROLE_STORE_MANAGER,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

STAFF_ROLES = (ROLE_STORE_MANAGER, ROLE_STORE_ADMIN, ROLE_DRIVER, ROLE_ADMIN)


@orders_bp.post("/createOrder")
@require_auth
@require_role(ROLE_CUSTOMER)
def create_order_route():
    """
    Create an order (or a subscription when isSubscription is set) from the cart.

    Body: customerAddress, storeId?, scheduledDelivery?, couponCode?,
    isSubscription?, weeksCount?
    """
    try:
        data = request_json(request)
        customer_address = data.get("customerAddress")
        if not customer_address:
            return envelope(False, "Bad request", status=400)

        store_id = data.get("storeId") or order_service.locate_store(g.user_id, customer_address)

        if data.get("isSubscription"):
            if not data.get("weeksCount") or not data.get("scheduledDelivery"):
                return envelope(False, "Bad request", status=400)
            result = subscription_service.create_subscription(
                user_id=g.user_id,
                phone=g.phone,
                store_id=store_id,
                customer_address=customer_address,
                weeks_count=data["weeksCount"],
                scheduled_delivery=data["scheduledDelivery"],
                coupon_code=data.get("couponCode") or "",
            )
            return ok("Subscription created successfully", result)

        result = order_service.create_order(
            user_id=g.user_id,
            phone=g.phone,
            store_id=store_id,
            customer_address=customer_address,
            coupon_code=data.get("couponCode") or "",
            scheduled_delivery=data.get("scheduledDelivery"),
        )
        return ok("Order created successfully", result)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return envelope(False, "Internal server error", status=500)


@orders_bp.get("/getOrders/<role>")
@require_auth
def list_orders_route(role: str):
    try:
        if role != g.role:
            return envelope(False, "You are not authorized to access this resource", status=403)
        result = order_service.list_orders_for_role(
            role, g.user_id,
            page=request.args.get("page", 1, type=int),
            items=request.args.get("itemsRequest", 10, type=int),
        )
        return ok("Orders fetched successfully", result)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return envelope(False, "Internal server error", status=500)


@orders_bp.get("/getOrder/<order_id>")
@require_auth
def get_order_route(order_id: str):
    try:
        order = order_service.get_order(order_id)
        if g.role == ROLE_CUSTOMER and order.get("customerDetails", {}).get("customerId") != g.user_id:
            return envelope(False, order_service.MSG_ORDER_NOT_FOUND, status=404)
        return ok("Order Details Fetched Successfully", order)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to fetch order")
        return envelope(False, "Internal server error", status=500)


@orders_bp.post("/status")
@require_auth
@require_role(*STAFF_ROLES)
def update_status_route():
    """Body: id, status?, driverDetails?"""
    try:
        data = request_json(request)
        if not data.get("id"):
            return envelope(False, "Bad request", status=400)
        order = order_service.update_status(data["id"], data.get("status"), data.get("driverDetails"))
        return ok("Order status updated", {"order": order})
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return envelope(False, "Internal server error", status=500)


@orders_bp.post("/return/<order_id>")
@require_auth
@require_role(ROLE_CUSTOMER)
def request_return_route(order_id: str):
    try:
        data = request_json(request)
        if not data.get("reason"):
            return envelope(False, "reason required", status=400)
        order = order_service.request_return(
            order_id,
            reason=data["reason"],
            image=data.get("image"),
            reorder=bool(data.get("reorder", False)),
            customer_id=g.user_id,
        )
        return ok("Product return request has submitted", order)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to submit return")
        return envelope(False, "Internal server error", status=500)


@orders_bp.get("/returns/<store_id>")
@require_auth
@require_role(ROLE_STORE_MANAGER, ROLE_STORE_ADMIN)
def pending_returns_route(store_id: str):
    try:
        return ok("Orders fetched successfully", order_service.list_pending_returns(store_id))
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to list pending returns")
        return envelope(False, "Internal server error", status=500)


@orders_bp.post("/approveOrder/<order_id>")
@require_auth
@require_role(ROLE_STORE_MANAGER, ROLE_STORE_ADMIN)
def resolve_return_route(order_id: str):
    """Body: isApproved, acceptCause?, storeManager?"""
    try:
        data = request_json(request)
        approved = bool(data.get("isApproved"))
        result = order_service.resolve_return(
            order_id,
            approved=approved,
            accept_cause=data.get("acceptCause"),
            store_manager=data.get("storeManager") or g.user_id,
        )
        if not approved:
            return envelope(False, order_service.MSG_RETURN_DENIED, result)
        if result["reorder"] is not None:
            return ok("Order reordered successfully", result)
        return ok("Product return has accepted", result)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to resolve return")
        return envelope(False, "Internal server error", status=500)


@orders_bp.get("/transactions")
@require_auth
@require_role(ROLE_STORE_ADMIN, ROLE_ADMIN)
def transactions_route():
    try:
        result = order_service.list_transactions(
            g.user_id,
            page=request.args.get("page", 1, type=int),
            items=request.args.get("itemsRequest", 10, type=int),
        )
        return ok("Success", result)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return envelope(False, "Internal server error", status=500)
