# Overview: Flask API routes for subscriptions; renewal, rescheduling and listings.

from flask import Blueprint, current_app, g, request

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..responses import envelope, from_error, ok, request_json
from ..services import subscription_service
from ..services.session_service import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_STORE_ADMIN, ROLE_STORE_MANAGER


subscriptions_bp = Blueprint("subscriptions", __name__, url_prefix="/api/subscriptions")


@subscriptions_bp.post("/renewSubscription")
@require_auth
@require_role(ROLE_CUSTOMER)
def renew_route():
    try:
        data = request_json(request)
        if not data.get("subscriptionId"):
            return envelope(False, "Bad request", status=400)
        result = subscription_service.renew_subscription(data["subscriptionId"], data.get("weeksCount"), phone=g.phone)
        return ok("Subscription renewed successfully", result)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to renew subscription")
        return envelope(False, "Internal server error", status=500)


@subscriptions_bp.post("/rescheduleSubscription")
@require_auth
@require_role(ROLE_CUSTOMER)
def reschedule_route():
    try:
        data = request_json(request)
        if not data.get("subscriptionId") or not data.get("cancelDate"):
            return envelope(False, "Bad request", status=400)
        result = subscription_service.reschedule_subscription(
            data["subscriptionId"], data["cancelDate"], phone=g.phone,
        )
        return ok("Subscription rescheduled successfully", result)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to reschedule subscription")
        return envelope(False, "Internal server error", status=500)


@subscriptions_bp.get("/getCustomerSubscriptions")
@require_auth
@require_role(ROLE_CUSTOMER)
def customer_subscriptions_route():
    try:
        return ok("Subscriptions fetched successfully", subscription_service.list_customer_subscriptions(g.phone))
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to list subscriptions")
        return envelope(False, "Internal server error", status=500)


@subscriptions_bp.get("/getCustomerOrdersBySubscriptionId/<subscription_id>")
@require_auth
@require_role(ROLE_CUSTOMER)
def subscription_orders_route(subscription_id: str):
    try:
        orders = subscription_service.list_subscription_orders(subscription_id, g.user_id)
        return ok("Subscription Orders fetched successfully", orders)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to list subscription orders")
        return envelope(False, "Internal server error", status=500)


@subscriptions_bp.get("/getNextNDaysSubscriptions")
@require_auth
@require_role(ROLE_STORE_MANAGER, ROLE_STORE_ADMIN, ROLE_ADMIN)
def upcoming_route():
    """Query: storeId, days (default 7)."""
    try:
        store_id = request.args.get("storeId")
        if not store_id:
            return envelope(False, "storeId required", status=400)
        days = request.args.get("days", 7, type=int)
        orders = subscription_service.upcoming_subscription_orders(store_id, days)
        return ok("Subscriptions fetched successfully", orders)
    except ServiceError as e:
        return from_error(e)
    except Exception:
        current_app.logger.exception("Failed to list upcoming subscription orders")
        return envelope(False, "Internal server error", status=500)
