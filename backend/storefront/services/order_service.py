# Overview: Service-layer operations for orders; assembly, charges, status lifecycle and returns.

"""
Order Assembler

WHY: An order is a priced snapshot (customer, products, store, prices) taken
at creation time. Later catalog or inventory changes never rewrite it; only
status, driverDetails, PaymentDetails, returnCause and refundDetails move.

DESIGN:
- create_order() runs its steps in a fixed order: price, allocate id,
  evaluate coupon, total, build, payment URL, persist, commit coupon usage.
  Anything that fails before persist leaves no order behind.
- Stock is not reserved here. It is decremented only when the payment
  webhook reports COMPLETED.
- materialize_order() is the persistence path for orders that are already
  paid for (subscription dates, approved re-orders).
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import (
    ConflictError,
    NotFoundError,
    OutOfStockError,
    UpstreamError,
    ValidationError,
    INVALID_TRANSITION,
    NO_PRODUCT_IN_CART,
    PAYMENT_URL_FAILED,
)
from ..validation import iso_datetime, positive_int
from storefront.time_utils import utcnow, parse_iso_datetime, to_utc_z
from . import cart_service, coupon_service, maps_service
from . import document_store as store
from .concurrency import run_with_retry
from .payment_gateway import get_payment_gateway, to_minor_units
from .sequence_service import next_order_id


# Order types
ORDER_QUICK = "Quick"
ORDER_SCHEDULED = "Scheduled"
ORDER_SUBSCRIPTION = "Subscription"

TYPE_PREFIX = {
    ORDER_QUICK: "Q",
    ORDER_SCHEDULED: "S",
    ORDER_SUBSCRIPTION: "R",
}

# Statuses
STATUS_NEW = "New"
STATUS_ACCEPTED = "Accepted"
STATUS_PACKED = "Order Packed"
STATUS_DRIVER_ASSIGNED = "Driver Assigned"
STATUS_DRIVER_ACCEPTED = "Driver Accepted"
STATUS_PICKED_UP = "Order Picked Up"
STATUS_OUT_FOR_DELIVERY = "Out for Delivery"
STATUS_DELIVERED = "Delivered"
STATUS_CANCELLED = "Cancelled"
STATUS_REJECTED = "Rejected"

ACTIVE_CHAIN = (
    STATUS_NEW,
    STATUS_ACCEPTED,
    STATUS_PACKED,
    STATUS_DRIVER_ASSIGNED,
    STATUS_DRIVER_ACCEPTED,
    STATUS_PICKED_UP,
    STATUS_OUT_FOR_DELIVERY,
    STATUS_DELIVERED,
)
TERMINAL_STATUSES = frozenset({STATUS_DELIVERED, STATUS_CANCELLED, STATUS_REJECTED})

PAYMENT_PENDING = "Pending"
PAYMENT_COMPLETED = "COMPLETED"

# Roles used for listing scopes
ROLE_CUSTOMER = "Customers"
ROLE_STORE_MANAGER = "StoreManager"
ROLE_STORE_ADMIN = "StoreAdmins"
ROLE_DRIVER = "Driver"
ROLE_ADMIN = "Admin"

ROLE_SCOPE = {
    ROLE_CUSTOMER: "customerDetails.customerId",
    ROLE_STORE_MANAGER: "storeDetails.id",
    ROLE_DRIVER: "driverDetails.driverId",
    ROLE_STORE_ADMIN: "storeAdminId",
}

# Charge line items
CHARGE_SUBTOTAL = "subTotal"
CHARGE_COUPON = "couponDiscount"
CHARGE_DELIVERY = "deliveryCharges"
CHARGE_PACKAGING = "packagingCharges"
CHARGE_PLATFORM = "platformCharges"

MSG_OUT_OF_STOCK = "Some products are out of stock. Please check your cart."
MSG_NO_PRODUCT_IN_CART = "No products found in cart. Please add."
MSG_URL_FAILED = "Failed to create payment URL"
MSG_ORDER_NOT_FOUND = "Order not found"
MSG_ORDERS_NOT_FOUND = "Orders not found"
MSG_SCHEDULE_PAST = "Schedule Delivery Should be in Future"
MSG_STORE_NOT_FOUND = "Store not found"
MSG_RETURN_DENIED = "Unable to accept the product return"
MSG_NO_STORE_NEARBY = "No store delivers to this address"


# =============================================================================
# SNAPSHOTS AND CHARGES
# =============================================================================

def get_store(store_id: str) -> dict:
    store_doc = store.read_by_id(store.STORE_DETAILS, store_id)
    if store_doc is None:
        raise NotFoundError(MSG_STORE_NOT_FOUND)
    return store_doc


def store_snapshot(store_doc: dict) -> dict:
    return {
        "id": store_doc["id"],
        "storeName": store_doc.get("storeName"),
        "phone": store_doc.get("phone"),
        "address": store_doc.get("address"),
    }


def resolve_customer_address(customer: dict | None, customer_address):
    """A saved address id of the customer, an address object, or free text."""
    if isinstance(customer_address, dict):
        return customer_address
    for address in (customer or {}).get("addresses") or []:
        if address.get("id") == customer_address:
            return address
    return {"formattedAddress": customer_address}


def locate_store(customer_id: str, customer_address) -> str:
    """Nearest store whose delivery range covers the customer's address."""
    customer = store.read_by_id(store.CUSTOMERS, customer_id)
    address = resolve_customer_address(customer, customer_address)
    nearest = maps_service.find_nearest_store(address, store.query(store.STORE_DETAILS))
    if nearest is None:
        raise NotFoundError(MSG_NO_STORE_NEARBY)
    return nearest["id"]


def customer_snapshot(customer_id: str, phone: str, customer: dict | None, address) -> dict:
    return {
        "customerId": customer_id,
        "address": address,
        "Name": (customer or {}).get("name"),
        "phone": phone,
    }


def delivery_charges_for(store_doc: dict, customer_address) -> float:
    """
    Store delivery fee when the customer is outside deliveryRange (km).

    The flat fee applies when the distance cannot be determined.
    """
    flat = float(store_doc.get("deliveryCharges") or 0)
    try:
        distance = maps_service.distance_between(customer_address, store_doc.get("address"))
    except UpstreamError:
        current_app.logger.warning("Distance lookup failed for store %s; charging flat fee", store_doc.get("id"))
        distance = None

    if distance is None:
        return flat
    return flat if distance > float(store_doc.get("deliveryRange") or 0) else 0.0


def compute_charges(store_doc: dict, customer_address, *, is_subscription: bool = False) -> dict:
    return {
        CHARGE_DELIVERY: delivery_charges_for(store_doc, customer_address),
        CHARGE_PACKAGING: 0.0 if is_subscription else float(store_doc.get("packagingCharges") or 0),
        CHARGE_PLATFORM: 0.0 if is_subscription else float(store_doc.get("platformCharges") or 0),
    }


def order_total(sub_total: float, charges: dict, discount: float) -> float:
    total = sub_total + charges[CHARGE_DELIVERY] + charges[CHARGE_PACKAGING] + charges[CHARGE_PLATFORM] - discount
    return round(max(total, 0.0), 2)


def preview_charges(
    *,
    phone: str,
    customer_id: str,
    store_id: str,
    customer_address,
    coupon_code: str | None = None,
    is_subscription: bool = False,
    weeks_count: int = 1,
) -> list[dict]:
    """
    Itemised charges for the current cart, without side effects.

    A rejected coupon yields a zero discount here rather than an error.
    """
    weeks = positive_int(weeks_count, "weekCount") if is_subscription else 1
    priced = cart_service.price(phone, store_id)
    if priced.is_empty:
        raise NotFoundError(MSG_NO_PRODUCT_IN_CART, reason=NO_PRODUCT_IN_CART)

    evaluation = coupon_service.NO_COUPON
    if coupon_code:
        evaluation = coupon_service.evaluate(coupon_code, customer_id, priced.subTotal)
        if not evaluation.success:
            evaluation = coupon_service.NO_COUPON

    store_doc = get_store(store_id)
    charges = compute_charges(store_doc, customer_address, is_subscription=is_subscription)
    base = priced.subTotal * weeks

    return [
        {"item": CHARGE_SUBTOTAL, "value": round(base, 2)},
        {"item": CHARGE_COUPON, "value": -evaluation.discount if evaluation.discount else 0},
        {"item": CHARGE_DELIVERY, "value": charges[CHARGE_DELIVERY]},
        {"item": CHARGE_PACKAGING, "value": charges[CHARGE_PACKAGING]},
        {"item": CHARGE_PLATFORM, "value": charges[CHARGE_PLATFORM]},
    ]


# =============================================================================
# ASSEMBLY
# =============================================================================

def _invalidate_counts() -> None:
    cache = current_app.extensions.get("count_cache")
    if cache is not None:
        cache.invalidate()


def _build_order(
    *,
    order_id: str,
    order_type: str,
    customer_details: dict,
    product_details: list[dict],
    store_details: dict,
    store_admin_id: str,
    price_details: dict,
    scheduled_delivery: str | None,
    subscription_id: str,
    coupon_code: str,
    payment_status: str,
    payment_details: list | dict,
    now: datetime,
) -> dict:
    return {
        "id": order_id,
        "customerDetails": customer_details,
        "productDetails": product_details,
        "storeDetails": store_details,
        "subscriptionId": subscription_id,
        "scheduledDelivery": scheduled_delivery,
        "status": STATUS_NEW,
        "priceDetails": price_details,
        "couponCode": coupon_code,
        "orderType": order_type,
        "createdOn": to_utc_z(now),
        "PaymentDetails": {
            "paymentStatus": payment_status,
            "paymentDetails": payment_details,
        },
        "storeAdminId": store_admin_id or "",
    }


def create_order(
    *,
    user_id: str,
    phone: str,
    store_id: str,
    customer_address,
    coupon_code: str = "",
    scheduled_delivery: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Create a pending order from the customer's cart and request its payment URL.

    Returns {"orderId", "paymentUrl"}. Raises OutOfStockError when the cart is
    empty or any line cannot be sold, ValidationError on a rejected coupon or
    a past schedule, UpstreamError when the gateway cannot issue a URL.
    """
    now = now or utcnow()
    order_type = ORDER_QUICK
    scheduled_at = None
    if scheduled_delivery:
        scheduled_at = iso_datetime(scheduled_delivery, "scheduledDelivery")
        if scheduled_at < now:
            raise ValidationError(MSG_SCHEDULE_PAST)
        order_type = ORDER_SCHEDULED

    store_doc = get_store(store_id)
    customer = store.read_by_id(store.CUSTOMERS, user_id)
    address = resolve_customer_address(customer, customer_address)

    priced = cart_service.price(phone, store_id)
    if priced.is_empty or priced.has_unsellable_lines:
        raise OutOfStockError(MSG_OUT_OF_STOCK)

    order_id = next_order_id(TYPE_PREFIX[order_type], now.date())

    evaluation = coupon_service.NO_COUPON
    if coupon_code:
        evaluation = coupon_service.evaluate(coupon_code, user_id, priced.subTotal, now=now)
        if not evaluation.success:
            raise ValidationError(evaluation.message, reason=evaluation.reason)

    charges = compute_charges(store_doc, address)
    total = order_total(priced.subTotal, charges, evaluation.discount)

    order = _build_order(
        order_id=order_id,
        order_type=order_type,
        customer_details=customer_snapshot(user_id, phone, customer, address),
        product_details=priced.products,
        store_details=store_snapshot(store_doc),
        store_admin_id=store_doc.get("storeAdminId"),
        price_details={
            "subTotal": priced.subTotal,
            **charges,
            "discountPrice": evaluation.discount,
            "totalPrice": total,
        },
        scheduled_delivery=to_utc_z(scheduled_at),
        subscription_id="",
        coupon_code=coupon_service.normalize_code(coupon_code),
        payment_status=PAYMENT_PENDING,
        payment_details=[],
        now=now,
    )

    try:
        payment = get_payment_gateway().create_payment_url(to_minor_units(total), order_id, order_type)
    except UpstreamError as exc:
        raise UpstreamError(MSG_URL_FAILED, reason=PAYMENT_URL_FAILED) from exc
    if not payment.url:
        raise UpstreamError(MSG_URL_FAILED, reason=PAYMENT_URL_FAILED)

    store.create(store.ORDERS, order)
    _invalidate_counts()
    coupon_service.commit_usage(evaluation, user_id, order_id)

    current_app.logger.info("Order %s created for %s (total %.2f)", order_id, phone, total)
    return {"orderId": order_id, "paymentUrl": payment.url}


def materialize_order(
    *,
    order_type: str,
    customer_details: dict,
    product_details: list[dict],
    store_details: dict,
    store_admin_id: str,
    price_details: dict,
    scheduled_delivery: str | None,
    subscription_id: str = "",
    payment_status: str = PAYMENT_COMPLETED,
    payment_details=None,
    extra: dict | None = None,
    now: datetime | None = None,
) -> dict:
    """Persist an already-paid order; pricing, coupon and payment URL are skipped."""
    now = now or utcnow()
    order = _build_order(
        order_id=next_order_id(TYPE_PREFIX[order_type], now.date()),
        order_type=order_type,
        customer_details=customer_details,
        product_details=product_details,
        store_details=store_details,
        store_admin_id=store_admin_id,
        price_details=price_details,
        scheduled_delivery=scheduled_delivery,
        subscription_id=subscription_id,
        coupon_code="",
        payment_status=payment_status,
        payment_details=payment_details if payment_details is not None else [],
        now=now,
    )
    if extra:
        order.update(extra)
    created = store.create(store.ORDERS, order)
    _invalidate_counts()
    return created


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: str) -> dict:
    order = store.read_by_id(store.ORDERS, order_id)
    if order is None:
        raise NotFoundError(MSG_ORDER_NOT_FOUND)
    return order


def _page_bounds(page, items) -> tuple[int, int]:
    page = max(int(page or 1), 1)
    items = max(int(items or 10), 1)
    return page, items


def list_orders_for_role(role: str, user_id: str, page: int = 1, items: int = 10) -> dict:
    """Orders visible to a role, newest first, one page at a time."""
    scope = ROLE_SCOPE.get(role)
    if scope is None:
        raise ValidationError(f"Unsupported role: {role}")
    page, items = _page_bounds(page, items)

    filters = {scope: user_id}
    found = store.query(
        store.ORDERS, filters,
        order_by="createdOn", descending=True,
        offset=(page - 1) * items, limit=items + 1,
    )
    if not found:
        raise NotFoundError(MSG_ORDERS_NOT_FOUND)

    cache = current_app.extensions.get("count_cache")
    producer = lambda: store.count(store.ORDERS, filters)
    total = cache.get_or_set(f"orders:{role}:{user_id}", producer) if cache is not None else producer()

    return {
        "currentPage": page,
        "hasNextPage": len(found) > items,
        "totalCount": total,
        "orders": found[:items],
    }


def list_transactions(store_admin_id: str, page: int = 1, items: int = 10) -> dict:
    page, items = _page_bounds(page, items)
    found = store.query(
        store.ORDERS, {"storeAdminId": store_admin_id},
        order_by="createdOn", descending=True,
        offset=(page - 1) * items, limit=items + 1,
    )
    transactions = [
        {
            "orderId": order["id"],
            "createdOn": order.get("createdOn"),
            "PaymentDetails": order.get("PaymentDetails"),
            "orderPrice": store.dig(order, "priceDetails.totalPrice"),
        }
        for order in found[:items]
    ]
    return {"currentPage": page, "hasNextPage": len(found) > items, "transactions": transactions}


# =============================================================================
# STATUS LIFECYCLE
# =============================================================================

def can_transition(current: str, target: str) -> bool:
    """
    New -> ... -> Delivered moves forward only; Cancelled and Rejected are
    reachable from any non-terminal status. Terminal statuses never move.
    """
    if current in TERMINAL_STATUSES:
        return False
    if target in (STATUS_CANCELLED, STATUS_REJECTED):
        return True
    if current not in ACTIVE_CHAIN or target not in ACTIVE_CHAIN:
        return False
    return ACTIVE_CHAIN.index(target) > ACTIVE_CHAIN.index(current)


def update_status(order_id: str, status: str | None = None, driver_details: dict | None = None) -> dict:
    """Apply a status transition and/or driver assignment to an order."""
    if status is not None and status not in ACTIVE_CHAIN and status not in TERMINAL_STATUSES:
        raise ValidationError(f"Unknown order status: {status}")

    def _op():
        order = get_order(order_id)
        current = order.get("status")

        if status is not None and status != current:
            if not can_transition(current, status):
                raise ConflictError(
                    f"Cannot move order from {current} to {status}",
                    reason=INVALID_TRANSITION,
                )
            order["status"] = status

        if driver_details:
            existing = order.get("driverDetails") or {}
            order["driverDetails"] = {
                "driverId": driver_details.get("driverId") or existing.get("driverId"),
                "contactDetails": driver_details.get("phone") or existing.get("contactDetails"),
                "comission": driver_details.get("comission") or existing.get("comission"),
            }
        return store.replace(store.ORDERS, order)

    updated = run_with_retry(_op)
    _invalidate_counts()
    return updated


def promote_scheduled_orders(now: datetime | None = None) -> list[str]:
    """Move New scheduled orders whose delivery time has arrived to Accepted."""
    now = now or utcnow()

    def _due(order: dict) -> bool:
        when = order.get("scheduledDelivery")
        return bool(when) and parse_iso_datetime(when) <= now

    promoted = []
    for order in store.query(store.ORDERS, {"status": STATUS_NEW}, where=_due):
        try:
            update_status(order["id"], STATUS_ACCEPTED)
        except ConflictError:
            current_app.logger.warning("Scheduled order %s changed concurrently; not promoted", order["id"])
            continue
        promoted.append(order["id"])
    return promoted


# =============================================================================
# RETURNS
# =============================================================================

def request_return(order_id: str, *, reason: str, image: str | None = None, reorder: bool = False,
                   customer_id: str | None = None) -> dict:
    def _op():
        order = get_order(order_id)
        if customer_id is not None and store.dig(order, "customerDetails.customerId") != customer_id:
            raise NotFoundError(MSG_ORDER_NOT_FOUND)
        if order.get("status") != STATUS_DELIVERED:
            raise ConflictError("Only delivered orders can be returned", reason=INVALID_TRANSITION)
        if order.get("returnCause"):
            raise ConflictError("A return has already been filed for this order")

        order["returnOrder"] = True
        order["returnCause"] = {
            "isApproved": False,
            "resolved": False,
            "damagedImage": image,
            "returnReason": reason,
        }
        order["orderReattempt"] = bool(reorder)
        order["returnOn"] = to_utc_z(utcnow())
        return store.replace(store.ORDERS, order)

    return run_with_retry(_op)


def list_pending_returns(store_id: str) -> list[dict]:
    return store.query(
        store.ORDERS,
        {"storeDetails.id": store_id, "returnCause.isApproved": False, "returnCause.resolved": False},
        order_by="returnOn", descending=True,
    )


def resolve_return(order_id: str, *, approved: bool, accept_cause: str | None = None,
                   store_manager: str | None = None) -> dict:
    """
    Approve or deny a pending return.

    An approved return with `orderReattempt` creates a replacement order
    carrying the original payment. Returns {"order", "reorder"}.
    """
    def _op():
        order = get_order(order_id)
        cause = order.get("returnCause")
        if not cause:
            raise ConflictError("No return has been filed for this order")
        if cause.get("resolved"):
            raise ConflictError("Return already resolved")

        cause.update({
            "isApproved": bool(approved),
            "resolved": True,
            "storeManager": store_manager,
            "resolvedOn": to_utc_z(utcnow()),
        })
        if approved:
            order["acceptCause"] = accept_cause
        return store.replace(store.ORDERS, order)

    order = run_with_retry(_op)

    reorder = None
    if approved and order.get("orderReattempt"):
        reorder = materialize_order(
            order_type=order.get("orderType") or ORDER_QUICK,
            customer_details=order["customerDetails"],
            product_details=order["productDetails"],
            store_details=order["storeDetails"],
            store_admin_id=order.get("storeAdminId"),
            price_details=order["priceDetails"],
            scheduled_delivery=None,
            subscription_id=order.get("subscriptionId") or "",
            payment_status=PAYMENT_COMPLETED,
            payment_details=store.dig(order, "PaymentDetails.paymentDetails"),
            extra={"reorderOf": order["id"]},
        )
        current_app.logger.info("Return approved for %s; replacement order %s", order["id"], reorder["id"])
    return {"order": order, "reorder": reorder}
