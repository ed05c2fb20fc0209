# Overview: Service-layer operations for subscriptions; weekly planning, renewal, rescheduling, materialization.

"""
Subscription Engine

A subscription is a weekly delivery on one weekday (Sunday=0 ... Saturday=6)
paid for in batches. A batch is the set of pendingOrderDates; one payment
covers all of them.

INVARIANTS:
- pendingOrderDates and subscriptionOrderDates never share a date.
- A date leaves pendingOrderDates only after its concrete order exists and
  the batch payment has completed.
- At most one concrete order exists per (subscription, delivery date);
  materialization skips dates that already have one, so a re-applied batch
  does not duplicate orders.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timedelta

from flask import current_app

from ..errors import (
    ConflictError,
    NotFoundError,
    OutOfStockError,
    UpstreamError,
    ValidationError,
    NO_PRODUCT_IN_CART,
    PAYMENT_URL_FAILED,
)
from ..validation import iso_datetime, positive_int
from storefront.time_utils import (
    utcnow,
    parse_iso_datetime,
    to_utc_z,
    sunday_based_weekday,
    weekly_dates,
)
from . import cart_service, coupon_service, inventory_service, order_service
from . import document_store as store
from .concurrency import run_with_retry
from .payment_gateway import get_payment_gateway, to_minor_units


# Gateway metadata tag that routes a payment callback to subscription handling
SUBSCRIPTION_TAG = "Subscriptions"
RENEWAL_SEPARATOR = "_R"

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"

MSG_NOT_FOUND = "Unable to find the subscription"
MSG_PAYMENT_FAILED = "Payment failed"
MSG_INVALID_CANCEL_DATE = "Date is not a scheduled delivery of this subscription"


def subscription_id_from_merchant_order(merchant_order_id: str) -> str:
    """Renewal payments use "{subscriptionId}_R{n}"; map them back to the subscription."""
    head, sep, tail = (merchant_order_id or "").rpartition(RENEWAL_SEPARATOR)
    if sep and tail.isdigit():
        return head
    return merchant_order_id


def get_subscription(subscription_id: str, *, phone: str | None = None) -> dict:
    subscription = store.read_by_id(store.SUBSCRIPTIONS, subscription_id)
    if subscription is None or (phone is not None and subscription.get("phone") != phone):
        raise NotFoundError(MSG_NOT_FOUND)
    return subscription


def _priced_or_reject(priced: cart_service.PricedCart) -> cart_service.PricedCart:
    if priced.is_empty:
        raise OutOfStockError(order_service.MSG_NO_PRODUCT_IN_CART, reason=NO_PRODUCT_IN_CART)
    if priced.has_unsellable_lines:
        raise OutOfStockError(order_service.MSG_OUT_OF_STOCK)
    return priced


def _request_payment(amount: float, merchant_order_id: str):
    try:
        payment = get_payment_gateway().create_payment_url(to_minor_units(amount), merchant_order_id, SUBSCRIPTION_TAG)
    except UpstreamError as exc:
        raise UpstreamError(MSG_PAYMENT_FAILED, reason=PAYMENT_URL_FAILED) from exc
    if not payment.url:
        raise UpstreamError(MSG_PAYMENT_FAILED, reason=PAYMENT_URL_FAILED)
    return payment


def create_subscription(
    *,
    user_id: str,
    phone: str,
    store_id: str,
    customer_address,
    weeks_count,
    scheduled_delivery: str,
    coupon_code: str = "",
    now: datetime | None = None,
) -> dict:
    """
    Plan `weeks_count` weekly deliveries on the weekday of `scheduled_delivery`
    and request one payment for the whole batch.

    Returns {"subscriptionId", "paymentUrl"}.
    """
    now = now or utcnow()
    weeks = positive_int(weeks_count, "weeksCount")
    first = iso_datetime(scheduled_delivery, "scheduledDelivery")
    if first < now:
        raise ValidationError(order_service.MSG_SCHEDULE_PAST)

    day = sunday_based_weekday(first.date())
    store_doc = order_service.get_store(store_id)
    customer = store.read_by_id(store.CUSTOMERS, user_id)
    address = order_service.resolve_customer_address(customer, customer_address)

    priced = _priced_or_reject(cart_service.price(phone, store_id))
    pending_dates = weekly_dates(first_plannable_date(now, first.time()), day, weeks)

    evaluation = coupon_service.NO_COUPON
    if coupon_code:
        evaluation = coupon_service.evaluate(coupon_code, user_id, priced.subTotal, now=now)
        if not evaluation.success:
            raise ValidationError(evaluation.message, reason=evaluation.reason)

    total = round(max(priced.subTotal * weeks - evaluation.discount, 0.0), 2)
    subscription_id = str(uuid.uuid4())

    subscription = {
        "id": subscription_id,
        "phone": phone,
        "products": priced.products,
        "storeDetails": order_service.store_snapshot(store_doc),
        "customerDetails": order_service.customer_snapshot(user_id, phone, customer, address),
        "subscriptionOrderDates": [],
        "pendingOrderDates": pending_dates,
        "canceledOrderDates": [],
        "day": day,
        "weeksCount": weeks,
        "deliveryTime": first.strftime("%H:%M:%S"),
        "payments": [],
        "renewals": [],
        "couponCode": coupon_service.normalize_code(coupon_code),
        "priceDetails": {
            "subTotal": priced.subTotal,
            "weeksCount": weeks,
            "deliveryCharges": 0,
            "packagingCharges": 0,
            "platformCharges": 0,
            "discountPrice": evaluation.discount,
            "totalPrice": total,
        },
        "pendingAmount": total,
        "storeAdminId": store_doc.get("storeAdminId") or "",
        "createdDate": to_utc_z(now),
    }

    payment = _request_payment(total, subscription_id)
    store.create(store.SUBSCRIPTIONS, subscription)
    coupon_service.commit_usage(evaluation, user_id, subscription_id)

    current_app.logger.info("Subscription %s created for %s (%d weeks)", subscription_id, phone, weeks)
    return {"subscriptionId": subscription_id, "paymentUrl": payment.url}


def first_plannable_date(now: datetime, delivery_time: time) -> date:
    """Today, unless today's delivery time has already passed."""
    today = now.date()
    if datetime.combine(today, delivery_time) < now:
        return today + timedelta(days=1)
    return today


def _last_known_date(subscription: dict) -> date | None:
    known = list(subscription.get("subscriptionOrderDates") or []) + list(subscription.get("pendingOrderDates") or [])
    if not known:
        return None
    return date.fromisoformat(max(known))


def renew_subscription(subscription_id: str, weeks_count, *, phone: str, now: datetime | None = None) -> dict:
    """
    Extend the subscription by `weeks_count` more weekly dates after the last
    known one and request payment for every date now awaiting payment.

    Pending dates already in the past are dropped. Returns
    {"subscriptionId", "paymentUrl", "pendingOrderDates", "amount"}.
    """
    now = now or utcnow()
    weeks = positive_int(weeks_count, "weeksCount")

    def _op():
        subscription = get_subscription(subscription_id, phone=phone)
        priced = _priced_or_reject(
            cart_service.price_lines(subscription.get("products") or [], store.dig(subscription, "storeDetails.id"))
        )

        earliest = first_plannable_date(now, time.fromisoformat(subscription.get("deliveryTime") or "00:00:00"))
        last = _last_known_date(subscription)
        start = last + timedelta(days=1) if last else earliest
        if start < earliest:
            start = earliest

        existing = set(subscription.get("subscriptionOrderDates") or [])
        carried = [d for d in subscription.get("pendingOrderDates") or [] if d >= earliest.isoformat()]
        new_dates = [d for d in weekly_dates(start, int(subscription["day"]), weeks) if d not in existing]
        pending = carried + [d for d in new_dates if d not in carried]

        amount = round(priced.subTotal * len(pending), 2)
        renewals = subscription.setdefault("renewals", [])
        merchant_order_id = f"{subscription_id}{RENEWAL_SEPARATOR}{len(renewals) + 1}"

        payment = _request_payment(amount, merchant_order_id)

        subscription["pendingOrderDates"] = pending
        subscription["weeksCount"] = int(subscription.get("weeksCount") or 0) + len(new_dates)
        subscription["pendingAmount"] = amount
        renewals.append({
            "merchantOrderId": merchant_order_id,
            "weeks": len(new_dates),
            "amount": amount,
            "requestedOn": to_utc_z(now),
        })
        store.replace(store.SUBSCRIPTIONS, subscription)
        return {
            "subscriptionId": subscription_id,
            "paymentUrl": payment.url,
            "pendingOrderDates": pending,
            "amount": amount,
        }

    return run_with_retry(_op)


def _order_for_date(subscription_id: str, delivery_date: str) -> dict | None:
    found = store.query(
        store.ORDERS,
        {"subscriptionId": subscription_id},
        starts_with={"scheduledDelivery": delivery_date},
        limit=1,
    )
    return found[0] if found else None


def _per_delivery_price(subscription: dict) -> dict:
    sub_total = float(store.dig(subscription, "priceDetails.subTotal") or 0)
    return {
        "subTotal": sub_total,
        "deliveryCharges": 0,
        "packagingCharges": 0,
        "platformCharges": 0,
        "discountPrice": 0,
        "totalPrice": sub_total,
    }


def _materialize_date(subscription: dict, delivery_date: str, payment_details, now: datetime) -> dict:
    return order_service.materialize_order(
        order_type=order_service.ORDER_SUBSCRIPTION,
        customer_details=subscription["customerDetails"],
        product_details=subscription["products"],
        store_details=subscription["storeDetails"],
        store_admin_id=subscription.get("storeAdminId"),
        price_details=_per_delivery_price(subscription),
        scheduled_delivery=f"{delivery_date}T{subscription.get('deliveryTime') or '00:00:00'}Z",
        subscription_id=subscription["id"],
        payment_status=order_service.PAYMENT_COMPLETED,
        payment_details=payment_details,
        now=now,
    )


def materialize_pending_dates(subscription: dict, payment_details, *, now: datetime | None = None) -> list[str]:
    """
    Create one concrete order per pending date and decrement stock for each.

    Mutates `subscription` in memory (pending dates move to
    subscriptionOrderDates); the caller persists it. Returns the ids of the
    orders created by this call.
    """
    now = now or utcnow()
    store_id = store.dig(subscription, "storeDetails.id")
    created = []

    for delivery_date in list(subscription.get("pendingOrderDates") or []):
        if _order_for_date(subscription["id"], delivery_date) is None:
            order = _materialize_date(subscription, delivery_date, payment_details, now)
            inventory_service.decrement(store_id, order["productDetails"])
            created.append(order["id"])

    fulfilled = subscription.setdefault("subscriptionOrderDates", [])
    for delivery_date in subscription.get("pendingOrderDates") or []:
        if delivery_date not in fulfilled:
            fulfilled.append(delivery_date)
    subscription["pendingOrderDates"] = []
    return created


def reschedule_subscription(subscription_id: str, cancel_date: str, *, phone: str,
                            now: datetime | None = None) -> dict:
    """
    Cancel one scheduled delivery and add a replacement one week after the
    last scheduled date.

    Returns {"subscription", "cancelledOrderId", "newOrderId", "newDate"}.
    """
    now = now or utcnow()

    def _op():
        subscription = get_subscription(subscription_id, phone=phone)
        scheduled = subscription.get("subscriptionOrderDates") or []
        canceled = subscription.setdefault("canceledOrderDates", [])
        if cancel_date not in scheduled or cancel_date in canceled:
            raise ValidationError(MSG_INVALID_CANCEL_DATE)

        new_date = (date.fromisoformat(max(scheduled)) + timedelta(days=7)).isoformat()
        subscription["subscriptionOrderDates"] = [d for d in scheduled if d != cancel_date] + [new_date]
        canceled.append(cancel_date)
        return store.replace(store.SUBSCRIPTIONS, subscription), new_date

    subscription, new_date = run_with_retry(_op)

    cancelled_order_id = None
    old_order = _order_for_date(subscription_id, cancel_date)
    if old_order is not None:
        try:
            order_service.update_status(old_order["id"], order_service.STATUS_CANCELLED)
            cancelled_order_id = old_order["id"]
        except ConflictError:
            current_app.logger.warning(
                "Subscription %s: order %s for %s could not be cancelled (status %s)",
                subscription_id, old_order["id"], cancel_date, old_order.get("status"),
            )

    payment_details = None
    if subscription.get("payments"):
        payment_details = subscription["payments"][-1].get("paymentDetails")
    new_order = _materialize_date(subscription, new_date, payment_details, now)

    return {
        "subscription": subscription,
        "cancelledOrderId": cancelled_order_id,
        "newOrderId": new_order["id"],
        "newDate": new_date,
    }


# =============================================================================
# QUERIES
# =============================================================================

def subscription_status(subscription: dict, today: date) -> str:
    dates = list(subscription.get("subscriptionOrderDates") or []) + list(subscription.get("pendingOrderDates") or [])
    return STATUS_ACTIVE if any(d >= today.isoformat() for d in dates) else STATUS_INACTIVE


def list_customer_subscriptions(phone: str, *, today: date | None = None) -> list[dict]:
    today = today or utcnow().date()
    found = store.query(store.SUBSCRIPTIONS, {"phone": phone}, order_by="createdDate", descending=True)
    for subscription in found:
        subscription["subscriptionStatus"] = subscription_status(subscription, today)
    return found


def list_subscription_orders(subscription_id: str, customer_id: str) -> list[dict]:
    return store.query(
        store.ORDERS,
        {"subscriptionId": subscription_id, "customerDetails.customerId": customer_id},
        order_by="scheduledDelivery",
    )


def upcoming_subscription_orders(store_id: str, days: int = 7, *, now: datetime | None = None) -> list[dict]:
    """Subscription orders of a store scheduled within the next `days` days."""
    now = now or utcnow()
    until = now + timedelta(days=int(days))

    def _in_window(order: dict) -> bool:
        when = parse_iso_datetime(order.get("scheduledDelivery"))
        return when is not None and now <= when <= until

    return store.query(
        store.ORDERS,
        {"storeDetails.id": store_id, "orderType": order_service.ORDER_SUBSCRIPTION},
        where=_in_window,
        order_by="scheduledDelivery",
    )
