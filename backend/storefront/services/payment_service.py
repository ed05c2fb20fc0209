# Overview: Service-layer operations for payments; webhook reconciliation and refunds.

"""
Payment Webhook Reconciler

received -> authenticated -> routed (order | subscription) -> applied
         -> stock decremented + cart cleared   (COMPLETED only)

WHY: The gateway may deliver the same callback more than once. Every
callback is claimed in the PaymentEvents ledger under
"{merchantOrderId}:{state}:{transactionId}" before anything is applied; a
second delivery finds the claim and returns success without re-applying.
Each applied step is marked on the claim as it completes. A delivery that
fails before any step releases its claim; one that fails later leaves it
INCOMPLETE and the gateway's retry resumes from the first unfinished step.

Notifications are post-commit effects: they run after the order or
subscription write and never fail the callback.
"""

from __future__ import annotations

import uuid

from flask import current_app

from ..effects import PostCommitEffects
from ..errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StaleDocumentError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
    WEBHOOK_UNAUTHORIZED,
)
from storefront.time_utils import utcnow, to_utc_z
from . import cart_service, inventory_service, order_service, subscription_service
from . import document_store as store
from .concurrency import run_with_retry
from .notification_service import get_sms_client
from .payment_gateway import get_payment_gateway, to_minor_units, verify_webhook_header, webhook_auth_hash


PAYMENT_COMPLETED = order_service.PAYMENT_COMPLETED
REFUND_MINIMUM_MINOR_UNITS = 100

# PaymentEvents ledger
EVENT_CLAIMED = "CLAIMED"
EVENT_INCOMPLETE = "INCOMPLETE"
EVENT_APPLIED = "APPLIED"

STEP_PAYMENT_RECORDED = "paymentRecorded"
STEP_STOCK_DECREMENTED = "stockDecremented"
STEP_CART_CLEARED = "cartCleared"

MSG_UNAUTHORIZED = "Unauthorized"
MSG_FORBIDDEN = "You are not authorized to access this resource"
MSG_PAYMENT_PENDING = "Payment is pending"
MSG_REFUND_FAILED = "Refund request failed"
MSG_REFUND_BELOW_MINIMUM = "Refund amount below minimum allowed (100 paise)"
MSG_REFUND_SUCCESS = "Refund request submitted successfully"
MSG_REFUNDING = "Refund is in process"


def _expected_hash() -> str:
    cfg = current_app.config
    return webhook_auth_hash(cfg.get("WEBHOOK_USER", ""), cfg.get("WEBHOOK_PASS", ""))


def _transaction_id(payload: dict) -> str:
    details = payload.get("paymentDetails") or []
    if isinstance(details, list) and details:
        return str(details[0].get("transactionId") or "")
    return str(payload.get("orderId") or "")


def dedupe_key(payload: dict) -> str:
    return f"{payload.get('merchantOrderId')}:{payload.get('state')}:{_transaction_id(payload)}"


def _paid_amount(payload: dict, fallback) -> float:
    amount = payload.get("amount")
    if amount is None:
        return float(fallback or 0)
    return round(float(amount) / 100, 2)


class ClaimProgress:
    """Steps already applied for one claimed callback, kept on its PaymentEvents entry."""

    def __init__(self, entry: dict):
        self.key = entry["id"]
        self.entry = entry

    @property
    def steps(self) -> dict:
        return self.entry.get("steps") or {}

    @property
    def started(self) -> bool:
        return any(self.steps.values())

    def done(self, step: str) -> bool:
        return bool(self.steps.get(step))

    def mark(self, step: str, **fields) -> None:
        steps = dict(self.steps, **{step: True})
        self.entry = store.patch(store.PAYMENT_EVENTS, self.key, {"steps": steps, **fields})


def _claim(key: str, payload: dict) -> ClaimProgress | None:
    """
    Claim a callback for application.

    Returns None when the callback was already applied or is being applied by
    another delivery. An entry left INCOMPLETE by a failed delivery is taken
    over so the remaining steps run without repeating the finished ones.
    """
    try:
        entry = store.create(store.PAYMENT_EVENTS, {
            "id": key,
            "merchantOrderId": payload.get("merchantOrderId"),
            "state": payload.get("state"),
            "status": EVENT_CLAIMED,
            "steps": {},
            "claimedOn": to_utc_z(utcnow()),
        })
        return ClaimProgress(entry)
    except ConflictError:
        pass

    entry = store.read_by_id(store.PAYMENT_EVENTS, key)
    if entry is None or entry.get("status") != EVENT_INCOMPLETE:
        return None
    try:
        entry = store.patch(
            store.PAYMENT_EVENTS, key,
            {"status": EVENT_CLAIMED, "resumedOn": to_utc_z(utcnow())},
            if_match=entry[store.ETAG],
        )
    except StaleDocumentError:
        return None
    current_app.logger.info("Resuming webhook %s after steps %s", key, sorted(entry.get("steps") or {}))
    return ClaimProgress(entry)


def handle_webhook(auth_header: str | None, body: dict) -> dict:
    """
    Reconcile one gateway callback.

    Raises UnauthorizedError when the header does not match the shared-secret
    hash; nothing is read or written in that case. Returns
    {"message", "data", "replayed"}.
    """
    if not verify_webhook_header(auth_header, _expected_hash()):
        current_app.logger.warning("Unauthorized webhook call")
        raise UnauthorizedError(MSG_UNAUTHORIZED, reason=WEBHOOK_UNAUTHORIZED)

    payload = (body or {}).get("payload") or {}
    merchant_order_id = payload.get("merchantOrderId")
    state = payload.get("state")
    if not merchant_order_id or not state:
        raise ValidationError("payload.merchantOrderId and payload.state required")

    key = dedupe_key(payload)
    message = f"Payment {state}"
    progress = _claim(key, payload)
    if progress is None:
        current_app.logger.info("Webhook %s already applied; ignoring replay", key)
        return {"message": message, "data": payload, "replayed": True}

    effects = PostCommitEffects()
    try:
        if store.dig(payload, "metaInfo.udf1") == subscription_service.SUBSCRIPTION_TAG:
            outcome = _apply_subscription_payment(payload, effects, progress)
        else:
            outcome = _apply_order_payment(payload, effects, progress)
    except Exception:
        if progress.started:
            current_app.logger.warning("Webhook %s failed after steps %s; kept for retry", key, sorted(progress.steps))
            store.patch(store.PAYMENT_EVENTS, key, {"status": EVENT_INCOMPLETE, "failedOn": to_utc_z(utcnow())})
        else:
            store.delete(store.PAYMENT_EVENTS, key)
        raise

    store.patch(store.PAYMENT_EVENTS, key, {"status": EVENT_APPLIED, "appliedOn": to_utc_z(utcnow()), **outcome})
    effects.run()
    return {"message": message, "data": payload, "replayed": False}


def _apply_order_payment(payload: dict, effects: PostCommitEffects, progress: ClaimProgress) -> dict:
    order_id = payload["merchantOrderId"]
    state = payload["state"]
    payment_details = payload.get("paymentDetails") or []

    def _op():
        current = order_service.get_order(order_id)
        current["PaymentDetails"] = {"paymentStatus": state, "paymentDetails": payment_details}
        return store.replace(store.ORDERS, current)

    if progress.done(STEP_PAYMENT_RECORDED):
        order = order_service.get_order(order_id)
    else:
        order = run_with_retry(_op)
        progress.mark(STEP_PAYMENT_RECORDED)

    if state == PAYMENT_COMPLETED:
        if not progress.done(STEP_STOCK_DECREMENTED):
            inventory_service.decrement(store.dig(order, "storeDetails.id"), order.get("productDetails") or [])
            progress.mark(STEP_STOCK_DECREMENTED)
        if not progress.done(STEP_CART_CLEARED):
            customer = store.read_by_id(store.CUSTOMERS, store.dig(order, "customerDetails.customerId"))
            cart_service.clear_cart((customer or {}).get("phone") or store.dig(order, "customerDetails.phone"))
            progress.mark(STEP_CART_CLEARED)
    current_app.logger.info("Order %s payment %s", order_id, state)

    sms = get_sms_client()
    effects.add("sms:order-payment", lambda: sms.send_order_update(
        phone=store.dig(order, "customerDetails.phone"),
        order_id=order_id,
        payment_status=state,
        amount=_paid_amount(payload, store.dig(order, "priceDetails.totalPrice")),
        delivery_date=order.get("scheduledDelivery"),
    ))
    return {"orderId": order_id}


def _apply_subscription_payment(payload: dict, effects: PostCommitEffects, progress: ClaimProgress) -> dict:
    subscription_id = subscription_service.subscription_id_from_merchant_order(payload["merchantOrderId"])
    state = payload["state"]
    payment_details = payload.get("paymentDetails") or []
    now = utcnow()

    def _op():
        subscription = subscription_service.get_subscription(subscription_id)
        subscription.setdefault("payments", []).append({
            "merchantOrderId": payload["merchantOrderId"],
            "paymentDetails": payment_details,
            "paymentStatus": state,
            "paidAmount": _paid_amount(payload, subscription.get("pendingAmount")),
            "paidOn": to_utc_z(now),
        })
        created = []
        if state == PAYMENT_COMPLETED:
            created = subscription_service.materialize_pending_dates(subscription, payment_details, now=now)
            subscription["pendingAmount"] = 0
        return store.replace(store.SUBSCRIPTIONS, subscription), created

    if progress.done(STEP_PAYMENT_RECORDED):
        subscription = subscription_service.get_subscription(subscription_id)
        created = progress.entry.get("createdOrders") or []
    else:
        subscription, created = run_with_retry(_op)
        progress.mark(STEP_PAYMENT_RECORDED, createdOrders=created)

    if state == PAYMENT_COMPLETED and not progress.done(STEP_CART_CLEARED):
        cart_service.clear_cart(subscription.get("phone"))
        progress.mark(STEP_CART_CLEARED)

    current_app.logger.info(
        "Subscription %s payment %s; %d orders created", subscription_id, state, len(created),
    )
    return {"subscriptionId": subscription_id, "createdOrders": created}


# =============================================================================
# REFUNDS
# =============================================================================

def refund_order(order_id: str, actor_id: str) -> dict:
    """
    Refund a paid order in full. Only the order's store admin may refund.

    Records refundDetails on the order and returns them.
    """
    order = order_service.get_order(order_id)
    if actor_id != order.get("storeAdminId"):
        raise ForbiddenError(MSG_FORBIDDEN)
    if store.dig(order, "PaymentDetails.paymentStatus") != PAYMENT_COMPLETED:
        raise ValidationError(MSG_PAYMENT_PENDING)
    if order.get("refundDetails") and order["refundDetails"].get("refundStatus") != "FAILED":
        raise ConflictError("Refund already requested for this order")

    amount = to_minor_units(store.dig(order, "priceDetails.totalPrice") or 0)
    if amount < REFUND_MINIMUM_MINOR_UNITS:
        raise ValidationError(MSG_REFUND_BELOW_MINIMUM)

    merchant_refund_id = f"refund_{uuid.uuid4().hex}"
    result = get_payment_gateway().refund(amount, merchant_refund_id, order["id"])
    if not result.refund_id:
        raise UpstreamError(MSG_REFUND_FAILED)

    refund_details = {
        "refundId": result.refund_id,
        "merchantRefundId": merchant_refund_id,
        "refundStatus": result.state,
        "amount": amount,
        "refundedOn": to_utc_z(utcnow()),
    }
    store.patch(store.ORDERS, order["id"], {"refundDetails": refund_details})
    current_app.logger.info("Refund %s requested for order %s (%s)", result.refund_id, order_id, result.state)
    return refund_details


def refund_status(order_id: str, customer_id: str) -> dict:
    """Current gateway state of an order's refund. Returns {"completed", "refundDetails"}."""
    order = order_service.get_order(order_id)
    if customer_id != store.dig(order, "customerDetails.customerId"):
        raise ForbiddenError(MSG_FORBIDDEN)
    if store.dig(order, "PaymentDetails.paymentStatus") != PAYMENT_COMPLETED:
        raise ValidationError(MSG_PAYMENT_PENDING)
    details = order.get("refundDetails")
    if not details:
        raise NotFoundError("No refund has been requested for this order")

    result = get_payment_gateway().refund_status(details.get("merchantRefundId") or order["id"])
    details = {**details, "refundStatus": result.state}
    store.patch(store.ORDERS, order["id"], {"refundDetails": details})
    return {"completed": result.state == PAYMENT_COMPLETED, "refundDetails": details}
