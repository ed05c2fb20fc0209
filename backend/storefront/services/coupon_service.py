# Overview: Service-layer operations for coupons; evaluation, usage commit, administration.

"""
Coupon Evaluator

Two-phase shape:
1. evaluate() validates a code against a cart subtotal and computes the
   discount. It never writes.
2. commit_usage() records the customer in usedBy, keyed by the owning order
   or subscription id. It runs only after the owner has been persisted and is
   safe to call more than once for the same owner.

A crash between persisting the owner and commit_usage leaves the coupon
un-debited. Availability is preferred over strict consumption here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..errors import (
    ConflictError,
    NotFoundError,
    COUPON_ALREADY_USED,
    COUPON_BELOW_MINIMUM,
    COUPON_EXPIRED,
    COUPON_NOT_FOUND,
)
from ..validation import FieldSpec, PatchPolicy, MAX_AMOUNT, validate_payload
from storefront.time_utils import utcnow, parse_iso_datetime, to_utc_z
from . import document_store as store
from .concurrency import run_with_retry


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FLAT = "flat"

STATUS_ACTIVE = "Active"

MSG_NOT_FOUND = "Coupon not found"
MSG_ALREADY_USED = "Coupon already used by this user"
MSG_EXPIRED = "Coupon has expired"
MSG_MINIMUM = "Minimum order amount should be greater than "
MSG_VALID = "Coupon is valid"


COUPON_POLICY = PatchPolicy(
    fields={
        "couponName": FieldSpec(kind="str", nullable=False, max_length=64),
        "description": FieldSpec(kind="str", max_length=500),
        "discountType": FieldSpec(kind="str", nullable=False, choices=(DISCOUNT_PERCENTAGE, DISCOUNT_FLAT)),
        "discountValue": FieldSpec(kind="number", nullable=False, min_value=0, max_value=MAX_AMOUNT),
        "maxCouponAmount": FieldSpec(kind="number", min_value=0, max_value=MAX_AMOUNT),
        "minOrderAmount": FieldSpec(kind="number", min_value=0, max_value=MAX_AMOUNT),
        "multiUse": FieldSpec(kind="bool"),
        "expiryDate": FieldSpec(kind="datetime"),
    },
    required_on_create=frozenset({"couponName", "discountType", "discountValue"}),
)


@dataclass(frozen=True)
class CouponEvaluation:
    """Tagged result of evaluate(); `reason` is set only on rejection."""
    success: bool
    discount: float = 0.0
    message: str = ""
    reason: str | None = None
    coupon_id: str | None = None
    already_used: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "discount": self.discount,
            "message": self.message,
            "reason": self.reason,
            "couponCode": self.coupon_id,
        }


NO_COUPON = CouponEvaluation(success=True, discount=0.0)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def find_coupon(code: str) -> dict | None:
    """Case-insensitive lookup; coupon ids are stored uppercased."""
    normalized = normalize_code(code)
    if not normalized:
        return None
    return store.read_by_id(store.COUPON_CODES, normalized)


def _is_expired(coupon: dict, now: datetime) -> bool:
    expiry = coupon.get("expiryDate")
    if not expiry:
        return False
    return parse_iso_datetime(expiry) < now


def compute_discount(coupon: dict, subtotal: float) -> float:
    value = float(coupon.get("discountValue") or 0)
    if coupon.get("discountType") == DISCOUNT_PERCENTAGE:
        discount = subtotal * value / 100
    else:
        discount = value

    cap = coupon.get("maxCouponAmount")
    if cap and discount > float(cap):
        discount = float(cap)
    return round(discount, 2)


def evaluate(coupon_code: str, customer_id: str, cart_subtotal: float, *, now: datetime | None = None) -> CouponEvaluation:
    """
    Validate a coupon for a customer and cart subtotal.

    Rejections (in check order): not found, expired, below minimum order
    amount, already used by this customer on a single-use coupon.
    """
    coupon = find_coupon(coupon_code)
    if coupon is None:
        return CouponEvaluation(success=False, message=MSG_NOT_FOUND, reason=COUPON_NOT_FOUND)

    if _is_expired(coupon, now or utcnow()):
        return CouponEvaluation(success=False, message=MSG_EXPIRED, reason=COUPON_EXPIRED, coupon_id=coupon["id"])

    min_amount = coupon.get("minOrderAmount") or 0
    if cart_subtotal < min_amount:
        return CouponEvaluation(
            success=False,
            message=f"{MSG_MINIMUM}{min_amount}",
            reason=COUPON_BELOW_MINIMUM,
            coupon_id=coupon["id"],
        )

    already_used = customer_id in (coupon.get("usedBy") or [])
    if not coupon.get("multiUse") and already_used:
        return CouponEvaluation(
            success=False,
            message=MSG_ALREADY_USED,
            reason=COUPON_ALREADY_USED,
            coupon_id=coupon["id"],
            already_used=True,
        )

    return CouponEvaluation(
        success=True,
        discount=compute_discount(coupon, cart_subtotal),
        message=MSG_VALID,
        coupon_id=coupon["id"],
        already_used=already_used,
    )


def commit_usage(evaluation: CouponEvaluation, customer_id: str, owner_id: str) -> dict | None:
    """
    Record coupon usage for `owner_id` (order or subscription id).

    Idempotent per owner: a retried commit for the same owner is a no-op.
    Returns the updated coupon, or None when there is nothing to commit.
    """
    if not evaluation.success or not evaluation.coupon_id:
        return None

    def _op():
        coupon = store.read_by_id(store.COUPON_CODES, evaluation.coupon_id)
        if coupon is None:
            return None

        redemptions = coupon.setdefault("redemptions", [])
        if any(r.get("ownerId") == owner_id for r in redemptions):
            return coupon

        used_by = coupon.setdefault("usedBy", [])
        if customer_id not in used_by:
            used_by.append(customer_id)
        redemptions.append({
            "ownerId": owner_id,
            "customerId": customer_id,
            "discount": evaluation.discount,
            "redeemedOn": to_utc_z(utcnow()),
        })
        return store.replace(store.COUPON_CODES, coupon)

    return run_with_retry(_op)


# =============================================================================
# ADMINISTRATION
# =============================================================================

def create_coupon(payload: dict) -> dict:
    data = validate_payload(payload=payload, policy=COUPON_POLICY, partial=False)
    code = normalize_code(data["couponName"])

    if find_coupon(code):
        raise ConflictError("Coupon already exists")

    if data.get("expiryDate") and parse_iso_datetime(data["expiryDate"]) < utcnow():
        raise ConflictError("Expiry date should not be in the past")

    coupon = {
        "id": code,
        "couponName": code,
        "discountType": data["discountType"],
        "description": data.get("description"),
        "discountValue": data["discountValue"],
        "multiUse": bool(data.get("multiUse", False)),
        "minOrderAmount": data.get("minOrderAmount") or 0,
        "maxCouponAmount": data.get("maxCouponAmount"),
        "expiryDate": data.get("expiryDate"),
        "usedBy": [],
        "redemptions": [],
        "status": STATUS_ACTIVE,
        "createdDate": to_utc_z(utcnow()),
    }
    return store.create(store.COUPON_CODES, coupon)


def list_coupons() -> list[dict]:
    return store.query(store.COUPON_CODES, order_by="createdDate", descending=True)


def delete_coupon(coupon_id: str) -> None:
    if not store.delete(store.COUPON_CODES, normalize_code(coupon_id)):
        raise NotFoundError(MSG_NOT_FOUND)


def purge_expired(now: datetime | None = None) -> list[str]:
    """Delete coupons whose expiryDate has passed. Returns the deleted ids."""
    now = now or utcnow()
    expired = store.query(store.COUPON_CODES, where=lambda c: _is_expired(c, now))
    removed = []
    for coupon in expired:
        if store.delete(store.COUPON_CODES, coupon["id"]):
            removed.append(coupon["id"])
    return removed
