"""
Subscription engine tests.

Verifies:
- Weekly date generation
- Creation plans pending dates and requests one payment for the batch
- Renewal, rescheduling, status and listings
"""

from datetime import date, datetime, time

import pytest

from conftest import (
    CUSTOMER_ID,
    CUSTOMER_PHONE,
    OTHER_CUSTOMER_PHONE,
    STORE_ID,
    WEBHOOK_PASS,
    WEBHOOK_USER,
    gateway_callback,
    set_variant_stock,
)
from storefront.errors import NotFoundError, OutOfStockError, UpstreamError, ValidationError
from storefront.services import coupon_service, order_service, payment_service, subscription_service
from storefront.services import document_store as store
from storefront.services.payment_gateway import webhook_auth_hash
from storefront.time_utils import sunday_based_weekday, weekly_dates


MONDAY = datetime(2026, 10, 19, 9, 0)


def subscribe(**overrides):
    kwargs = {
        "user_id": CUSTOMER_ID,
        "phone": CUSTOMER_PHONE,
        "store_id": STORE_ID,
        "customer_address": "A1",
        "weeks_count": 3,
        "scheduled_delivery": "2026-10-19T10:00:00Z",
        "now": MONDAY,
    }
    kwargs.update(overrides)
    return subscription_service.create_subscription(**kwargs)["subscriptionId"]


def pay(subscription_id, merchant_order_id=None, transaction_id="T1"):
    payment_service.handle_webhook(
        webhook_auth_hash(WEBHOOK_USER, WEBHOOK_PASS),
        gateway_callback(
            merchant_order_id or subscription_id,
            tag=subscription_service.SUBSCRIPTION_TAG,
            transaction_id=transaction_id,
        ),
    )


# =============================================================================
# DATE GENERATION
# =============================================================================


class TestWeeklyDates:
    def test_three_mondays_from_a_monday(self):
        dates = weekly_dates(date(2026, 10, 19), 1, 3)
        assert dates == ["2026-10-19", "2026-10-26", "2026-11-02"]
        assert all(sunday_based_weekday(date.fromisoformat(d)) == 1 for d in dates)

    def test_starts_at_next_matching_weekday(self):
        assert weekly_dates(date(2026, 10, 20), 0, 2) == ["2026-10-25", "2026-11-01"]

    @pytest.mark.parametrize("day", range(7))
    def test_every_date_is_on_the_requested_day(self, day):
        dates = [date.fromisoformat(d) for d in weekly_dates(date(2026, 10, 19), day, 4)]
        assert len(dates) == 4
        assert all(sunday_based_weekday(d) == day for d in dates)
        assert all((b - a).days == 7 for a, b in zip(dates, dates[1:]))

    def test_invalid_day(self):
        with pytest.raises(ValidationError):
            weekly_dates(date(2026, 10, 19), 7, 1)

    @pytest.mark.parametrize("hour,expected", [(9, date(2026, 10, 19)), (10, date(2026, 10, 19)), (11, date(2026, 10, 20))])
    def test_first_plannable_date(self, hour, expected):
        now = datetime(2026, 10, 19, hour, 0)
        assert subscription_service.first_plannable_date(now, time(10, 0)) == expected


# =============================================================================
# CREATION
# =============================================================================


@pytest.mark.subscriptions
class TestCreateSubscription:
    def test_plans_pending_dates_and_requests_payment(self, seed, gateway):
        subscription_id = subscribe()
        subscription = subscription_service.get_subscription(subscription_id)

        assert subscription["day"] == 1
        assert subscription["weeksCount"] == 3
        assert subscription["pendingOrderDates"] == ["2026-10-19", "2026-10-26", "2026-11-02"]
        assert subscription["subscriptionOrderDates"] == []
        assert subscription["deliveryTime"] == "10:00:00"
        assert subscription["priceDetails"]["totalPrice"] == 600
        assert subscription["priceDetails"]["deliveryCharges"] == 0
        assert subscription["pendingAmount"] == 600

        request = gateway.payment_requests[0]
        assert request == {"amount": 60000, "merchantOrderId": subscription_id, "tag": "Subscriptions"}
        assert store.query(store.ORDERS) == []

    def test_coupon_applies_to_batch(self, seed):
        coupon_service.create_coupon({"couponName": "SUB50", "discountType": "flat", "discountValue": 50})
        subscription = subscription_service.get_subscription(subscribe(coupon_code="SUB50"))
        assert subscription["priceDetails"]["totalPrice"] == 550
        assert store.read_by_id(store.COUPON_CODES, "SUB50")["usedBy"] == [CUSTOMER_ID]

    def test_past_schedule_rejected(self, seed):
        with pytest.raises(ValidationError):
            subscribe(scheduled_delivery="2026-10-18T10:00:00Z")

    def test_today_skipped_once_its_delivery_time_has_passed(self, seed):
        subscription_id = subscribe(
            weeks_count=2, scheduled_delivery="2026-10-26T10:00:00Z", now=datetime(2026, 10, 19, 18, 0),
        )
        subscription = subscription_service.get_subscription(subscription_id)
        assert subscription["pendingOrderDates"] == ["2026-10-26", "2026-11-02"]
        assert subscription["deliveryTime"] == "10:00:00"

    def test_malformed_schedule_rejected(self, seed):
        with pytest.raises(ValidationError):
            subscribe(scheduled_delivery="nope")

    def test_weeks_must_be_positive(self, seed):
        with pytest.raises(ValidationError):
            subscribe(weeks_count=0)

    def test_out_of_stock_cart(self, seed):
        set_variant_stock(1)
        with pytest.raises(OutOfStockError):
            subscribe()

    def test_payment_failure_persists_nothing(self, seed, gateway):
        gateway.fail_payment_url = True
        with pytest.raises(UpstreamError):
            subscribe()
        assert store.query(store.SUBSCRIPTIONS) == []


# =============================================================================
# RENEWAL AND RESCHEDULING
# =============================================================================


@pytest.mark.subscriptions
class TestRenewal:
    def test_renew_after_payment_extends_from_last_date(self, seed, gateway):
        set_variant_stock(20)
        subscription_id = subscribe()
        pay(subscription_id)

        result = subscription_service.renew_subscription(
            subscription_id, 2, phone=CUSTOMER_PHONE, now=datetime(2026, 10, 20, 8, 0),
        )
        assert result["pendingOrderDates"] == ["2026-11-09", "2026-11-16"]
        assert result["amount"] == 400

        subscription = subscription_service.get_subscription(subscription_id)
        assert subscription["weeksCount"] == 5
        assert subscription["pendingAmount"] == 400
        assert subscription["renewals"][0]["merchantOrderId"] == f"{subscription_id}_R1"
        assert gateway.payment_requests[-1]["merchantOrderId"] == f"{subscription_id}_R1"
        assert gateway.payment_requests[-1]["amount"] == 40000

    def test_renew_unpaid_carries_future_pending_dates(self, seed):
        set_variant_stock(20)
        subscription_id = subscribe()
        result = subscription_service.renew_subscription(
            subscription_id, 1, phone=CUSTOMER_PHONE, now=datetime(2026, 10, 27, 8, 0),
        )
        # 2026-10-19 and 2026-10-26 are past and dropped
        assert result["pendingOrderDates"] == ["2026-11-02", "2026-11-09"]
        assert result["amount"] == 400

    def test_renew_drops_todays_date_after_its_delivery_time(self, seed):
        set_variant_stock(20)
        subscription_id = subscribe()
        result = subscription_service.renew_subscription(
            subscription_id, 1, phone=CUSTOMER_PHONE, now=datetime(2026, 10, 26, 18, 0),
        )
        assert result["pendingOrderDates"] == ["2026-11-02", "2026-11-09"]

    def test_renew_other_customers_subscription(self, seed):
        subscription_id = subscribe()
        with pytest.raises(NotFoundError) as exc:
            subscription_service.renew_subscription(subscription_id, 1, phone=OTHER_CUSTOMER_PHONE)
        assert exc.value.message == subscription_service.MSG_NOT_FOUND

    def test_merchant_order_mapping(self):
        assert subscription_service.subscription_id_from_merchant_order("abc-1_R3") == "abc-1"
        assert subscription_service.subscription_id_from_merchant_order("abc-1") == "abc-1"
        assert subscription_service.subscription_id_from_merchant_order("abc_Rx") == "abc_Rx"


@pytest.mark.subscriptions
class TestReschedule:
    @pytest.fixture
    def paid_subscription(self, seed):
        set_variant_stock(20)
        subscription_id = subscribe()
        pay(subscription_id)
        return subscription_id

    def test_reschedule_moves_date_to_end(self, paid_subscription):
        result = subscription_service.reschedule_subscription(
            paid_subscription, "2026-10-26", phone=CUSTOMER_PHONE, now=MONDAY,
        )
        assert result["newDate"] == "2026-11-09"

        subscription = result["subscription"]
        assert subscription["subscriptionOrderDates"] == ["2026-10-19", "2026-11-02", "2026-11-09"]
        assert subscription["canceledOrderDates"] == ["2026-10-26"]

        cancelled = order_service.get_order(result["cancelledOrderId"])
        assert cancelled["status"] == order_service.STATUS_CANCELLED
        assert cancelled["scheduledDelivery"] == "2026-10-26T10:00:00Z"

        replacement = order_service.get_order(result["newOrderId"])
        assert replacement["scheduledDelivery"] == "2026-11-09T10:00:00Z"
        assert replacement["PaymentDetails"]["paymentStatus"] == order_service.PAYMENT_COMPLETED
        assert replacement["PaymentDetails"]["paymentDetails"][0]["transactionId"] == "T1"

    def test_cannot_reschedule_unknown_or_cancelled_date(self, paid_subscription):
        with pytest.raises(ValidationError):
            subscription_service.reschedule_subscription(paid_subscription, "2026-10-27", phone=CUSTOMER_PHONE)

        subscription_service.reschedule_subscription(paid_subscription, "2026-10-26", phone=CUSTOMER_PHONE)
        with pytest.raises(ValidationError):
            subscription_service.reschedule_subscription(paid_subscription, "2026-10-26", phone=CUSTOMER_PHONE)

    def test_delivered_order_stays_delivered(self, paid_subscription):
        orders = subscription_service.list_subscription_orders(paid_subscription, CUSTOMER_ID)
        order_service.update_status(orders[0]["id"], order_service.STATUS_DELIVERED)

        result = subscription_service.reschedule_subscription(
            paid_subscription, "2026-10-19", phone=CUSTOMER_PHONE,
        )
        assert result["cancelledOrderId"] is None
        assert order_service.get_order(orders[0]["id"])["status"] == order_service.STATUS_DELIVERED


# =============================================================================
# QUERIES
# =============================================================================


@pytest.mark.subscriptions
class TestQueries:
    def test_status_active_then_inactive(self, seed):
        subscribe()
        active = subscription_service.list_customer_subscriptions(CUSTOMER_PHONE, today=date(2026, 10, 20))
        assert active[0]["subscriptionStatus"] == subscription_service.STATUS_ACTIVE

        ended = subscription_service.list_customer_subscriptions(CUSTOMER_PHONE, today=date(2027, 1, 1))
        assert ended[0]["subscriptionStatus"] == subscription_service.STATUS_INACTIVE

    def test_listing_is_per_customer(self, seed):
        subscribe()
        assert subscription_service.list_customer_subscriptions(OTHER_CUSTOMER_PHONE) == []

    def test_upcoming_orders_window(self, seed):
        set_variant_stock(20)
        subscription_id = subscribe()
        pay(subscription_id)

        upcoming = subscription_service.upcoming_subscription_orders(
            STORE_ID, 7, now=datetime(2026, 10, 19, 0, 0),
        )
        assert [o["scheduledDelivery"] for o in upcoming] == ["2026-10-19T10:00:00Z"]

        two_weeks = subscription_service.upcoming_subscription_orders(
            STORE_ID, 14, now=datetime(2026, 10, 19, 0, 0),
        )
        assert len(two_weeks) == 2

    def test_orders_of_other_customer_hidden(self, seed):
        subscription_id = subscribe()
        pay(subscription_id)
        assert subscription_service.list_subscription_orders(subscription_id, "C2") == []
