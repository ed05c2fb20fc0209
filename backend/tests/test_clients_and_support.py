"""
Outbound clients and supporting components.

Verifies:
- Payment gateway, SMS and maps clients speak the providers' wire formats
- Count cache expiry, post-commit effects, session tokens
"""

import json
import time

import httpx
import pytest

from storefront.cache import TTLCache
from storefront.effects import PostCommitEffects
from storefront.errors import PAYMENT_URL_FAILED, UpstreamError, ValidationError
from storefront.services import document_store as store
from storefront.services import maps_service, session_service
from storefront.services.maps_service import MapsClient, haversine_km, parse_coordinates
from storefront.services.notification_service import SmsClient
from storefront.services.payment_gateway import (
    PhonePeClient,
    to_minor_units,
    verify_webhook_header,
    webhook_auth_hash,
)


AUTH_URL = "https://gateway.test/oauth/token"
BASE_URL = "https://gateway.test/pg"


def phonepe(handler):
    return PhonePeClient(
        client_id="cid",
        client_secret="csecret",
        client_version=1,
        auth_url=AUTH_URL,
        base_url=BASE_URL,
        redirect_url="https://shop.test/return",
        transport=httpx.MockTransport(handler),
    )


def token_response():
    return httpx.Response(200, json={"access_token": "tok-1", "expires_at": time.time() + 3600})


# =============================================================================
# PAYMENT GATEWAY
# =============================================================================


class TestPhonePeClient:
    def test_create_payment_url(self):
        seen = []

        def handler(request):
            seen.append(request)
            if str(request.url) == AUTH_URL:
                return token_response()
            return httpx.Response(200, json={"orderId": "OMO1", "state": "PENDING", "redirectUrl": "https://pay/1"})

        result = phonepe(handler).create_payment_url(22000, "Q20261019ORD1", "Quick")

        assert result.url == "https://pay/1"
        assert result.gateway_order_id == "OMO1"
        pay_request = seen[1]
        assert str(pay_request.url) == f"{BASE_URL}/checkout/v2/pay"
        assert pay_request.headers["Authorization"] == "O-Bearer tok-1"
        body = json.loads(pay_request.content)
        assert body["amount"] == 22000
        assert body["merchantOrderId"] == "Q20261019ORD1"
        assert body["metaInfo"]["udf1"] == "Quick"
        assert body["paymentFlow"]["merchantUrls"]["redirectUrl"] == "https://shop.test/return"

    def test_token_is_reused(self):
        auth_calls = []

        def handler(request):
            if str(request.url) == AUTH_URL:
                auth_calls.append(request)
                return token_response()
            return httpx.Response(200, json={"redirectUrl": "https://pay/x"})

        client = phonepe(handler)
        client.create_payment_url(100, "A", "Quick")
        client.create_payment_url(100, "B", "Quick")
        assert len(auth_calls) == 1

    def test_gateway_error_is_upstream_failure(self):
        def handler(request):
            if str(request.url) == AUTH_URL:
                return token_response()
            return httpx.Response(500, json={"message": "boom"})

        with pytest.raises(UpstreamError) as exc:
            phonepe(handler).create_payment_url(100, "A", "Quick")
        assert exc.value.reason == PAYMENT_URL_FAILED

    def test_refund_and_status(self):
        def handler(request):
            if str(request.url) == AUTH_URL:
                return token_response()
            if request.method == "POST":
                body = json.loads(request.content)
                assert body["originalMerchantOrderId"] == "Q1"
                return httpx.Response(200, json={"refundId": "OMR1", "state": "PENDING"})
            assert request.url.path.endswith("/payments/v2/refund/refund_abc/status")
            return httpx.Response(200, json={"state": "COMPLETED"})

        client = phonepe(handler)
        refund = client.refund(22000, "refund_abc", "Q1")
        assert (refund.refund_id, refund.state) == ("OMR1", "PENDING")
        assert client.refund_status("refund_abc").state == "COMPLETED"

    def test_webhook_header(self):
        expected = webhook_auth_hash("user", "pass")
        assert len(expected) == 64
        assert verify_webhook_header(expected, expected)
        assert not verify_webhook_header("", expected)
        assert not verify_webhook_header(expected, "")
        assert not verify_webhook_header(webhook_auth_hash("user", "other"), expected)

    @pytest.mark.parametrize("amount,minor", [(220, 22000), (0.1, 10), (19.99, 1999), (0, 0)])
    def test_minor_units(self, amount, minor):
        assert to_minor_units(amount) == minor


# =============================================================================
# SMS AND MAPS
# =============================================================================


class TestSmsClient:
    def test_sends_flow_payload(self, app):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"type": "success"})

        client = SmsClient(url="https://sms.test/flow", auth_key="key", order_template_id="tpl",
                           transport=httpx.MockTransport(handler))
        with app.app_context():
            client.send_order_update(phone="9990001111", order_id="Q1", payment_status="COMPLETED",
                                     amount=220, delivery_date=None)

        assert seen[0].headers["authkey"] == "key"
        body = json.loads(seen[0].content)
        assert body["template_id"] == "tpl"
        assert body["recipients"][0] == {
            "mobiles": "9990001111", "orderId": "Q1", "paymentStatus": "COMPLETED", "amount": 220, "deliveryDate": "",
        }

    def test_disabled_client_sends_nothing(self, app):
        def handler(request):
            raise AssertionError("no request expected")

        client = SmsClient(url="", auth_key="", order_template_id="", transport=httpx.MockTransport(handler))
        assert not client.enabled
        with app.app_context():
            client.send_order_update(phone="1", order_id="Q1", payment_status="FAILED", amount=0, delivery_date=None)


class TestMaps:
    def test_distance_matrix(self):
        def handler(request):
            assert request.url.params["origins"] == "12 Lake View"
            return httpx.Response(200, json={"rows": [{"elements": [{"distance": {"value": 7500}}]}]})

        client = MapsClient(api_key="k", base_url="https://maps.test/dm", transport=httpx.MockTransport(handler))
        assert client.distance_km("12 Lake View", "Market Road") == 7.5

    def test_malformed_response(self):
        client = MapsClient(
            api_key="k", base_url="https://maps.test/dm",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"rows": []})),
        )
        with pytest.raises(UpstreamError):
            client.distance_km("a", "b")

    def test_parse_coordinates(self):
        assert parse_coordinates({"lat": "18.5", "lng": 73.8}) == (18.5, 73.8)
        assert parse_coordinates("18.5, 73.8") == (18.5, 73.8)
        assert parse_coordinates("Pune") is None
        assert parse_coordinates({"lat": 1}) is None

    def test_haversine(self):
        assert haversine_km((18.52, 73.85), (18.52, 73.85)) == 0
        # one degree of latitude is about 111 km
        assert 110 < haversine_km((0, 0), (1, 0)) < 112

    def test_distance_between_prefers_coordinates(self, app):
        with app.app_context():
            distance = maps_service.distance_between(
                {"coordinates": {"lat": 18.52, "lng": 73.85}},
                {"coordinates": "18.53,73.85"},
            )
        assert 1.0 < distance < 1.2


# =============================================================================
# SUPPORT
# =============================================================================


class TestTTLCache:
    def test_entries_expire(self):
        now = [100.0]
        cache = TTLCache(10, clock=lambda: now[0])
        cache.set("orders", 3)
        assert cache.get("orders") == 3
        now[0] = 110.0
        assert cache.get("orders") is None

    def test_get_or_set_and_invalidate(self):
        cache = TTLCache(60)
        calls = []
        producer = lambda: calls.append(1) or 7
        assert cache.get_or_set("k", producer) == 7
        assert cache.get_or_set("k", producer) == 7
        assert len(calls) == 1
        cache.invalidate()
        assert cache.get("k") is None


class TestPostCommitEffects:
    def test_failures_are_isolated(self, app):
        ran = []
        effects = PostCommitEffects()
        effects.add("first", lambda: ran.append("first"))
        effects.add("broken", lambda: 1 / 0)
        effects.add("last", lambda: ran.append("last"))

        with app.app_context():
            failed = effects.run()

        assert failed == ["broken"]
        assert ran == ["first", "last"]
        assert len(effects) == 0


class TestSessions:
    def test_token_round_trip(self, db_session):
        session, token = session_service.create_session("C1", "9990001111", session_service.ROLE_CUSTOMER)
        assert session["id"] == session_service.hash_token(token)
        assert token not in json.dumps(session)

        context = session_service.validate_session(token)
        assert (context.user_id, context.phone, context.role) == ("C1", "9990001111", "Customers")

    def test_revoked_token_is_invalid(self, db_session):
        _, token = session_service.create_session("C1", "9990001111", session_service.ROLE_CUSTOMER)
        assert session_service.revoke_session(token) is True
        assert session_service.validate_session(token) is None
        assert session_service.revoke_session(token) is False

    def test_expired_token_is_invalid(self, db_session):
        session, token = session_service.create_session("C1", None, session_service.ROLE_DRIVER)
        store.patch(store.SESSIONS, session["id"], {"expiresOn": "2001-01-01T00:00:00Z"})
        assert session_service.validate_session(token) is None

    def test_unknown_role(self, db_session):
        with pytest.raises(ValidationError):
            session_service.create_session("C1", None, "Superuser")
