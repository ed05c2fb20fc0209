# Overview: Outbound client for the payment gateway (PhonePe standard checkout) over httpx.

"""
Payment Gateway Client

WHY: Payment URLs, refunds and refund status all live at the gateway. The
client is created once per app and injected via
app.extensions["payment_gateway"], so tests substitute a fake.

Amounts cross this boundary in minor units (paise).
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass, field

import httpx
from flask import current_app

from ..errors import UpstreamError, PAYMENT_URL_FAILED


@dataclass
class PaymentUrl:
    url: str | None
    gateway_order_id: str | None = None
    state: str | None = None
    raw: dict = field(default_factory=dict)


@dataclass
class RefundResult:
    refund_id: str | None
    state: str | None
    raw: dict = field(default_factory=dict)


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


def webhook_auth_hash(username: str, password: str) -> str:
    """sha256("username:password") hex digest sent by the gateway."""
    return hashlib.sha256(f"{username}:{password}".encode("utf-8")).hexdigest()


def verify_webhook_header(header: str | None, expected_hash: str) -> bool:
    if not header or not expected_hash:
        return False
    return hmac.compare_digest(header.strip(), expected_hash)


class PhonePeClient:
    """Thin httpx wrapper around the checkout, refund and OAuth endpoints."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        client_version: int,
        auth_url: str,
        base_url: str,
        redirect_url: str,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.client_version = client_version
        self.auth_url = auth_url
        self.base_url = base_url.rstrip("/")
        self.redirect_url = redirect_url
        self._http = httpx.Client(timeout=timeout, transport=transport)
        self._token: str | None = None
        self._token_expires_at: float = 0.0

    @classmethod
    def from_config(cls, config) -> "PhonePeClient":
        return cls(
            client_id=config["PAYMENT_CLIENT_ID"],
            client_secret=config["PAYMENT_CLIENT_SECRET"],
            client_version=config["PAYMENT_CLIENT_VERSION"],
            auth_url=config["PAYMENT_AUTH_URL"],
            base_url=config["PAYMENT_BASE_URL"],
            redirect_url=config["PAYMENT_REDIRECT_URL"],
            timeout=config["HTTP_TIMEOUT_SECONDS"],
        )

    def _access_token(self) -> str:
        if self._token and time.time() < self._token_expires_at - 60:
            return self._token

        try:
            response = self._http.post(self.auth_url, data={
                "client_id": self.client_id,
                "client_version": self.client_version,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
            })
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise UpstreamError("Payment gateway authorization failed") from exc

        body = response.json()
        self._token = body.get("access_token")
        self._token_expires_at = float(body.get("expires_at") or time.time() + 300)
        if not self._token:
            raise UpstreamError("Payment gateway returned no access token")
        return self._token

    def _request(self, method: str, path: str, **kwargs) -> dict:
        headers = {"Authorization": f"O-Bearer {self._access_token()}"}
        response = self._http.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        response.raise_for_status()
        return response.json()

    def create_payment_url(self, amount_minor_units: int, merchant_order_id: str, metadata_tag: str) -> PaymentUrl:
        """Create a checkout for `merchant_order_id`; udf1 carries the order-type tag."""
        payload = {
            "merchantOrderId": merchant_order_id,
            "amount": amount_minor_units,
            "metaInfo": {"udf1": metadata_tag, "udf2": "udf2"},
            "paymentFlow": {
                "type": "PG_CHECKOUT",
                "merchantUrls": {"redirectUrl": self.redirect_url},
            },
        }
        try:
            body = self._request("POST", "/checkout/v2/pay", json=payload)
        except httpx.HTTPError as exc:
            raise UpstreamError("Failed to create payment URL", reason=PAYMENT_URL_FAILED) from exc

        return PaymentUrl(
            url=body.get("redirectUrl"),
            gateway_order_id=body.get("orderId"),
            state=body.get("state"),
            raw=body,
        )

    def refund(self, amount_minor_units: int, merchant_refund_id: str, original_merchant_order_id: str) -> RefundResult:
        payload = {
            "merchantRefundId": merchant_refund_id,
            "originalMerchantOrderId": original_merchant_order_id,
            "amount": amount_minor_units,
        }
        try:
            body = self._request("POST", "/payments/v2/refund", json=payload)
        except httpx.HTTPError as exc:
            raise UpstreamError("Refund request failed") from exc
        return RefundResult(refund_id=body.get("refundId"), state=body.get("state"), raw=body)

    def refund_status(self, merchant_refund_id: str) -> RefundResult:
        try:
            body = self._request("GET", f"/payments/v2/refund/{merchant_refund_id}/status")
        except httpx.HTTPError as exc:
            raise UpstreamError("Refund status lookup failed") from exc
        return RefundResult(refund_id=body.get("refundId") or merchant_refund_id, state=body.get("state"), raw=body)

    def close(self) -> None:
        self._http.close()


def get_payment_gateway():
    return current_app.extensions["payment_gateway"]
