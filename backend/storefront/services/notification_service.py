# Overview: Fire-and-forget SMS notifications over httpx.

from __future__ import annotations

import httpx
from flask import current_app


class SmsClient:
    """
    msg91 flow API sender. A client without a URL is disabled and drops
    messages after logging them at debug level.
    """

    def __init__(self, *, url: str, auth_key: str, order_template_id: str, timeout: float = 15.0,
                 transport: httpx.BaseTransport | None = None):
        self.url = url
        self.auth_key = auth_key
        self.order_template_id = order_template_id
        self._http = httpx.Client(timeout=timeout, transport=transport)

    @classmethod
    def from_config(cls, config) -> "SmsClient":
        return cls(
            url=config["SMS_URL"],
            auth_key=config["SMS_AUTH_KEY"],
            order_template_id=config["SMS_ORDER_TEMPLATE_ID"],
            timeout=config["HTTP_TIMEOUT_SECONDS"],
        )

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def send_order_update(self, *, phone: str, order_id: str, payment_status: str,
                          amount, delivery_date: str | None) -> None:
        if not self.enabled:
            current_app.logger.debug("SMS disabled; order %s update for %s not sent", order_id, phone)
            return

        response = self._http.post(
            self.url,
            headers={
                "accept": "application/json",
                "authkey": self.auth_key,
                "content-type": "application/json",
            },
            json={
                "template_id": self.order_template_id,
                "short_url": "0",
                "recipients": [{
                    "mobiles": phone,
                    "orderId": order_id,
                    "paymentStatus": payment_status,
                    "amount": amount,
                    "deliveryDate": delivery_date or "",
                }],
            },
        )
        response.raise_for_status()

    def close(self) -> None:
        self._http.close()


def get_sms_client():
    return current_app.extensions["sms_client"]
