"""Outbound order-status email dispatch through the storefront."""
import logging
from typing import Optional

import requests

from .logging import log_event


class OrderStatusEmailDispatcher:
    """POST status-change notifications to the storefront's internal email endpoint."""

    PATH = "/api/internal/order-status-email"

    def __init__(
        self,
        store_base_url: str,
        secret: str,
        *,
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.store_base_url = (store_base_url or "").rstrip("/")
        self.secret = secret or ""
        self.timeout = timeout
        self._http = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config) -> "OrderStatusEmailDispatcher":
        return cls(config.store_base_url, config.order_status_email_secret)

    @property
    def configured(self) -> bool:
        return bool(self.store_base_url and self.secret)

    def send(
        self,
        *,
        order_id: str,
        order_number: Optional[str],
        new_status: str,
        customer_email: str,
        customer_name: str,
    ) -> bool:
        if not self.configured:
            log_event("warning", "email.not_configured", order_id=order_id)
            return False
        try:
            response = self._http.post(
                f"{self.store_base_url}{self.PATH}",
                json={
                    "orderId": order_id,
                    "orderNumber": order_number,
                    "newStatus": new_status,
                    "customerEmail": customer_email,
                    "customerName": customer_name,
                },
                headers={"Content-Type": "application/json", "x-order-status-secret": self.secret},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            self.logger.error("Order status email request error for %s: %s", order_id, exc)
            return False
        if not response.ok:
            self.logger.error(
                "Order status email request failed for %s: %s %s", order_id, response.status_code, response.text[:500]
            )
            return False
        log_event("info", "email.sent", order_id=order_id, status=new_status)
        return True
