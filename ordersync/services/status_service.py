import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..db.session import get_session
from ..errors import NotFoundError, PersistenceError
from ..models.order import Order
from ..utils.clock import utcnow
from ..utils.validators import normalize_status, require_order_id
from .logging import log_event


@dataclass
class StatusUpdateResult:
    order_id: str
    previous_status: str
    status: str
    changed: bool
    email_sent: bool = False

    def to_dict(self) -> dict:
        return {
            "success": True,
            "orderId": self.order_id,
            "previousStatus": self.previous_status,
            "status": self.status,
            "changed": self.changed,
            "emailSent": self.email_sent,
        }


@dataclass
class _Recipient:
    order_number: Optional[str]
    user_id: Optional[str]
    billing_email: Optional[str]
    billing_name: Optional[str]


class OrderStatusService:
    """Apply order status changes and notify the customer when the status actually changed.

    The status write and the email are independent: a failed or skipped email
    never reverts or blocks the stored status.
    """

    def __init__(self, session_factory=get_session, email_dispatcher=None, user_directory=None, clock=utcnow):
        self._session_factory = session_factory
        self._email_dispatcher = email_dispatcher
        self._user_directory = user_directory
        self._clock = clock
        self.logger = logging.getLogger(__name__)

    def update_status(self, order_id: str, status: str) -> StatusUpdateResult:
        order_id = require_order_id(order_id)
        status = normalize_status(status)
        try:
            with self._session_factory() as session:
                # row lock: concurrent updates to the same status see changed=True once
                order = session.get(Order, order_id, with_for_update=True)
                if order is None:
                    raise NotFoundError("Order not found", order_id=order_id)
                previous = order.status
                now = self._clock()
                order.status = status
                order.updated_at = now
                # set-once timestamps
                if status == "shipped" and order.shipped_at is None:
                    order.shipped_at = now
                if status == "delivered" and order.delivered_at is None:
                    order.delivered_at = now
                recipient = _Recipient(
                    order_number=order.order_number,
                    user_id=order.user_id,
                    billing_email=order.billing_email,
                    billing_name=order.billing_name,
                )
        except SQLAlchemyError as exc:
            self.logger.exception("Status update failed for order %s", order_id)
            raise PersistenceError(f"Failed to update order status: {exc}", order_id=order_id) from exc

        result = StatusUpdateResult(order_id=order_id, previous_status=previous, status=status, changed=previous != status)
        if not result.changed:
            return result

        log_event("info", "status.changed", order_id=order_id, previous=previous, status=status)
        result.email_sent = self._notify_customer(order_id, status, recipient)
        return result

    def _resolve_email(self, recipient: _Recipient) -> Optional[str]:
        email = (recipient.billing_email or "").strip()
        if email:
            return email
        if recipient.user_id and self._user_directory is not None:
            return self._user_directory.lookup_email(recipient.user_id)
        return None

    def _notify_customer(self, order_id: str, status: str, recipient: _Recipient) -> bool:
        """Fire-and-forget email; any failure is logged and reported as not sent."""
        if self._email_dispatcher is None:
            log_event("info", "email.skipped", order_id=order_id, reason="no dispatcher")
            return False
        try:
            email = self._resolve_email(recipient)
            if not email:
                log_event("info", "email.skipped", order_id=order_id, reason="no customer email")
                return False
            name = (recipient.billing_name or "").strip() or "Customer"
            return bool(
                self._email_dispatcher.send(
                    order_id=order_id,
                    order_number=recipient.order_number,
                    new_status=status,
                    customer_email=email,
                    customer_name=name,
                )
            )
        except Exception:
            self.logger.exception("Order status email failed for %s", order_id)
            return False
