import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..db.session import get_session
from ..errors import (
    AlreadyPlacedError,
    NotFoundError,
    NotPaidError,
    PersistenceError,
    PlacementConflictError,
    UpstreamProviderError,
    ValidationError,
)
from ..models.fulfillment_record import FAILED_STATUS, PLACING_STATUS, FulfillmentRecord
from ..models.order import Order
from ..utils.clock import utcnow
from ..utils.country import order_country_code
from ..utils.validators import require_order_id
from .logging import log_event
from .notifications import notify_admins
from .provider_client import CreateOrderRequest, OrderLine, ShippingAddress


# a reservation older than this is assumed abandoned and may be retried
STALE_RESERVATION = timedelta(minutes=10)


@dataclass
class PlacementResult:
    order_id: str
    external_order_id: Optional[str]
    external_order_number: Optional[str]
    external_status: str
    retried: bool = False

    def to_dict(self) -> dict:
        return {
            "success": True,
            "data": {
                "orderId": self.order_id,
                "externalOrderId": self.external_order_id,
                "externalOrderNumber": self.external_order_number,
                "externalStatus": self.external_status,
                "retried": self.retried,
            },
        }


def build_order_lines(items) -> list:
    """Provider lines keyed by variant id, falling back to the product id."""
    return [OrderLine(vid=item.variant_id or item.product_id, quantity=int(item.quantity)) for item in items]


class FulfillmentPlacementService:
    """Hand a paid order to the fulfillment provider exactly once.

    The fulfillment record is reserved (``placing``) and committed before the
    provider is called, so a concurrent second attempt fails with
    ``AlreadyPlacedError`` without reaching the provider. The attempt that owns
    the reservation then replaces it with the outcome.

    ``place_order`` is first-time placement and refuses any order that already
    has a record. ``retry_placement`` may take over a ``failed`` record or a
    ``placing`` reservation abandoned for longer than ``stale_after``.
    """

    def __init__(self, provider, status_service, session_factory=get_session, clock=utcnow, stale_after=STALE_RESERVATION):
        self._provider = provider
        self._status_service = status_service
        self._session_factory = session_factory
        self._clock = clock
        self._stale_after = stale_after
        self.logger = logging.getLogger(__name__)

    def place_order(self, order_id: str, logistic_name: Optional[str] = None) -> PlacementResult:
        return self._place(require_order_id(order_id), logistic_name, retry=False)

    def retry_placement(self, order_id: str, logistic_name: Optional[str] = None) -> PlacementResult:
        return self._place(require_order_id(order_id), logistic_name, retry=True)

    def _place(self, order_id: str, logistic_name: Optional[str], *, retry: bool) -> PlacementResult:
        attempt_id = str(uuid4())
        request, order_number = self._reserve(order_id, logistic_name, attempt_id, retry=retry)

        # provider call happens outside any store transaction
        result = self._provider.create_order(request)

        if not result.ok:
            self._record_failure(order_id, attempt_id, result.message)
            log_event("error", "placement.failed", order_id=order_id, error=result.message, retry=retry)
            notify_admins(
                self._session_factory,
                type="order",
                title="Order Placement Failed",
                message=f"Order #{order_number} failed to place with the fulfillment provider: {result.message}",
                link=f"/orders/{order_id}",
                data={"orderId": order_id, "orderNumber": order_number, "error": result.message},
            )
            raise UpstreamProviderError(result.message, order_id=order_id)

        created = result.data
        if not self._record_success(order_id, attempt_id, created):
            self._report_conflict(order_id, order_number, created)
        log_event("info", "placement.succeeded", order_id=order_id, external_order_id=created.order_id, retry=retry)
        self._status_service.update_status(order_id, "processing")
        notify_admins(
            self._session_factory,
            type="order",
            title="Order Placed",
            message=f"Order #{order_number} has been placed with the fulfillment provider",
            link=f"/orders/{order_id}",
            data={"orderId": order_id, "orderNumber": order_number, "externalOrderId": created.order_id},
        )
        return PlacementResult(
            order_id=order_id,
            external_order_id=created.order_id,
            external_order_number=created.order_number,
            external_status=created.order_status,
            retried=retry,
        )

    def _reserve(self, order_id: str, logistic_name: Optional[str], attempt_id: str, *, retry: bool):
        """Validate the order and claim its fulfillment record in one transaction."""
        try:
            with self._session_factory() as session:
                order = session.get(Order, order_id)
                if order is None:
                    raise NotFoundError("Order not found", order_id=order_id)
                record = (
                    session.query(FulfillmentRecord)
                    .filter(FulfillmentRecord.order_id == order_id)
                    .with_for_update()
                    .first()
                )
                self._check_record(order_id, record, retry=retry)
                if order.payment_status != "paid":
                    raise NotPaidError("Order not paid", order_id=order_id)
                if not order.items:
                    raise ValidationError("Order has no items", order_id=order_id)
                request = self._build_request(order, logistic_name)

                reservation = {
                    "attempt_id": attempt_id,
                    "external_status": PLACING_STATUS,
                    "error_message": None,
                    "last_synced_at": self._clock(),
                }
                if record is None:
                    session.add(FulfillmentRecord(id=str(uuid4()), order_id=order_id, **reservation))
                    session.flush()
                else:
                    for key, value in reservation.items():
                        setattr(record, key, value)
                return request, order.order_number
        except IntegrityError as exc:
            # unique order_id: a concurrent placement reserved first
            raise AlreadyPlacedError("Order already placed with the fulfillment provider", order_id=order_id) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to reserve order for placement: {exc}", order_id=order_id) from exc

    def _check_record(self, order_id: str, record: Optional[FulfillmentRecord], *, retry: bool) -> None:
        if not retry:
            if record is not None:
                raise AlreadyPlacedError("Order already placed with the fulfillment provider", order_id=order_id)
            return
        if record is None:
            raise NotFoundError("No previous placement attempt to retry", order_id=order_id)
        if record.is_failed:
            return
        if record.is_placing:
            started = record.last_synced_at
            if started is None or self._clock() - started >= self._stale_after:
                return
            raise AlreadyPlacedError("Placement already in progress", order_id=order_id)
        raise AlreadyPlacedError("Order already placed with the fulfillment provider", order_id=order_id)

    @staticmethod
    def _build_request(order: Order, logistic_name: Optional[str]) -> CreateOrderRequest:
        name = (order.shipping_name or "").strip()
        city = (order.shipping_city or "").strip()
        line1 = (order.shipping_address_line1 or "").strip()
        line2 = (order.shipping_address_line2 or "").strip()
        if not name:
            raise ValidationError("Shipping name is required", order_id=order.id)
        if not city:
            raise ValidationError("Shipping city is required", order_id=order.id)
        if not line1:
            raise ValidationError("Shipping address is required", order_id=order.id)

        country_code = order_country_code(order)
        raw_country = (order.shipping_country or order.billing_country or "").strip()
        return CreateOrderRequest(
            order_number=order.order_number,
            shipping_address=ShippingAddress(
                country_code=country_code,
                country=raw_country or country_code,
                province=(order.shipping_province or "").strip() or city,
                city=city,
                address=line1,
                address2=line2 or None,
                zip=(order.shipping_postal_code or "").strip() or "0000",
                phone=(order.shipping_phone or "").strip() or "0000000000",
                full_name=name,
            ),
            products=build_order_lines(order.items),
            remark=order.customer_notes or "",
            logistic_name=logistic_name,
        )

    def _resolve(self, order_id: str, attempt_id: str, values: dict) -> bool:
        """Write the outcome onto our reservation. False when another attempt owns the record."""
        with self._session_factory() as session:
            record = (
                session.query(FulfillmentRecord)
                .filter(FulfillmentRecord.order_id == order_id, FulfillmentRecord.attempt_id == attempt_id)
                .with_for_update()
                .first()
            )
            if record is None:
                return False
            for key, value in values.items():
                setattr(record, key, value)
            return True

    def _record_failure(self, order_id: str, attempt_id: str, message: str) -> None:
        values = {"external_status": FAILED_STATUS, "error_message": message, "last_synced_at": self._clock()}
        try:
            owned = self._resolve(order_id, attempt_id, values)
        except SQLAlchemyError as exc:
            self.logger.exception("Failed to record placement failure for %s", order_id)
            raise PersistenceError(f"Failed to save fulfillment record: {exc}", order_id=order_id) from exc
        if not owned:
            log_event("warning", "placement.superseded", order_id=order_id, error=message)

    def _record_success(self, order_id: str, attempt_id: str, created) -> bool:
        now = self._clock()
        values = {
            "external_order_id": created.order_id,
            "external_order_number": created.order_number,
            "external_status": created.order_status or "Created",
            "tracking_number": created.tracking_number,
            "logistic_name": created.logistic_name,
            "error_message": None,
            "placed_at": now,
            "last_synced_at": now,
        }
        try:
            return self._resolve(order_id, attempt_id, values)
        except SQLAlchemyError as exc:
            # the provider holds an order the store could not record
            self.logger.exception("Failed to save fulfillment record for %s", order_id)
            log_event("error", "placement.unrecorded", order_id=order_id, external_order_id=created.order_id)
            raise PersistenceError(
                f"Order {created.order_id} was placed but could not be recorded: {exc}", order_id=order_id
            ) from exc

    def _report_conflict(self, order_id: str, order_number: Optional[str], created) -> None:
        log_event("error", "placement.conflict", order_id=order_id, external_order_id=created.order_id)
        notify_admins(
            self._session_factory,
            type="order",
            title="Order Placement Conflict",
            message=(
                f"Order #{order_number} was accepted by the fulfillment provider as {created.order_id} "
                "but another placement attempt took over its record"
            ),
            link=f"/orders/{order_id}",
            data={"orderId": order_id, "orderNumber": order_number, "externalOrderId": created.order_id},
        )
        raise PlacementConflictError(
            f"Provider order {created.order_id} was created but another placement attempt owns this order",
            order_id=order_id,
            external_order_id=created.order_id,
        )
