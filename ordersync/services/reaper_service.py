import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..db.session import get_session
from ..models.order import Order, OrderItem
from ..utils.clock import utcnow
from .logging import log_event


STALE_ORDER_GRACE = timedelta(minutes=15)
TRACKING_BATCH_SIZE = 50


@dataclass
class ReaperReport:
    deleted_count: int = 0
    tracking_updated_count: int = 0
    error: Optional[str] = None
    tracking_error: Optional[str] = None

    def to_dict(self) -> dict:
        body = {"deleted": self.deleted_count, "trackingUpdated": self.tracking_updated_count}
        if self.error:
            body["error"] = self.error
        if self.tracking_error:
            body["trackingError"] = self.tracking_error
        return body


class StaleOrderReaper:
    """Scheduled job: delete abandoned unpaid orders, then sweep in-flight tracking.

    The deletion pass and the sweep are independent failure domains. Safe to
    run repeatedly at any cadence.
    """

    def __init__(
        self,
        tracking_orchestrator,
        session_factory=get_session,
        grace: timedelta = STALE_ORDER_GRACE,
        batch_size: int = TRACKING_BATCH_SIZE,
        clock=utcnow,
    ):
        self._tracking = tracking_orchestrator
        self._session_factory = session_factory
        self._grace = grace
        self._batch_size = batch_size
        self._clock = clock
        self.logger = logging.getLogger(__name__)

    def delete_stale_orders(self, now: Optional[datetime] = None) -> int:
        """Delete every pending/unpaid order created before ``now - grace`` in one transaction."""
        cutoff = (now or self._clock()) - self._grace
        with self._session_factory() as session:
            ids = [
                row[0]
                for row in session.query(Order.id)
                .filter(Order.status == "pending", Order.payment_status == "pending", Order.created_at < cutoff)
                .all()
            ]
            if not ids:
                return 0
            session.query(OrderItem).filter(OrderItem.order_id.in_(ids)).delete(synchronize_session=False)
            session.query(Order).filter(Order.id.in_(ids)).delete(synchronize_session=False)
            return len(ids)

    def run(self, now: Optional[datetime] = None) -> ReaperReport:
        report = ReaperReport()
        try:
            report.deleted_count = self.delete_stale_orders(now)
            log_event("info", "reaper.deleted", deleted=report.deleted_count)
        except SQLAlchemyError as exc:
            # nothing is committed on failure, so report zero progress
            self.logger.exception("Stale order cleanup failed")
            report.deleted_count = 0
            report.error = str(exc)

        try:
            sweep = self._tracking.sweep(limit=self._batch_size)
            report.tracking_updated_count = sweep.updated
        except SQLAlchemyError as exc:
            self.logger.exception("Tracking sweep failed")
            report.tracking_error = str(exc)
        return report
