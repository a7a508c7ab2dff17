"""Tracking refresh: provider polling, stage mapping and order status sync."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import quote

from sqlalchemy.exc import SQLAlchemyError

from ..db.session import get_session
from ..errors import NoTrackingYetError, NotFoundError, OrderSyncError, PersistenceError, UpstreamProviderError
from ..models.fulfillment_record import FulfillmentRecord
from ..models.order import Order
from ..models.order_tracking import OrderTracking, TrackingStage
from ..utils.clock import utcnow
from ..utils.validators import require_order_id
from .logging import log_event


TRACKING_BASE_URL = "https://www.cjpacket.com/?trackingNumber="
ACTIVE_STATUSES = ("processing", "shipped")

_STATUS_RANK = {"pending": 0, "processing": 1, "shipped": 2, "delivered": 3}
_TERMINAL_STATUSES = ("cancelled", "refunded")

# checked in order; first match wins
_STAGE_KEYWORDS = (
    (TrackingStage.DELIVERED, ("delivered",)),
    (TrackingStage.UNSUCCESSFUL_DELIVERY, ("unsuccessful", "failed", "failure")),
    (TrackingStage.AVAILABLE_FOR_PICKUP, ("pickup", "pick up", "available")),
    (TrackingStage.OUT_FOR_DELIVERY, ("out for delivery",)),
    (TrackingStage.ARRIVED_COURIER_FACILITY, ("arrived", "courier", "facility")),
    (TrackingStage.EN_ROUTE, ("en route", "transit")),
    (TrackingStage.DISPATCHED, ("dispatched", "shipped")),
    (TrackingStage.PROCESSING, ("processing", "created", "pending")),
)


def map_provider_status_to_stage(raw_status: Optional[str]) -> Optional[TrackingStage]:
    if not raw_status or not isinstance(raw_status, str):
        return None
    text = raw_status.lower().strip()
    for stage, keywords in _STAGE_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return stage
    return None


def map_stage_to_order_status(stage: Optional[TrackingStage]) -> Optional[str]:
    if stage is None:
        return None
    if stage == TrackingStage.DELIVERED:
        return "delivered"
    if stage == TrackingStage.PROCESSING:
        return "processing"
    return "shipped"


def is_forward_status_transition(current: Optional[str], target: Optional[str]) -> bool:
    """Tracking may only move an order forward and never out of cancelled/refunded."""
    if not current or not target or current == target:
        return False
    if current in _TERMINAL_STATUSES:
        return False
    if current not in _STATUS_RANK or target not in _STATUS_RANK:
        return False
    return _STATUS_RANK[target] > _STATUS_RANK[current]


def default_tracking_url(track_number: str) -> str:
    return f"{TRACKING_BASE_URL}{quote(track_number, safe='')}"


@dataclass
class TrackingRefreshResult:
    success: bool
    error: Optional[str] = None
    no_tracking_yet: bool = False
    not_found: bool = False
    events: list = field(default_factory=list)
    track_number: Optional[str] = None
    tracking_url: Optional[str] = None
    saved: bool = False
    stage: Optional[TrackingStage] = None


@dataclass
class _TrackingRef:
    order_id: str
    record_id: Optional[str]
    external_order_id: Optional[str]
    track_number: str
    tracking_url: str


class TrackingRefresher:
    """Query provider tracking for one order and persist the mapped snapshot."""

    def __init__(self, provider, session_factory=get_session, clock=utcnow):
        self._provider = provider
        self._session_factory = session_factory
        self._clock = clock
        self.logger = logging.getLogger(__name__)

    def _load_ref(self, order_id: str) -> Optional[_TrackingRef]:
        with self._session_factory() as session:
            order = session.get(Order, order_id)
            if order is None:
                return None
            record = session.query(FulfillmentRecord).filter(FulfillmentRecord.order_id == order_id).first()
            track_number = ((record.tracking_number if record else None) or order.tracking_number or "").strip()
            return _TrackingRef(
                order_id=order_id,
                record_id=record.id if record else None,
                external_order_id=((record.external_order_id if record else None) or "").strip() or None,
                track_number=track_number,
                tracking_url=(order.tracking_url or "").strip(),
            )

    def _save_tracking_number(self, ref: _TrackingRef) -> None:
        with self._session_factory() as session:
            order = session.get(Order, ref.order_id)
            if order is not None:
                order.tracking_number = ref.track_number
                order.tracking_url = ref.tracking_url or None
            if ref.record_id:
                record = session.get(FulfillmentRecord, ref.record_id)
                if record is not None:
                    record.tracking_number = ref.track_number

    def _save_snapshot(self, ref: _TrackingRef, first, stage: Optional[TrackingStage]) -> None:
        now = self._clock()
        with self._session_factory() as session:
            row = session.get(OrderTracking, ref.order_id)
            if row is None:
                row = OrderTracking(order_id=ref.order_id)
                session.add(row)
            if first is not None:
                row.tracking_number = first.tracking_number or ref.track_number
                row.logistic_name = first.logistic_name
                row.tracking_from = first.tracking_from
                row.tracking_to = first.tracking_to
                row.delivery_day = first.delivery_day
                row.delivery_time = first.delivery_time
                row.tracking_status = first.tracking_status
                row.last_mile_carrier = first.last_mile_carrier
                row.last_track_number = first.last_track_number
            else:
                row.tracking_number = ref.track_number
            row.tracking_stage = stage.value if stage else None
            row.updated_at = now
            if ref.record_id:
                record = session.get(FulfillmentRecord, ref.record_id)
                if record is not None:
                    record.last_synced_at = now

    def refresh_tracking(self, order_id: str) -> TrackingRefreshResult:
        try:
            ref = self._load_ref(order_id)
            if ref is None:
                return TrackingRefreshResult(success=False, error="Order not found", not_found=True)

            saved = False
            if not ref.track_number and ref.external_order_id:
                detail = self._provider.get_order_detail(ref.external_order_id)
                if detail.ok and detail.data.track_number:
                    ref.track_number = detail.data.track_number
                    ref.tracking_url = detail.data.tracking_url or default_tracking_url(ref.track_number)
                    self._save_tracking_number(ref)
                    saved = True
            elif ref.track_number and not ref.tracking_url:
                ref.tracking_url = default_tracking_url(ref.track_number)

            if not ref.track_number:
                return TrackingRefreshResult(success=False, error=NoTrackingYetError.DEFAULT_MESSAGE, no_tracking_yet=True)

            result = self._provider.get_track_info(ref.track_number)
            if not result.ok:
                return TrackingRefreshResult(success=False, error=result.message or "Failed to fetch tracking")

            events = result.data or []
            first = events[0] if events else None
            stage = map_provider_status_to_stage(first.tracking_status) if first else None
            self._save_snapshot(ref, first, stage)
            return TrackingRefreshResult(
                success=True,
                events=events,
                track_number=ref.track_number,
                tracking_url=ref.tracking_url or None,
                saved=saved,
                stage=stage,
            )
        except SQLAlchemyError as exc:
            self.logger.exception("Tracking refresh failed for order %s", order_id)
            raise PersistenceError(f"Failed to persist tracking: {exc}", order_id=order_id) from exc


@dataclass
class SweepReport:
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    failures: List[dict] = field(default_factory=list)


class TrackingOrchestrator:
    """Refresh tracking for single orders and sweep the in-flight batch."""

    def __init__(self, refresher: TrackingRefresher, status_service, session_factory=get_session, max_workers: int = 1):
        self._refresher = refresher
        self._status_service = status_service
        self._session_factory = session_factory
        self._max_workers = max(1, int(max_workers or 1))
        self.logger = logging.getLogger(__name__)

    def refresh_order(self, order_id: str) -> TrackingRefreshResult:
        order_id = require_order_id(order_id)
        result = self._refresher.refresh_tracking(order_id)
        if not result.success:
            if result.no_tracking_yet:
                raise NoTrackingYetError(result.error, order_id=order_id)
            if result.not_found:
                raise NotFoundError(result.error, order_id=order_id)
            raise UpstreamProviderError(result.error or "Failed to fetch tracking", order_id=order_id)

        log_event("info", "tracking.refreshed", order_id=order_id, stage=result.stage.value if result.stage else None)
        self._sync_status(order_id, result.stage)
        return result

    def _sync_status(self, order_id: str, stage: Optional[TrackingStage]) -> None:
        target = map_stage_to_order_status(stage)
        if target is None:
            return
        with self._session_factory() as session:
            order = session.get(Order, order_id)
            current = order.status if order is not None else None
        if is_forward_status_transition(current, target):
            self._status_service.update_status(order_id, target)

    def _active_order_ids(self, limit: int) -> List[str]:
        with self._session_factory() as session:
            rows = (
                session.query(Order.id)
                .outerjoin(FulfillmentRecord, FulfillmentRecord.order_id == Order.id)
                .filter(Order.status.in_(ACTIVE_STATUSES))
                .order_by(FulfillmentRecord.last_synced_at.asc().nullsfirst(), Order.created_at.asc())
                .limit(limit)
                .all()
            )
            return [row[0] for row in rows]

    def _refresh_one(self, order_id: str) -> str:
        try:
            self.refresh_order(order_id)
            return "updated"
        except NoTrackingYetError:
            return "skipped"
        except OrderSyncError as exc:
            log_event("warning", "tracking.sweep_item_failed", order_id=order_id, error=exc.message)
            return "failed"
        except Exception:
            self.logger.exception("Unexpected tracking refresh failure for order %s", order_id)
            return "failed"

    def sweep(self, limit: int = 50) -> SweepReport:
        """Refresh up to ``limit`` in-flight orders; one order's failure never stops the rest."""
        order_ids = self._active_order_ids(limit)
        report = SweepReport()
        if self._max_workers == 1 or len(order_ids) <= 1:
            outcomes = [self._refresh_one(order_id) for order_id in order_ids]
        else:
            with ThreadPoolExecutor(max_workers=min(self._max_workers, len(order_ids))) as executor:
                outcomes = list(executor.map(self._refresh_one, order_ids))
        for order_id, outcome in zip(order_ids, outcomes):
            if outcome == "updated":
                report.updated += 1
            elif outcome == "skipped":
                report.skipped += 1
            else:
                report.failed += 1
                report.failures.append({"order_id": order_id})
        log_event(
            "info", "tracking.sweep", selected=len(order_ids), updated=report.updated, skipped=report.skipped, failed=report.failed
        )
        return report
