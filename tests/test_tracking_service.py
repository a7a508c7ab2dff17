import pytest

from ordersync.errors import NoTrackingYetError, NotFoundError, UpstreamProviderError
from ordersync.models import FulfillmentRecord, Order, OrderTracking, TrackingStage
from ordersync.services.provider_client import OrderDetail, ProviderFailure, ProviderSuccess, TrackingEvent
from ordersync.services.tracking_service import (
    TrackingOrchestrator,
    TrackingRefreshResult,
    TrackingRefresher,
    is_forward_status_transition,
    map_provider_status_to_stage,
    map_stage_to_order_status,
)

from .conftest import NOW


@pytest.fixture
def refresher(provider, session_factory, clock):
    return TrackingRefresher(provider, session_factory, clock=clock)


@pytest.fixture
def orchestrator(refresher, status_service, session_factory):
    return TrackingOrchestrator(refresher, status_service, session_factory)


def _track(status, number="TRK1"):
    return ProviderSuccess([TrackingEvent(tracking_number=number, logistic_name="CJPacket", tracking_status=status)])


@pytest.mark.parametrize(
    "raw,stage",
    [
        ("Delivered", TrackingStage.DELIVERED),
        ("Delivery unsuccessful", TrackingStage.UNSUCCESSFUL_DELIVERY),
        ("Available for pickup", TrackingStage.AVAILABLE_FOR_PICKUP),
        ("Out for delivery", TrackingStage.OUT_FOR_DELIVERY),
        ("Arrived at courier facility", TrackingStage.ARRIVED_COURIER_FACILITY),
        ("In Transit", TrackingStage.EN_ROUTE),
        ("Dispatched", TrackingStage.DISPATCHED),
        ("Order created", TrackingStage.PROCESSING),
        ("something else", None),
        (None, None),
    ],
)
def test_stage_mapping(raw, stage):
    assert map_provider_status_to_stage(raw) == stage


def test_stage_to_order_status():
    assert map_stage_to_order_status(TrackingStage.DELIVERED) == "delivered"
    assert map_stage_to_order_status(TrackingStage.UNSUCCESSFUL_DELIVERY) == "shipped"
    assert map_stage_to_order_status(TrackingStage.PROCESSING) == "processing"
    assert map_stage_to_order_status(None) is None


def test_forward_transitions():
    assert is_forward_status_transition("processing", "shipped")
    assert is_forward_status_transition("shipped", "delivered")
    assert not is_forward_status_transition("delivered", "shipped")
    assert not is_forward_status_transition("shipped", "shipped")
    assert not is_forward_status_transition("cancelled", "delivered")
    assert not is_forward_status_transition("refunded", "shipped")


def test_no_tracking_number_is_reported_as_non_fault(refresher, make_order):
    order_id = make_order(status="processing")

    result = refresher.refresh_tracking(order_id)

    assert result.success is False
    assert result.no_tracking_yet is True
    assert result.error.startswith("No tracking number yet")


def test_orchestrator_raises_no_tracking_yet(orchestrator, make_order):
    order_id = make_order(status="processing")
    with pytest.raises(NoTrackingYetError) as excinfo:
        orchestrator.refresh_order(order_id)
    assert excinfo.value.status_code == 200


def test_refresh_persists_snapshot_and_ships_order(
    orchestrator, provider, email_dispatcher, make_order, make_record, load
):
    order_id = make_order(status="processing")
    make_record(order_id, external_order_id="EXT-1", external_status="CREATED", tracking_number="TRK1")
    provider.track_results["TRK1"] = _track("In transit")

    result = orchestrator.refresh_order(order_id)

    assert result.success is True
    assert result.stage == TrackingStage.EN_ROUTE
    assert result.tracking_url == "https://www.cjpacket.com/?trackingNumber=TRK1"
    snapshot = load(OrderTracking, order_id)
    assert snapshot.tracking_stage == "en_route"
    assert snapshot.tracking_status == "In transit"
    assert snapshot.updated_at == NOW
    order = load(Order, order_id)
    assert order.status == "shipped"
    assert order.shipped_at == NOW
    assert [sent["new_status"] for sent in email_dispatcher.sent] == ["shipped"]


def test_delivered_stage_marks_order_delivered(orchestrator, provider, make_order, load):
    order_id = make_order(status="shipped", tracking_number="TRK9")
    provider.track_results["TRK9"] = _track("Delivered", "TRK9")

    orchestrator.refresh_order(order_id)

    order = load(Order, order_id)
    assert order.status == "delivered"
    assert order.delivered_at == NOW


def test_tracking_never_moves_status_backwards_or_out_of_cancelled(orchestrator, provider, email_dispatcher, make_order, load):
    delivered = make_order(status="delivered", tracking_number="A1")
    cancelled = make_order(status="cancelled", tracking_number="B1")
    provider.track_results["A1"] = _track("In transit", "A1")
    provider.track_results["B1"] = _track("Delivered", "B1")

    orchestrator.refresh_order(delivered)
    orchestrator.refresh_order(cancelled)

    assert load(Order, delivered).status == "delivered"
    assert load(Order, cancelled).status == "cancelled"
    assert email_dispatcher.sent == []


def test_tracking_number_pulled_from_order_detail(refresher, provider, make_order, make_record, session_factory, load):
    order_id = make_order(status="processing")
    make_record(order_id, external_order_id="EXT-5", external_status="CREATED")
    provider.detail_result = ProviderSuccess(
        OrderDetail(order_id="EXT-5", order_number="N5", order_status="SHIPPED", track_number="TRK5")
    )
    provider.track_results["TRK5"] = _track("Dispatched", "TRK5")

    result = refresher.refresh_tracking(order_id)

    assert result.saved is True
    assert result.track_number == "TRK5"
    order = load(Order, order_id)
    assert order.tracking_number == "TRK5"
    assert order.tracking_url.endswith("TRK5")
    with session_factory() as session:
        record = session.query(FulfillmentRecord).filter_by(order_id=order_id).one()
        assert record.tracking_number == "TRK5"
        assert record.last_synced_at == NOW


def test_provider_failure_is_upstream_error(orchestrator, provider, make_order):
    order_id = make_order(status="shipped", tracking_number="TRK2")
    provider.track_results["TRK2"] = ProviderFailure("rate limited")
    with pytest.raises(UpstreamProviderError) as excinfo:
        orchestrator.refresh_order(order_id)
    assert excinfo.value.message == "rate limited"


def test_unknown_order(orchestrator):
    with pytest.raises(NotFoundError):
        orchestrator.refresh_order("missing")


def test_sweep_isolates_failures_and_skips_untracked(orchestrator, provider, make_order):
    ok = make_order(status="shipped", tracking_number="OK1")
    make_order(status="processing")
    broken = make_order(status="shipped", tracking_number="BAD1")
    exploding = make_order(status="shipped", tracking_number="BOOM")
    make_order(status="pending", tracking_number="IGNORED")
    make_order(status="delivered", tracking_number="DONE")
    provider.track_results["OK1"] = _track("In transit", "OK1")
    provider.track_results["BAD1"] = ProviderFailure("upstream 500")
    provider.track_results["BOOM"] = RuntimeError("socket closed")

    report = orchestrator.sweep(limit=50)

    assert (report.updated, report.skipped, report.failed) == (1, 1, 2)
    assert {f["order_id"] for f in report.failures} == {broken, exploding}
    polled = {call[1] for call in provider.calls if call[0] == "get_track_info"}
    assert polled == {"OK1", "BAD1", "BOOM"}
    assert ok


def test_sweep_respects_batch_limit(orchestrator, provider, make_order):
    for i in range(5):
        make_order(status="shipped", tracking_number=f"T{i}")

    report = orchestrator.sweep(limit=3)

    assert report.updated == 3
    assert len([c for c in provider.calls if c[0] == "get_track_info"]) == 3


class _ThreadSafeRefresher:
    """Refresher stub that touches no database, so it can run on worker threads."""

    def __init__(self, failing):
        self.failing = failing
        self.seen = []

    def refresh_tracking(self, order_id):
        self.seen.append(order_id)
        if order_id in self.failing:
            return TrackingRefreshResult(success=False, error="provider down")
        return TrackingRefreshResult(success=True, track_number="T", stage=None)


def test_parallel_sweep_counts_every_order(status_service, session_factory, make_order):
    ids = [make_order(status="shipped", tracking_number=f"P{i}") for i in range(6)]
    refresher = _ThreadSafeRefresher(failing={ids[2]})
    orchestrator = TrackingOrchestrator(refresher, status_service, session_factory, max_workers=4)

    report = orchestrator.sweep(limit=50)

    assert sorted(refresher.seen) == sorted(ids)
    assert (report.updated, report.failed) == (5, 1)
