from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app import build_components, create_app
from ordersync.config import AppConfig
from ordersync.models import Order
from ordersync.services.exchange_rate import RateQuote
from ordersync.services.provider_client import OrderDetail, ProviderSuccess
from ordersync.utils.clock import utcnow

from .conftest import FakeEmailDispatcher, FakeUserDirectory


class _StaticRates:
    def get_rate(self):
        return RateQuote(18.0, "USD", "ZAR", datetime(2026, 3, 1, 12))


def _config(**overrides):
    values = dict(
        database_url="sqlite://",
        secret_key="test",
        log_level="ERROR",
        provider_api_url="",
        provider_email="",
        provider_password="",
        provider_user_id="",
        provider_key="",
        provider_secret="",
        provider_timeout=5,
        provider_currency="USD",
        store_base_url="",
        store_currency="ZAR",
        order_status_email_secret="",
        auth_url="",
        auth_service_key="",
        cron_secret="s3cret",
        tracking_workers=1,
    )
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture
def components(session_factory, provider):
    return build_components(
        _config(),
        session_factory,
        provider=provider,
        email_dispatcher=FakeEmailDispatcher(),
        user_directory=FakeUserDirectory(),
        exchange_rates=_StaticRates(),
    )


@pytest.fixture
def client(components):
    app = create_app(_config(), components=components)
    app.config["TESTING"] = True
    return app.test_client()


def test_status_update(client, make_order, load):
    order_id = make_order(status="processing")
    response = client.patch(f"/api/orders/{order_id}/status", json={"status": "Shipped"})
    assert response.status_code == 200
    body = response.get_json()
    assert body["previousStatus"] == "processing"
    assert body["changed"] is True
    assert load(Order, order_id).shipped_at is not None


def test_status_update_rejects_unknown_status(client, make_order):
    order_id = make_order()
    response = client.patch(f"/api/orders/{order_id}/status", json={"status": "lost"})
    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_status_update_missing_order(client):
    response = client.patch("/api/orders/missing/status", json={"status": "shipped"})
    assert response.status_code == 404


def test_place_then_conflict(client, provider, make_order):
    order_id = make_order()
    first = client.post("/api/orders/place", json={"orderId": order_id})
    second = client.post("/api/orders/place", json={"orderId": order_id})

    assert first.status_code == 200
    assert first.get_json()["data"]["externalOrderId"] == "EXT-1001"
    assert second.status_code == 409
    assert provider.create_calls == 1


def test_place_requires_order_id(client):
    response = client.post("/api/orders/place", json={})
    assert response.status_code == 400


def test_place_unpaid_order(client, make_order):
    order_id = make_order(payment_status="pending")
    assert client.post("/api/orders/place", json={"orderId": order_id}).status_code == 400


def test_tracking_without_number_is_not_an_error(client, make_order, make_record):
    order_id = make_order(status="processing")
    make_record(order_id, external_order_id="EXT-1", external_status="CREATED")

    response = client.get(f"/api/orders/{order_id}/tracking")

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is False
    assert body["error"].startswith("No tracking number yet")


def test_tracking_refresh(client, make_order, make_record, load):
    order_id = make_order(status="processing", tracking_number="TRK1")
    make_record(order_id, external_order_id="EXT-1", external_status="CREATED")

    response = client.get(f"/api/orders/{order_id}/tracking")

    body = response.get_json()
    assert response.status_code == 200
    assert body["trackingStage"] == "en_route"
    assert body["data"][0]["tracking_number"] == "TRK1"
    assert load(Order, order_id).status == "shipped"


def test_shipping_options(client, make_order, make_product):
    make_product("P1", Decimal("5.00"))
    order_id = make_order(items=[("P1", None, 2)])

    body = client.get(f"/api/orders/{order_id}/shipping-options").get_json()

    assert body["endCountryCode"] == "ZA"
    assert body["productCost"] == 10.0
    assert body["exchangeRate"] == 18.0
    assert body["data"][0]["logisticName"] == "CJPacket Ordinary"


def test_provider_detail_requires_placement(client, make_order):
    order_id = make_order()
    assert client.get(f"/api/orders/{order_id}/provider-detail").status_code == 400


def test_provider_detail_failure_is_bad_gateway(client, make_order, make_record):
    order_id = make_order()
    make_record(order_id, external_order_id="EXT-1", external_status="CREATED")
    assert client.get(f"/api/orders/{order_id}/provider-detail").status_code == 502


def test_provider_detail(client, provider, make_order, make_record):
    order_id = make_order()
    make_record(order_id, external_order_id="EXT-1", external_status="CREATED")
    provider.detail_result = ProviderSuccess(
        OrderDetail(order_id="EXT-1", order_number="N1", order_status="SHIPPED", raw={"orderId": "EXT-1"})
    )
    body = client.get(f"/api/orders/{order_id}/provider-detail").get_json()
    assert body == {"success": True, "data": {"orderId": "EXT-1"}}


def test_exchange_rate(client):
    body = client.get("/api/exchange-rate").get_json()
    assert body["data"]["rate"] == 18.0
    assert body["data"]["to"] == "ZAR"


def test_cron_requires_bearer_secret(client):
    assert client.get("/api/cron/cleanup-stale-orders").status_code == 401
    wrong = client.get("/api/cron/cleanup-stale-orders", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401


def test_cron_cleanup(client, make_order):
    make_order(status="pending", payment_status="pending", created_at=utcnow() - timedelta(hours=1))
    response = client.get("/api/cron/cleanup-stale-orders", headers={"Authorization": "Bearer s3cret"})
    assert response.status_code == 200
    assert response.get_json() == {"deleted": 1, "trackingUpdated": 0}


def test_cron_reports_delete_failure(client, components, monkeypatch):
    from sqlalchemy.exc import OperationalError

    def broken(now=None):
        raise OperationalError("DELETE", {}, Exception("disk I/O error"))

    monkeypatch.setattr(components["reaper"], "delete_stale_orders", broken)
    response = client.get("/api/cron/cleanup-stale-orders", headers={"Authorization": "Bearer s3cret"})
    assert response.status_code == 500
    assert response.get_json()["deleted"] == 0


def test_cli_command(components, make_order):
    make_order(status="pending", payment_status="pending", created_at=utcnow() - timedelta(hours=1))
    app = create_app(_config(), components=components)
    result = app.test_cli_runner().invoke(args=["reap-stale-orders"])
    assert result.exit_code == 0
    assert '"deleted": 1' in result.output


def test_fulfillment_summary(client, make_order, make_record):
    order_id = make_order(status="processing", tracking_number="TRK1")
    make_record(order_id, external_order_id="EXT-1", external_status="CREATED")
    client.get(f"/api/orders/{order_id}/tracking")

    body = client.get(f"/api/orders/{order_id}/fulfillment").get_json()

    assert body["order"]["status"] == "shipped"
    assert body["fulfillment"]["external_order_id"] == "EXT-1"
    assert body["tracking"]["tracking_stage"] == "en_route"


def test_fulfillment_summary_unknown_order(client):
    assert client.get("/api/orders/missing/fulfillment").status_code == 404
