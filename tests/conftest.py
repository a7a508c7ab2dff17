"""Shared fixtures: in-memory database, fake provider and fake email collaborators."""
import os

os.environ["DATABASE_URL"] = "sqlite://"

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from ordersync.db.session import build_engine, init_db, make_session_factory
from ordersync.models import FulfillmentRecord, Order, OrderItem, Product
from ordersync.services.provider_client import (
    CreatedOrder,
    OrderDetail,
    ProviderFailure,
    ProviderSuccess,
    ShippingMethod,
    TrackingEvent,
)
from ordersync.services.status_service import OrderStatusService


NOW = datetime(2026, 3, 1, 12, 0, 0)


class FakeProvider:
    """In-memory stand-in for FulfillmentProviderClient that records every call."""

    def __init__(self):
        self.calls = []
        self.create_result = ProviderSuccess(
            CreatedOrder(
                order_id="EXT-1001",
                order_number="EXT-N-1001",
                order_status="CREATED",
                tracking_number=None,
                logistic_name="CJPacket Ordinary",
            )
        )
        self.detail_result = ProviderFailure("order not found")
        self.shipping_result = ProviderSuccess([ShippingMethod("CJPacket Ordinary", Decimal("4.50"), "7-12")])
        self.track_results = {}
        self.default_track_result = ProviderSuccess(
            [TrackingEvent(tracking_number="TRK1", logistic_name="CJPacket", tracking_status="In transit")]
        )

    def _count(self, name):
        return sum(1 for call in self.calls if call[0] == name)

    @property
    def create_calls(self):
        return self._count("create_order")

    def create_order(self, request):
        self.calls.append(("create_order", request))
        return self.create_result

    def get_order_detail(self, external_order_id):
        self.calls.append(("get_order_detail", external_order_id))
        return self.detail_result

    def get_shipping_methods(self, products, end_country_code, start_country_code="CN"):
        self.calls.append(("get_shipping_methods", products, end_country_code))
        return self.shipping_result

    def get_track_info(self, track_number):
        self.calls.append(("get_track_info", track_number))
        result = self.track_results.get(track_number, self.default_track_result)
        if isinstance(result, Exception):
            raise result
        return result


class FakeEmailDispatcher:
    def __init__(self, result=True):
        self.result = result
        self.sent = []

    def send(self, **kwargs):
        self.sent.append(kwargs)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FakeUserDirectory:
    def __init__(self, emails=None):
        self.emails = emails or {}
        self.lookups = []

    def lookup_email(self, user_id):
        self.lookups.append(user_id)
        return self.emails.get(user_id)


@pytest.fixture
def engine():
    eng = build_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def email_dispatcher():
    return FakeEmailDispatcher()


@pytest.fixture
def user_directory():
    return FakeUserDirectory()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def status_service(session_factory, email_dispatcher, user_directory, clock):
    return OrderStatusService(session_factory, email_dispatcher, user_directory, clock=clock)


@pytest.fixture
def make_order(session_factory):
    """Insert an order with items and return its id."""

    def _make(
        *,
        status="pending",
        payment_status="paid",
        created_at=None,
        items=(("P1", None, 1),),
        **fields,
    ):
        order_id = fields.pop("id", None) or str(uuid4())
        defaults = dict(
            order_number=f"ORD-{order_id[:6]}",
            total=Decimal("250.00"),
            currency="ZAR",
            shipping_name="Thandi Mokoena",
            shipping_address_line1="12 Long Street",
            shipping_city="Cape Town",
            shipping_province="Western Cape",
            shipping_postal_code="8001",
            shipping_country="South Africa",
            shipping_phone="+27 82 555 0101",
            billing_name="Thandi Mokoena",
            billing_email="thandi@example.com",
        )
        defaults.update(fields)
        with session_factory() as session:
            order = Order(
                id=order_id,
                status=status,
                payment_status=payment_status,
                created_at=created_at or NOW - timedelta(hours=1),
                **defaults,
            )
            order.items = [
                OrderItem(id=str(uuid4()), product_id=pid, variant_id=vid, quantity=qty) for pid, vid, qty in items
            ]
            session.add(order)
        return order_id

    return _make


@pytest.fixture
def make_product(session_factory):
    def _make(product_id, base_price, provider_product_id=None):
        with session_factory() as session:
            session.add(
                Product(
                    id=product_id,
                    name=f"Product {product_id}",
                    base_price=base_price,
                    provider_product_id=provider_product_id,
                )
            )
        return product_id

    return _make


@pytest.fixture
def make_record(session_factory):
    def _make(order_id, **fields):
        with session_factory() as session:
            session.add(FulfillmentRecord(id=str(uuid4()), order_id=order_id, **fields))

    return _make


@pytest.fixture
def load(session_factory):
    """Fetch a fresh copy of a row by primary key."""

    def _load(model, key):
        with session_factory() as session:
            return session.get(model, key)

    return _load
