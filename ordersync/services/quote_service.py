import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ..db.session import get_session
from ..errors import NotFoundError, PersistenceError, UpstreamProviderError, ValidationError
from ..models.order import Order
from ..models.product import Product
from ..utils.country import order_country_code
from ..utils.dto import to_shipping_method_dto
from ..utils.validators import require_order_id
from .placement_service import build_order_lines


@dataclass
class ShippingQuote:
    order_id: str
    end_country_code: str
    order_total: Decimal
    currency: str
    # None when any item has no known cost
    product_cost: Optional[Decimal]
    methods: List = field(default_factory=list)
    exchange_rate: Optional[float] = None
    product_cost_converted: Optional[Decimal] = None

    def estimated_margin(self, method) -> Optional[Decimal]:
        """Order total minus landed cost and shipping, in the store currency when a rate is known."""
        if self.product_cost is None:
            return None
        cost = self.product_cost + method.price
        if self.exchange_rate is not None:
            cost = (cost * Decimal(str(self.exchange_rate))).quantize(Decimal("0.01"))
        return self.order_total - cost

    def to_dict(self) -> dict:
        return {
            "success": True,
            "data": [to_shipping_method_dto(m) for m in self.methods],
            "endCountryCode": self.end_country_code,
            "orderTotal": float(self.order_total),
            "currency": self.currency,
            "productCost": float(self.product_cost) if self.product_cost is not None else None,
            "exchangeRate": self.exchange_rate,
            "productCostConverted": (
                float(self.product_cost_converted) if self.product_cost_converted is not None else None
            ),
        }


class ShippingQuoteService:
    """Price an order against provider shipping methods before placement. Read-only."""

    def __init__(self, provider, session_factory=get_session, exchange_rates=None, provider_currency: str = "USD"):
        self._provider = provider
        self._session_factory = session_factory
        self._exchange_rates = exchange_rates
        self._provider_currency = provider_currency
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def landed_cost(session, items) -> Optional[Decimal]:
        """Sum of cost x quantity, or None if any item cannot be priced."""
        total = Decimal("0")
        for item in items:
            product = (
                session.query(Product)
                .filter(or_(Product.id == item.product_id, Product.provider_product_id == item.product_id))
                .order_by((Product.id == item.product_id).desc())
                .first()
            )
            if product is None or product.base_price is None:
                return None
            total += Decimal(str(product.base_price)) * int(item.quantity)
        return total

    def quote(self, order_id: str) -> ShippingQuote:
        order_id = require_order_id(order_id)
        try:
            with self._session_factory() as session:
                order = session.get(Order, order_id)
                if order is None:
                    raise NotFoundError("Order not found", order_id=order_id)
                if not order.items:
                    raise ValidationError("Order has no items", order_id=order_id)
                lines = build_order_lines(order.items)
                cost = self.landed_cost(session, order.items)
                end_country = order_country_code(order)
                total = Decimal(str(order.total or 0))
                currency = order.currency
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load order: {exc}", order_id=order_id) from exc

        result = self._provider.get_shipping_methods(lines, end_country)
        if not result.ok:
            raise UpstreamProviderError(result.message or "Failed to fetch shipping options", order_id=order_id)

        quote = ShippingQuote(
            order_id=order_id,
            end_country_code=end_country,
            order_total=total,
            currency=currency,
            product_cost=cost,
            methods=list(result.data),
        )
        if self._exchange_rates is not None and currency and currency != self._provider_currency:
            rate = self._exchange_rates.get_rate()
            quote.exchange_rate = rate.rate
            if cost is not None:
                quote.product_cost_converted = (cost * Decimal(str(rate.rate))).quantize(Decimal("0.01"))
        return quote
