"""Fulfillment synchronization services and external collaborators."""

from .email_dispatcher import OrderStatusEmailDispatcher
from .exchange_rate import ExchangeRateCache
from .placement_service import FulfillmentPlacementService
from .provider_client import FulfillmentProviderClient
from .quote_service import ShippingQuoteService
from .reaper_service import StaleOrderReaper
from .status_service import OrderStatusService
from .tracking_service import TrackingOrchestrator, TrackingRefresher
from .user_directory import UserDirectory

__all__ = [
    "OrderStatusEmailDispatcher",
    "ExchangeRateCache",
    "FulfillmentPlacementService",
    "FulfillmentProviderClient",
    "ShippingQuoteService",
    "StaleOrderReaper",
    "OrderStatusService",
    "TrackingOrchestrator",
    "TrackingRefresher",
    "UserDirectory",
]
