"""Error taxonomy for the fulfillment synchronization engine.

Every error carries the HTTP status the blueprints answer with, so route
handlers only need a single ``except OrderSyncError`` branch.
"""

from typing import Any, Dict, Optional


class OrderSyncError(Exception):
    status_code = 500

    def __init__(self, message: str, *, order_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.order_id = order_id

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message}


class ValidationError(OrderSyncError):
    """Bad input, rejected before any external call."""

    status_code = 400


class NotPaidError(ValidationError):
    pass


class NotFoundError(OrderSyncError):
    status_code = 404


class AlreadyPlacedError(OrderSyncError):
    """The order already has a fulfillment record; the provider was not contacted."""

    status_code = 409


class UpstreamProviderError(OrderSyncError):
    """The provider call failed or answered with success=false."""

    status_code = 502


class NoTrackingYetError(OrderSyncError):
    """No tracking number has been assigned yet. Not a fault."""

    status_code = 200

    DEFAULT_MESSAGE = (
        "No tracking number yet. The provider has not assigned a tracking number "
        "for this order. Try again later once the order is shipped."
    )

    def __init__(self, message: Optional[str] = None, *, order_id: Optional[str] = None) -> None:
        super().__init__(message or self.DEFAULT_MESSAGE, order_id=order_id)


class PersistenceError(OrderSyncError):
    status_code = 500


class PlacementConflictError(OrderSyncError):
    """The provider accepted the order but another attempt took over the placement record.

    Unlike ``AlreadyPlacedError`` the provider *was* called; ``external_order_id``
    names the provider order that needs manual reconciliation.
    """

    status_code = 409

    def __init__(self, message: str, *, order_id: Optional[str] = None, external_order_id: Optional[str] = None) -> None:
        super().__init__(message, order_id=order_id)
        self.external_order_id = external_order_id

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["externalOrderId"] = self.external_order_id
        return body
