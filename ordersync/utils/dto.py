from typing import Any, Dict, Optional


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def to_order_dto(row: Any) -> Dict:
    return {
        "id": getattr(row, "id", None),
        "order_number": getattr(row, "order_number", None),
        "status": getattr(row, "status", None),
        "payment_status": getattr(row, "payment_status", None),
        "total": float(getattr(row, "total", 0) or 0),
        "currency": getattr(row, "currency", None),
        "created_at": _iso(getattr(row, "created_at", None)),
        "shipped_at": _iso(getattr(row, "shipped_at", None)),
        "delivered_at": _iso(getattr(row, "delivered_at", None)),
        "tracking_number": getattr(row, "tracking_number", None),
        "tracking_url": getattr(row, "tracking_url", None),
    }


def to_fulfillment_dto(row: Any) -> Dict:
    return {
        "order_id": getattr(row, "order_id", None),
        "external_order_id": getattr(row, "external_order_id", None),
        "external_order_number": getattr(row, "external_order_number", None),
        "external_status": getattr(row, "external_status", None),
        "tracking_number": getattr(row, "tracking_number", None),
        "logistic_name": getattr(row, "logistic_name", None),
        "placed_at": _iso(getattr(row, "placed_at", None)),
        "last_synced_at": _iso(getattr(row, "last_synced_at", None)),
        "error_message": getattr(row, "error_message", None),
    }


def to_shipping_method_dto(method: Any) -> Dict:
    return {
        "logisticName": method.logistic_name,
        "logisticPrice": float(method.price),
        "logisticTime": method.aging,
    }


def to_tracking_dto(row: Any) -> Dict:
    return {
        "tracking_number": getattr(row, "tracking_number", None),
        "logistic_name": getattr(row, "logistic_name", None),
        "tracking_status": getattr(row, "tracking_status", None),
        "tracking_stage": getattr(row, "tracking_stage", None),
        "last_mile_carrier": getattr(row, "last_mile_carrier", None),
        "updated_at": _iso(getattr(row, "updated_at", None)),
    }
