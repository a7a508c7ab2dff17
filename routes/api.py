"""Order fulfillment API routes."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from ordersync.errors import NoTrackingYetError, NotFoundError, OrderSyncError, ValidationError
from ordersync.models import FulfillmentRecord, Order, OrderTracking
from ordersync.utils.dto import to_fulfillment_dto, to_order_dto, to_tracking_dto
from ordersync.utils.validators import optional_text, require_order_id


api_bp = Blueprint("ordersync_api", __name__, url_prefix="/api")


def _components() -> Dict[str, Any]:
    return current_app.extensions["ordersync_components"]


@api_bp.errorhandler(OrderSyncError)
def handle_order_sync_error(exc: OrderSyncError):
    return jsonify(exc.to_dict()), exc.status_code


@api_bp.patch("/orders/<order_id>/status")
def update_order_status(order_id: str):
    payload = request.get_json(silent=True) or {}
    result = _components()["status_service"].update_status(order_id, payload.get("status"))
    return jsonify(result.to_dict())


@api_bp.post("/orders/place")
def place_order():
    payload = request.get_json(silent=True) or {}
    order_id = require_order_id(payload.get("orderId"))
    result = _components()["placement_service"].place_order(order_id, optional_text(payload.get("logisticName")))
    return jsonify(result.to_dict())


@api_bp.post("/orders/<order_id>/retry-placement")
def retry_placement(order_id: str):
    payload = request.get_json(silent=True) or {}
    result = _components()["placement_service"].retry_placement(order_id, optional_text(payload.get("logisticName")))
    return jsonify(result.to_dict())


@api_bp.get("/orders/<order_id>/tracking")
def order_tracking(order_id: str):
    try:
        result = _components()["tracking_orchestrator"].refresh_order(order_id)
    except NoTrackingYetError as exc:
        return jsonify(exc.to_dict()), 200
    return jsonify(
        {
            "success": True,
            "data": [vars(event) for event in result.events],
            "trackNumber": result.track_number,
            "trackingUrl": result.tracking_url,
            "trackingStage": result.stage.value if result.stage else None,
            "saved": result.saved,
        }
    )


@api_bp.get("/orders/<order_id>/shipping-options")
def shipping_options(order_id: str):
    quote = _components()["quote_service"].quote(order_id)
    return jsonify(quote.to_dict())


@api_bp.get("/orders/<order_id>/provider-detail")
def provider_order_detail(order_id: str):
    order_id = require_order_id(order_id)
    with _components()["session_factory"]() as session:
        record = session.query(FulfillmentRecord).filter(FulfillmentRecord.order_id == order_id).first()
        external_id = (record.external_order_id or "").strip() if record else ""
    if not external_id:
        raise ValidationError("This order has not been placed with the fulfillment provider", order_id=order_id)
    result = _components()["provider"].get_order_detail(external_id)
    if not result.ok:
        return jsonify({"success": False, "error": result.message or "Failed to fetch order detail"}), 502
    return jsonify({"success": True, "data": result.data.raw})


@api_bp.get("/orders/<order_id>/fulfillment")
def order_fulfillment(order_id: str):
    order_id = require_order_id(order_id)
    with _components()["session_factory"]() as session:
        order = session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found", order_id=order_id)
        record = session.query(FulfillmentRecord).filter(FulfillmentRecord.order_id == order_id).first()
        tracking = session.get(OrderTracking, order_id)
        body = {
            "success": True,
            "order": to_order_dto(order),
            "fulfillment": to_fulfillment_dto(record) if record else None,
            "tracking": to_tracking_dto(tracking) if tracking else None,
        }
    return jsonify(body)


@api_bp.get("/exchange-rate")
def exchange_rate():
    quote = _components()["exchange_rates"].get_rate()
    return jsonify({"success": True, "data": quote.to_dict()})
