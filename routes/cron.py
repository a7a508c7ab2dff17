"""Scheduler entry points."""

from __future__ import annotations

import hmac

from flask import Blueprint, current_app, jsonify, request


cron_bp = Blueprint("ordersync_cron", __name__, url_prefix="/api/cron")


def _authorized() -> bool:
    secret = current_app.config["ORDERSYNC_CONFIG"].cron_secret
    if not secret:
        return True
    header = request.headers.get("Authorization", "")
    return hmac.compare_digest(header, f"Bearer {secret}")


@cron_bp.get("/cleanup-stale-orders")
def cleanup_stale_orders():
    if not _authorized():
        return jsonify({"error": "Unauthorized"}), 401
    report = current_app.extensions["ordersync_components"]["reaper"].run()
    status = 500 if report.error else 200
    return jsonify(report.to_dict()), status
