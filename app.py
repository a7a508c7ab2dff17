"""Order fulfillment synchronization Flask application."""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Any, Dict, Optional

import click
from flask import Flask

from ordersync.config import AppConfig, load_env
from ordersync.db.session import build_engine, init_db, make_session_factory
from ordersync.services import (
    ExchangeRateCache,
    FulfillmentPlacementService,
    FulfillmentProviderClient,
    OrderStatusEmailDispatcher,
    OrderStatusService,
    ShippingQuoteService,
    StaleOrderReaper,
    TrackingOrchestrator,
    TrackingRefresher,
    UserDirectory,
)
from ordersync.services.logging import set_log_level
from routes import api_bp, cron_bp


def build_components(
    config: AppConfig,
    session_factory,
    *,
    provider=None,
    email_dispatcher=None,
    user_directory=None,
    exchange_rates=None,
) -> Dict[str, Any]:
    """Wire the engine. Collaborators may be injected; otherwise they are built from config."""
    provider = provider or FulfillmentProviderClient.from_config(config)
    email_dispatcher = email_dispatcher or OrderStatusEmailDispatcher.from_config(config)
    user_directory = user_directory or UserDirectory.from_config(config)
    exchange_rates = exchange_rates or ExchangeRateCache.from_config(config)

    status_service = OrderStatusService(session_factory, email_dispatcher, user_directory)
    refresher = TrackingRefresher(provider, session_factory)
    tracking = TrackingOrchestrator(refresher, status_service, session_factory, max_workers=config.tracking_workers)
    return {
        "session_factory": session_factory,
        "provider": provider,
        "exchange_rates": exchange_rates,
        "status_service": status_service,
        "placement_service": FulfillmentPlacementService(provider, status_service, session_factory),
        "tracking_orchestrator": tracking,
        "quote_service": ShippingQuoteService(
            provider, session_factory, exchange_rates=exchange_rates, provider_currency=config.provider_currency
        ),
        "reaper": StaleOrderReaper(
            tracking,
            session_factory,
            grace=timedelta(minutes=config.stale_order_minutes),
            batch_size=config.tracking_batch_size,
        ),
    }


def create_app(config: Optional[AppConfig] = None, components: Optional[Dict[str, Any]] = None) -> Flask:
    config = config or load_env()
    set_log_level(config.log_level)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["ORDERSYNC_CONFIG"] = config

    if components is None:
        engine = build_engine(config.database_url)
        init_db(engine)
        components = build_components(config, make_session_factory(engine))
    app.extensions["ordersync_components"] = components

    app.register_blueprint(api_bp)
    app.register_blueprint(cron_bp)

    @app.cli.command("reap-stale-orders")
    def reap_stale_orders():
        """Delete stale unpaid orders and refresh in-flight tracking."""
        report = components["reaper"].run()
        click.echo(json.dumps(report.to_dict()))
        if report.error:
            raise SystemExit(1)

    return app


def main() -> None:
    app = create_app()
    app.run(host="0.0.0.0", port=6055, debug=False)


if __name__ == "__main__":
    main()
