from __future__ import annotations

from fastapi import FastAPI

from vending_fulfillment.adapters.inbound.web.fastapi_app import create_app
from vending_fulfillment.bootstrap import build_usecases
from vending_fulfillment.config import Settings, configure_logging


def app_factory() -> FastAPI:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    usecases = build_usecases(settings)
    return create_app(
        usecases.cart, usecases.orders, usecases.order_queries, usecases.payments
    )
