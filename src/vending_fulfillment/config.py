from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Mapping, Optional

from vending_fulfillment.core.domain.model.common import DEFAULT_CURRENCY, SUPPORTED_CURRENCIES

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class Settings:
    tax_rate: Decimal = Decimal("0.18")
    currency: str = DEFAULT_CURRENCY
    cart_ttl: timedelta = timedelta(hours=24)
    payment_ttl: timedelta = timedelta(minutes=15)
    payment_max_attempts: int = 3
    dispense_eta: timedelta = timedelta(minutes=5)
    razorpay_key_id: str = "rzp_test_key"
    mock_gateway_url: str = "https://mock-payment-gateway.com/pay"
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Reads ``VENDING_*`` variables; anything unset keeps its default."""
        env = os.environ if environ is None else environ
        defaults = Settings()

        currency = env.get("VENDING_CURRENCY", defaults.currency).upper()
        if currency not in SUPPORTED_CURRENCIES:
            raise ValueError(f"VENDING_CURRENCY must be one of {sorted(SUPPORTED_CURRENCIES)}")

        tax_rate = Decimal(env.get("VENDING_TAX_RATE", str(defaults.tax_rate)))
        if tax_rate < 0 or tax_rate >= 1:
            raise ValueError("VENDING_TAX_RATE must be in [0, 1)")

        max_attempts = int(env.get("VENDING_PAYMENT_MAX_ATTEMPTS", defaults.payment_max_attempts))
        if max_attempts < 1:
            raise ValueError("VENDING_PAYMENT_MAX_ATTEMPTS must be >= 1")

        return Settings(
            tax_rate=tax_rate,
            currency=currency,
            cart_ttl=timedelta(
                hours=float(env.get("VENDING_CART_TTL_HOURS", 24))
            ),
            payment_ttl=timedelta(
                minutes=float(env.get("VENDING_PAYMENT_TTL_MINUTES", 15))
            ),
            payment_max_attempts=max_attempts,
            dispense_eta=timedelta(
                minutes=float(env.get("VENDING_DISPENSE_ETA_MINUTES", 5))
            ),
            razorpay_key_id=env.get("VENDING_RAZORPAY_KEY_ID", defaults.razorpay_key_id),
            mock_gateway_url=env.get("VENDING_MOCK_GATEWAY_URL", defaults.mock_gateway_url),
            log_level=env.get("VENDING_LOG_LEVEL", defaults.log_level).upper(),
            host=env.get("VENDING_HOST", defaults.host),
            port=int(env.get("VENDING_PORT", defaults.port)),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
