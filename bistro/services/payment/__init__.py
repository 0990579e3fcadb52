"""
Payment Service Factory

Provides a single entry point for obtaining a payment service instance.

Usage:
    from bistro.services.payment import get_payment_service

    payment_service = get_payment_service()
    result = await payment_service.create_payment_intent(Decimal("40.97"))

Environment Switching:
    - ENV_MODE=development → MockPaymentService (no API calls)
    - ENV_MODE=staging → StripePaymentService (test keys)
    - ENV_MODE=production → StripePaymentService (live keys)

Author: Bistro Engineering
Version: 1.0.0
"""

import logging
from functools import lru_cache

from bistro.core.config import get_settings
from bistro.services.payment.base import BasePaymentService, PaymentResult, to_cents
from bistro.services.payment.mock import MockPaymentService
from bistro.services.payment.stripe import StripePaymentService

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_service() -> BasePaymentService:
    """
    Get the configured payment service instance.

    Returns:
        BasePaymentService: Configured payment service instance

    Raises:
        ValueError: If staging/production mode but Stripe key not configured
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Payment Service: Using MockPaymentService (development mode)")
        return MockPaymentService(
            failure_rate=settings.mock_failure_rate,
            min_latency=0.05,
            max_latency=0.2,
        )

    logger.info(
        f"Payment Service: Using StripePaymentService "
        f"({settings.env_mode.value} mode)"
    )
    return StripePaymentService()


def reset_payment_service() -> None:
    """
    Clear the cached payment service instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_payment_service.cache_clear()
    logger.debug("Payment service cache cleared")


__all__ = [
    "get_payment_service",
    "reset_payment_service",
    "BasePaymentService",
    "PaymentResult",
    "to_cents",
    "MockPaymentService",
    "StripePaymentService",
]
