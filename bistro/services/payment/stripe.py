"""
Stripe Payment Service Implementation

Production implementation creating Stripe PaymentIntents.
Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - STRIPE_SECRET_KEY must be set in environment
    - The matching publishable key is stored by an admin in the settings table

API Documentation:
    https://stripe.com/docs/api/payment_intents

Author: Bistro Engineering
Version: 1.0.0
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

import stripe
from stripe import (
    StripeError,
    InvalidRequestError,
    AuthenticationError,
    APIConnectionError,
)

from bistro.core.config import get_settings
from bistro.services.payment.base import BasePaymentService, PaymentResult, to_cents

logger = logging.getLogger(__name__)


class StripePaymentService(BasePaymentService):
    """
    Production Stripe payment service implementation.

    Configuration:
        Requires STRIPE_SECRET_KEY environment variable.
    """

    def __init__(self):
        """
        Initialize Stripe with API key.

        Raises:
            ValueError: If STRIPE_SECRET_KEY is not configured
        """
        settings = get_settings()

        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required for production mode. "
                "Set it in your .env file or environment variables."
            )

        stripe.api_key = settings.stripe_secret_key
        self._currency = settings.stripe_currency

        logger.info("StripePaymentService initialized")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "stripe"

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str = "usd",
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """
        Create a PaymentIntent for client-side confirmation.

        Returns a client_secret that the frontend uses with Stripe.js
        to complete the payment.
        """
        start_time = datetime.now()

        try:
            intent = stripe.PaymentIntent.create(
                amount=to_cents(amount),
                currency=currency or self._currency,
                metadata=metadata or {},
                automatic_payment_methods={"enabled": True},
            )

            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000

            logger.info(f"Stripe: PaymentIntent created - {intent.id}")

            return PaymentResult(
                success=True,
                payment_intent_id=intent.id,
                client_secret=intent.client_secret,
                amount=Decimal(intent.amount) / 100,
                currency=intent.currency,
                response_time_ms=elapsed_ms,
            )

        except InvalidRequestError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Stripe: Invalid request - {e}")

            return PaymentResult(
                success=False,
                error_message="Invalid payment request",
                error_code="invalid_request",
                response_time_ms=elapsed_ms,
            )

        except AuthenticationError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.critical(f"Stripe: Authentication failed - {e}")

            return PaymentResult(
                success=False,
                error_message="Payment service configuration error",
                error_code="authentication_error",
                response_time_ms=elapsed_ms,
            )

        except APIConnectionError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Stripe: Connection error - {e}")

            return PaymentResult(
                success=False,
                error_message="Unable to connect to payment service",
                error_code="connection_error",
                response_time_ms=elapsed_ms,
            )

        except StripeError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Stripe: Failed to create PaymentIntent - {e}")

            return PaymentResult(
                success=False,
                error_message="Payment processing error",
                error_code="stripe_error",
                response_time_ms=elapsed_ms,
            )

    async def health_check(self) -> bool:
        """
        Verify Stripe API connectivity.

        Retrieves the account to verify credentials and connectivity.
        """
        try:
            stripe.Account.retrieve()
            logger.debug("Stripe: Health check passed")
            return True
        except StripeError as e:
            logger.error(f"Stripe: Health check failed - {e}")
            return False
