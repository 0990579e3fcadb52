"""
Mock Payment Service Implementation

Simulates Stripe payment intents without making real API calls.
Used in development mode (ENV_MODE=development) and in tests.

Behavior:
    - Generates Stripe-like ids (pi_mock_...) and client secrets
    - Simulates network latency
    - Configurable random failure rate for testing error handling

Author: Bistro Engineering
Version: 1.0.0
"""

import asyncio
import logging
import random
import uuid
from decimal import Decimal
from typing import Optional

from bistro.services.payment.base import BasePaymentService, PaymentResult

logger = logging.getLogger(__name__)


class MockPaymentService(BasePaymentService):
    """
    Mock implementation of the payment service.

    Attributes:
        failure_rate: Probability of simulated provider failure (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds

    Example:
        >>> service = MockPaymentService(failure_rate=0.0, max_latency=0)
        >>> result = await service.create_payment_intent(Decimal("29.99"))
        >>> result.client_secret.endswith("_secret_mock")
        True
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency

        logger.info(
            f"MockPaymentService initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "mock"

    def _generate_payment_intent_id(self) -> str:
        """Generate a Stripe-like payment intent ID."""
        return f"pi_mock_{uuid.uuid4().hex[:24]}"

    async def _simulate_latency(self) -> float:
        """
        Simulate network latency.

        Returns:
            float: Actual latency in milliseconds
        """
        latency = random.uniform(self.min_latency, self.max_latency)
        if latency > 0:
            await asyncio.sleep(latency)
        return latency * 1000

    def _should_fail(self) -> bool:
        """Determine if this request should simulate a failure."""
        return random.random() < self.failure_rate

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str = "usd",
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """
        Simulate creating a payment intent.

        The mock returns a fake client_secret that won't work with Stripe.js.
        """
        latency_ms = await self._simulate_latency()

        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
                response_time_ms=latency_ms,
            )

        if self._should_fail():
            logger.debug("Mock: Simulated payment provider failure")
            return PaymentResult(
                success=False,
                error_message="Payment provider temporarily unavailable",
                error_code="processing_error",
                response_time_ms=latency_ms,
            )

        payment_intent_id = self._generate_payment_intent_id()

        logger.debug(f"Mock: Created payment intent {payment_intent_id} for ${amount}")

        return PaymentResult(
            success=True,
            payment_intent_id=payment_intent_id,
            client_secret=f"{payment_intent_id}_secret_mock",
            amount=amount,
            currency=currency,
            response_time_ms=latency_ms,
        )

    async def health_check(self) -> bool:
        """Mock health check always returns True."""
        return True
