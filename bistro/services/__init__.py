"""
                        Services Module

Business logic behind the API. Collaborators with an external provider
have Mock (development/tests) and Real (staging/production) implementations.

Services:
    - cart: in-memory cart with exact decimal pricing
    - ordering: order submission and status workflow
    - store: persistence (SQL and in-memory)
    - integrations: admin-editable integration settings
    - realtime: new-order feed for admin sessions
    - notifications: outbound order webhook
    - payment: Stripe payment intents
    - geo: Google Maps reverse geocoding
"""

from bistro.services.cart import Cart, CartLine, quantize_money
from bistro.services.ordering import OrderWorkflow, SubmissionOutcome, SubmissionResult

__all__ = [
    "Cart",
    "CartLine",
    "quantize_money",
    "OrderWorkflow",
    "SubmissionOutcome",
    "SubmissionResult",
]
