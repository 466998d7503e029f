"""
Subscription Reconciler - Routers Package

FastAPI route handlers.

Routers:
- webhooks: Stripe and Lemon Squeezy webhook endpoints
"""

from reconciler.routers.webhooks import router as webhooks_router
