"""
Stripe Connector
"""
from saasync.services.connectors.stripe.connector import STRIPE_METADATA, StripeConnector

__all__ = ["STRIPE_METADATA", "StripeConnector"]
