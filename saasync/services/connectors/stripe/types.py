"""
Stripe Constants
Resource types, collection keys and the webhook event taxonomy
"""
from typing import Dict, Tuple

from saasync.services.connectors.utils import build_collection_key

CONNECTOR_NAME = "stripe"
DEFAULT_API_VERSION = "2025-02-24.acacia"
STRIPE_API_BASE = "https://api.stripe.com"
DEFAULT_PAGE_SIZE = 100
WEBHOOK_TOLERANCE_SECONDS = 300

SYNCABLE_RESOURCES = ("customer", "product", "price", "plan", "subscription")
ALL_RESOURCES = SYNCABLE_RESOURCES + ("subscription_item",)

STRIPE_COLLECTION_KEYS: Dict[str, str] = {
    resource: build_collection_key(CONNECTOR_NAME, resource) for resource in ALL_RESOURCES
}

LIST_PATHS: Dict[str, str] = {
    "customer": "/v1/customers",
    "product": "/v1/products",
    "price": "/v1/prices",
    "plan": "/v1/plans",
    "subscription": "/v1/subscriptions",
    "subscription_item": "/v1/subscription_items",
}

# event type -> (resource_type, canonical event type)
STRIPE_WEBHOOK_EVENTS: Dict[str, Tuple[str, str]] = {
    "customer.created": ("customer", "create"),
    "customer.updated": ("customer", "update"),
    "customer.deleted": ("customer", "delete"),
    "product.created": ("product", "create"),
    "product.updated": ("product", "update"),
    "product.deleted": ("product", "delete"),
    "price.created": ("price", "create"),
    "price.updated": ("price", "update"),
    "price.deleted": ("price", "delete"),
    "plan.created": ("plan", "create"),
    "plan.updated": ("plan", "update"),
    "plan.deleted": ("plan", "delete"),
    "customer.subscription.created": ("subscription", "create"),
    "customer.subscription.updated": ("subscription", "update"),
    "customer.subscription.deleted": ("subscription", "archive"),
}
