"""
SaaSync - SaaS Change Data Capture Engine
Webhook ingestion and pull-based reconciliation into one canonical entity store.
"""

__version__ = "1.0.0"
