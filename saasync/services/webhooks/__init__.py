"""
Webhook Ingestion
"""
from saasync.services.webhooks.pipeline import WebhookOutcome, WebhookPipeline

__all__ = ["WebhookOutcome", "WebhookPipeline"]
