"""
Webhook Routes
Provider webhooks land here, one URL per app instance

POST /webhook/{app_key}
- No admin key: the provider's signature authenticates the request
- Body is read raw (signatures are computed over exact bytes) and capped
- Rate limited per (app_key, client IP)
"""
import logging
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from saasync.core.config import Settings, get_settings
from saasync.core.dependencies import get_webhook_pipeline
from saasync.core.validation import read_limited_body
from saasync.middleware.rate_limit import limiter, webhook_rate_limit, webhook_rate_limit_key
from saasync.services.connectors.types import WebhookRequest
from saasync.services.webhooks import WebhookPipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


@router.post("/webhook/{app_key}")
@limiter.limit(webhook_rate_limit, key_func=webhook_rate_limit_key)
async def receive_webhook(
    app_key: str,
    request: Request,
    pipeline: WebhookPipeline = Depends(get_webhook_pipeline),
    settings: Settings = Depends(get_settings),
):
    """
    Verify, parse and apply one provider event.

    Responses:
    - 200 processed (or skipped: unknown event / nothing to store)
    - 400 malformed app_key, 404 unknown app_key
    - 401 signature invalid, 413 body too large, 429 rate limited
    - 500 processing error (generic message)
    """
    body = await read_limited_body(request, settings.max_request_bytes)
    webhook_request = WebhookRequest(
        method=request.method,
        path=request.url.path,
        headers={key.lower(): value for key, value in request.headers.items()},
        body=body,
    )

    outcome = await pipeline.handle(app_key, webhook_request)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


@router.options("/webhook/{app_key}")
async def webhook_options(app_key: str):
    """Some providers check the endpoint with OPTIONS before registering it."""
    return Response(status_code=204, headers={"Allow": "POST, OPTIONS"})
