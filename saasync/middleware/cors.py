"""
CORS Configuration
Only the admin endpoints are ever called from a browser; providers call the
webhook server-to-server, so origins come from CORS_ALLOWED_ORIGINS only.
"""
import logging
from fastapi.middleware.cors import CORSMiddleware as FastAPICORSMiddleware

from saasync.core.config import Settings

logger = logging.getLogger(__name__)


def get_cors_middleware(settings: Settings):
    """
    Returns (middleware class, kwargs) for app.add_middleware.

    Development allows every origin without credentials.
    """
    if settings.environment == "development":
        logger.warning("⚠️  DEV MODE: CORS allowing ALL origins (*)")
        return FastAPICORSMiddleware, {
            "allow_origins": ["*"],
            "allow_credentials": False,  # Must be False when using "*"
            "allow_methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["*"],
            "max_age": 600,
        }

    allowed_origins = settings.cors_origins
    logger.info(f"🌐 CORS allowed origins: {allowed_origins}")

    return FastAPICORSMiddleware, {
        "allow_origins": allowed_origins,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": ["Content-Type", "Authorization", "X-Request-ID"],
        "expose_headers": ["Retry-After"],
        "max_age": 600,  # Cache preflight requests for 10 minutes
    }
