"""
Security and Authentication
Admin bearer key for the sync, job status and worker endpoints

SECURITY FEATURES:
- Timing-safe comparison (hmac.compare_digest)
- No configured key -> every admin request is rejected
- Provider webhooks do NOT use this; they are authenticated by signature
"""
import hmac
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from saasync.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# auto_error=False so a missing header answers 401 (HTTPBearer would send 403)
bearer_scheme = HTTPBearer(auto_error=False)


def is_valid_admin_key(candidate: Optional[str], expected: Optional[str]) -> bool:
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


async def verify_admin_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> bool:
    """
    Verify the admin bearer credential.

    Raises:
        HTTPException 401 if the key is missing, wrong, or not configured
    """
    if not settings.admin_api_key:
        logger.error("Admin request rejected: ADMIN_API_KEY not configured")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials if credentials else None
    if not is_valid_admin_key(token, settings.admin_api_key):
        logger.warning("Invalid admin key attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return True
