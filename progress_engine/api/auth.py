"""API authentication using bearer API keys

Valid keys come from config.API_KEYS (comma-separated API_KEYS environment
variable). validate_config() refuses to start the service without any.
"""
import logging
import secrets
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from progress_engine import config

logger = logging.getLogger(__name__)

# auto_error=False so a missing header is reported as 401, not 403
security = HTTPBearer(auto_error=False)


def is_valid_api_key(api_key: str, valid_keys: list[str]) -> bool:
    """Compare against every configured key in constant time"""
    matched = False
    for key in valid_keys:
        if secrets.compare_digest(api_key.encode(), key.encode()):
            matched = True
    return matched


async def verify_api_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security)
) -> str:
    """
    Verify API key from Authorization header

    Args:
        credentials: HTTP authorization credentials (None when the header is missing)

    Returns:
        The verified API key

    Raises:
        HTTPException: 401 if the key is missing or invalid, 503 if no keys
            are configured
    """
    valid_keys = config.API_KEYS
    if not valid_keys:
        logger.error("No API keys configured - rejecting all requests")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API authentication not configured"
        )

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "Bearer"}
        )

    api_key = credentials.credentials
    if not is_valid_api_key(api_key, valid_keys):
        logger.warning(f"Invalid API key attempt: {api_key[:4]}...")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return api_key
