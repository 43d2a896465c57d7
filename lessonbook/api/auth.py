"""
Admin Authentication

Bearer token check for the administrative job triggers. The token comes
from the ADMIN_TOKEN environment variable.
"""
import hmac
import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional

from lessonbook.config import ADMIN_TOKEN

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


def get_admin_token() -> str:
    return ADMIN_TOKEN


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    admin_token: str = Depends(get_admin_token),
) -> dict:
    """
    Verify the admin bearer token.

    Returns:
        Admin context dictionary

    Raises:
        HTTPException 401: missing or invalid token
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_001",
                    "message": "Authorization header missing",
                    "details": "Please provide a valid bearer token"
                }
            },
            headers={"WWW-Authenticate": "Bearer"}
        )

    if not hmac.compare_digest(credentials.credentials, admin_token):
        logger.warning("Invalid admin token attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_002",
                    "message": "Invalid or expired token",
                    "details": "The provided token is not valid"
                }
            },
            headers={"WWW-Authenticate": "Bearer"}
        )

    return {"role": "admin"}
