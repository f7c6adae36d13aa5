"""Admin authorization for the manual sync trigger."""

from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import secrets
import logging

from portal_sync.config import settings

logger = logging.getLogger(__name__)
security = HTTPBearer(auto_error=False)


async def require_admin_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """
    Require ``Authorization: Bearer <SYNC_ADMIN_TOKEN>``.

    The trigger is disabled (503) while no admin token is configured.
    """
    expected = settings.SYNC_ADMIN_TOKEN
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Manual sync trigger is disabled (SYNC_ADMIN_TOKEN not set)",
        )

    if credentials is None or not secrets.compare_digest(credentials.credentials, expected):
        logger.warning("Rejected manual sync trigger with invalid admin token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
            headers={"WWW-Authenticate": "Bearer"},
        )
