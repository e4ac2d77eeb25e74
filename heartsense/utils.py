from fastapi import Depends, HTTPException, status
from fastapi_users import models
import logging

from .users import current_active_user

logger = logging.getLogger(__name__)


# Dependency to enforce authentication
async def require_authenticated_user(
    user: models.UP = Depends(current_active_user),
):
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


def owner_or_403(exc: PermissionError) -> HTTPException:
    """Map a service-layer ownership failure to the HTTP error the API returns."""
    logger.warning("Ownership check failed: %s", exc)
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
