"""User-related routes for the Worship Team API."""

from fastapi import APIRouter, Depends
from fastapi_limiter.depends import RateLimiter

from .auth import get_current_user
from . import schemas
from .core import get_settings

router = APIRouter(prefix="/users", tags=["users"])
settings = get_settings()


@router.get(
    "/me",
    response_model=schemas.UserOut,
    dependencies=[
        Depends(
            RateLimiter(
                times=settings.RATE_LIMIT_TIMES, seconds=settings.RATE_LIMIT_SECONDS
            )
        )
    ],
)
def read_me(current_user=Depends(get_current_user)):
    """
    Retrieve details of the currently authenticated user.

    Args:
        current_user (User): Authenticated user obtained from JWT token.

    Returns:
        UserOut: User profile information.
    """
    return current_user
