"""Ministry scoping shared by the team, song, service and message routes."""

from fastapi import Depends, HTTPException, Query, status

from . import schemas
from .auth import get_current_user
from .deps import get_storage
from .storage import Storage

MANAGER_ROLES = ("Leader", "Admin")


def require_membership(
    storage: Storage, user: schemas.User, ministry_id: int
) -> schemas.MinistryMember:
    """
    Return the user's membership in a ministry.

    Raises:
        HTTPException: 403 if the user does not belong to the ministry.
    """
    for member in storage.get_ministry_members_by_user_id(user.id):
        if member.ministry_id == ministry_id:
            return member
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="You are not a member of this ministry",
    )


def get_membership(
    ministry_id: int | None = Query(None),
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> schemas.MinistryMember:
    """
    Resolve the ministry a request acts on.

    Uses the ``ministry_id`` query parameter when given, else the first
    ministry the current user joined.

    Raises:
        HTTPException: 404 if the user has no ministry at all.
        HTTPException: 403 if the user is not a member of ``ministry_id``.
    """
    if ministry_id is not None:
        return require_membership(storage, current_user, ministry_id)
    memberships = storage.get_ministry_members_by_user_id(current_user.id)
    if not memberships:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="You are not a member of any ministry",
        )
    return memberships[0]


def get_manager_membership(
    membership: schemas.MinistryMember = Depends(get_membership),
) -> schemas.MinistryMember:
    """Like ``get_membership`` but only for Leaders and Admins."""
    if membership.role not in MANAGER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only leaders and admins can manage the team",
        )
    return membership
