"""Team routes: the members of the caller's ministry with their profiles."""

import logging
import secrets
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from . import schemas
from .deps import get_storage
from .membership import get_manager_membership, get_membership
from .storage import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/team/members", tags=["team"])

USERNAME_MIN_LENGTH = 3


def to_team_member(
    member: schemas.MinistryMember, user: schemas.User | None
) -> schemas.TeamMemberOut:
    """Join a membership with the profile of its user."""
    profile = {}
    if user is not None:
        profile = user.model_dump(
            include={
                "username",
                "email",
                "first_name",
                "last_name",
                "phone",
                "profile_image_url",
            }
        )
    return schemas.TeamMemberOut(
        id=member.id,
        ministry_id=member.ministry_id,
        user_id=member.user_id,
        role=member.role,
        position=member.position,
        **profile,
    )


def pick_username(storage: Storage, email: str) -> str:
    """
    Derive a free username from the local part of ``email``.

    Short local parts are padded to ``USERNAME_MIN_LENGTH`` and a number is
    appended while the name is taken, so ``jo@a.com`` becomes ``jo0`` and a
    second ``john@b.com`` becomes ``john2``.
    """
    base = email.split("@", 1)[0].ljust(USERNAME_MIN_LENGTH, "0")
    username, suffix = base, 1
    while storage.get_user_by_username(username) is not None:
        suffix += 1
        username = f"{base}{suffix}"
    return username


def _get_team_member(
    storage: Storage, member_id: int, ministry_id: int
) -> schemas.MinistryMember:
    member = storage.get_ministry_member(member_id)
    if member is None or member.ministry_id != ministry_id:
        raise HTTPException(status_code=404, detail="Team member not found")
    return member


@router.get("/", response_model=List[schemas.TeamMemberOut])
def list_team(
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_membership),
):
    """Return every member of the ministry with user details."""
    return [
        to_team_member(member, storage.get_user(member.user_id))
        for member in storage.get_ministry_members(membership.ministry_id)
    ]


@router.post("/", response_model=schemas.TeamMemberOut, status_code=201)
def add_team_member(
    member_in: schemas.TeamMemberIn,
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_manager_membership),
):
    """
    Add a person to the ministry by e-mail.

    An account registered with the same e-mail is reused. Otherwise one is
    created with a random password the person can reset later, under a
    username picked by ``pick_username``.

    Raises:
        HTTPException: 400 if the person is already on the team.
    """
    user = storage.get_user_by_email(member_in.email)
    if user is None:
        username = pick_username(storage, member_in.email)
        user = storage.create_user(
            schemas.UserCreate(
                username=username,
                password=secrets.token_urlsafe(12),
                email=member_in.email,
                first_name=member_in.first_name,
                last_name=member_in.last_name,
                phone=member_in.phone,
            )
        )
        logger.info("Created account %s for new team member", username)

    for member in storage.get_ministry_members(membership.ministry_id):
        if member.user_id == user.id:
            raise HTTPException(status_code=400, detail="Already a team member")

    member = storage.create_ministry_member(
        schemas.MinistryMemberCreate(
            ministry_id=membership.ministry_id,
            user_id=user.id,
            role=member_in.role,
            position=member_in.position,
        )
    )
    return to_team_member(member, user)


@router.get("/{member_id}", response_model=schemas.TeamMemberOut)
def get_team_member(
    member_id: int,
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_membership),
):
    member = _get_team_member(storage, member_id, membership.ministry_id)
    return to_team_member(member, storage.get_user(member.user_id))


@router.patch("/{member_id}", response_model=schemas.TeamMemberOut)
def update_team_member(
    member_id: int,
    member_in: schemas.TeamMemberUpdate,
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_manager_membership),
):
    """Change a member's role or position."""
    _get_team_member(storage, member_id, membership.ministry_id)
    member = storage.update_ministry_member(member_id, member_in)
    if member is None:
        raise HTTPException(status_code=404, detail="Team member not found")
    return to_team_member(member, storage.get_user(member.user_id))


@router.delete("/{member_id}")
def remove_team_member(
    member_id: int,
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_manager_membership),
):
    """Remove a member from the ministry; the user account stays."""
    _get_team_member(storage, member_id, membership.ministry_id)
    storage.delete_ministry_member(member_id)
    return {"message": "Team member removed"}
