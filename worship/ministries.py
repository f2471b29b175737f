"""Ministry routes: creating, joining and listing the caller's ministries."""

import logging
import random
import string
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from . import schemas
from .auth import get_current_user
from .deps import get_storage
from .storage import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ministries", tags=["ministries"])

CODE_ATTEMPTS = 20


def generate_code(storage: Storage) -> str:
    """
    Pick a four letter invitation code no other ministry uses.

    Raises:
        HTTPException: 503 if no free code was found after ``CODE_ATTEMPTS`` tries.
    """
    for _ in range(CODE_ATTEMPTS):
        code = "".join(random.choices(string.ascii_uppercase, k=4))
        if storage.get_ministry_by_code(code) is None:
            return code
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Could not generate a ministry code",
    )


@router.get("/", response_model=List[schemas.Ministry])
def list_my_ministries(
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """Return the ministries the current user belongs to, in joining order."""
    return storage.get_ministries_by_user_id(current_user.id)


@router.post("/", response_model=schemas.Ministry, status_code=201)
def create_ministry(
    ministry_in: schemas.MinistryIn,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """
    Create a ministry and make the current user its Leader.

    Args:
        ministry_in (MinistryIn): Name, optional code and logo.
        storage (Storage): Active storage backend.
        current_user (User): Authenticated user.

    Returns:
        Ministry: Created ministry. A taken code answers 409.
    """
    ministry = storage.create_ministry_with_leader(
        schemas.MinistryCreate(
            name=ministry_in.name,
            code=ministry_in.code or generate_code(storage),
            logo=ministry_in.logo,
            created_by=current_user.id,
        ),
        position="Worship Leader",
    )
    logger.info("User %s created ministry %s", current_user.id, ministry.code)
    return ministry


@router.post("/join", response_model=schemas.MinistryMember, status_code=201)
def join_ministry(
    join_in: schemas.MinistryJoin,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """
    Join a ministry by its invitation code.

    Raises:
        HTTPException: 404 if no ministry has the code.
        HTTPException: 400 if the user is already a member.
    """
    ministry = storage.get_ministry_by_code(join_in.code.strip().upper())
    if ministry is None:
        raise HTTPException(status_code=404, detail="Ministry not found")
    for member in storage.get_ministry_members(ministry.id):
        if member.user_id == current_user.id:
            raise HTTPException(
                status_code=400, detail="Already a member of this ministry"
            )
    return storage.create_ministry_member(
        schemas.MinistryMemberCreate(ministry_id=ministry.id, user_id=current_user.id)
    )


@router.get("/{ministry_id}", response_model=schemas.Ministry)
def get_ministry(
    ministry_id: int,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """Return one ministry by id."""
    ministry = storage.get_ministry(ministry_id)
    if ministry is None:
        raise HTTPException(status_code=404, detail="Ministry not found")
    return ministry
