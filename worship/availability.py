"""Availability routes: the date ranges a member can or cannot serve."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from . import schemas
from .auth import get_current_user
from .deps import get_storage
from .membership import get_membership
from .storage import Storage

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("/", response_model=List[schemas.Availability])
def list_my_availability(
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_membership),
):
    """Return the caller's availability entries for the ministry."""
    return storage.get_user_availability(membership.user_id, membership.ministry_id)


@router.post("/", response_model=schemas.Availability, status_code=201)
def create_availability(
    availability_in: schemas.AvailabilityIn,
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_membership),
):
    """
    Record a date range for the caller.

    Args:
        availability_in (AvailabilityIn): Start and end date with optional notes.
        storage (Storage): Active storage backend.
        membership (MinistryMember): Caller's membership in the target ministry.

    Returns:
        Availability: Created entry.
    """
    return storage.create_availability(
        schemas.AvailabilityCreate(
            user_id=membership.user_id,
            ministry_id=membership.ministry_id,
            **availability_in.model_dump(),
        )
    )


@router.delete("/{availability_id}")
def delete_availability(
    availability_id: int,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """Delete one of the caller's own entries."""
    entry = storage.get_availability(availability_id)
    if entry is None or entry.user_id != current_user.id:
        raise HTTPException(status_code=404, detail="Availability not found")
    storage.delete_availability(availability_id)
    return {"message": "Availability deleted"}
