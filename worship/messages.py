"""Team messaging routes: broadcasts and direct messages."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from . import schemas
from .deps import get_storage
from .membership import get_membership
from .storage import Storage

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/", response_model=List[schemas.Message])
def list_messages(
    mine: bool = False,
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_membership),
):
    """
    Return the ministry's messages the caller may read, oldest first.

    Broadcasts and direct messages sent or received by the caller are
    included. With ``mine=true`` only messages addressed to the caller are.
    """
    user_id = membership.user_id
    if mine:
        return storage.get_messages(membership.ministry_id, recipient_id=user_id)
    return [
        message
        for message in storage.get_messages(membership.ministry_id)
        if message.recipient_id in (None, user_id) or message.sender_id == user_id
    ]


@router.post("/", response_model=schemas.Message, status_code=201)
def send_message(
    message_in: schemas.MessageIn,
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_membership),
):
    """
    Send a message to one team member or, without a recipient, to everyone.

    Raises:
        HTTPException: 422 if the recipient is not in the ministry.
    """
    if message_in.recipient_id is not None:
        team = storage.get_ministry_members(membership.ministry_id)
        if all(member.user_id != message_in.recipient_id for member in team):
            raise HTTPException(status_code=422, detail="Unknown recipient")
    return storage.create_message(
        schemas.MessageCreate(
            ministry_id=membership.ministry_id,
            sender_id=membership.user_id,
            **message_in.model_dump(),
        )
    )


@router.post("/read/{sender_id}")
def mark_as_read(
    sender_id: int,
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_membership),
):
    """Mark every message from ``sender_id`` to the caller as read."""
    return {"success": storage.mark_messages_as_read(membership.user_id, sender_id)}
