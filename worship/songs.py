"""Song library routes for the caller's ministry."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from . import schemas
from .auth import get_current_user
from .deps import get_storage
from .membership import get_membership, require_membership
from .storage import Storage

router = APIRouter(prefix="/songs", tags=["songs"])


def get_song_for_user(
    storage: Storage, song_id: int, user: schemas.User
) -> schemas.Song:
    """
    Load a song the user may see.

    Raises:
        HTTPException: 404 if the song does not exist.
        HTTPException: 403 if it belongs to a ministry the user is not in.
    """
    song = storage.get_song(song_id)
    if song is None:
        raise HTTPException(status_code=404, detail="Song not found")
    require_membership(storage, user, song.ministry_id)
    return song


@router.get("/", response_model=List[schemas.Song])
def list_songs(
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_membership),
):
    """Return the ministry's songs in creation order."""
    return storage.get_songs(membership.ministry_id)


@router.post("/", response_model=schemas.Song, status_code=201)
def create_song(
    song_in: schemas.SongIn,
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_membership),
):
    """
    Add a song to the ministry's library.

    Args:
        song_in (SongIn): Song data.
        storage (Storage): Active storage backend.
        membership (MinistryMember): Caller's membership in the target ministry.

    Returns:
        Song: Created song.
    """
    return storage.create_song(
        schemas.SongCreate(ministry_id=membership.ministry_id, **song_in.model_dump())
    )


@router.get("/{song_id}", response_model=schemas.Song)
def get_song(
    song_id: int,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    return get_song_for_user(storage, song_id, current_user)


@router.patch("/{song_id}", response_model=schemas.Song)
def update_song(
    song_id: int,
    song_in: schemas.SongUpdate,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """Partially update a song; only the supplied fields change."""
    get_song_for_user(storage, song_id, current_user)
    song = storage.update_song(song_id, song_in)
    if song is None:
        raise HTTPException(status_code=404, detail="Song not found")
    return song


@router.delete("/{song_id}")
def delete_song(
    song_id: int,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """Delete a song; it also leaves every setlist it was on."""
    get_song_for_user(storage, song_id, current_user)
    storage.delete_song(song_id)
    return {"message": "Song deleted"}
