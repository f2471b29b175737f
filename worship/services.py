"""Service routes: scheduling, rosters and setlists."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from . import schemas
from .auth import get_current_user
from .deps import get_storage
from .membership import get_membership, require_membership
from .storage import Storage, effective_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/services", tags=["services"])

PROFILE_FIELDS = {"username", "first_name", "last_name", "email", "profile_image_url"}


def build_service_detail(
    storage: Storage, service: schemas.Service
) -> schemas.ServiceDetail:
    """
    Attach the roster and the setlist to a service.

    Roster entries carry the member's profile; setlist entries carry the
    song with ``service_key`` set to the key it is played in.

    Args:
        storage (Storage): Active storage backend.
        service (Service): Service to enrich.

    Returns:
        ServiceDetail: The service with ``members`` and ``songs``.
    """
    members = []
    for member in storage.get_service_members(service.id):
        user = storage.get_user(member.user_id)
        profile = user.model_dump(include=PROFILE_FIELDS) if user else {}
        members.append(schemas.ServiceMemberOut(**member.model_dump(), **profile))

    songs = []
    for entry in storage.get_service_songs(service.id):
        song = storage.get_song(entry.song_id)
        if song is None:
            continue
        songs.append(
            schemas.SetlistSongOut(
                **song.model_dump(),
                service_song_id=entry.id,
                order=entry.order,
                service_key=effective_key(entry, song),
            )
        )
    return schemas.ServiceDetail(**service.model_dump(), members=members, songs=songs)


def get_service_for_user(
    storage: Storage, service_id: int, user: schemas.User
) -> schemas.Service:
    """
    Load a service the user may see.

    Raises:
        HTTPException: 404 if the service does not exist.
        HTTPException: 403 if it belongs to a ministry the user is not in.
    """
    service = storage.get_service(service_id)
    if service is None:
        raise HTTPException(status_code=404, detail="Service not found")
    require_membership(storage, user, service.ministry_id)
    return service


def _ministry_member(
    storage: Storage, member_id: int, ministry_id: int
) -> schemas.MinistryMember:
    member = storage.get_ministry_member(member_id)
    if member is None or member.ministry_id != ministry_id:
        raise HTTPException(
            status_code=422, detail=f"Unknown team member {member_id}"
        )
    return member


def _ministry_song(storage: Storage, song_id: int, ministry_id: int) -> schemas.Song:
    song = storage.get_song(song_id)
    if song is None or song.ministry_id != ministry_id:
        raise HTTPException(status_code=422, detail=f"Unknown song {song_id}")
    return song


@router.get("/", response_model=List[schemas.ServiceDetail])
def list_services(
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_membership),
):
    """Return every service of the ministry by date and time."""
    return [
        build_service_detail(storage, service)
        for service in storage.get_services(membership.ministry_id)
    ]


@router.get("/upcoming", response_model=List[schemas.ServiceDetail])
def list_upcoming_services(
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_membership),
):
    """Return the services dated today or later."""
    return [
        build_service_detail(storage, service)
        for service in storage.get_upcoming_services(membership.ministry_id)
    ]


@router.post("/", response_model=schemas.ServiceDetail, status_code=201)
def create_service(
    service_in: schemas.ServiceIn,
    storage: Storage = Depends(get_storage),
    membership: schemas.MinistryMember = Depends(get_membership),
):
    """
    Schedule a service with its roster and setlist in one step.

    ``member_ids`` are team member ids of the ministry; each is rostered in
    the position they hold on the team. ``song_ids`` form the setlist in the
    given order.

    Raises:
        HTTPException: 422 if a member or song is not part of the ministry.

    Returns:
        ServiceDetail: The created service with roster and setlist.
    """
    ministry_id = membership.ministry_id
    roster = []
    for member_id in service_in.member_ids:
        member = _ministry_member(storage, member_id, ministry_id)
        roster.append(
            schemas.RosterEntry(
                user_id=member.user_id, position=member.position or "Member"
            )
        )
    setlist = [
        schemas.SetlistEntry(song_id=_ministry_song(storage, song_id, ministry_id).id)
        for song_id in service_in.song_ids
    ]

    service = storage.create_service_with_roster(
        schemas.ServiceCreate(
            ministry_id=ministry_id,
            **service_in.model_dump(exclude={"member_ids", "song_ids"}),
        ),
        members=roster,
        songs=setlist,
    )
    logger.info(
        "Scheduled service %s with %d members and %d songs",
        service.id,
        len(roster),
        len(setlist),
    )
    return build_service_detail(storage, service)


@router.get("/{service_id}", response_model=schemas.ServiceDetail)
def get_service(
    service_id: int,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    service = get_service_for_user(storage, service_id, current_user)
    return build_service_detail(storage, service)


@router.patch("/{service_id}", response_model=schemas.ServiceDetail)
def update_service(
    service_id: int,
    service_in: schemas.ServiceUpdate,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """Partially update a service, including its status."""
    get_service_for_user(storage, service_id, current_user)
    service = storage.update_service(service_id, service_in)
    if service is None:
        raise HTTPException(status_code=404, detail="Service not found")
    return build_service_detail(storage, service)


@router.delete("/{service_id}")
def delete_service(
    service_id: int,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """Delete a service with its roster and setlist."""
    get_service_for_user(storage, service_id, current_user)
    storage.delete_service(service_id)
    return {"message": "Service deleted"}


# Setlist


@router.post(
    "/{service_id}/songs", response_model=schemas.ServiceSong, status_code=201
)
def add_setlist_song(
    service_id: int,
    entry_in: schemas.ServiceSongIn,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """
    Put a song on the setlist.

    Without an explicit ``order`` the song goes to the end. Without a
    ``key`` it is played in the song's own key.
    """
    service = get_service_for_user(storage, service_id, current_user)
    _ministry_song(storage, entry_in.song_id, service.ministry_id)
    order = entry_in.order
    if order is None:
        order = max((s.order for s in storage.get_service_songs(service_id)), default=0) + 1
    return storage.create_service_song(
        schemas.ServiceSongCreate(
            service_id=service_id,
            song_id=entry_in.song_id,
            order=order,
            key=entry_in.key,
        )
    )


def _setlist_entry(
    storage: Storage, service_id: int, service_song_id: int
) -> schemas.ServiceSong:
    entry = storage.get_service_song(service_song_id)
    if entry is None or entry.service_id != service_id:
        raise HTTPException(status_code=404, detail="Setlist entry not found")
    return entry


@router.patch(
    "/{service_id}/songs/{service_song_id}", response_model=schemas.ServiceSong
)
def reorder_setlist_song(
    service_id: int,
    service_song_id: int,
    order_in: schemas.ServiceSongOrder,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """Move a setlist entry to a new position."""
    get_service_for_user(storage, service_id, current_user)
    _setlist_entry(storage, service_id, service_song_id)
    entry = storage.update_service_song_order(service_song_id, order_in.order)
    if entry is None:
        raise HTTPException(status_code=404, detail="Setlist entry not found")
    return entry


@router.delete("/{service_id}/songs/{service_song_id}")
def remove_setlist_song(
    service_id: int,
    service_song_id: int,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    get_service_for_user(storage, service_id, current_user)
    _setlist_entry(storage, service_id, service_song_id)
    storage.delete_service_song(service_song_id)
    return {"message": "Song removed from setlist"}


# Roster


@router.post(
    "/{service_id}/members", response_model=schemas.ServiceMemberOut, status_code=201
)
def add_roster_member(
    service_id: int,
    member_in: schemas.ServiceMemberIn,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """Roster a team member, by default in the position they hold on the team."""
    service = get_service_for_user(storage, service_id, current_user)
    member = _ministry_member(storage, member_in.ministry_member_id, service.ministry_id)
    entry = storage.create_service_member(
        schemas.ServiceMemberCreate(
            service_id=service_id,
            user_id=member.user_id,
            position=member_in.position or member.position or "Member",
        )
    )
    user = storage.get_user(member.user_id)
    profile = user.model_dump(include=PROFILE_FIELDS) if user else {}
    return schemas.ServiceMemberOut(**entry.model_dump(), **profile)


@router.delete("/{service_id}/members/{service_member_id}")
def remove_roster_member(
    service_id: int,
    service_member_id: int,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    get_service_for_user(storage, service_id, current_user)
    entry = storage.get_service_member(service_member_id)
    if entry is None or entry.service_id != service_id:
        raise HTTPException(status_code=404, detail="Roster entry not found")
    storage.delete_service_member(service_member_id)
    return {"message": "Member removed from service"}
