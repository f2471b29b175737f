"""Storage contract shared by every persistence backend.

Route handlers depend on ``Storage`` only, never on a concrete backend.
Two implementations exist: ``memory.MemoryStorage`` keeps everything in
process dictionaries and ``crud.DatabaseStorage`` talks to a relational
database through SQLAlchemy. Exactly one of them serves a process.

Conventions every implementation follows:

* ``get_*`` returns the record or ``None``; it never raises for a missing id.
* List operations return an empty list when nothing matches.
* ``update_*`` applies only the fields set on the update schema and returns
  the merged record, or ``None`` when the id is unknown.
* ``delete_*`` returns ``True`` when a record was removed, ``False`` otherwise.
* Ids are assigned by the store, increase monotonically per entity and are
  never reused after a delete.
* Creates refuse duplicate unique keys with ``ConflictError`` and references
  to missing parents with ``MissingReferenceError``.
* Deleting a service also deletes its roster and setlist; deleting a song
  also removes it from every setlist. Ministries and users are never deleted.
* Records are detached copies: mutating one does not change the store.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Sequence

from . import schemas


class StorageError(Exception):
    """Base class of the expected failures of a storage operation."""


class ConflictError(StorageError):
    """A unique key (username, email, ministry code) is already taken."""


class MissingReferenceError(StorageError):
    """A record refers to a ministry, user, service or song that does not exist."""


def utcnow() -> datetime:
    """Naive UTC timestamp used for ``created_at``/``updated_at`` columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def effective_key(service_song: schemas.ServiceSong, song: schemas.Song) -> Optional[str]:
    """Key a setlist entry is played in: its override, else the song's own key."""
    return service_song.key or song.key


class Storage(ABC):
    """Every persistence operation the application may perform."""

    # Users

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[schemas.User]:
        """Return the user with ``user_id`` or ``None``."""

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[schemas.User]:
        """Return the user owning ``username`` or ``None``."""

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[schemas.User]:
        """Return the user registered with ``email`` or ``None``."""

    @abstractmethod
    def create_user(self, user_in: schemas.UserCreate) -> schemas.User:
        """
        Create a user.

        The plaintext password of ``user_in`` is hashed here and only the
        hash is stored; callers never hash passwords themselves.

        Raises:
            ConflictError: If the username or email is taken.
        """

    @abstractmethod
    def upsert_user(self, user_in: schemas.UserUpsert) -> schemas.User:
        """
        Insert the user with ``user_in.id`` or refresh its profile fields.

        Used when an identity provider signs a user in. A stored password
        hash is left untouched.
        """

    # Ministries

    @abstractmethod
    def get_ministry(self, ministry_id: int) -> Optional[schemas.Ministry]:
        ...

    @abstractmethod
    def get_ministry_by_code(self, code: str) -> Optional[schemas.Ministry]:
        ...

    @abstractmethod
    def get_ministries(self) -> list[schemas.Ministry]:
        ...

    @abstractmethod
    def get_ministries_by_user_id(self, user_id: int) -> list[schemas.Ministry]:
        """Ministries ``user_id`` belongs to, in the order the user joined them."""

    @abstractmethod
    def create_ministry(self, ministry_in: schemas.MinistryCreate) -> schemas.Ministry:
        """
        Create a ministry.

        Raises:
            ConflictError: If the code is taken.
            MissingReferenceError: If the creating user does not exist.
        """

    @abstractmethod
    def create_ministry_with_leader(
        self, ministry_in: schemas.MinistryCreate, position: Optional[str] = None
    ) -> schemas.Ministry:
        """
        Create a ministry and make its creator a Leader of it, atomically.

        Raises:
            ConflictError: If the code is taken.
            MissingReferenceError: If the creating user does not exist.
                Neither the ministry nor the membership is written then.
        """

    # Ministry members

    @abstractmethod
    def get_ministry_member(self, member_id: int) -> Optional[schemas.MinistryMember]:
        ...

    @abstractmethod
    def get_ministry_members(self, ministry_id: int) -> list[schemas.MinistryMember]:
        ...

    @abstractmethod
    def get_ministry_members_by_user_id(self, user_id: int) -> list[schemas.MinistryMember]:
        ...

    @abstractmethod
    def create_ministry_member(
        self, member_in: schemas.MinistryMemberCreate
    ) -> schemas.MinistryMember:
        ...

    @abstractmethod
    def update_ministry_member(
        self, member_id: int, changes: schemas.MinistryMemberUpdate
    ) -> Optional[schemas.MinistryMember]:
        ...

    @abstractmethod
    def delete_ministry_member(self, member_id: int) -> bool:
        ...

    # Songs

    @abstractmethod
    def get_song(self, song_id: int) -> Optional[schemas.Song]:
        ...

    @abstractmethod
    def get_songs(self, ministry_id: int) -> list[schemas.Song]:
        ...

    @abstractmethod
    def create_song(self, song_in: schemas.SongCreate) -> schemas.Song:
        ...

    @abstractmethod
    def update_song(
        self, song_id: int, changes: schemas.SongUpdate
    ) -> Optional[schemas.Song]:
        ...

    @abstractmethod
    def delete_song(self, song_id: int) -> bool:
        """Delete a song and every setlist entry that plays it."""

    # Services

    @abstractmethod
    def get_service(self, service_id: int) -> Optional[schemas.Service]:
        ...

    @abstractmethod
    def get_services(self, ministry_id: int) -> list[schemas.Service]:
        """All services of a ministry ordered by date and time."""

    @abstractmethod
    def get_upcoming_services(self, ministry_id: int) -> list[schemas.Service]:
        """Services dated today or later, ordered by date and time."""

    @abstractmethod
    def create_service(self, service_in: schemas.ServiceCreate) -> schemas.Service:
        ...

    @abstractmethod
    def create_service_with_roster(
        self,
        service_in: schemas.ServiceCreate,
        members: Sequence[schemas.RosterEntry] = (),
        songs: Sequence[schemas.SetlistEntry] = (),
    ) -> schemas.Service:
        """
        Create a service together with its roster and setlist, atomically.

        Songs receive orders ``1..n`` in the given sequence. Either every
        row is written or, when any reference is missing, none is.

        Raises:
            MissingReferenceError: If the ministry, a user or a song is unknown.
        """

    @abstractmethod
    def update_service(
        self, service_id: int, changes: schemas.ServiceUpdate
    ) -> Optional[schemas.Service]:
        ...

    @abstractmethod
    def delete_service(self, service_id: int) -> bool:
        """Delete a service together with its roster and setlist."""

    # Service members

    @abstractmethod
    def get_service_member(self, member_id: int) -> Optional[schemas.ServiceMember]:
        ...

    @abstractmethod
    def get_service_members(self, service_id: int) -> list[schemas.ServiceMember]:
        ...

    @abstractmethod
    def create_service_member(
        self, member_in: schemas.ServiceMemberCreate
    ) -> schemas.ServiceMember:
        ...

    @abstractmethod
    def delete_service_member(self, member_id: int) -> bool:
        ...

    # Service songs

    @abstractmethod
    def get_service_song(self, service_song_id: int) -> Optional[schemas.ServiceSong]:
        ...

    @abstractmethod
    def get_service_songs(self, service_id: int) -> list[schemas.ServiceSong]:
        """The setlist of a service in ascending ``order``."""

    @abstractmethod
    def create_service_song(
        self, service_song_in: schemas.ServiceSongCreate
    ) -> schemas.ServiceSong:
        ...

    @abstractmethod
    def update_service_song_order(
        self, service_song_id: int, order: int
    ) -> Optional[schemas.ServiceSong]:
        ...

    @abstractmethod
    def delete_service_song(self, service_song_id: int) -> bool:
        ...

    # Availability

    @abstractmethod
    def get_availability(self, availability_id: int) -> Optional[schemas.Availability]:
        ...

    @abstractmethod
    def get_user_availability(
        self, user_id: int, ministry_id: int
    ) -> list[schemas.Availability]:
        ...

    @abstractmethod
    def create_availability(
        self, availability_in: schemas.AvailabilityCreate
    ) -> schemas.Availability:
        ...

    @abstractmethod
    def delete_availability(self, availability_id: int) -> bool:
        ...

    # Messages

    @abstractmethod
    def get_message(self, message_id: int) -> Optional[schemas.Message]:
        ...

    @abstractmethod
    def get_messages(
        self, ministry_id: int, recipient_id: Optional[int] = None
    ) -> list[schemas.Message]:
        """
        Messages of a ministry, oldest first.

        With ``recipient_id`` only the messages addressed to that user are
        returned; broadcasts have no recipient and are left out.
        """

    @abstractmethod
    def create_message(self, message_in: schemas.MessageCreate) -> schemas.Message:
        """Store a message as unread, stamped with the current time."""

    @abstractmethod
    def mark_messages_as_read(self, recipient_id: int, sender_id: int) -> bool:
        """
        Mark every message from ``sender_id`` to ``recipient_id`` as read.

        Returns ``True`` even when there was nothing to mark.
        """
