"""In-memory implementation of the storage contract.

``MemoryStorage`` needs no database and is used for local development,
for tests, and as the reference behaviour ``DatabaseStorage`` must match.
Each entity lives in its own ``{id: record}`` dictionary next to a
per-entity id counter starting at 1. A re-entrant lock turns every
mutating operation into one critical section, so composite operations
such as ``create_service_with_roster`` are atomic with respect to other
request threads.

The store starts empty; see ``seed.seed_demo_data`` for demo fixtures.
"""

import logging
import threading
from datetime import date
from typing import Optional, Sequence, TypeVar

from pydantic import BaseModel

from . import schemas
from .security import get_password_hash
from .storage import ConflictError, MissingReferenceError, Storage, utcnow

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=schemas.Record)


class MemoryStorage(Storage):
    """Keeps every record in process memory."""

    def __init__(self):
        self._lock = threading.RLock()
        self._users: dict[int, schemas.User] = {}
        self._ministries: dict[int, schemas.Ministry] = {}
        self._ministry_members: dict[int, schemas.MinistryMember] = {}
        self._songs: dict[int, schemas.Song] = {}
        self._services: dict[int, schemas.Service] = {}
        self._service_members: dict[int, schemas.ServiceMember] = {}
        self._service_songs: dict[int, schemas.ServiceSong] = {}
        self._availabilities: dict[int, schemas.Availability] = {}
        self._messages: dict[int, schemas.Message] = {}
        self._next_ids: dict[str, int] = {}

    # Generic helpers

    def _next_id(self, table: str) -> int:
        next_id = self._next_ids.get(table, 1)
        self._next_ids[table] = next_id + 1
        return next_id

    def _insert(
        self, table: str, records: dict[int, RecordT], record_cls: type[RecordT], **fields
    ) -> RecordT:
        with self._lock:
            record = record_cls(id=self._next_id(table), **fields)
            records[record.id] = record
        logger.debug("Created %s %s", table, record.id)
        return record.model_copy()

    def _scan(self, records: dict[int, RecordT]) -> list[RecordT]:
        with self._lock:
            return list(records.values())

    @staticmethod
    def _get(records: dict[int, RecordT], record_id: int) -> Optional[RecordT]:
        record = records.get(record_id)
        return record.model_copy() if record is not None else None

    def _update(
        self, records: dict[int, RecordT], record_id: int, changes: BaseModel, **extra
    ) -> Optional[RecordT]:
        with self._lock:
            record = records.get(record_id)
            if record is None:
                return None
            # re-validated so a bad merge leaves the stored record untouched
            merged = type(record).model_validate(
                {
                    **record.model_dump(),
                    **changes.model_dump(exclude_unset=True),
                    **extra,
                }
            )
            records[record_id] = merged
        return merged.model_copy()

    def _delete(self, table: str, records: dict[int, RecordT], record_id: int) -> bool:
        with self._lock:
            removed = records.pop(record_id, None)
        if removed is not None:
            logger.debug("Deleted %s %s", table, record_id)
        return removed is not None

    @staticmethod
    def _require(records: dict, record_id: int, label: str) -> None:
        if record_id not in records:
            logger.warning("Rejected reference to missing %s %s", label, record_id)
            raise MissingReferenceError(f"{label} {record_id} does not exist")

    def _check_user_unique(
        self, username: Optional[str], email: Optional[str], user_id: Optional[int] = None
    ) -> None:
        for other in self._scan(self._users):
            if other.id == user_id:
                continue
            if username is not None and other.username == username:
                raise ConflictError(f"Username {username!r} is already taken")
            if email is not None and other.email == email:
                raise ConflictError(f"Email {email!r} is already registered")

    # Users

    def get_user(self, user_id: int) -> Optional[schemas.User]:
        return self._get(self._users, user_id)

    def get_user_by_username(self, username: str) -> Optional[schemas.User]:
        for user in self._scan(self._users):
            if user.username == username:
                return user.model_copy()
        return None

    def get_user_by_email(self, email: str) -> Optional[schemas.User]:
        for user in self._scan(self._users):
            if user.email == email:
                return user.model_copy()
        return None

    def create_user(self, user_in: schemas.UserCreate) -> schemas.User:
        hashed_password = get_password_hash(user_in.password)
        now = utcnow()
        with self._lock:
            self._check_user_unique(user_in.username, user_in.email)
            return self._insert(
                "user",
                self._users,
                schemas.User,
                **user_in.model_dump(exclude={"password"}),
                hashed_password=hashed_password,
                created_at=now,
                updated_at=now,
            )

    def upsert_user(self, user_in: schemas.UserUpsert) -> schemas.User:
        now = utcnow()
        changes = user_in.model_dump(exclude_unset=True, exclude={"id"})
        with self._lock:
            self._check_user_unique(
                changes.get("username"), changes.get("email"), user_id=user_in.id
            )
            existing = self._users.get(user_in.id)
            if existing is None:
                user = schemas.User(
                    **user_in.model_dump(), created_at=now, updated_at=now
                )
                # explicit ids must not collide with later generated ones
                self._next_ids["user"] = max(self._next_ids.get("user", 1), user.id + 1)
            else:
                user = existing.model_copy(update={**changes, "updated_at": now})
            self._users[user.id] = user
        return user.model_copy()

    # Ministries

    def get_ministry(self, ministry_id: int) -> Optional[schemas.Ministry]:
        return self._get(self._ministries, ministry_id)

    def get_ministry_by_code(self, code: str) -> Optional[schemas.Ministry]:
        for ministry in self._scan(self._ministries):
            if ministry.code == code:
                return ministry.model_copy()
        return None

    def get_ministries(self) -> list[schemas.Ministry]:
        return [ministry.model_copy() for ministry in self._scan(self._ministries)]

    def get_ministries_by_user_id(self, user_id: int) -> list[schemas.Ministry]:
        ministries: dict[int, schemas.Ministry] = {}
        for member in self._scan(self._ministry_members):
            if member.user_id != user_id or member.ministry_id in ministries:
                continue
            ministry = self._ministries.get(member.ministry_id)
            if ministry is not None:
                ministries[ministry.id] = ministry.model_copy()
        return list(ministries.values())

    def create_ministry(self, ministry_in: schemas.MinistryCreate) -> schemas.Ministry:
        now = utcnow()
        with self._lock:
            self._require(self._users, ministry_in.created_by, "user")
            if any(m.code == ministry_in.code for m in self._scan(self._ministries)):
                raise ConflictError(f"Ministry code {ministry_in.code!r} is already taken")
            return self._insert(
                "ministry",
                self._ministries,
                schemas.Ministry,
                **ministry_in.model_dump(),
                created_at=now,
                updated_at=now,
            )

    def create_ministry_with_leader(
        self, ministry_in: schemas.MinistryCreate, position: Optional[str] = None
    ) -> schemas.Ministry:
        now = utcnow()
        with self._lock:
            ministry = self.create_ministry(ministry_in)
            self._insert(
                "ministry_member",
                self._ministry_members,
                schemas.MinistryMember,
                ministry_id=ministry.id,
                user_id=ministry_in.created_by,
                role="Leader",
                position=position,
                created_at=now,
                updated_at=now,
            )
        return ministry

    # Ministry members

    def get_ministry_member(self, member_id: int) -> Optional[schemas.MinistryMember]:
        return self._get(self._ministry_members, member_id)

    def get_ministry_members(self, ministry_id: int) -> list[schemas.MinistryMember]:
        return [
            member.model_copy()
            for member in self._scan(self._ministry_members)
            if member.ministry_id == ministry_id
        ]

    def get_ministry_members_by_user_id(self, user_id: int) -> list[schemas.MinistryMember]:
        return [
            member.model_copy()
            for member in self._scan(self._ministry_members)
            if member.user_id == user_id
        ]

    def create_ministry_member(
        self, member_in: schemas.MinistryMemberCreate
    ) -> schemas.MinistryMember:
        now = utcnow()
        with self._lock:
            self._require(self._ministries, member_in.ministry_id, "ministry")
            self._require(self._users, member_in.user_id, "user")
            return self._insert(
                "ministry_member",
                self._ministry_members,
                schemas.MinistryMember,
                **member_in.model_dump(),
                created_at=now,
                updated_at=now,
            )

    def update_ministry_member(
        self, member_id: int, changes: schemas.MinistryMemberUpdate
    ) -> Optional[schemas.MinistryMember]:
        return self._update(
            self._ministry_members, member_id, changes, updated_at=utcnow()
        )

    def delete_ministry_member(self, member_id: int) -> bool:
        return self._delete("ministry_member", self._ministry_members, member_id)

    # Songs

    def get_song(self, song_id: int) -> Optional[schemas.Song]:
        return self._get(self._songs, song_id)

    def get_songs(self, ministry_id: int) -> list[schemas.Song]:
        return [
            song.model_copy()
            for song in self._scan(self._songs)
            if song.ministry_id == ministry_id
        ]

    def create_song(self, song_in: schemas.SongCreate) -> schemas.Song:
        with self._lock:
            self._require(self._ministries, song_in.ministry_id, "ministry")
            return self._insert("song", self._songs, schemas.Song, **song_in.model_dump())

    def update_song(
        self, song_id: int, changes: schemas.SongUpdate
    ) -> Optional[schemas.Song]:
        return self._update(self._songs, song_id, changes)

    def delete_song(self, song_id: int) -> bool:
        with self._lock:
            if not self._delete("song", self._songs, song_id):
                return False
            for entry_id in [
                e.id for e in self._scan(self._service_songs) if e.song_id == song_id
            ]:
                del self._service_songs[entry_id]
        return True

    # Services

    def get_service(self, service_id: int) -> Optional[schemas.Service]:
        return self._get(self._services, service_id)

    @staticmethod
    def _chronological(services) -> list[schemas.Service]:
        return [
            service.model_copy()
            for service in sorted(services, key=lambda s: (s.date, s.time, s.id))
        ]

    def get_services(self, ministry_id: int) -> list[schemas.Service]:
        return self._chronological(
            s for s in self._scan(self._services) if s.ministry_id == ministry_id
        )

    def get_upcoming_services(self, ministry_id: int) -> list[schemas.Service]:
        today = date.today()
        return self._chronological(
            s
            for s in self._scan(self._services)
            if s.ministry_id == ministry_id and s.date >= today
        )

    def create_service(self, service_in: schemas.ServiceCreate) -> schemas.Service:
        with self._lock:
            self._require(self._ministries, service_in.ministry_id, "ministry")
            return self._insert(
                "service", self._services, schemas.Service, **service_in.model_dump()
            )

    def create_service_with_roster(
        self,
        service_in: schemas.ServiceCreate,
        members: Sequence[schemas.RosterEntry] = (),
        songs: Sequence[schemas.SetlistEntry] = (),
    ) -> schemas.Service:
        with self._lock:
            # validate everything first so that nothing is written on failure
            self._require(self._ministries, service_in.ministry_id, "ministry")
            for member in members:
                self._require(self._users, member.user_id, "user")
            for entry in songs:
                self._require(self._songs, entry.song_id, "song")

            service = self.create_service(service_in)
            now = utcnow()
            for member in members:
                self._insert(
                    "service_member",
                    self._service_members,
                    schemas.ServiceMember,
                    service_id=service.id,
                    user_id=member.user_id,
                    position=member.position,
                    created_at=now,
                )
            for order, entry in enumerate(songs, start=1):
                self._insert(
                    "service_song",
                    self._service_songs,
                    schemas.ServiceSong,
                    service_id=service.id,
                    song_id=entry.song_id,
                    order=order,
                    key=entry.key,
                )
        return service

    def update_service(
        self, service_id: int, changes: schemas.ServiceUpdate
    ) -> Optional[schemas.Service]:
        return self._update(self._services, service_id, changes)

    def delete_service(self, service_id: int) -> bool:
        with self._lock:
            if not self._delete("service", self._services, service_id):
                return False
            for records in (self._service_members, self._service_songs):
                for record_id in [
                    r.id for r in self._scan(records) if r.service_id == service_id
                ]:
                    del records[record_id]
        return True

    # Service members

    def get_service_member(self, member_id: int) -> Optional[schemas.ServiceMember]:
        return self._get(self._service_members, member_id)

    def get_service_members(self, service_id: int) -> list[schemas.ServiceMember]:
        return [
            member.model_copy()
            for member in self._scan(self._service_members)
            if member.service_id == service_id
        ]

    def create_service_member(
        self, member_in: schemas.ServiceMemberCreate
    ) -> schemas.ServiceMember:
        with self._lock:
            self._require(self._services, member_in.service_id, "service")
            self._require(self._users, member_in.user_id, "user")
            return self._insert(
                "service_member",
                self._service_members,
                schemas.ServiceMember,
                **member_in.model_dump(),
                created_at=utcnow(),
            )

    def delete_service_member(self, member_id: int) -> bool:
        return self._delete("service_member", self._service_members, member_id)

    # Service songs

    def get_service_song(self, service_song_id: int) -> Optional[schemas.ServiceSong]:
        return self._get(self._service_songs, service_song_id)

    def get_service_songs(self, service_id: int) -> list[schemas.ServiceSong]:
        entries = [e for e in self._scan(self._service_songs) if e.service_id == service_id]
        entries.sort(key=lambda e: (e.order, e.id))
        return [entry.model_copy() for entry in entries]

    def create_service_song(
        self, service_song_in: schemas.ServiceSongCreate
    ) -> schemas.ServiceSong:
        with self._lock:
            self._require(self._services, service_song_in.service_id, "service")
            self._require(self._songs, service_song_in.song_id, "song")
            return self._insert(
                "service_song",
                self._service_songs,
                schemas.ServiceSong,
                **service_song_in.model_dump(),
            )

    def update_service_song_order(
        self, service_song_id: int, order: int
    ) -> Optional[schemas.ServiceSong]:
        return self._update(
            self._service_songs, service_song_id, schemas.ServiceSongOrder(order=order)
        )

    def delete_service_song(self, service_song_id: int) -> bool:
        return self._delete("service_song", self._service_songs, service_song_id)

    # Availability

    def get_availability(self, availability_id: int) -> Optional[schemas.Availability]:
        return self._get(self._availabilities, availability_id)

    def get_user_availability(
        self, user_id: int, ministry_id: int
    ) -> list[schemas.Availability]:
        return [
            entry.model_copy()
            for entry in self._scan(self._availabilities)
            if entry.user_id == user_id and entry.ministry_id == ministry_id
        ]

    def create_availability(
        self, availability_in: schemas.AvailabilityCreate
    ) -> schemas.Availability:
        with self._lock:
            self._require(self._users, availability_in.user_id, "user")
            self._require(self._ministries, availability_in.ministry_id, "ministry")
            return self._insert(
                "availability",
                self._availabilities,
                schemas.Availability,
                **availability_in.model_dump(),
            )

    def delete_availability(self, availability_id: int) -> bool:
        return self._delete("availability", self._availabilities, availability_id)

    # Messages

    def get_message(self, message_id: int) -> Optional[schemas.Message]:
        return self._get(self._messages, message_id)

    def get_messages(
        self, ministry_id: int, recipient_id: Optional[int] = None
    ) -> list[schemas.Message]:
        messages = [
            m
            for m in self._scan(self._messages)
            if m.ministry_id == ministry_id
            and (recipient_id is None or m.recipient_id == recipient_id)
        ]
        messages.sort(key=lambda m: (m.created_at, m.id))
        return [message.model_copy() for message in messages]

    def create_message(self, message_in: schemas.MessageCreate) -> schemas.Message:
        with self._lock:
            self._require(self._ministries, message_in.ministry_id, "ministry")
            self._require(self._users, message_in.sender_id, "user")
            if message_in.recipient_id is not None:
                self._require(self._users, message_in.recipient_id, "user")
            return self._insert(
                "message",
                self._messages,
                schemas.Message,
                **message_in.model_dump(),
                created_at=utcnow(),
                read=False,
            )

    def mark_messages_as_read(self, recipient_id: int, sender_id: int) -> bool:
        with self._lock:
            for message_id, message in list(self._messages.items()):
                if message.recipient_id == recipient_id and message.sender_id == sender_id:
                    self._messages[message_id] = message.model_copy(update={"read": True})
        return True
