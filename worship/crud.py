"""CRUD operations backed by a relational database.

``DatabaseStorage`` implements the storage contract on top of one
SQLAlchemy session, normally the per-request session handed out by
``database.get_db``. Every write commits before returning so the new
state is visible to the next call; composite writes share a single
transaction and are rolled back as a whole on failure.
"""

import logging
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .security import get_password_hash
from .storage import ConflictError, MissingReferenceError, Storage, utcnow

logger = logging.getLogger(__name__)

# SQLSTATE 23505 on PostgreSQL; SQLite only reports it in the message
UNIQUE_VIOLATION = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    """Tell a duplicate key apart from the other integrity errors."""
    if getattr(exc.orig, "pgcode", None) == UNIQUE_VIOLATION:
        return True
    return "UNIQUE constraint failed" in str(exc.orig)


class DatabaseStorage(Storage):
    """Storage contract implemented with SQLAlchemy queries."""

    def __init__(self, db: Session):
        self.db = db

    # Generic helpers

    def _commit(self, action: str) -> None:
        """
        Commit the session, translating unique key violations.

        Other integrity errors (NOT NULL, foreign keys) are re-raised as they
        are once the session is rolled back.

        Raises:
            ConflictError: If the database rejected a duplicate key.
        """
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if not is_unique_violation(exc):
                logger.error("Integrity error while trying to %s: %s", action, exc.orig)
                raise
            logger.warning("Duplicate key while trying to %s: %s", action, exc.orig)
            raise ConflictError(f"Could not {action}: {exc.orig}") from exc

    def _add(self, row, schema: type[schemas.Record], action: str):
        self.db.add(row)
        self._commit(action)
        self.db.refresh(row)
        logger.debug("Created %s %s", row.__tablename__, row.id)
        return schema.model_validate(row)

    def _get(self, model, record_id: int, schema: type[schemas.Record]):
        row = self.db.get(model, record_id)
        return schema.model_validate(row) if row is not None else None

    def _list(self, stmt, schema: type[schemas.Record]) -> list:
        return [schema.model_validate(row) for row in self.db.scalars(stmt).all()]

    def _update(self, model, record_id: int, changes: dict, schema: type[schemas.Record]):
        row = self.db.get(model, record_id)
        if row is None:
            return None
        # the merged record must still be valid before the row is touched
        schema.model_validate({**schema.model_validate(row).model_dump(), **changes})
        for key, value in changes.items():
            setattr(row, key, value)
        self.db.add(row)
        self._commit(f"update {model.__tablename__} {record_id}")
        self.db.refresh(row)
        return schema.model_validate(row)

    def _delete(self, model, record_id: int) -> bool:
        result = self.db.execute(delete(model).where(model.id == record_id))
        self.db.commit()
        if result.rowcount:
            logger.debug("Deleted %s %s", model.__tablename__, record_id)
        return result.rowcount > 0

    def _require(self, model, record_id: int, label: str) -> None:
        if self.db.get(model, record_id) is None:
            logger.warning("Rejected reference to missing %s %s", label, record_id)
            raise MissingReferenceError(f"{label} {record_id} does not exist")

    def _check_user_unique(
        self, username: Optional[str], email: Optional[str], user_id: Optional[int] = None
    ) -> None:
        if username is not None:
            other = self.db.execute(
                select(models.User).where(models.User.username == username)
            ).scalar_one_or_none()
            if other is not None and other.id != user_id:
                raise ConflictError(f"Username {username!r} is already taken")
        if email is not None:
            other = self.db.execute(
                select(models.User).where(models.User.email == email)
            ).scalar_one_or_none()
            if other is not None and other.id != user_id:
                raise ConflictError(f"Email {email!r} is already registered")

    # Users

    def get_user(self, user_id: int) -> Optional[schemas.User]:
        return self._get(models.User, user_id, schemas.User)

    def get_user_by_username(self, username: str) -> Optional[schemas.User]:
        user = self.db.execute(
            select(models.User).where(models.User.username == username)
        ).scalar_one_or_none()
        return schemas.User.model_validate(user) if user is not None else None

    def get_user_by_email(self, email: str) -> Optional[schemas.User]:
        user = self.db.execute(
            select(models.User).where(models.User.email == email)
        ).scalar_one_or_none()
        return schemas.User.model_validate(user) if user is not None else None

    def create_user(self, user_in: schemas.UserCreate) -> schemas.User:
        """
        Create and persist a new user with a hashed password.

        Raises:
            ConflictError: If the username or email already exists.
        """
        self._check_user_unique(user_in.username, user_in.email)
        now = utcnow()
        user = models.User(
            **user_in.model_dump(exclude={"password"}),
            hashed_password=get_password_hash(user_in.password),
            created_at=now,
            updated_at=now,
        )
        return self._add(user, schemas.User, f"create user {user_in.username!r}")

    def upsert_user(self, user_in: schemas.UserUpsert) -> schemas.User:
        """
        Insert or refresh a user keyed by id in a single statement.

        Only the fields set on ``user_in`` overwrite an existing row.
        """
        changes = user_in.model_dump(exclude_unset=True, exclude={"id"})
        self._check_user_unique(
            changes.get("username"), changes.get("email"), user_id=user_in.id
        )
        now = utcnow()
        values = {**user_in.model_dump(), "created_at": now, "updated_at": now}
        dialect = self.db.get_bind().dialect.name

        if dialect in ("sqlite", "postgresql"):
            insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            stmt = insert(models.User).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[models.User.id],
                set_={**changes, "updated_at": now},
            )
            self.db.execute(stmt)
        else:
            existing = self.db.get(models.User, user_in.id)
            if existing is None:
                self.db.add(models.User(**values))
            else:
                for key, value in {**changes, "updated_at": now}.items():
                    setattr(existing, key, value)
        self._commit(f"upsert user {user_in.id}")

        user = self.db.get(models.User, user_in.id, populate_existing=True)
        return schemas.User.model_validate(user)

    # Ministries

    def get_ministry(self, ministry_id: int) -> Optional[schemas.Ministry]:
        return self._get(models.Ministry, ministry_id, schemas.Ministry)

    def get_ministry_by_code(self, code: str) -> Optional[schemas.Ministry]:
        ministry = self.db.execute(
            select(models.Ministry).where(models.Ministry.code == code)
        ).scalar_one_or_none()
        return schemas.Ministry.model_validate(ministry) if ministry is not None else None

    def get_ministries(self) -> list[schemas.Ministry]:
        return self._list(select(models.Ministry).order_by(models.Ministry.id), schemas.Ministry)

    def get_ministries_by_user_id(self, user_id: int) -> list[schemas.Ministry]:
        stmt = (
            select(models.Ministry)
            .join(models.MinistryMember, models.MinistryMember.ministry_id == models.Ministry.id)
            .where(models.MinistryMember.user_id == user_id)
            .order_by(models.MinistryMember.id)
        )
        ministries: dict[int, schemas.Ministry] = {}
        for row in self.db.scalars(stmt).all():
            ministries.setdefault(row.id, schemas.Ministry.model_validate(row))
        return list(ministries.values())

    def create_ministry(self, ministry_in: schemas.MinistryCreate) -> schemas.Ministry:
        """
        Create a ministry with a unique join code.

        Raises:
            ConflictError: If a ministry with the same code already exists.
            MissingReferenceError: If the creating user does not exist.
        """
        self._require(models.User, ministry_in.created_by, "user")
        if self.get_ministry_by_code(ministry_in.code) is not None:
            raise ConflictError(f"Ministry code {ministry_in.code!r} is already taken")
        now = utcnow()
        ministry = models.Ministry(**ministry_in.model_dump(), created_at=now, updated_at=now)
        return self._add(ministry, schemas.Ministry, f"create ministry {ministry_in.code!r}")

    def create_ministry_with_leader(
        self, ministry_in: schemas.MinistryCreate, position: Optional[str] = None
    ) -> schemas.Ministry:
        """
        Create a ministry and its Leader membership in one transaction.

        Raises:
            ConflictError: If a ministry with the same code already exists.
            MissingReferenceError: If the creating user does not exist.
        """
        self._require(models.User, ministry_in.created_by, "user")
        if self.get_ministry_by_code(ministry_in.code) is not None:
            raise ConflictError(f"Ministry code {ministry_in.code!r} is already taken")
        now = utcnow()
        ministry = models.Ministry(**ministry_in.model_dump(), created_at=now, updated_at=now)
        ministry.members = [
            models.MinistryMember(
                user_id=ministry_in.created_by,
                role="Leader",
                position=position,
                created_at=now,
                updated_at=now,
            )
        ]
        ministry = self._add(
            ministry, schemas.Ministry, f"create ministry {ministry_in.code!r} with its leader"
        )
        logger.debug("Made user %s leader of ministry %s", ministry.created_by, ministry.id)
        return ministry

    # Ministry members

    def get_ministry_member(self, member_id: int) -> Optional[schemas.MinistryMember]:
        return self._get(models.MinistryMember, member_id, schemas.MinistryMember)

    def get_ministry_members(self, ministry_id: int) -> list[schemas.MinistryMember]:
        stmt = (
            select(models.MinistryMember)
            .where(models.MinistryMember.ministry_id == ministry_id)
            .order_by(models.MinistryMember.id)
        )
        return self._list(stmt, schemas.MinistryMember)

    def get_ministry_members_by_user_id(self, user_id: int) -> list[schemas.MinistryMember]:
        stmt = (
            select(models.MinistryMember)
            .where(models.MinistryMember.user_id == user_id)
            .order_by(models.MinistryMember.id)
        )
        return self._list(stmt, schemas.MinistryMember)

    def create_ministry_member(
        self, member_in: schemas.MinistryMemberCreate
    ) -> schemas.MinistryMember:
        self._require(models.Ministry, member_in.ministry_id, "ministry")
        self._require(models.User, member_in.user_id, "user")
        now = utcnow()
        member = models.MinistryMember(**member_in.model_dump(), created_at=now, updated_at=now)
        return self._add(member, schemas.MinistryMember, "create ministry member")

    def update_ministry_member(
        self, member_id: int, changes: schemas.MinistryMemberUpdate
    ) -> Optional[schemas.MinistryMember]:
        return self._update(
            models.MinistryMember,
            member_id,
            {**changes.model_dump(exclude_unset=True), "updated_at": utcnow()},
            schemas.MinistryMember,
        )

    def delete_ministry_member(self, member_id: int) -> bool:
        return self._delete(models.MinistryMember, member_id)

    # Songs

    def get_song(self, song_id: int) -> Optional[schemas.Song]:
        return self._get(models.Song, song_id, schemas.Song)

    def get_songs(self, ministry_id: int) -> list[schemas.Song]:
        stmt = (
            select(models.Song)
            .where(models.Song.ministry_id == ministry_id)
            .order_by(models.Song.id)
        )
        return self._list(stmt, schemas.Song)

    def create_song(self, song_in: schemas.SongCreate) -> schemas.Song:
        self._require(models.Ministry, song_in.ministry_id, "ministry")
        return self._add(models.Song(**song_in.model_dump()), schemas.Song, "create song")

    def update_song(
        self, song_id: int, changes: schemas.SongUpdate
    ) -> Optional[schemas.Song]:
        return self._update(
            models.Song, song_id, changes.model_dump(exclude_unset=True), schemas.Song
        )

    def delete_song(self, song_id: int) -> bool:
        self.db.execute(delete(models.ServiceSong).where(models.ServiceSong.song_id == song_id))
        return self._delete(models.Song, song_id)

    # Services

    def get_service(self, service_id: int) -> Optional[schemas.Service]:
        return self._get(models.Service, service_id, schemas.Service)

    def _services_stmt(self, ministry_id: int):
        return (
            select(models.Service)
            .where(models.Service.ministry_id == ministry_id)
            .order_by(models.Service.date, models.Service.time, models.Service.id)
        )

    def get_services(self, ministry_id: int) -> list[schemas.Service]:
        return self._list(self._services_stmt(ministry_id), schemas.Service)

    def get_upcoming_services(self, ministry_id: int) -> list[schemas.Service]:
        stmt = self._services_stmt(ministry_id).where(models.Service.date >= date.today())
        return self._list(stmt, schemas.Service)

    def create_service(self, service_in: schemas.ServiceCreate) -> schemas.Service:
        self._require(models.Ministry, service_in.ministry_id, "ministry")
        return self._add(
            models.Service(**service_in.model_dump()), schemas.Service, "create service"
        )

    def create_service_with_roster(
        self,
        service_in: schemas.ServiceCreate,
        members: Sequence[schemas.RosterEntry] = (),
        songs: Sequence[schemas.SetlistEntry] = (),
    ) -> schemas.Service:
        """
        Create a service, its roster and its setlist in one transaction.

        Raises:
            MissingReferenceError: If the ministry, a user or a song is unknown;
                nothing is written in that case.
        """
        self._require(models.Ministry, service_in.ministry_id, "ministry")
        for member in members:
            self._require(models.User, member.user_id, "user")
        for entry in songs:
            self._require(models.Song, entry.song_id, "song")

        now = utcnow()
        service = models.Service(**service_in.model_dump())
        service.members = [
            models.ServiceMember(user_id=m.user_id, position=m.position, created_at=now)
            for m in members
        ]
        service.songs = [
            models.ServiceSong(song_id=entry.song_id, order=order, key=entry.key)
            for order, entry in enumerate(songs, start=1)
        ]
        self.db.add(service)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Rolled back service %r with its roster", service_in.name)
            raise
        self.db.refresh(service)
        logger.debug(
            "Created service %s with %d members and %d songs",
            service.id,
            len(members),
            len(songs),
        )
        return schemas.Service.model_validate(service)

    def update_service(
        self, service_id: int, changes: schemas.ServiceUpdate
    ) -> Optional[schemas.Service]:
        return self._update(
            models.Service, service_id, changes.model_dump(exclude_unset=True), schemas.Service
        )

    def delete_service(self, service_id: int) -> bool:
        for model in (models.ServiceMember, models.ServiceSong):
            self.db.execute(delete(model).where(model.service_id == service_id))
        return self._delete(models.Service, service_id)

    # Service members

    def get_service_member(self, member_id: int) -> Optional[schemas.ServiceMember]:
        return self._get(models.ServiceMember, member_id, schemas.ServiceMember)

    def get_service_members(self, service_id: int) -> list[schemas.ServiceMember]:
        stmt = (
            select(models.ServiceMember)
            .where(models.ServiceMember.service_id == service_id)
            .order_by(models.ServiceMember.id)
        )
        return self._list(stmt, schemas.ServiceMember)

    def create_service_member(
        self, member_in: schemas.ServiceMemberCreate
    ) -> schemas.ServiceMember:
        self._require(models.Service, member_in.service_id, "service")
        self._require(models.User, member_in.user_id, "user")
        member = models.ServiceMember(**member_in.model_dump(), created_at=utcnow())
        return self._add(member, schemas.ServiceMember, "create service member")

    def delete_service_member(self, member_id: int) -> bool:
        return self._delete(models.ServiceMember, member_id)

    # Service songs

    def get_service_song(self, service_song_id: int) -> Optional[schemas.ServiceSong]:
        return self._get(models.ServiceSong, service_song_id, schemas.ServiceSong)

    def get_service_songs(self, service_id: int) -> list[schemas.ServiceSong]:
        stmt = (
            select(models.ServiceSong)
            .where(models.ServiceSong.service_id == service_id)
            .order_by(models.ServiceSong.order.asc(), models.ServiceSong.id)
        )
        return self._list(stmt, schemas.ServiceSong)

    def create_service_song(
        self, service_song_in: schemas.ServiceSongCreate
    ) -> schemas.ServiceSong:
        self._require(models.Service, service_song_in.service_id, "service")
        self._require(models.Song, service_song_in.song_id, "song")
        return self._add(
            models.ServiceSong(**service_song_in.model_dump()),
            schemas.ServiceSong,
            "create service song",
        )

    def update_service_song_order(
        self, service_song_id: int, order: int
    ) -> Optional[schemas.ServiceSong]:
        changes = schemas.ServiceSongOrder(order=order).model_dump()
        return self._update(models.ServiceSong, service_song_id, changes, schemas.ServiceSong)

    def delete_service_song(self, service_song_id: int) -> bool:
        return self._delete(models.ServiceSong, service_song_id)

    # Availability

    def get_availability(self, availability_id: int) -> Optional[schemas.Availability]:
        return self._get(models.Availability, availability_id, schemas.Availability)

    def get_user_availability(
        self, user_id: int, ministry_id: int
    ) -> list[schemas.Availability]:
        stmt = (
            select(models.Availability)
            .where(
                models.Availability.user_id == user_id,
                models.Availability.ministry_id == ministry_id,
            )
            .order_by(models.Availability.id)
        )
        return self._list(stmt, schemas.Availability)

    def create_availability(
        self, availability_in: schemas.AvailabilityCreate
    ) -> schemas.Availability:
        self._require(models.User, availability_in.user_id, "user")
        self._require(models.Ministry, availability_in.ministry_id, "ministry")
        return self._add(
            models.Availability(**availability_in.model_dump()),
            schemas.Availability,
            "create availability",
        )

    def delete_availability(self, availability_id: int) -> bool:
        return self._delete(models.Availability, availability_id)

    # Messages

    def get_message(self, message_id: int) -> Optional[schemas.Message]:
        return self._get(models.Message, message_id, schemas.Message)

    def get_messages(
        self, ministry_id: int, recipient_id: Optional[int] = None
    ) -> list[schemas.Message]:
        stmt = select(models.Message).where(models.Message.ministry_id == ministry_id)
        if recipient_id is not None:
            stmt = stmt.where(models.Message.recipient_id == recipient_id)
        stmt = stmt.order_by(models.Message.created_at.asc(), models.Message.id.asc())
        return self._list(stmt, schemas.Message)

    def create_message(self, message_in: schemas.MessageCreate) -> schemas.Message:
        self._require(models.Ministry, message_in.ministry_id, "ministry")
        self._require(models.User, message_in.sender_id, "user")
        if message_in.recipient_id is not None:
            self._require(models.User, message_in.recipient_id, "user")
        message = models.Message(**message_in.model_dump(), created_at=utcnow(), read=False)
        return self._add(message, schemas.Message, "create message")

    def mark_messages_as_read(self, recipient_id: int, sender_id: int) -> bool:
        self.db.execute(
            update(models.Message)
            .where(
                models.Message.recipient_id == recipient_id,
                models.Message.sender_id == sender_id,
                models.Message.read.is_(False),
            )
            .values(read=True)
        )
        self.db.commit()
        return True
