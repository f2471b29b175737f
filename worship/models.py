"""Database models for the Worship Team API.

This module defines the SQLAlchemy ORM tables backing ``DatabaseStorage``.
Every table uses SQLite's ``AUTOINCREMENT`` so that ids of deleted rows
are never handed out again.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Date,
    Time,
    DateTime,
    Boolean,
    ForeignKey,
    CheckConstraint,
    func,
)
from sqlalchemy.orm import relationship

from .database import Base

AUTOINCREMENT = {"sqlite_autoincrement": True}


class User(Base):
    """
    SQLAlchemy model representing a team member's account.

    ``username`` and ``hashed_password`` are empty for users materialized
    from an identity provider through ``upsert_user``.
    """

    __tablename__ = "users"
    __table_args__ = AUTOINCREMENT

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True, nullable=True)
    hashed_password = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), default="member", nullable=False)
    profile_image_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=True)
    updated_at = Column(DateTime, default=func.now(), nullable=True)


class Ministry(Base):
    """
    A worship team. Songs, services, members and messages belong to it.
    """

    __tablename__ = "ministries"
    __table_args__ = AUTOINCREMENT

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    code = Column(String(4), unique=True, index=True, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    logo = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=True)
    updated_at = Column(DateTime, default=func.now(), nullable=True)

    #: Memberships, written together with a new ministry
    members = relationship("MinistryMember")


class MinistryMember(Base):
    """Membership of a user in a ministry with a team role."""

    __tablename__ = "ministry_members"
    __table_args__ = AUTOINCREMENT

    id = Column(Integer, primary_key=True, index=True)
    ministry_id = Column(
        Integer, ForeignKey("ministries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role = Column(String(20), nullable=False)
    position = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=True)
    updated_at = Column(DateTime, default=func.now(), nullable=True)


class Song(Base):
    """An entry of a ministry's song library."""

    __tablename__ = "songs"
    __table_args__ = AUTOINCREMENT

    id = Column(Integer, primary_key=True, index=True)
    ministry_id = Column(
        Integer, ForeignKey("ministries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String(200), nullable=False)
    artist = Column(String(200), nullable=True)
    key = Column(String(10), nullable=True)
    bpm = Column(Integer, nullable=True)
    duration = Column(String(20), nullable=True)
    category = Column(String(50), nullable=True)
    chord_link = Column(String(500), nullable=True)
    lyrics_link = Column(String(500), nullable=True)
    audio_link = Column(String(500), nullable=True)
    video_link = Column(String(500), nullable=True)


class Service(Base):
    """A scheduled worship event."""

    __tablename__ = "services"
    __table_args__ = AUTOINCREMENT

    id = Column(Integer, primary_key=True, index=True)
    ministry_id = Column(
        Integer, ForeignKey("ministries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(200), nullable=False)
    date = Column(Date, nullable=False, index=True)
    time = Column(Time, nullable=False)
    type = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), default="pending", nullable=False)

    #: Roster of the service
    members = relationship(
        "ServiceMember", back_populates="service", cascade="all, delete-orphan"
    )
    #: Setlist of the service
    songs = relationship(
        "ServiceSong", back_populates="service", cascade="all, delete-orphan"
    )


class ServiceMember(Base):
    """Assignment of a user to a service for one occasion."""

    __tablename__ = "service_members"
    __table_args__ = AUTOINCREMENT

    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(
        Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(String(100), nullable=False)
    status = Column(String(20), default="confirmed", nullable=False)
    created_at = Column(DateTime, default=func.now(), nullable=True)

    service = relationship("Service", back_populates="members")


class ServiceSong(Base):
    """An ordered setlist entry; ``key`` overrides the song's key when set."""

    __tablename__ = "service_songs"
    __table_args__ = (
        CheckConstraint('"order" >= 1', name="ck_service_song_order"),
        AUTOINCREMENT,
    )

    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(
        Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True
    )
    song_id = Column(
        Integer, ForeignKey("songs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order = Column(Integer, nullable=False)
    key = Column(String(10), nullable=True)

    service = relationship("Service", back_populates="songs")


class Availability(Base):
    """A date range a user declared within a ministry."""

    __tablename__ = "availability"
    __table_args__ = AUTOINCREMENT

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ministry_id = Column(
        Integer, ForeignKey("ministries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)


class Message(Base):
    """A team message; a missing ``recipient_id`` marks a broadcast."""

    __tablename__ = "messages"
    __table_args__ = AUTOINCREMENT

    id = Column(Integer, primary_key=True, index=True)
    ministry_id = Column(
        Integer, ForeignKey("ministries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)
    read = Column(Boolean, default=False, nullable=False)
