import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

MemberRole = Literal["Leader", "Admin", "Member"]
ServiceStatus = Literal["pending", "ready", "completed"]
RosterStatus = Literal["confirmed", "pending", "unavailable"]
MINISTRY_CODE_PATTERN = r"^[A-Z0-9]{4}$"


def reject_null(value):
    """Refuse an explicit null for a column that cannot be empty."""
    if value is None:
        raise ValueError("may not be null")
    return value


class Record(BaseModel):
    """Base class of the records handed out by a storage backend."""

    model_config = ConfigDict(from_attributes=True)

    id: int


# Users


class UserBase(BaseModel):
    """Shared profile fields of a user."""

    email: Optional[EmailStr] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: Literal["member", "admin"] = "member"
    profile_image_url: Optional[str] = None


class UserCreate(UserBase):
    """Payload for creating a new user; the password is plaintext."""

    username: str = Field(min_length=3, max_length=100)
    password: str = Field(min_length=6)


class UserUpsert(UserBase):
    """User data asserted by an identity provider, keyed by its id."""

    id: int
    username: Optional[str] = None


class User(Record, UserBase):
    """Stored user, including the password hash."""

    username: Optional[str] = None
    hashed_password: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


class UserOut(UserBase):
    """Response schema for user data."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: Optional[str] = None


# Ministries


class MinistryCreate(BaseModel):
    """Schema for creating a ministry."""

    name: str = Field(min_length=1)
    code: str = Field(pattern=MINISTRY_CODE_PATTERN)
    created_by: int
    logo: Optional[str] = None


class Ministry(Record):
    name: str
    code: str
    created_by: int
    logo: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


class MinistryIn(BaseModel):
    """Request body for creating a ministry; a code is generated if omitted."""

    name: str = Field(min_length=1)
    code: Optional[str] = Field(default=None, pattern=MINISTRY_CODE_PATTERN)
    logo: Optional[str] = None


class MinistryJoin(BaseModel):
    code: str


# Ministry members


class MinistryMemberCreate(BaseModel):
    ministry_id: int
    user_id: int
    role: MemberRole = "Member"
    position: Optional[str] = None


class MinistryMemberUpdate(BaseModel):
    """Schema for updating a membership (all fields optional)."""

    role: Optional[MemberRole] = None
    position: Optional[str] = None

    @field_validator("role")
    @classmethod
    def role_not_null(cls, value):
        return reject_null(value)


class MinistryMember(Record, MinistryMemberCreate):
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


class TeamMemberIn(BaseModel):
    """Request body for adding a person to the team."""

    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: MemberRole = "Member"
    position: Optional[str] = None


class TeamMemberUpdate(MinistryMemberUpdate):
    pass


class TeamMemberOut(BaseModel):
    """A membership joined with the member's profile."""

    id: int
    ministry_id: int
    user_id: int
    role: MemberRole
    position: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    profile_image_url: Optional[str] = None


# Songs


class SongBase(BaseModel):
    """Shared fields for song schemas."""

    title: str = Field(min_length=1)
    artist: Optional[str] = None
    key: Optional[str] = None
    bpm: Optional[int] = Field(default=None, gt=0)
    duration: Optional[str] = None
    category: Optional[str] = None
    chord_link: Optional[str] = None
    lyrics_link: Optional[str] = None
    audio_link: Optional[str] = None
    video_link: Optional[str] = None


class SongCreate(SongBase):
    ministry_id: int


class SongIn(SongBase):
    """Request body for a new song; the ministry comes from the query."""


class SongUpdate(BaseModel):
    """Schema for updating a song (all fields optional)."""

    title: Optional[str] = Field(default=None, min_length=1)
    artist: Optional[str] = None
    key: Optional[str] = None
    bpm: Optional[int] = Field(default=None, gt=0)
    duration: Optional[str] = None
    category: Optional[str] = None
    chord_link: Optional[str] = None
    lyrics_link: Optional[str] = None
    audio_link: Optional[str] = None
    video_link: Optional[str] = None

    @field_validator("title")
    @classmethod
    def title_not_null(cls, value):
        return reject_null(value)


class Song(Record, SongCreate):
    pass


# Services


class ServiceBase(BaseModel):
    name: str = Field(min_length=1)
    date: dt.date
    time: dt.time
    type: Optional[str] = None
    notes: Optional[str] = None
    status: ServiceStatus = "pending"


class ServiceCreate(ServiceBase):
    ministry_id: int


class ServiceUpdate(BaseModel):
    """Schema for updating a service (all fields optional).

    Any status may replace any other; transitions are not validated.
    """

    name: Optional[str] = Field(default=None, min_length=1)
    date: Optional[dt.date] = None
    time: Optional[dt.time] = None
    type: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[ServiceStatus] = None

    @field_validator("name", "date", "time", "status")
    @classmethod
    def required_not_null(cls, value):
        return reject_null(value)


class Service(Record, ServiceCreate):
    pass


class ServiceIn(ServiceBase):
    """Request body for scheduling a service with its roster and setlist.

    ``member_ids`` are ministry member ids; ``song_ids`` are placed on the
    setlist in the given order.
    """

    member_ids: list[int] = []
    song_ids: list[int] = []


class RosterEntry(BaseModel):
    """A user to put on a new service's roster."""

    user_id: int
    position: str = "Member"


class SetlistEntry(BaseModel):
    """A song to put on a new service's setlist."""

    song_id: int
    key: Optional[str] = None


# Service members


class ServiceMemberCreate(BaseModel):
    service_id: int
    user_id: int
    position: str = Field(min_length=1)
    status: RosterStatus = "confirmed"


class ServiceMember(Record, ServiceMemberCreate):
    created_at: Optional[dt.datetime] = None


class ServiceMemberIn(BaseModel):
    ministry_member_id: int
    position: Optional[str] = None


class ServiceMemberOut(ServiceMember):
    """A roster entry joined with the member's profile."""

    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    profile_image_url: Optional[str] = None


# Service songs


class ServiceSongCreate(BaseModel):
    service_id: int
    song_id: int
    order: int = Field(ge=1)
    key: Optional[str] = None


class ServiceSong(Record, ServiceSongCreate):
    pass


class ServiceSongIn(BaseModel):
    song_id: int
    order: Optional[int] = Field(default=None, ge=1)
    key: Optional[str] = None


class ServiceSongOrder(BaseModel):
    order: int = Field(ge=1)


class SetlistSongOut(Song):
    """A setlist entry joined with its song.

    ``service_key`` is the key the song is played in for this service.
    """

    service_song_id: int
    order: int
    service_key: Optional[str] = None


class ServiceDetail(Service):
    """A service with its roster and setlist."""

    members: list[ServiceMemberOut] = []
    songs: list[SetlistSongOut] = []


# Availability


class AvailabilityBase(BaseModel):
    start_date: dt.date
    end_date: dt.date
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class AvailabilityCreate(AvailabilityBase):
    user_id: int
    ministry_id: int


class AvailabilityIn(AvailabilityBase):
    pass


class Availability(Record, AvailabilityCreate):
    pass


# Messages


class MessageCreate(BaseModel):
    ministry_id: int
    sender_id: int
    recipient_id: Optional[int] = None
    content: str = Field(min_length=1)


class MessageIn(BaseModel):
    """Request body for a message; no recipient means the whole team."""

    recipient_id: Optional[int] = None
    content: str = Field(min_length=1)


class Message(Record, MessageCreate):
    created_at: dt.datetime
    read: bool = False


# Tokens


class Token(BaseModel):
    """JWT token response schema."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenRefresh(BaseModel):
    """Schema for requesting a new access token from a refresh token."""

    refresh_token: str


class TokenData(BaseModel):
    """Payload stored inside JWT token."""

    sub: str | None = None
    exp: Optional[dt.datetime] = None
    scope: Optional[str] = None
