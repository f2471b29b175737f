from datetime import date, time, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from worship import schemas
from worship.crud import is_unique_violation
from worship.security import verify_password
from worship.storage import ConflictError, MissingReferenceError, effective_key

from conftest import PASSWORD, make_ministry, make_service, make_song, make_user


# Users


def test_create_user_hashes_password(storage):
    user = make_user(storage, "alice")

    assert user.id >= 1
    assert user.hashed_password != PASSWORD
    assert verify_password(PASSWORD, user.hashed_password)
    assert storage.get_user(user.id).username == "alice"
    assert storage.get_user_by_username("alice").id == user.id


def test_duplicate_username_and_email_conflict(storage):
    make_user(storage, "alice", email="alice@example.com")

    with pytest.raises(ConflictError):
        make_user(storage, "alice", email="other@example.com")
    with pytest.raises(ConflictError):
        make_user(storage, "alice2", email="alice@example.com")


def test_missing_records_are_none_or_false(storage):
    assert storage.get_user(999) is None
    assert storage.get_user_by_username("nobody") is None
    assert storage.get_ministry(999) is None
    assert storage.get_ministry_by_code("ZZZZ") is None
    assert storage.get_song(999) is None
    assert storage.update_song(999, schemas.SongUpdate(title="x")) is None
    assert storage.update_service(999, schemas.ServiceUpdate(name="x")) is None
    assert storage.update_service_song_order(999, 3) is None
    assert storage.delete_song(999) is False
    assert storage.delete_service(999) is False
    assert storage.delete_availability(999) is False
    assert storage.get_services(999) == []
    assert storage.get_messages(999) == []


def test_upsert_user_inserts_then_merges(storage):
    created = storage.upsert_user(
        schemas.UserUpsert(id=50, email="oidc@example.com", first_name="Olive")
    )
    assert created.id == 50
    assert created.username is None

    updated = storage.upsert_user(schemas.UserUpsert(id=50, last_name="Oak"))
    assert updated.first_name == "Olive"
    assert updated.last_name == "Oak"
    assert updated.email == "oidc@example.com"

    # generated ids never collide with the explicit one
    assert make_user(storage, "bob").id > 50


def test_returned_records_are_copies(storage):
    user = make_user(storage, "alice")
    user.first_name = "Changed"

    assert storage.get_user(user.id).first_name == "Alice"


def test_get_user_by_email(storage):
    alice = make_user(storage, "alice", email="alice@example.com")
    make_user(storage, "bob", email="bob@example.com")

    assert storage.get_user_by_email("alice@example.com").id == alice.id
    assert storage.get_user_by_email("nobody@example.com") is None


def test_only_duplicate_keys_count_as_conflicts():
    duplicate = IntegrityError(
        "INSERT", {}, Exception("UNIQUE constraint failed: users.username")
    )
    missing = IntegrityError(
        "UPDATE", {}, Exception("NOT NULL constraint failed: services.date")
    )

    assert is_unique_violation(duplicate) is True
    assert is_unique_violation(missing) is False


# Ministries and members


def test_ministry_lookup_by_member(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice, name="Sample Choir", code="ABCD")

    assert [m.name for m in storage.get_ministries_by_user_id(alice.id)] == [
        "Sample Choir"
    ]
    assert storage.get_ministry_by_code("ABCD").id == ministry.id
    assert storage.get_ministries_by_user_id(999) == []


def test_duplicate_ministry_code_conflicts(storage):
    alice = make_user(storage, "alice")
    make_ministry(storage, alice, code="ABCD")

    with pytest.raises(ConflictError):
        storage.create_ministry(
            schemas.MinistryCreate(name="Other", code="ABCD", created_by=alice.id)
        )
    assert len(storage.get_ministries()) == 1


def test_create_ministry_with_leader(storage):
    alice = make_user(storage, "alice")

    ministry = storage.create_ministry_with_leader(
        schemas.MinistryCreate(name="Sample Choir", code="ABCD", created_by=alice.id),
        position="Worship Leader",
    )

    (leader,) = storage.get_ministry_members(ministry.id)
    assert (leader.user_id, leader.role, leader.position) == (
        alice.id,
        "Leader",
        "Worship Leader",
    )
    assert [m.id for m in storage.get_ministries_by_user_id(alice.id)] == [ministry.id]


def test_create_ministry_with_leader_writes_nothing_on_failure(storage):
    alice = make_user(storage, "alice")
    make_ministry(storage, alice, code="ABCD")

    with pytest.raises(MissingReferenceError):
        storage.create_ministry_with_leader(
            schemas.MinistryCreate(name="Ghost", code="GHST", created_by=999)
        )
    with pytest.raises(ConflictError):
        storage.create_ministry_with_leader(
            schemas.MinistryCreate(name="Copy", code="ABCD", created_by=alice.id)
        )

    assert [m.code for m in storage.get_ministries()] == ["ABCD"]
    assert storage.get_ministry_members_by_user_id(999) == []
    assert len(storage.get_ministry_members_by_user_id(alice.id)) == 1


def test_membership_requires_existing_parents(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)

    with pytest.raises(MissingReferenceError):
        storage.create_ministry_member(
            schemas.MinistryMemberCreate(ministry_id=ministry.id, user_id=999)
        )
    with pytest.raises(MissingReferenceError):
        storage.create_ministry(
            schemas.MinistryCreate(name="Ghost", code="GHST", created_by=999)
        )


def test_update_and_delete_ministry_member(storage):
    alice = make_user(storage, "alice")
    bob = make_user(storage, "bob")
    ministry = make_ministry(storage, alice)
    member = storage.create_ministry_member(
        schemas.MinistryMemberCreate(ministry_id=ministry.id, user_id=bob.id)
    )

    updated = storage.update_ministry_member(
        member.id, schemas.MinistryMemberUpdate(position="Drums")
    )
    assert updated.position == "Drums"
    assert updated.role == "Member"

    assert storage.delete_ministry_member(member.id) is True
    assert storage.delete_ministry_member(member.id) is False
    assert [m.user_id for m in storage.get_ministry_members(ministry.id)] == [alice.id]


# Songs


def test_song_partial_update_keeps_other_fields(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    song = make_song(storage, ministry, title="Way Maker", key="E")

    updated = storage.update_song(song.id, schemas.SongUpdate(bpm=70))

    assert updated.bpm == 70
    assert updated.title == "Way Maker"
    assert updated.key == "E"
    assert storage.get_song(song.id).bpm == 70


def test_song_requires_ministry(storage):
    with pytest.raises(MissingReferenceError):
        storage.create_song(schemas.SongCreate(ministry_id=999, title="Lost"))


def test_ids_are_not_reused_after_delete(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    first = make_song(storage, ministry, title="One")
    second = make_song(storage, ministry, title="Two")

    assert storage.delete_song(second.id) is True
    third = make_song(storage, ministry, title="Three")

    assert third.id > second.id > first.id
    assert [s.title for s in storage.get_songs(ministry.id)] == ["One", "Three"]


def test_delete_song_removes_it_from_setlists(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    song = make_song(storage, ministry)
    service = make_service(storage, ministry)
    entry = storage.create_service_song(
        schemas.ServiceSongCreate(service_id=service.id, song_id=song.id, order=1)
    )

    assert storage.delete_song(song.id) is True
    assert storage.get_service_song(entry.id) is None
    assert storage.get_service_songs(service.id) == []


# Services


def test_services_are_listed_chronologically(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    today = date.today()
    evening = make_service(storage, ministry, on=today, at=time(19, 0), name="Evening")
    later = make_service(storage, ministry, on=today + timedelta(days=7), name="Next")
    morning = make_service(storage, ministry, on=today, at=time(9, 0), name="Morning")

    assert [s.id for s in storage.get_services(ministry.id)] == [
        morning.id,
        evening.id,
        later.id,
    ]


def test_upcoming_services_start_today(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    make_service(storage, ministry, on=date.today() - timedelta(days=2), name="Past")
    tomorrow = make_service(
        storage, ministry, on=date.today() + timedelta(days=1), name="Tomorrow"
    )
    today = make_service(storage, ministry, on=date.today(), name="Today")

    upcoming = storage.get_upcoming_services(ministry.id)

    assert [s.id for s in upcoming] == [today.id, tomorrow.id]


def test_update_service_status(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    service = make_service(storage, ministry)
    assert service.status == "pending"

    updated = storage.update_service(service.id, schemas.ServiceUpdate(status="ready"))

    assert updated.status == "ready"
    assert updated.name == service.name


def test_update_rejects_null_for_required_fields(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    song = make_song(storage, ministry, title="Way Maker", key="E")
    service = make_service(storage, ministry)

    for build in (
        lambda: schemas.ServiceUpdate(date=None),
        lambda: schemas.ServiceUpdate(name=None),
        lambda: schemas.SongUpdate(title=None),
        lambda: schemas.MinistryMemberUpdate(role=None),
    ):
        with pytest.raises(ValidationError):
            build()

    # a store handed an unvalidated update refuses it and keeps the record
    with pytest.raises(ValidationError):
        storage.update_service(service.id, schemas.ServiceUpdate.model_construct(date=None))
    with pytest.raises(ValidationError):
        storage.update_song(song.id, schemas.SongUpdate.model_construct(title=None))

    assert storage.get_service(service.id).date == service.date
    assert [s.id for s in storage.get_services(ministry.id)] == [service.id]
    assert storage.get_song(song.id).title == "Way Maker"

    cleared = storage.update_song(song.id, schemas.SongUpdate(key=None))
    assert cleared.key is None
    assert cleared.title == "Way Maker"


def test_delete_service_cascades_roster_and_setlist(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    song = make_song(storage, ministry)
    service = make_service(storage, ministry)
    member = storage.create_service_member(
        schemas.ServiceMemberCreate(
            service_id=service.id, user_id=alice.id, position="Vocals"
        )
    )
    entry = storage.create_service_song(
        schemas.ServiceSongCreate(service_id=service.id, song_id=song.id, order=1)
    )

    assert storage.delete_service(service.id) is True
    assert storage.get_service(service.id) is None
    assert storage.get_service_member(member.id) is None
    assert storage.get_service_song(entry.id) is None
    assert storage.get_song(song.id) is not None


def test_setlist_is_ordered_by_order(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    service = make_service(storage, ministry)
    first = make_song(storage, ministry, title="First")
    second = make_song(storage, ministry, title="Second")
    storage.create_service_song(
        schemas.ServiceSongCreate(service_id=service.id, song_id=second.id, order=2)
    )
    storage.create_service_song(
        schemas.ServiceSongCreate(service_id=service.id, song_id=first.id, order=1)
    )

    setlist = storage.get_service_songs(service.id)

    assert [e.order for e in setlist] == [1, 2]
    assert [e.song_id for e in setlist] == [first.id, second.id]


def test_reorder_setlist_entry(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    service = make_service(storage, ministry)
    a = make_song(storage, ministry, title="A")
    b = make_song(storage, ministry, title="B")
    entry_a = storage.create_service_song(
        schemas.ServiceSongCreate(service_id=service.id, song_id=a.id, order=1)
    )
    storage.create_service_song(
        schemas.ServiceSongCreate(service_id=service.id, song_id=b.id, order=2)
    )

    moved = storage.update_service_song_order(entry_a.id, 3)

    assert moved.order == 3
    assert [e.song_id for e in storage.get_service_songs(service.id)] == [b.id, a.id]


def test_setlist_key_falls_back_to_song_key(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    service = make_service(storage, ministry)
    song = make_song(storage, ministry, key="E")
    plain = storage.create_service_song(
        schemas.ServiceSongCreate(service_id=service.id, song_id=song.id, order=1)
    )
    transposed = storage.create_service_song(
        schemas.ServiceSongCreate(
            service_id=service.id, song_id=song.id, order=2, key="D"
        )
    )

    assert plain.key is None
    assert effective_key(plain, song) == "E"
    assert effective_key(transposed, song) == "D"


def test_setlist_entry_requires_service_and_song(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    service = make_service(storage, ministry)

    with pytest.raises(MissingReferenceError):
        storage.create_service_song(
            schemas.ServiceSongCreate(service_id=service.id, song_id=999, order=1)
        )
    with pytest.raises(MissingReferenceError):
        storage.create_service_member(
            schemas.ServiceMemberCreate(service_id=999, user_id=alice.id, position="X")
        )


def test_create_service_with_roster(storage):
    alice = make_user(storage, "alice")
    bob = make_user(storage, "bob")
    ministry = make_ministry(storage, alice)
    songs = [make_song(storage, ministry, title=t) for t in ("A", "B", "C")]

    service = storage.create_service_with_roster(
        schemas.ServiceCreate(
            ministry_id=ministry.id, name="Easter", date=date.today(), time=time(9, 30)
        ),
        members=[
            schemas.RosterEntry(user_id=alice.id, position="Worship Leader"),
            schemas.RosterEntry(user_id=bob.id, position="Bass"),
        ],
        songs=[
            schemas.SetlistEntry(song_id=songs[2].id),
            schemas.SetlistEntry(song_id=songs[0].id, key="G"),
            schemas.SetlistEntry(song_id=songs[1].id),
        ],
    )

    roster = storage.get_service_members(service.id)
    assert [(m.user_id, m.position, m.status) for m in roster] == [
        (alice.id, "Worship Leader", "confirmed"),
        (bob.id, "Bass", "confirmed"),
    ]
    setlist = storage.get_service_songs(service.id)
    assert [(e.song_id, e.order, e.key) for e in setlist] == [
        (songs[2].id, 1, None),
        (songs[0].id, 2, "G"),
        (songs[1].id, 3, None),
    ]


def test_create_service_with_roster_writes_nothing_on_missing_reference(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)
    song = make_song(storage, ministry)

    with pytest.raises(MissingReferenceError):
        storage.create_service_with_roster(
            schemas.ServiceCreate(
                ministry_id=ministry.id, name="Broken", date=date.today(), time=time(9)
            ),
            members=[schemas.RosterEntry(user_id=alice.id)],
            songs=[schemas.SetlistEntry(song_id=song.id), schemas.SetlistEntry(song_id=999)],
        )

    assert storage.get_services(ministry.id) == []


# Availability


def test_availability_per_user_and_ministry(storage):
    alice = make_user(storage, "alice")
    bob = make_user(storage, "bob")
    ministry = make_ministry(storage, alice)
    start = date.today()
    entry = storage.create_availability(
        schemas.AvailabilityCreate(
            user_id=alice.id,
            ministry_id=ministry.id,
            start_date=start,
            end_date=start + timedelta(days=3),
            notes="Travelling",
        )
    )

    assert [a.id for a in storage.get_user_availability(alice.id, ministry.id)] == [
        entry.id
    ]
    assert storage.get_user_availability(bob.id, ministry.id) == []
    assert storage.delete_availability(entry.id) is True
    assert storage.get_availability(entry.id) is None


def test_availability_rejects_inverted_range():
    with pytest.raises(ValueError):
        schemas.AvailabilityIn(
            start_date=date(2024, 5, 2), end_date=date(2024, 5, 1)
        )


# Messages


def test_messages_filter_by_recipient(storage):
    alice = make_user(storage, "alice")
    bob = make_user(storage, "bob")
    ministry = make_ministry(storage, alice)
    broadcast = storage.create_message(
        schemas.MessageCreate(ministry_id=ministry.id, sender_id=alice.id, content="Hi all")
    )
    direct = storage.create_message(
        schemas.MessageCreate(
            ministry_id=ministry.id,
            sender_id=alice.id,
            recipient_id=bob.id,
            content="Hi Bob",
        )
    )

    assert [m.id for m in storage.get_messages(ministry.id)] == [broadcast.id, direct.id]
    assert [m.id for m in storage.get_messages(ministry.id, recipient_id=bob.id)] == [
        direct.id
    ]
    assert storage.get_messages(ministry.id, recipient_id=alice.id) == []


def test_message_recipient_must_exist(storage):
    alice = make_user(storage, "alice")
    ministry = make_ministry(storage, alice)

    with pytest.raises(MissingReferenceError):
        storage.create_message(
            schemas.MessageCreate(
                ministry_id=ministry.id,
                sender_id=alice.id,
                recipient_id=999,
                content="Anyone?",
            )
        )


def test_mark_messages_as_read(storage):
    alice = make_user(storage, "alice")
    bob = make_user(storage, "bob")
    carol = make_user(storage, "carol")
    ministry = make_ministry(storage, alice)

    def send(sender, recipient, content):
        return storage.create_message(
            schemas.MessageCreate(
                ministry_id=ministry.id,
                sender_id=sender.id,
                recipient_id=recipient.id,
                content=content,
            )
        )

    from_alice = send(alice, bob, "one")
    from_carol = send(carol, bob, "two")
    to_carol = send(alice, carol, "three")
    reply = send(bob, alice, "four")

    assert storage.mark_messages_as_read(bob.id, alice.id) is True
    assert storage.get_message(from_alice.id).read is True
    assert storage.get_message(from_carol.id).read is False
    assert storage.get_message(to_carol.id).read is False
    assert storage.get_message(reply.id).read is False
    # nothing left to mark still reports success
    assert storage.mark_messages_as_read(bob.id, alice.id) is True
