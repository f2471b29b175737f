from datetime import date, timedelta

from fastapi import status

from worship import schemas

from conftest import auth_headers, make_ministry, make_service, make_song, make_user


def setup_team(storage):
    alice = make_user(storage, "alice")
    bob = make_user(storage, "bob")
    ministry = make_ministry(storage, alice)
    bob_member = storage.create_ministry_member(
        schemas.MinistryMemberCreate(
            ministry_id=ministry.id, user_id=bob.id, position="Bass"
        )
    )
    return ministry, bob, bob_member


def test_song_crud(client, storage):
    alice = make_user(storage, "alice")
    make_ministry(storage, alice)
    headers = auth_headers(client, "alice")

    created = client.post(
        "/api/songs/", json={"title": "Way Maker", "key": "E", "bpm": 68}, headers=headers
    )
    assert created.status_code == status.HTTP_201_CREATED
    song_id = created.json()["id"]

    updated = client.patch(f"/api/songs/{song_id}", json={"key": "D"}, headers=headers)
    assert updated.json()["key"] == "D"
    assert updated.json()["title"] == "Way Maker"

    listed = client.get("/api/songs/", headers=headers).json()
    assert [s["id"] for s in listed] == [song_id]

    assert client.delete(f"/api/songs/{song_id}", headers=headers).status_code == 200
    missing = client.get(f"/api/songs/{song_id}", headers=headers)
    assert missing.status_code == status.HTTP_404_NOT_FOUND


def test_create_service_with_roster_and_setlist(client, storage):
    ministry, bob, bob_member = setup_team(storage)
    songs = [make_song(storage, ministry, title=t, key=k) for t, k in (("A", "C"), ("B", "G"))]
    headers = auth_headers(client, "alice")

    response = client.post(
        "/api/services/",
        json={
            "name": "Sunday Celebration",
            "date": (date.today() + timedelta(days=3)).isoformat(),
            "time": "10:00:00",
            "member_ids": [bob_member.id],
            "song_ids": [songs[1].id, songs[0].id],
        },
        headers=headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    detail = response.json()
    assert detail["status"] == "pending"
    assert [(m["username"], m["position"]) for m in detail["members"]] == [
        ("bob", "Bass")
    ]
    assert [(s["title"], s["order"], s["service_key"]) for s in detail["songs"]] == [
        ("B", 1, "G"),
        ("A", 2, "C"),
    ]

    upcoming = client.get("/api/services/upcoming", headers=headers).json()
    assert [s["id"] for s in upcoming] == [detail["id"]]


def test_create_service_rejects_foreign_song(client, storage):
    ministry, _, _ = setup_team(storage)
    headers = auth_headers(client, "alice")

    response = client.post(
        "/api/services/",
        json={
            "name": "Broken",
            "date": date.today().isoformat(),
            "time": "09:00:00",
            "song_ids": [999],
        },
        headers=headers,
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert storage.get_services(ministry.id) == []


def test_setlist_editing(client, storage):
    ministry, _, _ = setup_team(storage)
    service = make_service(storage, ministry)
    first = make_song(storage, ministry, title="First", key="C")
    second = make_song(storage, ministry, title="Second", key="G")
    headers = auth_headers(client, "alice")
    base = f"/api/services/{service.id}/songs"

    one = client.post(base, json={"song_id": first.id}, headers=headers).json()
    two = client.post(base, json={"song_id": second.id, "key": "A"}, headers=headers).json()
    assert (one["order"], two["order"]) == (1, 2)

    moved = client.patch(f"{base}/{one['id']}", json={"order": 3}, headers=headers)
    assert moved.json()["order"] == 3

    detail = client.get(f"/api/services/{service.id}", headers=headers).json()
    assert [(s["title"], s["service_key"]) for s in detail["songs"]] == [
        ("Second", "A"),
        ("First", "C"),
    ]

    removed = client.delete(f"{base}/{two['id']}", headers=headers)
    assert removed.status_code == status.HTTP_200_OK
    assert [e.id for e in storage.get_service_songs(service.id)] == [one["id"]]


def test_roster_editing_and_status(client, storage):
    ministry, bob, bob_member = setup_team(storage)
    service = make_service(storage, ministry)
    headers = auth_headers(client, "alice")

    added = client.post(
        f"/api/services/{service.id}/members",
        json={"ministry_member_id": bob_member.id},
        headers=headers,
    )
    assert added.status_code == status.HTTP_201_CREATED
    entry = added.json()
    assert (entry["user_id"], entry["position"], entry["status"]) == (
        bob.id,
        "Bass",
        "confirmed",
    )

    ready = client.patch(
        f"/api/services/{service.id}", json={"status": "ready"}, headers=headers
    )
    assert ready.json()["status"] == "ready"
    assert [m["username"] for m in ready.json()["members"]] == ["bob"]

    removed = client.delete(
        f"/api/services/{service.id}/members/{entry['id']}", headers=headers
    )
    assert removed.status_code == status.HTTP_200_OK
    assert storage.get_service_members(service.id) == []


def test_delete_service(client, storage):
    ministry, _, _ = setup_team(storage)
    service = make_service(storage, ministry, on=date.today() - timedelta(days=2))
    headers = auth_headers(client, "alice")

    listed = client.get("/api/services/", headers=headers).json()
    assert [s["id"] for s in listed] == [service.id]
    assert client.get("/api/services/upcoming", headers=headers).json() == []

    assert client.delete(f"/api/services/{service.id}", headers=headers).status_code == 200
    missing = client.get(f"/api/services/{service.id}", headers=headers)
    assert missing.status_code == status.HTTP_404_NOT_FOUND


def test_null_for_required_field_is_rejected(client, storage):
    ministry, _, _ = setup_team(storage)
    service = make_service(storage, ministry)
    song = make_song(storage, ministry)
    headers = auth_headers(client, "alice")

    cleared = client.patch(
        f"/api/services/{service.id}", json={"date": None}, headers=headers
    )
    assert cleared.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    untitled = client.patch(f"/api/songs/{song.id}", json={"title": None}, headers=headers)
    assert untitled.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    listed = client.get("/api/services/", headers=headers)
    assert listed.status_code == status.HTTP_200_OK
    assert [s["date"] for s in listed.json()] == [service.date.isoformat()]
    assert storage.get_song(song.id).title == song.title


def test_availability_routes(client, storage):
    setup_team(storage)
    headers = auth_headers(client, "alice")
    start = date.today()

    created = client.post(
        "/api/availability/",
        json={
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=2)).isoformat(),
            "notes": "Holiday",
        },
        headers=headers,
    )
    assert created.status_code == status.HTTP_201_CREATED
    entry_id = created.json()["id"]

    inverted = client.post(
        "/api/availability/",
        json={
            "start_date": start.isoformat(),
            "end_date": (start - timedelta(days=1)).isoformat(),
        },
        headers=headers,
    )
    assert inverted.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    listed = client.get("/api/availability/", headers=headers).json()
    assert [a["id"] for a in listed] == [entry_id]

    others = client.delete(
        f"/api/availability/{entry_id}", headers=auth_headers(client, "bob")
    )
    assert others.status_code == status.HTTP_404_NOT_FOUND
    mine = client.delete(f"/api/availability/{entry_id}", headers=headers)
    assert mine.status_code == status.HTTP_200_OK


def test_message_routes(client, storage):
    ministry, bob, _ = setup_team(storage)
    carol = make_user(storage, "carol")
    storage.create_ministry_member(
        schemas.MinistryMemberCreate(ministry_id=ministry.id, user_id=carol.id)
    )
    alice_headers = auth_headers(client, "alice")
    bob_headers = auth_headers(client, "bob")

    broadcast = client.post(
        "/api/messages/", json={"content": "Rehearsal at 7"}, headers=alice_headers
    )
    assert broadcast.status_code == status.HTTP_201_CREATED
    direct = client.post(
        "/api/messages/",
        json={"content": "Bring the bass", "recipient_id": bob.id},
        headers=alice_headers,
    ).json()
    client.post(
        "/api/messages/",
        json={"content": "Private", "recipient_id": carol.id},
        headers=alice_headers,
    )

    stranger = client.post(
        "/api/messages/", json={"content": "?", "recipient_id": 999}, headers=alice_headers
    )
    assert stranger.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    visible = client.get("/api/messages/", headers=bob_headers).json()
    assert [m["content"] for m in visible] == ["Rehearsal at 7", "Bring the bass"]
    mine = client.get("/api/messages/?mine=true", headers=bob_headers).json()
    assert [m["id"] for m in mine] == [direct["id"]]
    assert mine[0]["read"] is False

    alice_id = storage.get_user_by_username("alice").id
    marked = client.post(f"/api/messages/read/{alice_id}", headers=bob_headers)
    assert marked.json() == {"success": True}
    assert storage.get_message(direct["id"]).read is True
