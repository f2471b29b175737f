"""Demo fixtures for manual smoke testing.

``seed_demo_data`` goes through the storage contract only, so the same
fixtures load into either backend.
"""

import logging
from datetime import date, time
from typing import Optional

from . import schemas
from .storage import Storage

logger = logging.getLogger(__name__)

DEMO_USERNAME = "admin"
DEMO_PASSWORD = "password"
DEMO_MINISTRY_CODE = "ICBT"

DEMO_SONGS = [
    {
        "title": "Great Are You Lord",
        "artist": "All Sons & Daughters",
        "key": "D",
        "bpm": 88,
        "duration": "4:45",
        "category": "Worship",
        "slug": "great-are-you-lord",
    },
    {
        "title": "What A Beautiful Name",
        "artist": "Hillsong Worship",
        "key": "D",
        "bpm": 74,
        "duration": "5:30",
        "category": "Worship",
        "slug": "what-a-beautiful-name",
    },
    {
        "title": "Way Maker",
        "artist": "Sinach",
        "key": "E",
        "bpm": 68,
        "duration": "6:15",
        "category": "Praise",
        "slug": "way-maker",
    },
]


def _song_links(slug: str) -> dict:
    base = "https://example.com"
    return {
        "chord_link": f"{base}/chords/{slug}",
        "lyrics_link": f"{base}/lyrics/{slug}",
        "audio_link": f"{base}/audio/{slug}",
        "video_link": f"{base}/video/{slug}",
    }


def seed_demo_data(storage: Storage) -> Optional[schemas.Ministry]:
    """
    Load one admin, one ministry with three songs and one service for today.

    Does nothing when the demo admin already exists, so calling it on every
    start of a persistent database is safe.

    Args:
        storage (Storage): Backend to load the fixtures into.

    Returns:
        Ministry | None: The demo ministry, or ``None`` if already seeded.
    """
    if storage.get_user_by_username(DEMO_USERNAME) is not None:
        logger.info("Demo data already present, skipping seed")
        return None

    admin = storage.create_user(
        schemas.UserCreate(
            username=DEMO_USERNAME,
            password=DEMO_PASSWORD,
            email="admin@example.com",
            first_name="Admin",
            last_name="User",
            role="admin",
        )
    )
    ministry = storage.create_ministry_with_leader(
        schemas.MinistryCreate(
            name="ICB IGUA TEMI", code=DEMO_MINISTRY_CODE, created_by=admin.id
        ),
        position="Worship Leader",
    )

    songs = []
    for data in DEMO_SONGS:
        fields = {k: v for k, v in data.items() if k != "slug"}
        songs.append(
            storage.create_song(
                schemas.SongCreate(
                    ministry_id=ministry.id, **fields, **_song_links(data["slug"])
                )
            )
        )

    storage.create_service_with_roster(
        schemas.ServiceCreate(
            ministry_id=ministry.id,
            name="Sunday Celebration Service",
            date=date.today(),
            time=time(10, 0),
            type="Sunday Service",
            notes="Main service of the week",
        ),
        members=[schemas.RosterEntry(user_id=admin.id, position="Worship Leader")],
        songs=[schemas.SetlistEntry(song_id=song.id) for song in songs],
    )
    logger.info("Seeded demo ministry %r (code %s)", ministry.name, ministry.code)
    return ministry
