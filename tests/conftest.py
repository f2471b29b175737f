# tests/conftest.py
import os
import sys
import asyncio
import json
from datetime import date, time
from urllib.parse import urlencode

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.append(os.path.abspath("."))

# Settings are cached on first use, so the environment is prepared first
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("SEED_DEMO_DATA", "false")
os.environ.setdefault("RATE_LIMIT_TIMES", "1000")
os.environ.setdefault("REDIS_URL", "redis://127.0.0.1:1")

from worship import models, schemas  # noqa: E402
from worship.crud import DatabaseStorage  # noqa: E402
from worship.database import Base  # noqa: E402
from worship.deps import get_storage  # noqa: E402
from worship.memory import MemoryStorage  # noqa: E402
from worship.security import pwd_context  # noqa: E402
from main import app  # noqa: E402

# Cheap hashes keep the suite fast
pwd_context.update(bcrypt__rounds=4)

PASSWORD = "secret123"


# DB (SQLite in-memory for tests)
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
)


@pytest.fixture()
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(params=["memory", "database"])
def storage(request):
    """Every contract and route test runs against both backends."""
    if request.param == "memory":
        yield MemoryStorage()
    else:
        yield DatabaseStorage(request.getfixturevalue("db_session"))


# One event loop for the WHOLE pytest session
@pytest.fixture(scope="session")
def session_loop():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    yield loop
    loop.close()


# Run the application lifespan once per session (same loop)
# This ensures FastAPILimiter.init() is called correctly.
@pytest.fixture(scope="session", autouse=True)
def app_lifespan(session_loop):
    lifespan = app.router.lifespan_context(app)
    session_loop.run_until_complete(lifespan.__aenter__())
    yield
    session_loop.run_until_complete(lifespan.__aexit__(None, None, None))


# Simple ASGI response/client
class SimpleResponse:
    def __init__(
        self, status_code: int, body: bytes, headers: list[tuple[bytes, bytes]]
    ):
        self.status_code = status_code
        self._body = body
        self.headers = {k.decode(): v.decode() for k, v in headers}

    def json(self):
        return json.loads(self._body.decode())


class SimpleClient:
    """
    Important:
    - uses ONE shared session loop (passed from fixture)
    - does NOT call asyncio.run()
    - does NOT close the loop
    """

    def __init__(self, app, loop):
        self.app = app
        self.loop = loop

    def request(self, method: str, path: str, json_body=None, data=None, headers=None):
        headers = dict(headers or {})
        body_bytes = b""

        if json_body is not None:
            body_bytes = json.dumps(json_body).encode()
            headers.setdefault("content-type", "application/json")

        elif data is not None:
            body_bytes = urlencode(data, doseq=True).encode()
            headers.setdefault("content-type", "application/x-www-form-urlencoded")

        path, _, query = path.partition("?")
        raw_headers = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method.upper(),
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "headers": raw_headers,
            "query_string": query.encode(),
            "client": ("testclient", 5000),
            "server": ("testserver", 80),
        }

        async def receive():
            nonlocal body_bytes
            chunk, body_bytes = body_bytes, b""
            return {"type": "http.request", "body": chunk, "more_body": False}

        response_body = bytearray()
        response_status = 500
        response_headers: list[tuple[bytes, bytes]] = []

        async def send(message):
            nonlocal response_status, response_headers
            if message["type"] == "http.response.start":
                response_status = message["status"]
                response_headers = message.get("headers", [])
            elif message["type"] == "http.response.body":
                response_body.extend(message.get("body", b""))

        # ensure the loop is the current one
        asyncio.set_event_loop(self.loop)
        self.loop.run_until_complete(self.app(scope, receive, send))
        return SimpleResponse(response_status, bytes(response_body), response_headers)

    def get(self, path: str, headers=None):
        return self.request("GET", path, headers=headers)

    def post(self, path: str, json=None, data=None, headers=None):
        return self.request("POST", path, json_body=json, data=data, headers=headers)

    def patch(self, path: str, json=None, headers=None):
        return self.request("PATCH", path, json_body=json, headers=headers)

    def delete(self, path: str, headers=None):
        return self.request("DELETE", path, headers=headers)


# Client fixture: override the storage dependency per test
@pytest.fixture()
def client(storage, session_loop):
    app.dependency_overrides[get_storage] = lambda: storage
    try:
        yield SimpleClient(app, loop=session_loop)
    finally:
        app.dependency_overrides.clear()


# Helpers shared by the test modules


def make_user(storage, username, email=None, role="member"):
    return storage.create_user(
        schemas.UserCreate(
            username=username,
            password=PASSWORD,
            email=email or f"{username}@example.com",
            first_name=username.capitalize(),
            role=role,
        )
    )


def make_ministry(storage, user, name="Sample Choir", code="ABCD", role="Leader"):
    ministry = storage.create_ministry(
        schemas.MinistryCreate(name=name, code=code, created_by=user.id)
    )
    storage.create_ministry_member(
        schemas.MinistryMemberCreate(
            ministry_id=ministry.id, user_id=user.id, role=role, position="Vocals"
        )
    )
    return ministry


def make_song(storage, ministry, title="Way Maker", key="E"):
    return storage.create_song(
        schemas.SongCreate(ministry_id=ministry.id, title=title, key=key, bpm=68)
    )


def make_service(storage, ministry, on=None, at=time(10, 0), name="Sunday Service"):
    return storage.create_service(
        schemas.ServiceCreate(
            ministry_id=ministry.id, name=name, date=on or date.today(), time=at
        )
    )


def login(client, username):
    resp = client.post(
        "/api/auth/login",
        data={"username": username, "password": PASSWORD},
    )
    assert resp.status_code == 200, resp.json()
    return resp.json()["access_token"]


def auth_headers(client, username):
    return {"Authorization": f"Bearer {login(client, username)}"}
