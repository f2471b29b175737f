import logging

from fastapi import status

from main import app
from worship.logging_config import setup_logging

from conftest import SimpleClient, auth_headers, make_user


def test_read_me(client, storage):
    make_user(storage, "alice")
    response = client.get("/api/users/me", headers=auth_headers(client, "alice"))
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["username"] == "alice"
    assert data["first_name"] == "Alice"
    assert "hashed_password" not in data


def test_root_points_to_docs(session_loop):
    response = SimpleClient(app, loop=session_loop).get("/")
    assert response.status_code == status.HTTP_200_OK
    assert "/docs" in response.json()["msg"]


def test_setup_logging_adds_each_handler_once(tmp_path):
    root = logging.getLogger()
    level, before = root.level, list(root.handlers)
    logfile = tmp_path / "logs" / "api.log"
    try:
        setup_logging("debug", str(logfile))
        setup_logging("warning", str(logfile))

        names = [h.get_name() for h in root.handlers if h.get_name()]
        assert names.count("worship.console") == 1
        assert names.count("worship.file") == 1
        assert root.level == logging.WARNING
        assert logging.getLogger("passlib").level == logging.ERROR

        logging.getLogger("worship.tests").warning("service list rebuilt")
        for handler in root.handlers:
            handler.flush()
        assert "service list rebuilt" in logfile.read_text(encoding="utf-8")
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level)
