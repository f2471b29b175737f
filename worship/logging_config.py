"""Logging for the Worship Team API.

Handlers live on the root logger so that records from ``main``, from every
``worship`` module and from uvicorn share one format. Each handler installed
here carries a ``worship.*`` name, which lets ``setup_logging`` run once per
``create_app()`` call without stacking duplicates.
"""

import logging
from pathlib import Path
from typing import Optional

HANDLER_PREFIX = "worship."

FORMATTER = logging.Formatter(
    "%(asctime)s %(levelname)-8s %(name)s: %(message)s", "%Y-%m-%d %H:%M:%S"
)

# third-party loggers that are too chatty at the application level
LIBRARY_LEVELS = {
    "passlib": logging.ERROR,
    "sqlalchemy.engine": logging.WARNING,
    "multipart": logging.WARNING,
}


def _named(handler: logging.Handler, name: str) -> logging.Handler:
    handler.set_name(HANDLER_PREFIX + name)
    handler.setFormatter(FORMATTER)
    return handler


def setup_logging(level: str = "INFO", logfile: Optional[str] = None) -> None:
    """
    Send log records to stderr and, if ``logfile`` is given, to that file.

    Args:
        level (str): Level name for the root logger, case insensitive.
            Unknown names fall back to ``INFO``.
        logfile (str | None): Log file path; missing parent directories
            are created.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    installed = {handler.get_name() for handler in root.handlers}

    if HANDLER_PREFIX + "console" not in installed:
        root.addHandler(_named(logging.StreamHandler(), "console"))

    if logfile and HANDLER_PREFIX + "file" not in installed:
        path = Path(logfile).resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        root.addHandler(_named(logging.FileHandler(path, encoding="utf-8"), "file"))

    for name, library_level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)
