"""Dependency that hands each request the active storage backend."""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .crud import DatabaseStorage
from .database import get_db
from .storage import Storage


def get_storage(request: Request, db: Session = Depends(get_db)) -> Storage:
    """
    Return the storage backend serving this request.

    A process-wide store placed on ``app.state.storage`` (the in-memory
    backend) wins; otherwise the request gets a ``DatabaseStorage`` bound
    to its own session.

    Args:
        request (Request): Incoming request, used to reach the application.
        db (Session): Request-scoped database session.

    Returns:
        Storage: Backend implementing the storage contract.
    """
    storage = getattr(request.app.state, "storage", None)
    if storage is not None:
        return storage
    return DatabaseStorage(db)
