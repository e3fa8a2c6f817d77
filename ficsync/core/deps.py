"""FastAPI dependencies for database access and internal authentication."""

import hmac
from typing import Generator

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from ficsync.core.config import settings
from ficsync.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def verify_internal_secret(x_internal_secret: str = Header(...)) -> None:
    """Guard for management and scheduled endpoints."""
    if not settings.INTERNAL_SECRET:
        raise HTTPException(status_code=501, detail="Internal endpoints not configured")
    if not hmac.compare_digest(x_internal_secret, settings.INTERNAL_SECRET):
        raise HTTPException(status_code=403, detail="Invalid internal secret")
