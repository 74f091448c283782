"""Database dependencies for FastAPI endpoints."""

from collections.abc import Callable

from sqlalchemy.orm import Session

from practice_forecast.db.session import SessionLocal


def get_session_factory() -> Callable[[], Session]:
    """Session factory for work that outlives a single request.

    Cached matrix computations may be shared by several requests, so they
    open their own short-lived sessions instead of borrowing one.
    """

    return SessionLocal
