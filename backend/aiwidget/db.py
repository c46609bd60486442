from typing import Callable

from fastapi import Depends, Request
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from aiwidget.config import settings

engine = create_engine(
    settings.database_url_fixed,
    pool_size=10,
    pool_pre_ping=True,
    pool_recycle=1800,
    pool_timeout=5,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

SessionFactory = Callable[[], Session]


class Base(DeclarativeBase):
    pass


def get_session_factory(request: Request) -> SessionFactory:
    """Session factory owned by the running app (overridable per app instance)."""
    return getattr(request.app.state, "session_factory", SessionLocal)


def get_db(session_factory: SessionFactory = Depends(get_session_factory)):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
