from __future__ import annotations

from collections.abc import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from rentdesk.config import settings


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()


def build_engine(url: str, **kwargs):
    if url.startswith('sqlite'):
        engine = create_engine(url, connect_args={'check_same_thread': False}, **kwargs)
        event.listen(engine, 'connect', _enable_sqlite_foreign_keys)
        return engine
    return create_engine(url, pool_size=5, max_overflow=10, pool_pre_ping=True, pool_recycle=3600, **kwargs)


def build_session_factory(bind) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine(settings.database_url_normalized)
SessionLocal = build_session_factory(engine)


def get_db(request: Request) -> Iterator[Session]:
    factory = getattr(request.app.state, 'session_factory', SessionLocal)
    db = factory()
    try:
        yield db
    finally:
        db.close()
