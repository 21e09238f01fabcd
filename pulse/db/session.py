from __future__ import annotations

import logging
from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from pulse.core.settings import get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()

engine: Engine | None = None
SessionLocal: sessionmaker[Session] | None = None


def _connect_args(database_url: str) -> dict[str, object]:
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def configure_engine(database_url: str) -> None:
    global engine, SessionLocal
    logger.info("Configuring database engine")
    logger.debug("Database URL: %s", database_url)
    engine = create_engine(database_url, connect_args=_connect_args(database_url), future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


configure_engine(get_settings().database_url)


def init_db() -> None:
    import pulse.models  # noqa: F401

    if engine is None:
        raise RuntimeError("Database engine is not configured")
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema initialization complete")


def open_session() -> Session:
    if SessionLocal is None:
        raise RuntimeError("Database session factory is not configured")
    return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    db = open_session()
    try:
        yield db
    finally:
        db.close()
