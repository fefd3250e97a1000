# backend/db.py
from typing import Iterator

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import config


# DATABASE_URL comes from the environment (.env)
DATABASE_URL = config.DATABASE_URL

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set in the environment (.env)")


def _build_engine(url: str):
    """
    Create the sync engine.

    SQLite (local dev and tests) shares one connection across threads so an
    in-memory database survives between sessions. Postgres gets a statement
    timeout so a stuck vector-index scan fails instead of hanging the request.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=False,
            connect_args={
                "check_same_thread": False,
                "timeout": config.VECTOR_INDEX_TIMEOUT_SECONDS,
            },
            poolclass=StaticPool,
        )

    timeout_ms = int(config.VECTOR_INDEX_TIMEOUT_SECONDS * 1000)
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        connect_args={"options": f"-c statement_timeout={timeout_ms}"},
    )


engine = _build_engine(DATABASE_URL)


def init_db() -> None:
    """
    Called on app startup to create tables if they don't exist.
    """
    # Import models here so SQLModel knows about them
    import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency yielding a session bound to the shared engine."""
    with Session(engine) as session:
        yield session
