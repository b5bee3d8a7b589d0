"""Database engine and session utilities for the local authority."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from access_plugins.errors import ConnectionProblem

Base = declarative_base()


def create_authority_engine(database_url: str) -> Engine:
    """Create an engine usable from the watcher and handler threads."""

    if database_url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            options["poolclass"] = StaticPool
        return create_engine(database_url, future=True, echo=False, **options)
    return create_engine(database_url, future=True, echo=False)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a transactional scope, reporting database outages as connection problems."""

    session = factory()
    try:
        yield session
        session.commit()
    except OperationalError as exc:
        session.rollback()
        raise ConnectionProblem(f"authority store unavailable: {exc.orig}") from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
