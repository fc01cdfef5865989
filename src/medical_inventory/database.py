"""Engine, session factory and transaction helpers."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class of the inventory and ledger mappings."""


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Return the SQLite engine for the configured database file."""

    settings = get_settings()
    logger.debug("Opening database %s", settings.database_path)
    return create_engine(f"sqlite:///{settings.database_path}", connect_args={"check_same_thread": False})


SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, expire_on_commit=False)


@contextmanager
def transaction(session: Session) -> Iterator[Session]:
    """Commit the work done on *session* inside the block, or roll all of it back.

    Ledger and inventory helpers only flush, so one block groups every
    statement of an operation into a single unit of work.
    """

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def init_database(engine: Optional[Engine] = None) -> None:
    """Create the tables that do not exist yet."""

    from . import models  # noqa: F401 - register the mappings on Base

    Base.metadata.create_all(bind=engine or get_engine())
