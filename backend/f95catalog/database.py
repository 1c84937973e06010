"""Database engine and session factory helpers."""

import os
from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

from f95catalog.models import Base


def create_db_engine(database_url: str) -> Engine:
    """Create an engine for ``database_url``.

    SQLite file databases get their parent directory created and
    cross-thread access enabled, since store calls run in worker threads.

    Args:
        database_url: SQLAlchemy connection string.

    Returns:
        Engine: Configured SQLAlchemy engine.
    """
    url = make_url(database_url)
    connect_args: Dict[str, Any] = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False  # Required for SQLite.
        if url.database and url.database != ":memory:":
            directory = os.path.dirname(os.path.abspath(url.database))
            os.makedirs(directory, exist_ok=True)
    return create_engine(database_url, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Return a session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(bind=engine)
