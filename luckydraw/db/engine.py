from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from ..config import Settings


def make_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    settings = Settings.from_env()
    url = database_url or settings.db_url
    engine = create_engine(
        url,
        echo=settings.sql_echo if echo is None else echo,
        future=True,
    )
    if url.startswith("sqlite"):
        # ensure FK constraints are enforced on SQLite
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def get_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,  # Keep objects accessible after commit for callers
        future=True,
    )
