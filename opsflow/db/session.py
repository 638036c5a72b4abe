from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from opsflow.core.config import get_settings


def build_engine(database_url: str, echo: bool = False):
    """Create an engine; SQLite connections get foreign keys and thread sharing."""
    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, echo=echo, connect_args={"check_same_thread": False})

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


settings = get_settings()

engine = build_engine(settings.database_url, settings.database_echo)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
