from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from library_service.config import settings


DATABASE_URL = settings.database_url


def build_engine(url: str):
    """
    Create an engine for the given database URL.

    SQLite connections are shared across FastAPI's worker threads, so
    check_same_thread is disabled and foreign keys are switched on for
    every new connection (SQLite ignores ON DELETE CASCADE otherwise).
    """
    is_sqlite = url.startswith("sqlite")
    engine = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": 30} if is_sqlite else {},
    )

    if is_sqlite:

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    Dependency function that provides a database session.

    One session per request; it is always closed once the response has
    been produced, whether or not the handler raised.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
