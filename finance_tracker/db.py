from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import get_settings

DATABASE_URL = get_settings().database_url


def build_engine(url: str):
    if url.startswith("sqlite"):
        # For SQLite, enable check_same_thread=False for multithreading in FastAPI
        engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)

        # Ensure SQLite enforces foreign keys
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    settings = get_settings()
    # Bounded pool: a request that cannot get a connection within pool_timeout
    # fails with sqlalchemy.exc.TimeoutError instead of waiting forever.
    return create_engine(
        url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_pre_ping=True,
        future=True,
    )


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


# Dependency to get DB session per request
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
