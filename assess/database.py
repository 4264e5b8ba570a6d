"""Database utilities and setup."""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from assess.config import DATABASE_URL


def build_engine(url: str) -> Engine:
    """Create an engine, allowing SQLite use from worker threads."""
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    """Create a session factory bound to ``bind``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


# Create engine
engine = build_engine(DATABASE_URL)

# Create session factory
SessionLocal = build_session_factory(engine)


# Base class for models
class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def get_db():
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """Initialize database (create all tables)."""
    # Register models on the metadata before creating tables
    import assess.models.db  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
