# clinic_console/database.py
import logging

from sqlalchemy import create_engine
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from .config import get_settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    options = {"connect_args": {"check_same_thread": False}}
    # In-memory SQLite must share one connection or every session sees an empty database
    if url in ("sqlite://", "sqlite:///:memory:"):
        options["poolclass"] = StaticPool
    return options


# Create engine
engine = create_engine(
    get_settings().database_url,
    echo=False,
    **_engine_options(get_settings().database_url)
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()

# Dependency to get database session
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def create_tables():
    """Create all database tables - MUST import models first!"""
    # Import models to register them with Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")

def drop_tables():
    """Drop all database tables"""
    from . import models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    logger.info("Database tables dropped")

def ping() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database ping failed: {e}")
        return False
    return True
