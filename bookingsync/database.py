import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings

logger = logging.getLogger(__name__)

database_url = settings.database_url

# Some hosts hand out postgres:// URLs, but SQLAlchemy needs postgresql://
if database_url.startswith("postgres://"):
    database_url = database_url.replace("postgres://", "postgresql://", 1)

# Every connection gets a connect/lock timeout; SQLite also needs check_same_thread off
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False, "timeout": settings.db_timeout_seconds}
elif database_url.startswith("postgresql"):
    connect_args = {
        "connect_timeout": int(settings.db_timeout_seconds),
        "options": f"-c statement_timeout={int(settings.db_timeout_seconds * 1000)}",
    }

engine = create_engine(
    database_url,
    connect_args=connect_args,
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """Create all tables in the database"""
    # Register models on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info(f"Database ready: {database_url.split('@')[-1][:40]}")
