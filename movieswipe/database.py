# movieswipe/database.py
import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from . import config

logging.info(f"Attempting to connect with DATABASE_URL: {config.DATABASE_URL}")

if config.DATABASE_URL == config.DEFAULT_DATABASE_URL:
    logging.warning("DATABASE_URL not set, falling back to local SQLite file ./movieswipe.db")
elif config.DATABASE_URL.startswith("mysql") and "pymysql" not in config.DATABASE_URL:
    logging.warning(f"DATABASE_URL does not contain 'pymysql'. Current URL: {config.DATABASE_URL}")


def create_db_engine(url: str):
    """Build an engine for the given URL, with the SQLite tweaks the app needs."""
    if url.startswith("sqlite"):
        # Handlers run in FastAPI's threadpool, so connections cross threads
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True, pool_recycle=3600)


engine = create_db_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
