"""Engine and session factory configuration."""

import logging
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from app.core.config import get_settings
from app.db.base import Base

logger = logging.getLogger(__name__)

settings = get_settings()


def _engine_options(url: str) -> dict[str, Any]:
    """Pool tuning for Postgres; SQLite only needs cross-thread access."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    # pool_pre_ping: test connections before use (stale connections in long exports)
    # pool_recycle: recycle connections after 30 minutes
    return {
        "poolclass": QueuePool,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "pool_size": 5,
        "max_overflow": 10,
        "connect_args": {
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        },
    }


def build_engine(url: str) -> Engine:
    return create_engine(url, echo=False, future=True, **_engine_options(url))


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    # Job snapshots are read after commit, so keep attributes loaded.
    return sessionmaker(
        bind=bind, autoflush=False, autocommit=False, expire_on_commit=False
    )


engine = build_engine(settings.database_url)

SessionLocal = build_session_factory(engine)


def init_db(bind: Engine | None = None) -> None:
    """Create tables for the batch job store and the catalog read model."""
    import app.db.models  # noqa: F401  registers mappers on Base.metadata

    Base.metadata.create_all(bind=bind or engine)

