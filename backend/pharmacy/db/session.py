"""Database session. SQLite for single-shop installs, pooled engines otherwise."""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from pharmacy.core.config import settings


def build_engine(database_url: str):
    if database_url.startswith("sqlite"):
        # SQLite: NullPool for thread-safety; writers queue on the file lock
        # for up to `timeout` seconds instead of failing straight away.
        from sqlalchemy.pool import NullPool
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            poolclass=NullPool,
        )
    # PostgreSQL/MySQL: QueuePool with sensible defaults
    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
