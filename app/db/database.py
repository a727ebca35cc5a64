"""
Database connection and session management.
Provides SQLAlchemy engine, session factory, and base class.
Connection pool usage is exported as Prometheus gauges.
"""
import logging
import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool
from prometheus_client import Gauge, Counter
from core.config import settings

logger = logging.getLogger(__name__)

db_pool_connections_active = Gauge(
    "db_pool_connections_active",
    "Number of active database connections",
    labelnames=["instance"]
)

db_pool_connections_idle = Gauge(
    "db_pool_connections_idle",
    "Number of idle database connections in pool",
    labelnames=["instance"]
)

db_connections_opened_total = Counter(
    "db_connections_opened_total",
    "Total number of database connections opened",
    labelnames=["instance"]
)

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "20"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "3600"))  # 1 hour


def build_engine(database_url: str):
    """
    Create an engine for the given URL.

    SQLite is opened with ``check_same_thread=False`` because store calls run
    in worker threads via ``asyncio.to_thread``.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=settings.log_level == "DEBUG"
        )
    return create_engine(
        database_url,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=DB_POOL_RECYCLE,
        echo=settings.log_level == "DEBUG"
    )


engine = build_engine(settings.database_url)


@event.listens_for(engine.pool, "connect")
def receive_connect(dbapi_conn, connection_record):
    """Count newly opened DBAPI connections."""
    db_connections_opened_total.labels(instance="api").inc()


@event.listens_for(engine.pool, "checkout")
def receive_checkout(dbapi_conn, connection_record, connection_proxy):
    """Update pool gauges when a connection is checked out."""
    pool = engine.pool
    if isinstance(pool, QueuePool):
        db_pool_connections_active.labels(instance="api").set(pool.checkedout())
        db_pool_connections_idle.labels(instance="api").set(pool.checkedin())


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db() -> None:
    """
    Create all tables.
    Called once at application startup.
    """
    from db import models  # noqa: F401  registers models with Base
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")
