"""
Database engine and session factory for the generation ledger.

The ledger's queries are all keyed lookups or a per-user count on
``ix_comics_user_day``; anything slower than ``SLOW_QUERY_THRESHOLD_MS`` is
logged. Statements are logged without their parameters, which carry prompts
and screenshot data URLs.
"""

import os
import time
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

query_logger = logging.getLogger("sqlalchemy.query_timing")

SLOW_QUERY_THRESHOLD_MS = int(os.getenv("SLOW_QUERY_THRESHOLD_MS", "50"))
MAX_LOGGED_STATEMENT_CHARS = 300

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./comicstrip.db")

# Hosted Postgres providers hand out postgres:// but SQLAlchemy requires postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Ledger calls run in worker threads
        return {"connect_args": {"check_same_thread": False}}

    # The ledger releases its connection before the generation calls, so a
    # request holds one only for a few short queries
    return {
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
        "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "5")),
        "pool_timeout": 10,
    }


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))


@event.listens_for(Engine, "before_cursor_execute")
def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_start_time", []).append(time.perf_counter())


@event.listens_for(Engine, "after_cursor_execute")
def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    start_times = conn.info.get("query_start_time", [])
    if not start_times:
        return

    total_time_ms = (time.perf_counter() - start_times.pop()) * 1000
    if total_time_ms > SLOW_QUERY_THRESHOLD_MS:
        query_logger.warning(
            f"SLOW QUERY ({total_time_ms:.2f}ms): {statement[:MAX_LOGGED_STATEMENT_CHARS]}"
        )


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for FastAPI routes"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
