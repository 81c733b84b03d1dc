import logging
import time

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import (
    DATABASE_URL,
    DB_LOG_SLOW_QUERIES,
    DB_MAX_OVERFLOW,
    DB_POOL_RECYCLE,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT,
    DB_SLOW_QUERY_THRESHOLD,
    DB_STATEMENT_TIMEOUT_MS,
)

logger = logging.getLogger(__name__)


def build_engine_options(database_url: str) -> dict:
    """
    Engine keyword arguments for the given URL.

    Every backend gets a per-statement timeout so no storage call can
    block past the request budget.
    """
    if database_url.startswith("sqlite"):
        # SQLite waits on its busy handler instead of a statement timeout.
        # pysqlite keeps its default transaction handling: BEGIN is deferred
        # to the first write, so competing writers queue on the busy handler.
        return {
            "connect_args": {
                "check_same_thread": False,
                "timeout": DB_STATEMENT_TIMEOUT_MS / 1000,
            }
        }

    options = {
        "pool_pre_ping": True,  # Test connections before using
        "pool_recycle": DB_POOL_RECYCLE,
        "pool_size": DB_POOL_SIZE,
        "max_overflow": DB_MAX_OVERFLOW,
        "pool_timeout": DB_POOL_TIMEOUT,
    }
    if database_url.startswith("postgresql"):
        options["connect_args"] = {"options": f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}"}
    return options


def install_slow_query_logging(target_engine) -> None:
    """Log statements slower than DB_SLOW_QUERY_THRESHOLD"""

    @event.listens_for(target_engine, "before_cursor_execute")
    def before_cursor_execute(conn, _cursor, statement, _parameters, context, _executemany):
        conn.info.setdefault("query_start_time", []).append(time.time())

    @event.listens_for(target_engine, "after_cursor_execute")
    def after_cursor_execute(conn, _cursor, statement, _parameters, context, _executemany):
        total = time.time() - conn.info["query_start_time"].pop(-1)
        if total > DB_SLOW_QUERY_THRESHOLD:
            logger.warning(f"🐌 Slow query ({total:.2f}s): {statement[:200]}...")


try:
    engine = create_engine(DATABASE_URL, echo=False, **build_engine_options(DATABASE_URL))
    logger.info("✅ Database engine created successfully")
except Exception as e:
    logger.error(f"❌ Failed to create database engine: {e}")
    raise

if DB_LOG_SLOW_QUERIES:
    install_slow_query_logging(engine)
    logger.info(f"📊 Slow query logging enabled (threshold: {DB_SLOW_QUERY_THRESHOLD}s)")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
