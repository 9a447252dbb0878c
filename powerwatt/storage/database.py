"""
Usage Database - SQLAlchemy engine and ORM tables for minute buckets.

Tables:
- minute_buckets: one row per minute (primary key ts_minute)
- app_minute_buckets: one row per (minute, application)
Both are indexed on ts_minute and the per-app table on bundle_id.
"""

from pathlib import Path
from typing import Optional, Union
import logging

from sqlalchemy import Boolean, Float, Index, Integer, String, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class MinuteBucketRow(Base):
    __tablename__ = "minute_buckets"

    ts_minute: Mapped[int] = mapped_column(Integer, primary_key=True)
    total_mwh: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_watts_avg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_on_ac: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    battery_pct: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    samples_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_minute_buckets_ts", "ts_minute"),
    )


class AppMinuteBucketRow(Base):
    __tablename__ = "app_minute_buckets"

    ts_minute: Mapped[int] = mapped_column(Integer, primary_key=True)
    bundle_id: Mapped[str] = mapped_column(String, primary_key=True)
    app_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    mwh: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    watts_avg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    relative_impact_sum: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    samples_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_app_minute_buckets_bundle", "bundle_id"),
        Index("idx_app_minute_buckets_ts", "ts_minute"),
    )


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def create_sqlite_engine(path: Union[str, Path]) -> Engine:
    """
    Create an engine for a SQLite file, creating parent directories.

    Args:
        path: Database file path, or ":memory:"

    Returns:
        Engine with WAL journaling enabled
    """
    if str(path) == ":memory:":
        url = "sqlite://"
    else:
        db_path = Path(path).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite:///{db_path}"

    # Only the store's single worker thread touches the connection
    engine = create_engine(url, connect_args={"check_same_thread": False})
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def init_db(engine: Engine):
    Base.metadata.create_all(engine)
    logger.debug(f"Usage database schema ready at {engine.url}")


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
