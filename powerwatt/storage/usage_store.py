"""
Usage Store - Durable minute buckets with merge-on-upsert and retention.

Every read and write runs on one dedicated worker thread, so the SQLite file
only ever has a single writer. Each public method returns a Future; storage
errors are logged and resolve the Future with an empty result instead of
raising.

Upsert merge rules (same key written twice):
- energies and relative impact sums add
- averages re-average using the stored samples_count
- AC state takes the incoming value; battery percent and app name keep the
  stored value when the incoming one is null
- samples_count increments by one per upsert
"""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple, TypeVar, Union
from pathlib import Path
import logging
import threading
import time

from sqlalchemy import case, delete, distinct, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from powerwatt.middleware.metrics import record_cleanup, record_store_error
from powerwatt.models.usage import AppMinuteBucket, AppPowerSummary, MinuteBucket, RetentionPeriod
from powerwatt.storage.database import (
    AppMinuteBucketRow,
    MinuteBucketRow,
    create_sqlite_engine,
    init_db,
    make_session_factory,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _merged_average(existing_avg, existing_count, incoming_avg):
    """SQL expression for the incremental mean of a stored and an incoming average."""
    return case(
        (existing_avg.is_(None), incoming_avg),
        (incoming_avg.is_(None), existing_avg),
        else_=(existing_avg * existing_count + incoming_avg) / (existing_count + 1),
    )


class UsageStore:
    """Persistence and query engine for minute buckets."""

    def __init__(
        self,
        path: Union[str, Path],
        retention: RetentionPeriod = RetentionPeriod.HOURS_24,
        clock: Callable[[], float] = time.time
    ):
        self.path = path
        self._retention = retention
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="powerwatt-store")
        self._closed = False
        self._close_lock = threading.Lock()
        self._engine = None
        self._session_factory = None

        self._executor.submit(self._open).result()
        self.cleanup()

    # ------------------------------------------------------------------
    # Worker plumbing
    # ------------------------------------------------------------------

    def _open(self):
        try:
            self._engine = create_sqlite_engine(self.path)
            init_db(self._engine)
            self._session_factory = make_session_factory(self._engine)
            logger.info(f"Usage store opened at {self.path}")
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Could not open usage store at {self.path}: {e}")
            record_store_error("open")
            self._engine = None
            self._session_factory = None

    @property
    def available(self) -> bool:
        return self._session_factory is not None and not self._closed

    def _submit(self, operation: str, fn: Callable[[], T], default: T) -> "Future[T]":
        def task() -> T:
            if self._session_factory is None:
                return default
            try:
                return fn()
            except SQLAlchemyError as e:
                logger.error(f"Usage store {operation} failed: {e}")
                record_store_error(operation)
                return default

        with self._close_lock:
            if self._closed:
                future: "Future[T]" = Future()
                future.set_result(default)
                return future
            return self._executor.submit(task)

    def close(self):
        """Finish queued operations and release the database."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)
        if self._engine is not None:
            self._engine.dispose()
        logger.info("Usage store closed")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def _minute_statement(bucket: MinuteBucket):
        stmt = sqlite_insert(MinuteBucketRow).values(
            ts_minute=bucket.ts_minute,
            total_mwh=bucket.total_mwh,
            total_watts_avg=bucket.total_watts_avg,
            is_on_ac=bucket.is_on_ac,
            battery_pct=bucket.battery_percent,
            samples_count=1,
        )
        existing = MinuteBucketRow.__table__.c
        return stmt.on_conflict_do_update(
            index_elements=[existing.ts_minute],
            set_={
                "total_mwh": existing.total_mwh + stmt.excluded.total_mwh,
                "total_watts_avg": _merged_average(
                    existing.total_watts_avg, existing.samples_count, stmt.excluded.total_watts_avg
                ),
                "is_on_ac": stmt.excluded.is_on_ac,
                "battery_pct": func.coalesce(stmt.excluded.battery_pct, existing.battery_pct),
                "samples_count": existing.samples_count + 1,
            },
        )

    @staticmethod
    def _app_statement(bucket: AppMinuteBucket):
        stmt = sqlite_insert(AppMinuteBucketRow).values(
            ts_minute=bucket.ts_minute,
            bundle_id=bucket.bundle_id,
            app_name=bucket.app_name,
            mwh=bucket.mwh,
            watts_avg=bucket.watts_avg,
            relative_impact_sum=bucket.relative_impact_sum,
            samples_count=1,
        )
        existing = AppMinuteBucketRow.__table__.c
        return stmt.on_conflict_do_update(
            index_elements=[existing.ts_minute, existing.bundle_id],
            set_={
                "app_name": func.coalesce(stmt.excluded.app_name, existing.app_name),
                "mwh": existing.mwh + stmt.excluded.mwh,
                "watts_avg": _merged_average(existing.watts_avg, existing.samples_count, stmt.excluded.watts_avg),
                "relative_impact_sum": existing.relative_impact_sum + stmt.excluded.relative_impact_sum,
                "samples_count": existing.samples_count + 1,
            },
        )

    def upsert_minute(self, bucket: Optional[MinuteBucket], app_buckets: List[AppMinuteBucket]) -> "Future[bool]":
        """Merge one minute's total bucket and its per-app buckets in a single transaction."""
        def run() -> bool:
            with self._session_factory.begin() as session:
                if bucket is not None:
                    session.execute(self._minute_statement(bucket))
                for app_bucket in app_buckets:
                    session.execute(self._app_statement(app_bucket))
            return True

        return self._submit("upsert", run, False)

    def upsert_minute_bucket(self, bucket: MinuteBucket) -> "Future[bool]":
        return self.upsert_minute(bucket, [])

    def upsert_app_bucket(self, bucket: AppMinuteBucket) -> "Future[bool]":
        return self.upsert_minute(None, [bucket])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def minute_buckets(self, start: int, end: int) -> "Future[List[MinuteBucket]]":
        """Total-power buckets with start <= ts_minute <= end, oldest first."""
        def run() -> List[MinuteBucket]:
            query = (
                select(MinuteBucketRow)
                .where(MinuteBucketRow.ts_minute >= start, MinuteBucketRow.ts_minute <= end)
                .order_by(MinuteBucketRow.ts_minute.asc())
            )
            with self._session_factory() as session:
                return [
                    MinuteBucket(
                        ts_minute=row.ts_minute,
                        total_mwh=row.total_mwh,
                        total_watts_avg=row.total_watts_avg,
                        is_on_ac=row.is_on_ac,
                        battery_percent=row.battery_pct,
                        samples_count=row.samples_count,
                    )
                    for row in session.scalars(query)
                ]

        return self._submit("query_minute_buckets", run, [])

    def app_minute_buckets(
        self,
        start: int,
        end: int,
        bundle_id: Optional[str] = None
    ) -> "Future[List[AppMinuteBucket]]":
        """Per-app buckets ordered by time ascending then energy descending."""
        def run() -> List[AppMinuteBucket]:
            query = select(AppMinuteBucketRow).where(
                AppMinuteBucketRow.ts_minute >= start, AppMinuteBucketRow.ts_minute <= end
            )
            if bundle_id is not None:
                query = query.where(AppMinuteBucketRow.bundle_id == bundle_id)
            query = query.order_by(AppMinuteBucketRow.ts_minute.asc(), AppMinuteBucketRow.mwh.desc())

            with self._session_factory() as session:
                return [
                    AppMinuteBucket(
                        ts_minute=row.ts_minute,
                        bundle_id=row.bundle_id,
                        app_name=row.app_name,
                        mwh=row.mwh,
                        watts_avg=row.watts_avg,
                        relative_impact_sum=row.relative_impact_sum,
                        samples_count=row.samples_count,
                    )
                    for row in session.scalars(query)
                ]

        return self._submit("query_app_buckets", run, [])

    def app_summaries(self, start: int, end: int) -> "Future[List[AppPowerSummary]]":
        """One summary per application over the range, highest energy first."""
        def run() -> List[AppPowerSummary]:
            total_mwh = func.sum(AppMinuteBucketRow.mwh).label("total_mwh")
            query = (
                select(
                    AppMinuteBucketRow.bundle_id,
                    func.max(AppMinuteBucketRow.app_name).label("app_name"),
                    total_mwh,
                    func.avg(AppMinuteBucketRow.watts_avg).label("avg_watts"),
                    func.max(AppMinuteBucketRow.watts_avg).label("peak_watts"),
                    func.count(distinct(AppMinuteBucketRow.ts_minute)).label("active_minutes"),
                    func.sum(AppMinuteBucketRow.relative_impact_sum).label("total_relative"),
                )
                .where(AppMinuteBucketRow.ts_minute >= start, AppMinuteBucketRow.ts_minute <= end)
                .group_by(AppMinuteBucketRow.bundle_id)
                .order_by(total_mwh.desc())
            )

            with self._session_factory() as session:
                return [
                    AppPowerSummary(
                        bundle_id=row.bundle_id,
                        app_name=row.app_name,
                        energy_wh=(row.total_mwh or 0.0) / 1000.0,
                        avg_watts=row.avg_watts,
                        peak_watts=row.peak_watts,
                        active_minutes=row.active_minutes or 0,
                        total_relative_score=row.total_relative or 0.0,
                    )
                    for row in session.execute(query)
                ]

        return self._submit("query_app_summaries", run, [])

    def row_counts(self) -> "Future[Tuple[int, int]]":
        """(minute_buckets, app_minute_buckets) row counts."""
        def run() -> Tuple[int, int]:
            with self._session_factory() as session:
                minutes = session.scalar(select(func.count()).select_from(MinuteBucketRow)) or 0
                apps = session.scalar(select(func.count()).select_from(AppMinuteBucketRow)) or 0
                return minutes, apps

        return self._submit("count", run, (0, 0))

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    @property
    def retention(self) -> RetentionPeriod:
        return self._retention

    def set_retention(self, period: RetentionPeriod) -> "Future[int]":
        """Change the retention window and prune immediately."""
        previous = self._retention
        self._retention = RetentionPeriod(period)
        if self._retention != previous:
            logger.info(f"Retention changed from {previous.title} to {self._retention.title}")
        return self.cleanup()

    def cleanup(self, now: Optional[float] = None) -> "Future[int]":
        """
        Delete rows strictly older than now - retention window.

        Args:
            now: Reference unix time; defaults to the store's clock

        Returns:
            Future resolving to the number of rows deleted across both tables
        """
        def run() -> int:
            reference = self._clock() if now is None else now
            cutoff = int(reference) - self._retention.seconds
            with self._session_factory.begin() as session:
                minutes = session.execute(delete(MinuteBucketRow).where(MinuteBucketRow.ts_minute < cutoff))
                apps = session.execute(delete(AppMinuteBucketRow).where(AppMinuteBucketRow.ts_minute < cutoff))
                deleted = (minutes.rowcount or 0) + (apps.rowcount or 0)

            if deleted:
                logger.info(f"Retention cleanup removed {deleted} rows older than {cutoff}")
            record_cleanup(deleted)
            return deleted

        return self._submit("cleanup", run, 0)
