"""
Access log sink.

Writes are append-only and must never break the operation being audited:
- create_access_log() writes one entry in the caller's session and swallows errors
- AccessLogWriter queues entries and flushes them from a background task with
  retries, so authorization decisions never wait on the log
- query_access_logs() / access_log_statistics() are the read side for audit reports
"""
import asyncio
import math
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError
from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core import config
from app.features.permissions.enums import Unidade
from app.features.permissions.models import AccessLog
from app.features.permissions.schemas import (
    AccessLogCreate,
    AccessLogFilter,
    AccessLogStatistics,
    CountByKey,
)
from app.utils import get_logger


log = get_logger(__name__)

TOP_N = 10


def _to_model(entry: AccessLogCreate) -> AccessLog:
    return AccessLog(
        user_id=entry.user_id,
        action=entry.action,
        resource=entry.resource,
        resource_id=entry.resource_id,
        unidade=entry.unidade,
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        success=entry.success,
        details=entry.details,
        created_at=entry.timestamp,
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# Write side
# ============================================================================

async def create_access_log(db: AsyncSession, entry: AccessLogCreate) -> Optional[AccessLog]:
    """
    Append one access log entry using the given session.

    Failures are logged and swallowed; the caller's operation goes on.

    Returns:
        The stored AccessLog, or None if the write failed
    """
    access_log = _to_model(entry)
    try:
        db.add(access_log)
        await db.commit()
    except Exception:
        log.exception(
            "Failed to write access log: user=%s action=%s resource=%s",
            entry.user_id, entry.action, entry.resource,
        )
        try:
            await db.rollback()
        except Exception:
            log.exception("Rollback after access log failure also failed")
        return None

    log.info(
        "Access: user=%s action=%s resource=%s:%s unidade=%s success=%s",
        entry.user_id, entry.action, entry.resource, entry.resource_id,
        entry.unidade.value, entry.success,
    )
    return access_log


class AccessLogWriter:
    """
    Bounded queue of access log entries flushed by a background task.

    log_access() returns immediately. Entries are written in batches; a batch
    that fails is retried with a linear backoff. A batch that still fails is
    written again one entry at a time, so only the entries that cannot be
    stored are reported through the side-channel logger and on_error.

    When the queue is full, up to max_deferred entries wait in background
    puts; past that, entries are reported instead of held in memory.

    Usage:
        writer = AccessLogWriter(AsyncSessionLocal)
        writer.start()
        writer.log_access(user_id=..., action="GET /patients", resource="patients",
                          unidade=Unidade.BARRA, success=True)
        await writer.stop()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        maxsize: int = config.ACCESS_LOG_QUEUE_SIZE,
        batch_size: int = config.ACCESS_LOG_BATCH_SIZE,
        max_retries: int = config.ACCESS_LOG_MAX_RETRIES,
        retry_delay: float = config.ACCESS_LOG_RETRY_DELAY,
        max_deferred: int = config.ACCESS_LOG_MAX_DEFERRED,
        on_error: Optional[Callable[[list[AccessLogCreate], BaseException], None]] = None,
    ):
        self._session_factory = session_factory
        self._queue: asyncio.Queue[AccessLogCreate] = asyncio.Queue(maxsize=maxsize)
        self._batch_size = max(1, batch_size)
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay
        self._max_deferred = max(0, max_deferred)
        self._on_error = on_error
        self._task: Optional[asyncio.Task] = None
        self._pending_puts: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def deferred(self) -> int:
        """Entries waiting for room in the queue."""
        return len(self._pending_puts)

    def start(self) -> None:
        """Start the flush task on the running event loop."""
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="access-log-writer")
            log.info("Access log writer started")

    async def stop(self) -> None:
        """Write everything still queued, then stop the flush task."""
        await self.flush()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            log.info("Access log writer stopped")

    def log_access(
        self,
        *,
        user_id: str,
        action: str,
        resource: str,
        unidade: Unidade,
        resource_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        success: bool = True,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """Queue an entry. Never blocks and never raises."""
        try:
            entry = AccessLogCreate(
                user_id=user_id,
                action=action,
                resource=resource,
                resource_id=resource_id,
                unidade=unidade,
                ip_address=ip_address,
                user_agent=user_agent,
                success=success,
                details=details,
            )
        except ValidationError as e:
            log.error("Invalid access log entry for user=%s action=%r: %s", user_id, action, e)
            return

        try:
            self._queue.put_nowait(entry)
            return
        except asyncio.QueueFull as e:
            overflow = e

        if len(self._pending_puts) >= self._max_deferred:
            log.error(
                "Access log queue full with %d deferred entries, reporting entry instead of holding it",
                len(self._pending_puts),
            )
            self._report_failure([entry], overflow, attempts=0)
            return

        # Park the entry in a background put instead of dropping it
        log.warning(
            "Access log queue full (%d entries), deferring write (%d deferred)",
            self._queue.maxsize, len(self._pending_puts) + 1,
        )
        try:
            task = asyncio.create_task(self._queue.put(entry))
        except RuntimeError as e:
            self._report_failure([entry], e, attempts=0)
            return
        self._pending_puts.add(task)
        task.add_done_callback(self._pending_puts.discard)

    async def flush(self) -> None:
        """Wait until every entry queued so far has been written (or reported)."""
        if self.running:
            if self._pending_puts:
                await asyncio.gather(*list(self._pending_puts), return_exceptions=True)
            await self._queue.join()
            return

        # No flush task: write inline
        while True:
            await self._drain()
            if not self._pending_puts:
                break
            await asyncio.sleep(0)

    async def _run(self) -> None:
        while True:
            entry = await self._queue.get()
            batch = [entry]
            while len(batch) < self._batch_size:
                try:
                    batch.append(self._queue.get_nowait())
                except asyncio.QueueEmpty:
                    break
            try:
                await self._write_batch(batch)
            finally:
                for _ in batch:
                    self._queue.task_done()

    async def _drain(self) -> None:
        while not self._queue.empty():
            batch = []
            while len(batch) < self._batch_size and not self._queue.empty():
                batch.append(self._queue.get_nowait())
            try:
                await self._write_batch(batch)
            finally:
                for _ in batch:
                    self._queue.task_done()

    async def _write_batch(self, batch: list[AccessLogCreate]) -> None:
        error = await self._write_with_retry(batch)
        if error is None:
            return
        if len(batch) == 1:
            self._report_failure(batch, error, self._max_retries)
            return

        log.warning("Batch of %d access log entries failed, writing them one at a time", len(batch))
        for entry in batch:
            error = await self._write_with_retry([entry])
            if error is not None:
                self._report_failure([entry], error, self._max_retries)

    async def _write_with_retry(self, batch: list[AccessLogCreate]) -> Optional[Exception]:
        """Returns None once the batch is stored, else the last error."""
        error: Optional[Exception] = None
        for attempt in range(1, self._max_retries + 1):
            try:
                async with self._session_factory() as db:
                    db.add_all([_to_model(entry) for entry in batch])
                    await db.commit()
                log.debug("Wrote %d access log entries", len(batch))
                return None
            except Exception as e:
                error = e
                if attempt < self._max_retries:
                    log.warning(
                        "Access log write failed (attempt %d/%d): %s", attempt, self._max_retries, e
                    )
                    await asyncio.sleep(self._retry_delay * attempt)
        return error

    def _report_failure(self, batch: list[AccessLogCreate], error: BaseException, attempts: int) -> None:
        log.error(
            "Giving up on %d access log entries after %d attempts: %s",
            len(batch), attempts, [entry.model_dump(mode="json") for entry in batch],
            exc_info=error,
        )
        if self._on_error is not None:
            try:
                self._on_error(batch, error)
            except Exception:
                log.exception("Access log on_error callback failed")


# ============================================================================
# Read side
# ============================================================================

def _filtered(stmt, filters: AccessLogFilter):
    stmt = stmt.where(AccessLog.unidade == filters.unidade)
    if filters.user_id:
        stmt = stmt.where(AccessLog.user_id == filters.user_id)
    if filters.resource:
        if filters.exact_resource:
            stmt = stmt.where(AccessLog.resource == filters.resource)
        else:
            stmt = stmt.where(AccessLog.resource.icontains(filters.resource, autoescape=True))
    if filters.resource_id:
        stmt = stmt.where(AccessLog.resource_id == filters.resource_id)
    if filters.action:
        stmt = stmt.where(AccessLog.action.icontains(filters.action, autoescape=True))
    if filters.start_date:
        stmt = stmt.where(AccessLog.created_at >= _as_utc(filters.start_date))
    if filters.end_date:
        stmt = stmt.where(AccessLog.created_at <= _as_utc(filters.end_date))
    return stmt


async def query_access_logs(
    db: AsyncSession,
    filters: AccessLogFilter,
    page: int = 1,
    limit: int = 50
) -> tuple[list[AccessLog], int]:
    """
    Page through access logs of one unidade, newest first.

    Returns:
        (entries on the requested page, total matching entries)
    """
    page = max(1, page)
    limit = max(1, limit)

    total = (await db.execute(_filtered(select(func.count(AccessLog.id)), filters))).scalar_one()

    stmt = (
        _filtered(select(AccessLog), filters)
        .order_by(AccessLog.created_at.desc(), AccessLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = list((await db.execute(stmt)).scalars().all())
    return items, total


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 0


async def _top_by(db: AsyncSession, column, filters: AccessLogFilter) -> list[CountByKey]:
    count = func.count(AccessLog.id).label("count")
    stmt = _filtered(select(column, count), filters).group_by(column).order_by(desc("count"), column).limit(TOP_N)
    result = await db.execute(stmt)
    return [CountByKey(key=key, count=n) for key, n in result.all()]


async def access_log_statistics(
    db: AsyncSession,
    unidade: Unidade,
    start_date: datetime,
    end_date: datetime
) -> AccessLogStatistics:
    """
    Aggregate access logs of a unidade over a period.

    success_rate is a percentage rounded to two decimals, 0 when there are no entries.
    """
    filters = AccessLogFilter(unidade=unidade, start_date=start_date, end_date=end_date)

    total = (await db.execute(_filtered(select(func.count(AccessLog.id)), filters))).scalar_one()
    unique_users = (
        await db.execute(_filtered(select(func.count(func.distinct(AccessLog.user_id))), filters))
    ).scalar_one()
    failed = (
        await db.execute(
            _filtered(select(func.count(AccessLog.id)), filters).where(AccessLog.success.is_(False))
        )
    ).scalar_one()

    success_rate = round((total - failed) / total * 100, 2) if total > 0 else 0.0

    return AccessLogStatistics(
        unidade=unidade,
        start_date=start_date,
        end_date=end_date,
        total_logs=total,
        unique_users=unique_users,
        failed_attempts=failed,
        success_rate=success_rate,
        top_actions=await _top_by(db, AccessLog.action, filters),
        top_resources=await _top_by(db, AccessLog.resource, filters),
    )
