"""Cached writer: buffers pushed records and flushes them in batches."""

import logging
import random
import threading
import time
from collections.abc import Callable
from typing import IO, Any

from .builder import DEFAULT_COLUMNS
from .db import Database

logger = logging.getLogger(__name__)

Builder = Callable[[list[Any]], tuple[str, list[Any] | None]]


class CachedWriter:
    """Collects records in memory and inserts them from one background thread.

    ``push`` only appends under a lock, so request handlers never wait on
    the database. The statement builder, the connection and the
    failed-db log are only touched by the flushing thread (or by the
    caller of ``flush`` when no thread is running).
    """

    def __init__(
        self,
        db: Database,
        builder: Builder,
        *,
        interval: float = 1.0,
        max_retries: int = 3,
        retry_backoff: float = 0.1,
        failed_log: IO[str] | None = None,
    ):
        self.db = db
        self.builder = builder
        self.interval = interval
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.failed_log = failed_log

        self._buffer: list[Any] = []
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._stop: threading.Event | None = None
        self._thread: threading.Thread | None = None

    # Public API

    def push(self, record: Any) -> None:
        with self._lock:
            self._buffer.append(record)

    def start(self, stop_event: threading.Event) -> threading.Thread:
        """Run the flush loop in a daemon thread until ``stop_event`` is set."""
        if self._thread is not None:
            raise RuntimeError("writer already started")
        self._stop = stop_event
        self._thread = threading.Thread(
            target=self._run, name="persist-log-writer", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self, wait: bool = True, timeout: float | None = None) -> bool:
        """Signal the flush loop to exit after one last flush.

        With ``wait`` the call returns once the final flush is done (or
        ``timeout`` expires) and reports whether the thread has drained.
        Without it, buffered records may be lost if the process exits
        right away.
        """
        if self._stop is None or self._thread is None:
            return True
        self._stop.set()
        if not wait:
            return False
        self._thread.join(timeout)
        drained = not self._thread.is_alive()
        if not drained:
            logger.error("Writer did not drain within %ss, %d record(s) pending",
                         timeout, self.pending_count)
        return drained

    def flush(self) -> int:
        """Insert everything buffered so far; return the number of rows written."""
        with self._flush_lock:
            with self._lock:
                if not self._buffer:
                    return 0
                batch = self._buffer
                self._buffer = []
            return self._write(batch)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._buffer)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # Internal helpers

    def _run(self) -> None:
        logger.debug("Writer started, flushing every %ss", self.interval)
        while not self._stop.wait(timeout=self.interval):
            self._safe_flush()
        self._safe_flush()
        logger.debug("Writer stopped")

    def _safe_flush(self) -> None:
        try:
            self.flush()
        except Exception:
            logger.exception("Flush failed")

    def _write(self, batch: list[Any]) -> int:
        sql, args = self.builder(batch)
        if not sql:
            return 0

        width = len(getattr(self.builder, "columns", DEFAULT_COLUMNS))
        rows = len(args) // width if args else 0
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self._execute(sql, args)
                logger.debug("Wrote %d row(s)", rows)
                return rows
            except Exception as e:
                logger.error("DB write attempt %d/%d failed: %s", attempt, attempts, e)
                if attempt < attempts:
                    time.sleep(self._backoff_delay(attempt))
        self._sink(batch)
        return 0

    def _backoff_delay(self, attempt: int) -> float:
        """Doubles from ``retry_backoff`` per attempt, capped at 2s, with +/-20% jitter."""
        base = min(self.retry_backoff * (2 ** (attempt - 1)), 2.0)
        return base * random.uniform(0.8, 1.2)

    def _execute(self, sql: str, args: list[Any]) -> None:
        self.db.ping()
        conn = self.db.conn
        cursor = conn.cursor()
        try:
            cursor.execute(sql, args)
            conn.commit()
        except Exception:
            try:
                conn.rollback()
            except Exception as e:
                logger.error("Rollback failed: %s", e)
            raise
        finally:
            cursor.close()

    def _sink(self, batch: list[Any]) -> None:
        if self.failed_log is None:
            return
        for record in batch:
            try:
                self.failed_log.write(f"{record!r};\n")
            except Exception as e:
                logger.error("can't log failed DB write: %s", e)
        try:
            self.failed_log.flush()
        except Exception as e:
            logger.error("can't log failed DB write: %s", e)
