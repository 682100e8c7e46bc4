"""
focussync/queue/drain_worker.py
Background drain — moves accepted batches from the SyncQueue into the
session store.

PER BATCH:
  1. Split pending records into chunks sized from the store's bind-param
     ceiling (rows_per_statement), one multi-row INSERT OR IGNORE each.
  2. A failing chunk is retried with exponential backoff; when retries run
     out its records are kept and the remaining chunks still go through.
  3. Fully written → exactly one sync log row for the whole batch.
     Partly written → requeued with only the failed records, parked after
     max_batch_requeues passes.

Writes are keyed on the session id, so replaying a chunk (or a whole
batch resubmitted by a client) can only ever count duplicates.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from focussync.errors import StorageTransientError
from focussync.models.record import DrainResult, SessionRecord, SyncLogEntry
from focussync.queue.sync_queue import PendingBatch, SyncQueue
from focussync.storage.sqlite_store import SQLiteStore, rows_per_statement

logger = logging.getLogger(__name__)


class DrainWorker:
    """
    Usage:
        worker = DrainWorker(queue, store)
        worker.start()
        ...
        gateway = IngestionGateway(queue, on_enqueue=worker.notify)
        ...
        worker.stop(flush_deadline_sec=10)
    """

    def __init__(
        self,
        queue:              SyncQueue,
        store:              SQLiteStore,
        drain_interval_sec: float = 2.0,
        workers:            int   = 1,
        chunk_timeout_sec:  float = 5.0,
        max_attempts:       int   = 3,
        retry_backoff_sec:  float = 0.5,
        max_batch_requeues: int   = 3,
        sleep:              Callable[[float], None] = time.sleep,
    ):
        self.queue              = queue
        self.store              = store
        self.drain_interval_sec = drain_interval_sec
        self.workers            = max(1, workers)
        self.chunk_timeout_sec  = chunk_timeout_sec
        self.max_attempts       = max(1, max_attempts)
        self.retry_backoff_sec  = retry_backoff_sec
        self.max_batch_requeues = max_batch_requeues
        self.chunk_size         = rows_per_statement(store.max_bind_params)
        self._sleep             = sleep

        self._wake    = threading.Event()
        self._stop    = threading.Event()
        self._threads: List[threading.Thread] = []

        # claimed batches currently being written, by sync_id
        self._inflight_lock = threading.Lock()
        self._inflight: Dict[str, PendingBatch] = {}

    # ── LIFECYCLE ─────────────────────────────────────────────

    def start(self) -> None:
        if self.running:
            return
        self._threads = []
        self._stop.clear()
        for i in range(self.workers):
            t = threading.Thread(
                target = self._run,
                name   = f"focussync-drain-{i}",
                daemon = True,
            )
            t.start()
            self._threads.append(t)
        logger.info(
            f"Drain worker started | threads={self.workers} | "
            f"interval={self.drain_interval_sec}s | chunk={self.chunk_size} rows"
        )

    def notify(self) -> None:
        """Wake the drain threads. Calls before the next wake coalesce."""
        self._wake.set()

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def stop(self, flush_deadline_sec: float = 10.0) -> int:
        """
        Stop the threads, then flush what is still queued until the deadline.
        Returns the number of records abandoned (logged as lost).

        Threads still writing when the deadline passes are kept in
        self._threads and their in-flight records are counted as lost.
        """
        deadline = time.monotonic() + flush_deadline_sec
        self._stop.set()
        self._wake.set()
        for t in self._threads:
            t.join(timeout=max(0.0, deadline - time.monotonic()))
        self._threads = [t for t in self._threads if t.is_alive()]
        if self._threads:
            logger.warning(
                f"{len(self._threads)} drain thread(s) still busy past the flush deadline: "
                f"{', '.join(t.name for t in self._threads)}"
            )

        while len(self.queue) and time.monotonic() < deadline:
            self.drain_once()

        lost = 0
        for batch in self.queue.drain_all():
            lost += len(batch.pending)
            logger.error(
                f"Batch {batch.sync_id} lost at shutdown | device={batch.device_id} | "
                f"unwritten={len(batch.pending)}"
            )
        if self._threads:
            with self._inflight_lock:
                stuck = list(self._inflight.values())
            for batch in stuck:
                lost += len(batch.pending)
                logger.error(
                    f"Batch {batch.sync_id} still in flight at shutdown | "
                    f"device={batch.device_id} | unconfirmed={len(batch.pending)}"
                )
        logger.info(f"Drain worker stopped | lost={lost}")
        return lost

    def _run(self) -> None:
        while not self._stop.is_set():
            self._wake.wait(self.drain_interval_sec)
            self._wake.clear()
            if self._stop.is_set():
                break
            self.drain_once()

    # ── DRAIN ─────────────────────────────────────────────────

    def drain_once(self) -> List[DrainResult]:
        """Drain the batches present at the start of this pass."""
        results: List[DrainResult] = []
        for _ in range(len(self.queue)):
            batch = self.queue.claim()
            if batch is None:
                break
            with self._inflight_lock:
                self._inflight[batch.sync_id] = batch
            try:
                results.append(self.drain_batch(batch))
            except Exception:
                logger.exception(f"Unexpected error draining batch {batch.sync_id}; parking it")
                self.queue.park(batch)
                results.append(DrainResult(sync_id=batch.sync_id, failed=len(batch.pending)))
            finally:
                with self._inflight_lock:
                    self._inflight.pop(batch.sync_id, None)
        return results

    def drain_batch(self, batch: PendingBatch) -> DrainResult:
        """Write one claimed batch; requeue or park it when records remain unwritten."""
        result = DrainResult(sync_id=batch.sync_id)
        failed: List[SessionRecord] = []

        pending = batch.pending
        for i in range(0, len(pending), self.chunk_size):
            chunk = pending[i:i + self.chunk_size]
            try:
                inserted = self._write_chunk(chunk)
            except StorageTransientError as exc:
                logger.warning(
                    f"Batch {batch.sync_id}: chunk of {len(chunk)} failed after "
                    f"{self.max_attempts} attempts ({exc}); continuing"
                )
                failed.extend(chunk)
                continue
            dupes = len(chunk) - inserted
            result.inserted += inserted
            result.duplicates += dupes
            self.queue.record_written(inserted, dupes)

        batch.inserted += result.inserted
        batch.duplicates += result.duplicates

        if not failed:
            try:
                self.store.append_sync_log(self._sync_log_for(batch))
            except StorageTransientError as exc:
                logger.warning(f"Batch {batch.sync_id}: sync log write failed ({exc})")
                batch.pending = []
                self._retry_later(batch)
                return result
            logger.info(
                f"Drained batch {batch.sync_id} | device={batch.device_id} | "
                f"new={batch.inserted} | duplicates={batch.duplicates}"
            )
            return result

        result.failed = len(failed)
        batch.pending = failed
        self._retry_later(batch)
        return result

    def _retry_later(self, batch: PendingBatch) -> None:
        batch.attempts += 1
        if batch.attempts > self.max_batch_requeues:
            logger.error(
                f"Parking batch {batch.sync_id} after {batch.attempts} passes | "
                f"device={batch.device_id} | unwritten={len(batch.pending)}"
            )
            self.queue.park(batch)
        else:
            self.queue.requeue(batch)

    def _write_chunk(self, chunk: List[SessionRecord]) -> int:
        """One INSERT OR IGNORE with retries. Returns new-row count."""
        last_exc: Optional[StorageTransientError] = None
        for attempt in range(self.max_attempts):
            try:
                return self.store.insert_sessions(chunk, timeout_sec=self.chunk_timeout_sec)
            except StorageTransientError as exc:
                last_exc = exc
                if attempt + 1 < self.max_attempts:
                    delay = self.retry_backoff_sec * (2 ** attempt)
                    logger.debug(f"Chunk write failed ({exc}); retry in {delay:.2f}s")
                    self._sleep(delay)
        raise last_exc

    @staticmethod
    def _sync_log_for(batch: PendingBatch) -> SyncLogEntry:
        starts = [r.start_time for r in batch.records]
        return SyncLogEntry(
            id            = batch.sync_id,
            user_id       = batch.user_id,
            device_id     = batch.device_id,
            session_count = batch.size,
            first_start   = min(starts),
            last_start    = max(starts),
            synced_at     = datetime.now(timezone.utc).isoformat(),
        )
