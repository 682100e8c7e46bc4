"""
focussync/queue/sync_queue.py
In-memory FIFO of accepted session batches.

Producers (request threads) enqueue; drain threads claim. A batch is
handed out by exactly one claim() — there is no peek or replay — so two
drain threads can never write the same batch concurrently.

DURABILITY BOUNDARY:
  Batches live in process memory only. A crash between the 202 response
  and the drain loses them; clients resubmit, and id-keyed
  INSERT OR IGNORE makes the resubmission harmless. Orderly shutdown
  flushes the queue within a bounded deadline (DrainWorker.stop).
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional

from focussync.errors import QueueFullError
from focussync.models.record import SessionRecord


@dataclass
class PendingBatch:
    """One accepted upload, tracked until every record is written or it is parked."""
    sync_id:    str
    user_id:    str
    device_id:  str
    records:    List[SessionRecord]
    pending:    List[SessionRecord] = field(default_factory=list)
    inserted:   int                 = 0
    duplicates: int                 = 0
    attempts:   int                 = 0     # completed drain passes that left failures

    def __post_init__(self):
        if not self.pending:
            self.pending = list(self.records)

    @property
    def size(self) -> int:
        return len(self.records)


@dataclass
class QueueStats:
    pending_batches: int
    pending_records: int
    drained:         int     # records written (new + duplicate)
    duplicates:      int
    failed:          int     # records in parked batches
    parked:          int     # batches given up on

    def to_dict(self) -> dict:
        return {
            "pendingBatches": self.pending_batches,
            "pendingRecords": self.pending_records,
            "drained":        self.drained,
            "duplicates":     self.duplicates,
            "failed":         self.failed,
            "parked":         self.parked,
        }


class SyncQueue:
    """
    Thread-safe batch queue. Every public method holds the lock only for
    in-memory bookkeeping — never across I/O.
    """

    def __init__(self, max_pending_records: int = 0):
        self.max_pending_records = max_pending_records   # 0 = unbounded

        self._lock = threading.Lock()
        self._batches: Deque[PendingBatch] = deque()
        self._pending_records = 0
        self._parked: List[PendingBatch] = []

        self._drained = 0
        self._duplicates = 0
        self._failed = 0

    # ── PRODUCER SIDE ─────────────────────────────────────────

    def enqueue(self, batch: PendingBatch) -> int:
        """Append a batch. Returns the number of records accepted."""
        n = len(batch.pending)
        if n == 0:
            return 0
        with self._lock:
            if self.max_pending_records and self._pending_records + n > self.max_pending_records:
                raise QueueFullError(
                    f"Sync queue full: {self._pending_records} records pending "
                    f"(max {self.max_pending_records})"
                )
            self._batches.append(batch)
            self._pending_records += n
        return n

    # ── CONSUMER SIDE ─────────────────────────────────────────

    def claim(self) -> Optional[PendingBatch]:
        """Remove and return the oldest batch, or None when empty."""
        with self._lock:
            if not self._batches:
                return None
            batch = self._batches.popleft()
            self._pending_records -= len(batch.pending)
            return batch

    def requeue(self, batch: PendingBatch) -> None:
        """Put a partially written batch back at the tail. Never bounded."""
        with self._lock:
            self._batches.append(batch)
            self._pending_records += len(batch.pending)

    def park(self, batch: PendingBatch) -> None:
        """Give up on a batch; kept for inspection, counted as failed."""
        with self._lock:
            self._parked.append(batch)
            self._failed += len(batch.pending)

    def drain_all(self) -> List[PendingBatch]:
        """Remove every pending batch at once (shutdown leftovers)."""
        with self._lock:
            batches = list(self._batches)
            self._batches.clear()
            self._pending_records = 0
            return batches

    def record_written(self, inserted: int, duplicates: int) -> None:
        with self._lock:
            self._drained += inserted + duplicates
            self._duplicates += duplicates

    # ── INTROSPECTION ─────────────────────────────────────────

    @property
    def parked(self) -> List[PendingBatch]:
        with self._lock:
            return list(self._parked)

    def __len__(self) -> int:
        with self._lock:
            return len(self._batches)

    def stats(self) -> QueueStats:
        with self._lock:
            return QueueStats(
                pending_batches = len(self._batches),
                pending_records = self._pending_records,
                drained         = self._drained,
                duplicates      = self._duplicates,
                failed          = self._failed,
                parked          = len(self._parked),
            )
