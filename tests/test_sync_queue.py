"""
tests/test_sync_queue.py
In-memory sync queue — FIFO, exclusive claim, bound, bookkeeping.
"""

import threading

import pytest

from focussync.errors import QueueFullError
from focussync.models.record import SessionRecord
from focussync.queue.sync_queue import PendingBatch, SyncQueue


def _batch(sync_id: str, n: int = 2) -> PendingBatch:
    records = [
        SessionRecord(
            id           = f"{sync_id}-{i}",
            user_id      = "u1",
            device_id    = "d1",
            app_name     = "Editor",
            window_title = "",
            start_time   = float(i),
            end_time     = float(i) + 1,
            duration     = 1.0,
        )
        for i in range(n)
    ]
    return PendingBatch(sync_id=sync_id, user_id="u1", device_id="d1", records=records)


class TestSyncQueue:

    def test_enqueue_returns_count_and_pending_mirrors_records(self):
        q = SyncQueue()
        batch = _batch("a", 3)
        assert q.enqueue(batch) == 3
        assert batch.pending == batch.records
        assert batch.pending is not batch.records

    def test_claim_is_fifo_and_exclusive(self):
        q = SyncQueue()
        q.enqueue(_batch("a"))
        q.enqueue(_batch("b"))
        assert q.claim().sync_id == "a"
        assert q.claim().sync_id == "b"
        assert q.claim() is None

    def test_requeue_goes_to_tail(self):
        q = SyncQueue()
        q.enqueue(_batch("a"))
        q.enqueue(_batch("b"))
        first = q.claim()
        q.requeue(first)
        assert [q.claim().sync_id, q.claim().sync_id] == ["b", "a"]

    def test_bound_rejects_without_enqueueing(self):
        q = SyncQueue(max_pending_records=3)
        q.enqueue(_batch("a", 2))
        with pytest.raises(QueueFullError):
            q.enqueue(_batch("b", 2))
        assert len(q) == 1
        assert q.stats().pending_records == 2

    def test_stats_track_drained_and_parked(self):
        q = SyncQueue()
        q.enqueue(_batch("a", 4))
        batch = q.claim()
        q.record_written(inserted=1, duplicates=1)
        batch.pending = batch.pending[:2]
        q.park(batch)

        stats = q.stats()
        assert stats.pending_batches == 0
        assert stats.pending_records == 0
        assert stats.drained == 2
        assert stats.duplicates == 1
        assert stats.failed == 2
        assert stats.parked == 1
        assert stats.to_dict()["pendingBatches"] == 0
        assert q.parked == [batch]

    def test_drain_all_empties_queue(self):
        q = SyncQueue()
        q.enqueue(_batch("a"))
        q.enqueue(_batch("b"))
        assert [b.sync_id for b in q.drain_all()] == ["a", "b"]
        assert len(q) == 0
        assert q.stats().pending_records == 0

    def test_concurrent_claims_hand_out_each_batch_once(self):
        q = SyncQueue()
        for i in range(200):
            q.enqueue(_batch(f"b{i}", 1))

        claimed = []
        lock = threading.Lock()

        def consumer():
            while True:
                b = q.claim()
                if b is None:
                    return
                with lock:
                    claimed.append(b.sync_id)

        threads = [threading.Thread(target=consumer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(claimed) == sorted(f"b{i}" for i in range(200))

    def test_concurrent_producers_lose_nothing(self):
        q = SyncQueue()
        start = threading.Barrier(8)

        def producer(p):
            start.wait()
            for i in range(50):
                q.enqueue(_batch(f"p{p}-{i}", 3))

        threads = [threading.Thread(target=producer, args=(p,)) for p in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(q) == 400
        assert q.stats().pending_records == 1200

        claimed = []
        while True:
            b = q.claim()
            if b is None:
                break
            claimed.append(b.sync_id)
        assert sorted(claimed) == sorted(f"p{p}-{i}" for p in range(8) for i in range(50))
        assert q.stats().pending_records == 0
