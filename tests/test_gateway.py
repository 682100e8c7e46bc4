"""
tests/test_gateway.py
Ingestion gateway — validation contract, capacity limit, enqueue.

Coverage:
  - v2 (duration) default contract, v1 (end_time) when explicit
  - Missing / null required field → index + field named
  - Interval checks: end > start, redundant field consistency, finite numbers
  - Batch over the limit rejected before anything is enqueued
  - Identity comes from the caller, never from the payload
  - Body parsing: sessions array, schema_version
  - Parallel submits from many threads all land in the queue once
"""

import threading

import pytest

from focussync.errors import CapacityError, QueueFullError, ValidationError
from focussync.ingest.gateway import (
    IngestionGateway,
    RawSessionV1,
    RawSessionV2,
    _RawSessionBase,
    parse_sync_body,
)
from focussync.queue.sync_queue import SyncQueue


# ── HELPERS ──────────────────────────────────────────────────────────────────

def _v2(rid="s1", start=1_700_000_000.0, dur=60.0, **extra):
    d = {"id": rid, "app_name": "Editor", "window_title": "main.py",
         "start_time": start, "duration": dur}
    d.update(extra)
    return d


def _v1(rid="s1", start=1_700_000_000.0, end=1_700_000_060.0, **extra):
    d = {"id": rid, "app_name": "Editor", "window_title": "main.py",
         "start_time": start, "end_time": end}
    d.update(extra)
    return d


def _gateway(**kwargs):
    queue = SyncQueue()
    calls = []
    gateway = IngestionGateway(queue, on_enqueue=lambda: calls.append(1), **kwargs)
    return gateway, queue, calls


# ── TESTS: SUBMIT ────────────────────────────────────────────────────────────

class TestSubmit:

    def test_accepts_v2_batch_and_enqueues(self):
        gateway, queue, calls = _gateway()
        ack = gateway.submit([_v2("a"), _v2("b", start=1_700_000_100.0)], "u1", "d1")

        assert ack.accepted == 2
        assert ack.sync_id
        assert len(queue) == 1
        assert calls == [1]

        batch = queue.claim()
        assert batch.sync_id == ack.sync_id
        rec = batch.records[0]
        assert rec.user_id == "u1"
        assert rec.device_id == "d1"
        assert rec.end_time == rec.start_time + rec.duration
        assert rec.synced_at

    def test_payload_identity_fields_are_ignored(self):
        gateway, queue, _ = _gateway()
        gateway.submit([_v2(user_id="intruder", device_id="x")], "u1", "d1")
        rec = queue.claim().records[0]
        assert (rec.user_id, rec.device_id) == ("u1", "d1")

    def test_optional_fields_carried(self):
        gateway, queue, _ = _gateway()
        gateway.submit([_v2(url="https://example.com", tab_count=3, is_full_screen=True)], "u1", "d1")
        rec = queue.claim().records[0]
        assert rec.url == "https://example.com"
        assert rec.tab_count == 3
        assert rec.is_full_screen is True
        assert rec.is_minimized is False

    def test_batch_over_limit_rejected_before_enqueue(self):
        gateway, queue, calls = _gateway()
        sessions = [_v2(f"s{i}") for i in range(1001)]
        with pytest.raises(CapacityError):
            gateway.submit(sessions, "u1", "d1")
        assert len(queue) == 0
        assert calls == []

    def test_batch_at_limit_accepted(self):
        gateway, queue, _ = _gateway()
        ack = gateway.submit([_v2(f"s{i}") for i in range(1000)], "u1", "d1")
        assert ack.accepted == 1000
        assert queue.stats().pending_records == 1000

    def test_capacity_error_is_a_validation_error_with_413(self):
        assert issubclass(CapacityError, ValidationError)
        assert CapacityError.status_code == 413

    def test_queue_full_propagates(self):
        queue = SyncQueue(max_pending_records=2)
        gateway = IngestionGateway(queue)
        gateway.submit([_v2("a"), _v2("b")], "u1", "d1")
        with pytest.raises(QueueFullError):
            gateway.submit([_v2("c")], "u1", "d1")


# ── TESTS: VALIDATION ────────────────────────────────────────────────────────

class TestValidation:

    def test_missing_field_names_index_and_field(self):
        gateway, queue, _ = _gateway()
        bad = _v2("b")
        del bad["app_name"]
        with pytest.raises(ValidationError, match="index 1 is missing required field: app_name"):
            gateway.submit([_v2("a"), bad], "u1", "d1")
        assert len(queue) == 0

    def test_null_required_field_is_missing(self):
        gateway, _, _ = _gateway()
        with pytest.raises(ValidationError, match="missing required field: duration"):
            gateway.submit([_v2(dur=None)], "u1", "d1")

    def test_v2_requires_duration_even_with_end_time(self):
        gateway, _, _ = _gateway()
        with pytest.raises(ValidationError, match="duration"):
            gateway.submit([_v1()], "u1", "d1")

    def test_v1_requires_end_time(self):
        gateway, _, _ = _gateway()
        with pytest.raises(ValidationError, match="end_time"):
            gateway.submit([_v2()], "u1", "d1", schema_version=1)

    def test_v1_derives_duration(self):
        gateway, queue, _ = _gateway()
        gateway.submit([_v1(end=1_700_000_090.0)], "u1", "d1", schema_version=1)
        assert queue.claim().records[0].duration == 90.0

    def test_zero_duration_rejected(self):
        gateway, _, _ = _gateway()
        with pytest.raises(ValidationError, match="index 0"):
            gateway.submit([_v2(dur=0)], "u1", "d1")

    def test_negative_duration_rejected(self):
        gateway, _, _ = _gateway()
        with pytest.raises(ValidationError, match="duration"):
            gateway.submit([_v2(dur=-5)], "u1", "d1")

    def test_inconsistent_redundant_end_time_rejected(self):
        gateway, _, _ = _gateway()
        with pytest.raises(ValidationError, match="end_time must equal"):
            gateway.submit([_v2(dur=60, end_time=1_700_000_500.0)], "u1", "d1")

    def test_consistent_redundant_end_time_accepted(self):
        gateway, _, _ = _gateway()
        ack = gateway.submit([_v2(dur=60, end_time=1_700_000_060.0)], "u1", "d1")
        assert ack.accepted == 1

    def test_v1_end_before_start_rejected(self):
        gateway, _, _ = _gateway()
        with pytest.raises(ValidationError, match="after start_time"):
            gateway.submit([_v1(end=1_699_999_000.0)], "u1", "d1", schema_version=1)

    def test_non_object_record_rejected(self):
        gateway, _, _ = _gateway()
        with pytest.raises(ValidationError, match="index 0 must be an object"):
            gateway.submit(["nope"], "u1", "d1")

    def test_wrong_type_names_field(self):
        gateway, _, _ = _gateway()
        with pytest.raises(ValidationError, match="start_time"):
            gateway.submit([_v2(start="yesterday")], "u1", "d1")

    @pytest.mark.parametrize("field,value", [
        ("start_time", float("nan")),
        ("start_time", float("inf")),
        ("duration", float("nan")),
        ("duration", float("inf")),
        ("end_time", float("-inf")),
    ])
    def test_non_finite_numbers_rejected(self, field, value):
        gateway, queue, calls = _gateway()
        bad = _v2("bad", **{field: value})
        with pytest.raises(ValidationError, match=f"index 1 has invalid field {field}"):
            gateway.submit([_v2("good"), bad], "u1", "d1")
        assert len(queue) == 0
        assert calls == []

    def test_v1_non_finite_end_time_rejected(self):
        gateway, queue, _ = _gateway()
        with pytest.raises(ValidationError, match="index 0 has invalid field end_time"):
            gateway.submit([_v1(end=float("inf"))], "u1", "d1", schema_version=1)
        assert len(queue) == 0

    def test_overflowing_end_rejected(self):
        gateway, _, _ = _gateway()
        with pytest.raises(ValidationError, match="finite"):
            gateway.submit([_v2(start=1e308, dur=1e308)], "u1", "d1")

    def test_shared_base_is_abstract(self):
        with pytest.raises(TypeError):
            _RawSessionBase(**_v2())
        assert RawSessionV2.model_validate(_v2(dur=30)).interval() == (1_700_000_000.0, 1_700_000_030.0, 30.0)
        assert RawSessionV1.model_validate(_v1()).interval()[2] == 60.0

    def test_empty_batch_rejected(self):
        gateway, _, _ = _gateway()
        with pytest.raises(ValidationError):
            gateway.submit([], "u1", "d1")


# ── TESTS: BODY PARSING ──────────────────────────────────────────────────────

class TestParseSyncBody:

    def test_defaults_to_v2(self):
        sessions, version = parse_sync_body({"sessions": [_v2()]})
        assert version == 2
        assert len(sessions) == 1

    def test_explicit_v1(self):
        _, version = parse_sync_body({"sessions": [_v1()], "schema_version": 1})
        assert version == 1

    @pytest.mark.parametrize("body", [
        {},
        {"sessions": []},
        {"sessions": "x"},
        [],
        None,
    ])
    def test_missing_or_empty_sessions(self, body):
        with pytest.raises(ValidationError):
            parse_sync_body(body)

    @pytest.mark.parametrize("version", [0, 3, "2", True])
    def test_unknown_schema_version(self, version):
        with pytest.raises(ValidationError, match="schema_version"):
            parse_sync_body({"sessions": [_v2()], "schema_version": version})


# ── TESTS: CONCURRENT SUBMISSION ─────────────────────────────────────────────

class TestConcurrentSubmit:

    def test_parallel_submits_all_enqueued_once(self):
        gateway, queue, calls = _gateway()
        start = threading.Barrier(8)
        acks = []
        lock = threading.Lock()

        def client(c):
            start.wait()
            for i in range(25):
                ack = gateway.submit([_v2(f"c{c}-{i}-a"), _v2(f"c{c}-{i}-b")], "u1", f"d{c}")
                with lock:
                    acks.append(ack.sync_id)

        threads = [threading.Thread(target=client, args=(c,)) for c in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(acks) == 200
        assert len(queue) == 200
        assert queue.stats().pending_records == 400
        assert len(calls) == 200

        claimed = []
        while True:
            batch = queue.claim()
            if batch is None:
                break
            claimed.append(batch.sync_id)
        assert sorted(claimed) == sorted(acks)
