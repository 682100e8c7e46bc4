"""
test_api.py
─────────────────────────────────────────────────────────────────────────────
Tests for focussync.api — FocusSyncAPI class (no HTTP client required).

Coverage:
  - Key creation / authentication
  - sync → drain_pending → get_daily end to end
  - Body-level validation surfaces as ValidationError / CapacityError
  - Timezone settings through the composition root
  - shutdown flushes the queue

All tests use a temporary SQLite DB — no Ollama required.
"""

from pathlib import Path

import pytest

from focussync.api import FocusSyncAPI
from focussync.errors import CapacityError, ValidationError

# 2024-03-09T00:00:00Z
MAR_9_UTC = 1709942400


# ── HELPERS ──────────────────────────────────────────────────────────────────

def _make_api(tmp_path: Path, **config) -> FocusSyncAPI:
    api = FocusSyncAPI(db_path=tmp_path / "focussync.db", config=config)
    api.init()
    return api


def _session(rid: str, start: float = MAR_9_UTC + 60, dur: float = 600) -> dict:
    return {"id": rid, "app_name": "Editor", "window_title": "",
            "start_time": start, "duration": dur}


# ── TESTS ────────────────────────────────────────────────────────────────────

class TestFocusSyncAPI:

    def test_key_round_trip(self, tmp_path):
        api = _make_api(tmp_path)
        created = api.create_key("u1", "Laptop")
        identity = api.authenticate(created["key"])
        assert identity.user_id == "u1"
        assert identity.device_id == created["device_id"]
        assert api.authenticate("nope") is None
        api.runner.shutdown()

    def test_sync_drain_daily(self, tmp_path):
        api = _make_api(tmp_path)
        identity = api.authenticate(api.create_key("u1", "Laptop")["key"])

        ack = api.sync(identity, {"sessions": [_session("a"), _session("b", start=MAR_9_UTC + 700)]})
        assert ack["accepted"] == 2
        assert api.drain_pending() == 1

        daily = api.get_daily("u1", "2024-03-09")
        assert daily["stats"]["totalSessions"] == 2
        assert daily["stats"]["totalDuration"] == 1200
        api.runner.shutdown()

    def test_sync_validation(self, tmp_path):
        api = _make_api(tmp_path, max_batch_size=2)
        identity = api.authenticate(api.create_key("u1", "Laptop")["key"])

        with pytest.raises(ValidationError):
            api.sync(identity, {"sessions": []})
        with pytest.raises(CapacityError):
            api.sync(identity, {"sessions": [_session("a"), _session("b"), _session("c")]})
        with pytest.raises(ValidationError, match="end_time"):
            api.sync(identity, {"sessions": [_session("a")], "schema_version": 1})
        assert len(api.queue) == 0
        api.runner.shutdown()

    def test_timezone_settings(self, tmp_path):
        api = _make_api(tmp_path, default_timezone="Europe/Paris")
        assert api.get_timezone("u1") == {"timezone": "Europe/Paris"}
        assert api.set_timezone("u1", {"timezone": "UTC"}) == {"timezone": "UTC"}
        with pytest.raises(ValidationError):
            api.set_timezone("u1", "UTC")
        api.runner.shutdown()

    def test_shutdown_flushes_queue(self, tmp_path):
        api = _make_api(tmp_path)
        identity = api.authenticate(api.create_key("u1", "Laptop")["key"])
        api.sync(identity, {"sessions": [_session(f"s{i}") for i in range(13)]})
        assert api.shutdown() == 0
        assert api.store.count_sessions() == 13

    def test_health(self, tmp_path):
        api = _make_api(tmp_path)
        health = api.health()
        assert health["status"] == "ok"
        assert health["db_exists"] is True
        assert health["worker_running"] is False
        api.runner.shutdown()
