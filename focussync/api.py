"""
focussync/api.py
─────────────────────────────────────────────────────────────────────────────
focus-sync — service composition root + HTTP layer

TWO USAGE MODES:
  1. Importable module (CLI, tests, other services):
         from focussync.api import FocusSyncAPI
         api = FocusSyncAPI(db_path=Path("focussync.db"))
         api.init()
         ack = api.sync(identity, {"sessions": [...]})

  2. FastAPI HTTP server (desktop agents + dashboard):
         python -m focussync.api                  # default: port 8787
         python -m focussync.api --port 9000
         uvicorn focussync.api:app --port 8787

ENDPOINTS (all require Authorization: Bearer <device api key>):
  POST /sync                    — accept a batch of sessions (202, drained async)
  GET  /sync/status             — last sync per device + queue stats
  GET  /daily/{date}            — stats + cached analysis for a past day
  POST /daily/{date}/analyze    — generate (or return cached) analysis
  GET  /settings/timezone       — the user's timezone
  PUT  /settings/timezone       — set the user's timezone
  GET  /keys                    — the user's device keys (no hashes)
  DELETE /keys/{id}             — revoke one of the user's device keys
  GET  /health                  — liveness, db path, queue stats

LIFECYCLE:
  The app's lifespan creates the schema and starts the drain worker; on
  shutdown the queue is flushed within flush_deadline_sec and anything
  still pending is logged as lost.

PRIVACY NOTE:
  Window titles, URLs and document paths are stored but never logged.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from focussync import __version__
from focussync.auth import (
    DeviceIdentity,
    create_api_key,
    list_api_keys,
    parse_bearer,
    resolve_api_key,
    revoke_api_key,
    touch_last_used,
)
from focussync.cache.daily_summary import DailySummaryCache
from focussync.config import DEFAULT_CONFIG, load_config, resolve_db_path
from focussync.daily import DailyReviewService
from focussync.errors import FocusSyncError, NotFoundError
from focussync.ingest.gateway import IngestionGateway, parse_sync_body
from focussync.llm.base import AnalysisAdapter
from focussync.llm.ollama_adapter import OllamaAdapter
from focussync.queue.drain_worker import DrainWorker
from focussync.queue.sync_queue import SyncQueue
from focussync.settings import get_user_timezone, set_user_timezone
from focussync.storage.sqlite_store import SQLiteStore
from focussync.tasks import BestEffortRunner

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# IMPORTABLE CLASS — composition root
# ═══════════════════════════════════════════════════════════════════════════

class FocusSyncAPI:
    """
    Wires store, queue, drain worker, gateway, cache and read path together.
    No HTTP layer required — import and call directly.

    Usage:
        api = FocusSyncAPI(db_path=Path("focussync.db"))
        api.start()                          # schema + drain worker
        key = api.create_key("u1", "laptop")
        identity = api.authenticate(key["key"])
        api.sync(identity, {"sessions": [...]})
        api.get_daily("u1", "2024-03-09")
        api.shutdown()
    """

    def __init__(
        self,
        db_path:  Path                        = Path("focussync.db"),
        config:   Optional[Dict[str, Any]]    = None,
        analyzer: Optional[AnalysisAdapter]   = None,
    ):
        self.config  = {**DEFAULT_CONFIG, **(config or {})}
        self.db_path = Path(db_path)
        cfg = self.config

        self.store = SQLiteStore(
            self.db_path,
            busy_timeout_sec = cfg["chunk_timeout_sec"],
            max_bind_params  = cfg["max_bind_params"],
        )
        self.queue  = SyncQueue(max_pending_records=cfg["max_pending_records"])
        self.worker = DrainWorker(
            self.queue,
            self.store,
            drain_interval_sec = cfg["drain_interval_sec"],
            workers            = cfg["drain_workers"],
            chunk_timeout_sec  = cfg["chunk_timeout_sec"],
            max_attempts       = cfg["max_attempts"],
            retry_backoff_sec  = cfg["retry_backoff_sec"],
            max_batch_requeues = cfg["max_batch_requeues"],
        )
        self.gateway = IngestionGateway(
            self.queue,
            max_batch_size = cfg["max_batch_size"],
            on_enqueue     = self.worker.notify,
        )
        self.runner = BestEffortRunner()
        self.cache  = DailySummaryCache(self.store)

        if analyzer is None:
            analyzer = OllamaAdapter(model=cfg["analysis_model"], host=cfg["ollama_host"])
        self.daily = DailyReviewService(
            self.store,
            self.cache,
            self.runner,
            analyzer         = analyzer,
            queue            = self.queue,
            default_timezone = cfg["default_timezone"],
        )

    @classmethod
    def from_config(cls, project_root: Optional[Path] = None) -> "FocusSyncAPI":
        config = load_config(project_root)
        return cls(db_path=resolve_db_path(config, project_root), config=config)

    # ── LIFECYCLE ─────────────────────────────────────────────────────────

    def init(self) -> None:
        self.store.init_schema()

    def start(self) -> None:
        self.init()
        self.worker.start()

    def drain_pending(self) -> int:
        """Drain synchronously until the queue is empty. Returns batches handled."""
        handled = 0
        while len(self.queue):
            handled += len(self.worker.drain_once())
        return handled

    def shutdown(self) -> int:
        """Flush the queue within the configured deadline. Returns records lost."""
        lost = self.worker.stop(flush_deadline_sec=self.config["flush_deadline_sec"])
        self.runner.shutdown()
        return lost

    # ── IDENTITY ──────────────────────────────────────────────────────────

    def create_key(self, user_id: str, name: str, device_id: Optional[str] = None) -> Dict[str, str]:
        return create_api_key(self.store, user_id, name, device_id)

    def authenticate(self, raw_key: Optional[str]) -> Optional[DeviceIdentity]:
        identity = resolve_api_key(self.store, raw_key)
        if identity is not None:
            self.runner.spawn("touch api key", touch_last_used, self.store, identity.key_id)
        return identity

    def list_keys(self, user_id: str) -> Dict[str, Any]:
        return {"keys": [
            {
                "id":        row["id"],
                "name":      row["name"],
                "deviceId":  row["device_id"],
                "createdAt": row["created_at"],
                "lastUsed":  row["last_used"],
            }
            for row in list_api_keys(self.store, user_id)
        ]}

    def revoke_key(self, user_id: str, key_id: str) -> Dict[str, bool]:
        if not revoke_api_key(self.store, user_id, key_id):
            raise NotFoundError("API key not found")
        return {"deleted": True}

    # ── OPERATIONS ────────────────────────────────────────────────────────

    def sync(self, identity: DeviceIdentity, body: Any) -> Dict[str, Any]:
        sessions, version = parse_sync_body(body)
        ack = self.gateway.submit(
            sessions,
            user_id        = identity.user_id,
            device_id      = identity.device_id,
            schema_version = version,
        )
        return ack.to_dict()

    def sync_status(self, user_id: str) -> Dict[str, Any]:
        return self.daily.sync_status(user_id)

    def get_daily(self, user_id: str, date: str) -> Dict[str, Any]:
        return self.daily.get_daily(user_id, date)

    def analyze_day(self, user_id: str, date: str, force: bool = False) -> Dict[str, Any]:
        return self.daily.analyze_day(user_id, date, force=force)

    def get_timezone(self, user_id: str) -> Dict[str, str]:
        return {"timezone": get_user_timezone(self.store, user_id, self.config["default_timezone"])}

    def set_timezone(self, user_id: str, body: Any) -> Dict[str, str]:
        tz = body.get("timezone") if isinstance(body, dict) else None
        return {"timezone": set_user_timezone(self.store, user_id, tz)}

    def health(self) -> Dict[str, Any]:
        return {
            "status":         "ok",
            "db_exists":      self.db_path.exists(),
            "db_path":        str(self.db_path),
            "worker_running": self.worker.running,
            "queue":          self.queue.stats().to_dict(),
            "version":        __version__,
        }


# ═══════════════════════════════════════════════════════════════════════════
# FASTAPI HTTP APP
# ═══════════════════════════════════════════════════════════════════════════

def _call(label: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
    """Run an operation, mapping FocusSyncError to its HTTP status and anything else to 500."""
    try:
        return fn(*args, **kwargs)
    except FocusSyncError as exc:
        raise HTTPException(status_code=getattr(exc, "status_code", 500), detail=str(exc))
    except Exception as exc:
        logger.error(f"{label} endpoint error: {exc}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"{label} failed")


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")


def _build_app(api: Optional[FocusSyncAPI] = None) -> FastAPI:
    """
    Build and return the FastAPI application instance.
    Nothing touches disk until the lifespan starts.
    """
    _api = api or FocusSyncAPI.from_config(Path.cwd())

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        _api.start()
        logger.info(f"focus-sync serving | db={_api.db_path}")
        try:
            yield
        finally:
            _api.shutdown()

    _app = FastAPI(
        title       = "focus-sync API",
        description = "Focus-session ingestion and daily productivity review",
        version     = __version__,
        docs_url    = "/docs",
        redoc_url   = None,
        lifespan    = lifespan,
    )
    _app.state.focussync = _api

    # Dashboard runs on localhost during development
    _app.add_middleware(
        CORSMiddleware,
        allow_origins     = [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1",
            "http://127.0.0.1:3000",
        ],
        allow_methods     = ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers     = ["Content-Type", "Authorization"],
        allow_credentials = False,
    )

    @_app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    def require_identity(
        authorization: Optional[str] = Header(default=None),
    ) -> DeviceIdentity:
        identity = _call("auth", _api.authenticate, parse_bearer(authorization))
        if identity is None:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return identity

    # ── ENDPOINTS ───────────────────────────────────────────────────────

    @_app.post("/sync", summary="Upload a batch of focus sessions", status_code=202)
    async def sync(request: Request, identity: DeviceIdentity = Depends(require_identity)):
        """
        Validates and enqueues the batch, then returns immediately.
        Records reach storage asynchronously; resubmitting is safe.
        """
        body = await _json_body(request)
        ack = _call("sync", _api.sync, identity, body)
        return JSONResponse(content=ack, status_code=202)

    @_app.get("/sync/status", summary="Last sync per device")
    def sync_status(identity: DeviceIdentity = Depends(require_identity)):
        return _call("sync status", _api.sync_status, identity.user_id)

    @_app.get("/daily/{date}", summary="Daily stats for a past day")
    def get_daily(date: str, identity: DeviceIdentity = Depends(require_identity)):
        """Only days strictly before today (user's timezone) are served."""
        return _call("daily", _api.get_daily, identity.user_id, date)

    @_app.post("/daily/{date}/analyze", summary="Analyze a past day")
    def analyze_day(
        date:     str,
        force:    bool           = Query(False),
        identity: DeviceIdentity = Depends(require_identity),
    ):
        return _call("analyze", _api.analyze_day, identity.user_id, date, force)

    @_app.get("/settings/timezone", summary="Get the user's timezone")
    def get_timezone(identity: DeviceIdentity = Depends(require_identity)):
        return _call("timezone", _api.get_timezone, identity.user_id)

    @_app.put("/settings/timezone", summary="Set the user's timezone")
    async def put_timezone(request: Request, identity: DeviceIdentity = Depends(require_identity)):
        body = await _json_body(request)
        return _call("timezone", _api.set_timezone, identity.user_id, body)

    @_app.get("/keys", summary="List the user's device keys")
    def list_keys(identity: DeviceIdentity = Depends(require_identity)):
        return _call("keys", _api.list_keys, identity.user_id)

    @_app.delete("/keys/{key_id}", summary="Revoke a device key")
    def revoke_key(key_id: str, identity: DeviceIdentity = Depends(require_identity)):
        """Keys of other users are reported as not found."""
        return _call("revoke key", _api.revoke_key, identity.user_id, key_id)

    @_app.get("/health", summary="Health check")
    def health(identity: DeviceIdentity = Depends(require_identity)):
        return _api.health()

    return _app


def serve(api: FocusSyncAPI, host: str = "127.0.0.1", port: int = 8787) -> None:
    import uvicorn

    print(f"""
+--------------------------------------------------+
|   focus-sync API Server v{__version__:<24}|
+--------------------------------------------------+
|  Local:    http://{host}:{port}
|  DB:       {api.db_path}
|  Docs:     http://{host}:{port}/docs
+--------------------------------------------------+
""")
    uvicorn.run(
        _build_app(api=api),
        host      = host,
        port      = port,
        log_level = "info",
    )


# Module-level app instance — used by uvicorn focussync.api:app
app = _build_app()


# ═══════════════════════════════════════════════════════════════════════════
# CLI ENTRYPOINT — python -m focussync.api
# ═══════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        prog        = "focussync.api",
        description = "focus-sync API Server",
    )
    parser.add_argument("--port", type=int, default=None,
                        help="Port to bind (default: config port, 8787)")
    parser.add_argument("--db",   type=str, default=None,
                        help="Path to the SQLite database (default: config db_path)")
    parser.add_argument("--host", type=str, default=None,
                        help="Host to bind (default: 127.0.0.1)")
    args = parser.parse_args()

    logging.basicConfig(
        level   = logging.INFO,
        format  = '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt = '%H:%M:%S',
    )

    config = load_config(Path.cwd())
    db_path = Path(args.db) if args.db else resolve_db_path(config, Path.cwd())
    serve(
        FocusSyncAPI(db_path=db_path, config=config),
        host = args.host or config["host"],
        port = args.port or config["port"],
    )
