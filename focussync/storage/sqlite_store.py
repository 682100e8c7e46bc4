"""
focussync/storage/sqlite_store.py
SQLite backing store — a small query/execute interface plus the
session and sync-log writers used by the drain worker.

SCHEMA DESIGN NOTES:
- focus_sessions is keyed by the client-assigned id. Rows are only ever
  inserted with INSERT OR IGNORE — never updated — so a replayed batch
  is a no-op and the affected-row count is the number of new rows.
- sync_logs is append-only; rowid order is drain order.
- daily_summaries caches aggregated stats and analysis per (user, date).
- All interval timestamps are REAL epoch seconds (UTC).
- The store caps bound parameters per statement (max_bind_params). The
  drain worker sizes its chunks from that ceiling; it is not tunable
  away here.
"""

import logging
import math
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from focussync.errors import StorageTransientError
from focussync.models.record import SessionRecord, SyncLogEntry

logger = logging.getLogger(__name__)

SCHEMA_VERSION = '1.0'

DEFAULT_MAX_BIND_PARAMS = 100

# Column order for focus_sessions inserts; must match the schema below.
SESSION_COLUMNS = (
    'id',
    'user_id',
    'device_id',
    'app_name',
    'window_title',
    'url',
    'start_time',
    'end_time',
    'duration',
    'bundle_id',
    'tab_title',
    'tab_count',
    'document_path',
    'is_full_screen',
    'is_minimized',
    'synced_at',
)

# Progress handler granularity (SQLite VM instructions between deadline checks)
_PROGRESS_STEPS = 1000


def rows_per_statement(max_bind_params: int = DEFAULT_MAX_BIND_PARAMS) -> int:
    """Largest number of session rows one INSERT can carry under the ceiling."""
    return max(1, int(max_bind_params) // len(SESSION_COLUMNS))


def build_multi_row_insert(records: Sequence[SessionRecord]) -> Tuple[str, List[Any]]:
    """Build one multi-row INSERT OR IGNORE statement for a chunk of sessions."""
    placeholder_row = '(' + ', '.join('?' for _ in SESSION_COLUMNS) + ')'
    value_rows = ',\n       '.join(placeholder_row for _ in records)
    sql = (
        f"INSERT OR IGNORE INTO focus_sessions\n"
        f"       ({', '.join(SESSION_COLUMNS)})\n"
        f"       VALUES {value_rows}"
    )

    params: List[Any] = []
    for r in records:
        params.extend((
            r.id, r.user_id, r.device_id, r.app_name, r.window_title,
            r.url, r.start_time, r.end_time, r.duration,
            r.bundle_id, r.tab_title, r.tab_count, r.document_path,
            int(r.is_full_screen), int(r.is_minimized), r.synced_at,
        ))
    return sql, params


class SQLiteStore:
    """
    Thin SQL-like store over a SQLite file.

    One connection per call; safe to share between the request threads
    and the drain worker. Lock contention and per-statement deadlines
    surface as StorageTransientError.
    """

    def __init__(
        self,
        db_path:          Path,
        busy_timeout_sec: float = 5.0,
        max_bind_params:  int   = DEFAULT_MAX_BIND_PARAMS,
    ):
        self.db_path          = Path(db_path)
        self.busy_timeout_sec = busy_timeout_sec
        self.max_bind_params  = max_bind_params

    # ── INTERNAL ──────────────────────────────────────────────────────────

    def _connect(self, timeout_sec: Optional[float] = None) -> sqlite3.Connection:
        busy = self.busy_timeout_sec
        if timeout_sec is not None:
            busy = min(busy, timeout_sec)
        conn = sqlite3.connect(str(self.db_path), timeout=busy)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _connection(self, timeout_sec: Optional[float] = None) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect(timeout_sec)
        except sqlite3.DatabaseError as exc:
            raise StorageTransientError(f"connect failed: {exc}") from exc

        if timeout_sec is not None:
            deadline = time.monotonic() + timeout_sec
            conn.set_progress_handler(
                lambda: 1 if time.monotonic() > deadline else 0,
                _PROGRESS_STEPS,
            )
        try:
            yield conn
            conn.commit()
        except (sqlite3.IntegrityError, sqlite3.ProgrammingError, sqlite3.InterfaceError):
            conn.rollback()
            raise
        except sqlite3.DatabaseError as exc:
            conn.rollback()
            raise StorageTransientError(str(exc)) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ── GENERIC INTERFACE ─────────────────────────────────────────────────

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a SELECT and return rows as plain dicts."""
        with self._connection() as conn:
            rows = conn.execute(sql, list(params)).fetchall()
        return [{k: row[k] for k in row.keys()} for row in rows]

    def execute(
        self,
        sql:         str,
        params:      Sequence[Any]   = (),
        timeout_sec: Optional[float] = None,
    ) -> int:
        """Run one write statement. Returns the number of rows changed."""
        params = list(params)
        if len(params) > self.max_bind_params:
            raise ValueError(
                f"{len(params)} bind parameters exceeds the store limit "
                f"of {self.max_bind_params}"
            )
        with self._connection(timeout_sec) as conn:
            cur = conn.execute(sql, params)
            return cur.rowcount

    # ── SCHEMA ────────────────────────────────────────────────────────────

    def init_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS focus_sessions (
                    id              TEXT    PRIMARY KEY,
                    user_id         TEXT    NOT NULL,
                    device_id       TEXT    NOT NULL,
                    app_name        TEXT    NOT NULL,
                    window_title    TEXT    NOT NULL,
                    url             TEXT,
                    start_time      REAL    NOT NULL,
                    end_time        REAL    NOT NULL,
                    duration        REAL    NOT NULL DEFAULT 0,
                    bundle_id       TEXT,
                    tab_title       TEXT,
                    tab_count       INTEGER,
                    document_path   TEXT,
                    is_full_screen  INTEGER DEFAULT 0,
                    is_minimized    INTEGER DEFAULT 0,
                    synced_at       TEXT    NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_sessions_user_time
                    ON focus_sessions(user_id, start_time);
                CREATE INDEX IF NOT EXISTS idx_sessions_device
                    ON focus_sessions(device_id);

                CREATE TABLE IF NOT EXISTS sync_logs (
                    id              TEXT    PRIMARY KEY,
                    user_id         TEXT    NOT NULL,
                    device_id       TEXT    NOT NULL,
                    session_count   INTEGER NOT NULL,
                    first_start     REAL    NOT NULL,
                    last_start      REAL    NOT NULL,
                    synced_at       TEXT    NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_sync_user
                    ON sync_logs(user_id, device_id);

                CREATE TABLE IF NOT EXISTS daily_summaries (
                    user_id         TEXT    NOT NULL,
                    date            TEXT    NOT NULL,
                    stats_json      TEXT,
                    ai_score        INTEGER,
                    ai_result_json  TEXT,
                    ai_model        TEXT,
                    ai_generated_at TEXT,
                    created_at      TEXT    NOT NULL,
                    updated_at      TEXT    NOT NULL,
                    PRIMARY KEY (user_id, date)
                );

                CREATE TABLE IF NOT EXISTS api_keys (
                    id          TEXT    PRIMARY KEY,
                    user_id     TEXT    NOT NULL,
                    name        TEXT    NOT NULL,
                    key_hash    TEXT    NOT NULL UNIQUE,
                    device_id   TEXT    NOT NULL UNIQUE,
                    created_at  TEXT    NOT NULL,
                    last_used   TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_keys_user ON api_keys(user_id);

                CREATE TABLE IF NOT EXISTS settings (
                    user_id     TEXT    NOT NULL,
                    key         TEXT    NOT NULL,
                    value       TEXT    NOT NULL,
                    updated_at  REAL    NOT NULL,
                    PRIMARY KEY (user_id, key)
                );

                CREATE TABLE IF NOT EXISTS store_meta (
                    key     TEXT PRIMARY KEY,
                    value   TEXT
                );
            """)
            conn.execute(
                "INSERT OR REPLACE INTO store_meta (key, value) VALUES ('schema_version', ?)",
                (SCHEMA_VERSION,),
            )
        logger.debug(f"Schema ready → {self.db_path}")

    # ── WRITERS ───────────────────────────────────────────────────────────

    def insert_sessions(
        self,
        records:     Sequence[SessionRecord],
        timeout_sec: Optional[float] = None,
    ) -> int:
        """
        Insert-if-absent one chunk of sessions in a single statement.
        Returns how many rows were new; the rest already existed.
        """
        if not records:
            return 0
        sql, params = build_multi_row_insert(records)
        inserted = self.execute(sql, params, timeout_sec=timeout_sec)
        logger.debug(f"Chunk of {len(records)} sessions → {inserted} new rows")
        return inserted

    def append_sync_log(self, entry: SyncLogEntry) -> None:
        self.execute(
            """
            INSERT INTO sync_logs
            (id, user_id, device_id, session_count, first_start, last_start, synced_at)
            VALUES (?,?,?,?,?,?,?)
            """,
            (
                entry.id, entry.user_id, entry.device_id, entry.session_count,
                entry.first_start, entry.last_start, entry.synced_at,
            ),
        )

    # ── READERS ───────────────────────────────────────────────────────────

    def fetch_sessions_between(
        self,
        user_id: str,
        start:   float,
        end:     float,
    ) -> List[SessionRecord]:
        """
        Sessions with start <= start_time < end, ascending by start_time.
        Rows with a non-finite end_time or duration are skipped so they can
        never reach scoring.
        """
        rows = self.query(
            f"""
            SELECT {', '.join(SESSION_COLUMNS)}
            FROM focus_sessions
            WHERE user_id = ? AND start_time >= ? AND start_time < ?
            ORDER BY start_time ASC
            """,
            (user_id, start, end),
        )
        records = []
        for r in rows:
            if not (math.isfinite(r["end_time"]) and math.isfinite(r["duration"])):
                logger.warning(f"Skipping session {r['id']} with non-finite interval")
                continue
            records.append(self._row_to_session(r))
        return records

    def count_sessions(self, user_id: Optional[str] = None) -> int:
        if user_id is None:
            rows = self.query("SELECT COUNT(*) AS n FROM focus_sessions")
        else:
            rows = self.query(
                "SELECT COUNT(*) AS n FROM focus_sessions WHERE user_id = ?",
                (user_id,),
            )
        return int(rows[0]["n"])

    def sync_logs(self, user_id: str) -> List[Dict[str, Any]]:
        """All sync log rows for a user, in drain order."""
        return self.query(
            "SELECT * FROM sync_logs WHERE user_id = ? ORDER BY rowid ASC",
            (user_id,),
        )

    def latest_sync_per_device(self, user_id: str) -> List[Dict[str, Any]]:
        """Most recent sync log row per device, newest first, with the key name."""
        return self.query(
            """
            SELECT s.device_id, s.session_count, s.synced_at, k.name
            FROM sync_logs s
            LEFT JOIN api_keys k ON k.device_id = s.device_id
            WHERE s.rowid IN (
                SELECT MAX(rowid) FROM sync_logs
                WHERE user_id = ?
                GROUP BY device_id
            )
            ORDER BY s.rowid DESC
            """,
            (user_id,),
        )

    @staticmethod
    def _row_to_session(row: Dict[str, Any]) -> SessionRecord:
        return SessionRecord(
            id             = row["id"],
            user_id        = row["user_id"],
            device_id      = row["device_id"],
            app_name       = row["app_name"],
            window_title   = row["window_title"],
            url            = row["url"],
            start_time     = row["start_time"],
            end_time       = row["end_time"],
            duration       = row["duration"],
            bundle_id      = row["bundle_id"],
            tab_title      = row["tab_title"],
            tab_count      = row["tab_count"],
            document_path  = row["document_path"],
            is_full_screen = bool(row["is_full_screen"]),
            is_minimized   = bool(row["is_minimized"]),
            synced_at      = row["synced_at"],
        )
