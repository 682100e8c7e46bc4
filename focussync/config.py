"""
focussync/config.py
Service config. Persists to focussync_config.json in the project root;
missing keys fall back to DEFAULT_CONFIG.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "focussync_config.json"

DEFAULT_CONFIG = {
    "db_path": "focussync.db",
    "host": "127.0.0.1",
    "port": 8787,
    "default_timezone": "UTC",

    # Ingestion
    "max_batch_size": 1000,
    "max_pending_records": 0,        # 0 = unbounded queue

    # Drain worker
    "drain_interval_sec": 2.0,
    "drain_workers": 1,
    "max_bind_params": 100,          # hard ceiling of the store, per statement
    "chunk_timeout_sec": 5.0,
    "max_attempts": 3,
    "retry_backoff_sec": 0.5,
    "max_batch_requeues": 3,
    "flush_deadline_sec": 10.0,

    # Daily analysis
    "analysis_model": "llama3.1:8b",
    "ollama_host": "http://localhost:11434",
}


def _config_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path.cwd()
    return root / CONFIG_FILENAME


def load_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """Load config from focussync_config.json. Returns defaults if missing."""
    path = _config_path(project_root)
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return {**DEFAULT_CONFIG, **data}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Config load failed: {e}")
    return dict(DEFAULT_CONFIG)


def save_config(config: Dict[str, Any], project_root: Optional[Path] = None) -> Path:
    """Persist config to focussync_config.json."""
    path = _config_path(project_root)
    path.write_text(json.dumps(config, indent=2), encoding="utf-8")
    return path


def ensure_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load config, writing the defaults to disk on first run so operators
    have a file to edit. Returns the merged config.
    """
    path = _config_path(project_root)
    config = load_config(project_root)
    if not path.exists():
        save_config(config, project_root)
        logger.info(f"Wrote default config: {path}")
    return config


def resolve_db_path(config: Dict[str, Any], project_root: Optional[Path] = None) -> Path:
    """db_path from config, made absolute relative to the project root."""
    db_path = Path(config.get("db_path") or DEFAULT_CONFIG["db_path"])
    if not db_path.is_absolute():
        db_path = (project_root or Path.cwd()) / db_path
    return db_path
