"""
focussync/auth.py
Device API keys — the only way a client proves who it is.

Key format: fs_<64 hex chars>. Only the SHA-256 of the key is stored; the
raw key is shown once, at creation. Each key is bound to one device id, so
a resolved key yields the (user, device) identity that ingested records
are stamped with. Client-supplied user/device fields are never trusted.
"""

import hashlib
import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from focussync.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "fs_"
KEY_PATTERN = re.compile(r'^fs_[0-9a-f]{64}$')
BEARER_PATTERN = re.compile(r'^bearer\s+(.+)$', re.IGNORECASE)


@dataclass
class DeviceIdentity:
    user_id:   str
    device_id: str
    key_id:    str = ''
    name:      str = ''


def generate_api_key() -> str:
    return KEY_PREFIX + secrets.token_hex(32)


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode('utf-8')).hexdigest()


def parse_bearer(header: Optional[str]) -> Optional[str]:
    """Extract the token from an Authorization header value."""
    if not header:
        return None
    m = BEARER_PATTERN.match(header.strip())
    return m.group(1).strip() if m else None


def create_api_key(
    store:     SQLiteStore,
    user_id:   str,
    name:      str,
    device_id: Optional[str] = None,
) -> Dict[str, str]:
    """
    Register a device key. Returns {"key", "id", "device_id", "name"}.
    The raw key is not recoverable afterwards.
    """
    raw = generate_api_key()
    key_id = str(uuid.uuid4())
    device_id = device_id or str(uuid.uuid4())
    store.execute(
        """
        INSERT INTO api_keys (id, user_id, name, key_hash, device_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            key_id, user_id, name, hash_api_key(raw), device_id,
            datetime.now(timezone.utc).isoformat(),
        ),
    )
    logger.info(f"Created API key {key_id} | user={user_id} | device={device_id}")
    return {"key": raw, "id": key_id, "device_id": device_id, "name": name}


def resolve_api_key(store: SQLiteStore, raw_key: Optional[str]) -> Optional[DeviceIdentity]:
    """Look up a raw key. None when malformed or unknown."""
    if not raw_key or not KEY_PATTERN.match(raw_key):
        return None
    rows = store.query(
        "SELECT id, user_id, device_id, name FROM api_keys WHERE key_hash = ?",
        (hash_api_key(raw_key),),
    )
    if not rows:
        return None
    row = rows[0]
    return DeviceIdentity(
        user_id   = row["user_id"],
        device_id = row["device_id"],
        key_id    = row["id"],
        name      = row["name"],
    )


def touch_last_used(store: SQLiteStore, key_id: str) -> None:
    """Stamp last_used. Run through the best-effort runner."""
    store.execute(
        "UPDATE api_keys SET last_used = ? WHERE id = ?",
        (datetime.now(timezone.utc).isoformat(), key_id),
    )


def list_api_keys(store: SQLiteStore, user_id: str) -> List[Dict[str, Any]]:
    """A user's keys, newest first. Hashes are never returned."""
    return store.query(
        """
        SELECT id, name, device_id, created_at, last_used
        FROM api_keys WHERE user_id = ?
        ORDER BY created_at DESC
        """,
        (user_id,),
    )


def revoke_api_key(store: SQLiteStore, user_id: str, key_id: str) -> bool:
    """
    Delete one of the user's keys. The device it identified can no longer
    authenticate; its synced sessions are kept. False when the key does
    not exist or belongs to another user.
    """
    deleted = store.execute(
        "DELETE FROM api_keys WHERE id = ? AND user_id = ?",
        (key_id, user_id),
    )
    if deleted:
        logger.info(f"Revoked API key {key_id} | user={user_id}")
    return bool(deleted)
