"""
focussync/settings.py
Per-user key/value settings. Currently only `timezone`, which decides
where a user's calendar days begin and end.
"""

import logging
import time
from typing import Optional

from focussync.errors import ValidationError
from focussync.storage.sqlite_store import SQLiteStore
from focussync.timezone import is_valid_timezone

logger = logging.getLogger(__name__)

TIMEZONE_KEY = 'timezone'


def get_setting(store: SQLiteStore, user_id: str, key: str) -> Optional[str]:
    rows = store.query(
        "SELECT value FROM settings WHERE user_id = ? AND key = ?",
        (user_id, key),
    )
    return rows[0]["value"] if rows else None


def set_setting(store: SQLiteStore, user_id: str, key: str, value: str) -> None:
    store.execute(
        """
        INSERT INTO settings (user_id, key, value, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(user_id, key) DO UPDATE SET
            value      = excluded.value,
            updated_at = excluded.updated_at
        """,
        (user_id, key, value, time.time()),
    )


def get_user_timezone(store: SQLiteStore, user_id: str, default: str = 'UTC') -> str:
    """The user's stored timezone, or `default` if unset or no longer valid."""
    tz = get_setting(store, user_id, TIMEZONE_KEY)
    if tz and is_valid_timezone(tz):
        return tz
    return default


def set_user_timezone(store: SQLiteStore, user_id: str, tz: Optional[str]) -> str:
    if not tz or not isinstance(tz, str):
        raise ValidationError("Missing timezone field")
    tz = tz.strip()
    if not is_valid_timezone(tz):
        raise ValidationError(f"Invalid IANA timezone: {tz}")
    set_setting(store, user_id, TIMEZONE_KEY, tz)
    logger.info(f"Timezone for {user_id} set to {tz}")
    return tz
