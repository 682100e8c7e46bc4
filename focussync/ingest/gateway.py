"""
focussync/ingest/gateway.py
Ingestion gateway — validate an uploaded batch, stamp it with the
authenticated identity and hand it to the sync queue.

No storage I/O happens here: request latency is bounded by validation
plus one in-memory append.

SCHEMA VERSIONS (explicit — there is no silent fallback between them):
  2 (default)  id, app_name, window_title, start_time, duration required.
               end_time is derived; if sent it must equal start + duration.
  1 (legacy)   id, app_name, window_title, start_time, end_time required.
               duration is derived; if sent it must equal end - start.

Numbers must be finite in both versions: NaN and Infinity (which the JSON
decoder accepts) are rejected with the record index and field named.
"""

from __future__ import annotations

import logging
import math
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from focussync.errors import CapacityError, ValidationError
from focussync.models.record import SessionRecord
from focussync.queue.sync_queue import PendingBatch, SyncQueue

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 1000
DEFAULT_SCHEMA_VERSION = 2

# end/duration consistency tolerance (client clocks report fractional seconds)
_DURATION_TOLERANCE = 1e-3


# ── WIRE MODELS ──────────────────────────────────────────────

class _RawSessionBase(BaseModel, ABC):
    """
    Fields shared by every schema version. Unknown keys are dropped.
    NaN and +/-Infinity are rejected for every float field.
    """
    model_config = ConfigDict(extra='ignore', allow_inf_nan=False)

    id:             str             = Field(min_length=1)
    app_name:       str             = Field(min_length=1)
    window_title:   str
    url:            Optional[str]   = None
    start_time:     float
    bundle_id:      Optional[str]   = None
    tab_title:      Optional[str]   = None
    tab_count:      Optional[int]   = Field(default=None, ge=0)
    document_path:  Optional[str]   = None
    is_full_screen: bool            = False
    is_minimized:   bool            = False

    @abstractmethod
    def interval(self) -> Tuple[float, float, float]:
        """(start, end, duration)."""


class RawSessionV2(_RawSessionBase):
    duration: float           = Field(ge=0)
    end_time: Optional[float] = None

    @model_validator(mode='after')
    def _check_interval(self) -> 'RawSessionV2':
        end = self.start_time + self.duration
        if not math.isfinite(end):
            raise ValueError('start_time + duration must be a finite number')
        if self.end_time is not None and abs(self.end_time - end) > _DURATION_TOLERANCE:
            raise ValueError('end_time must equal start_time + duration')
        if end <= self.start_time:
            raise ValueError('end_time must be after start_time')
        return self

    def interval(self) -> Tuple[float, float, float]:
        return self.start_time, self.start_time + self.duration, self.duration


class RawSessionV1(_RawSessionBase):
    end_time: float
    duration: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode='after')
    def _check_interval(self) -> 'RawSessionV1':
        if self.end_time <= self.start_time:
            raise ValueError('end_time must be after start_time')
        derived = self.end_time - self.start_time
        if self.duration is not None and abs(self.duration - derived) > _DURATION_TOLERANCE:
            raise ValueError('duration must equal end_time - start_time')
        return self

    def interval(self) -> Tuple[float, float, float]:
        return self.start_time, self.end_time, self.end_time - self.start_time


SCHEMAS: Dict[int, Type[_RawSessionBase]] = {
    1: RawSessionV1,
    2: RawSessionV2,
}

REQUIRED_FIELDS: Dict[int, Tuple[str, ...]] = {
    1: ('id', 'app_name', 'window_title', 'start_time', 'end_time'),
    2: ('id', 'app_name', 'window_title', 'start_time', 'duration'),
}


@dataclass
class SyncAck:
    accepted: int
    sync_id:  str

    def to_dict(self) -> Dict[str, Any]:
        return {"accepted": self.accepted, "sync_id": self.sync_id}


# ── BODY PARSING ─────────────────────────────────────────────

def parse_sync_body(body: Any) -> Tuple[List[Any], int]:
    """
    Pull (sessions, schema_version) out of a decoded request body.
    Raises ValidationError for a missing/empty sessions array or an
    unknown schema version.
    """
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    sessions = body.get("sessions")
    if not isinstance(sessions, list) or not sessions:
        raise ValidationError("sessions array is required and must not be empty")

    version = body.get("schema_version", DEFAULT_SCHEMA_VERSION)
    if isinstance(version, bool) or version not in SCHEMAS:
        raise ValidationError(
            f"Unsupported schema_version: {version!r} "
            f"(supported: {', '.join(str(v) for v in sorted(SCHEMAS))})"
        )
    return sessions, version


def _describe_error(index: int, exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    loc = '.'.join(str(p) for p in err.get('loc', ()) if p != '__root__')
    if err.get('type') == 'missing':
        return f"Session at index {index} is missing required field: {loc}"
    if loc:
        return f"Session at index {index} has invalid field {loc}: {err.get('msg')}"
    return f"Session at index {index} is invalid: {err.get('msg')}"


# ── GATEWAY ──────────────────────────────────────────────────

class IngestionGateway:
    """
    Validates batches and submits them to the sync queue.

    Usage:
        gateway = IngestionGateway(queue, on_enqueue=worker.notify)
        ack = gateway.submit(body["sessions"], user_id="u1", device_id="d1")
    """

    def __init__(
        self,
        queue:          SyncQueue,
        max_batch_size: int                        = MAX_BATCH_SIZE,
        on_enqueue:     Optional[Callable[[], None]] = None,
    ):
        self.queue          = queue
        self.max_batch_size = max_batch_size
        self.on_enqueue     = on_enqueue

    def validate_batch(
        self,
        sessions:       Sequence[Any],
        schema_version: int = DEFAULT_SCHEMA_VERSION,
    ) -> List[_RawSessionBase]:
        """Check limits, then every record. Fails on the first bad record."""
        if not sessions:
            raise ValidationError("sessions array is required and must not be empty")
        if len(sessions) > self.max_batch_size:
            raise CapacityError(
                f"Batch too large: {len(sessions)} sessions (max {self.max_batch_size})"
            )
        if schema_version not in SCHEMAS:
            raise ValidationError(f"Unsupported schema_version: {schema_version!r}")

        model = SCHEMAS[schema_version]
        required = REQUIRED_FIELDS[schema_version]
        validated: List[_RawSessionBase] = []

        for i, raw in enumerate(sessions):
            if not isinstance(raw, dict):
                raise ValidationError(f"Session at index {i} must be an object")
            for name in required:
                if raw.get(name) is None:
                    raise ValidationError(
                        f"Session at index {i} is missing required field: {name}"
                    )
            try:
                validated.append(model.model_validate(raw))
            except PydanticValidationError as exc:
                raise ValidationError(_describe_error(i, exc)) from exc
        return validated

    @staticmethod
    def to_records(
        validated: Sequence[_RawSessionBase],
        user_id:   str,
        device_id: str,
        synced_at: str,
    ) -> List[SessionRecord]:
        """Map wire models to SessionRecords owned by the authenticated identity."""
        records = []
        for s in validated:
            start, end, duration = s.interval()
            records.append(SessionRecord(
                id             = s.id,
                user_id        = user_id,
                device_id      = device_id,
                app_name       = s.app_name,
                window_title   = s.window_title,
                url            = s.url,
                start_time     = start,
                end_time       = end,
                duration       = duration,
                bundle_id      = s.bundle_id,
                tab_title      = s.tab_title,
                tab_count      = s.tab_count,
                document_path  = s.document_path,
                is_full_screen = s.is_full_screen,
                is_minimized   = s.is_minimized,
                synced_at      = synced_at,
            ))
        return records

    def submit(
        self,
        sessions:       Sequence[Any],
        user_id:        str,
        device_id:      str,
        schema_version: int = DEFAULT_SCHEMA_VERSION,
    ) -> SyncAck:
        """
        Validate, map and enqueue one batch. Returns immediately.

        Raises:
            ValidationError: empty batch or bad record (index + field named)
            CapacityError:   batch larger than max_batch_size
            QueueFullError:  queue at its configured bound
        """
        validated = self.validate_batch(sessions, schema_version)
        synced_at = datetime.now(timezone.utc).isoformat()
        records = self.to_records(validated, user_id, device_id, synced_at)

        sync_id = str(uuid.uuid4())
        accepted = self.queue.enqueue(PendingBatch(
            sync_id   = sync_id,
            user_id   = user_id,
            device_id = device_id,
            records   = records,
        ))
        logger.info(
            f"Accepted batch {sync_id} | device={device_id} | "
            f"sessions={accepted} | schema=v{schema_version}"
        )

        if self.on_enqueue is not None:
            self.on_enqueue()
        return SyncAck(accepted=accepted, sync_id=sync_id)
