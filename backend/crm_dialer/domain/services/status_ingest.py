"""
Call Status Ingest
Turns provider status callbacks into call updates, status records and
UI notifications
"""
import json
import logging
from collections import OrderedDict, deque
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Deque, Dict, List, Optional
from urllib.parse import parse_qs

from pydantic import BaseModel, Field

from crm_dialer.domain.errors import MissingRequiredCallData
from crm_dialer.domain.models.call_status import (
    CallStatusEvent,
    StatusUpdateRecord,
    normalize_provider_status,
)
from crm_dialer.domain.services.dialer_orchestrator import DialerOrchestrator
from crm_dialer.domain.services.status_bridge import StatusPublisher
from crm_dialer.infrastructure.storage.repository import DialerRepository
from crm_dialer.utils.timestamps import from_epoch_ms, parse_timestamp, to_iso, utc_now

logger = logging.getLogger(__name__)


DEFAULT_BUFFER_SIZE = 100
DEFAULT_BUFFER_KEYS = 1000

# Accepted spellings per field, Twilio form names first
FIELD_ALIASES = {
    "call_sid": ("CallSid", "callSid", "call_sid", "sid"),
    "status": ("CallStatus", "callStatus", "status"),
    "session_id": ("sessionId", "session_id", "SessionId"),
    "call_id": ("callId", "call_id"),
    "from_number": ("From", "from", "phoneNumber"),
    "to_number": ("To", "to"),
    "duration": ("CallDuration", "duration", "Duration"),
    "answered_by": ("AnsweredBy", "answeredBy", "MachineDetectionResult"),
    "timestamp": ("Timestamp", "timestamp"),
}


def parse_payload(body: bytes, content_type: Optional[str]) -> Dict[str, Any]:
    """
    Decode a JSON or form-encoded callback body.

    Never raises: an undecodable body yields an empty dict, which then
    fails the required field check.
    """
    if not body:
        return {}
    text = body.decode("utf-8", errors="replace")
    is_json = bool(content_type and "json" in content_type.lower())

    decoders = (_decode_json, _decode_form) if is_json else (_decode_form, _decode_json)
    for decode in decoders:
        try:
            data = decode(text)
        except ValueError:
            continue
        if data:
            return data
    logger.warning(f"Could not decode status callback body ({content_type})")
    return {}


def _decode_json(text: str) -> Dict[str, Any]:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("JSON body is not an object")
    return data


def _decode_form(text: str) -> Dict[str, Any]:
    parsed = parse_qs(text, keep_blank_values=False, strict_parsing=True)
    return {key: values[-1] for key, values in parsed.items()}


def _pick(data: Dict[str, Any], field: str) -> Optional[Any]:
    for alias in FIELD_ALIASES[field]:
        value = data.get(alias)
        if value not in (None, ""):
            return value
    return None


def _parse_event_time(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return from_epoch_ms(value)
    try:
        # Twilio sends RFC 2822 dates
        return parse_timestamp(parsedate_to_datetime(str(value)))
    except (TypeError, ValueError, IndexError):
        pass
    try:
        return parse_timestamp(value)
    except ValueError:
        return None


class StatusRingBuffer:
    """
    In-memory fallback for status records, keyed by session id (or
    provider call id). Each key keeps its newest ``maxlen`` records.

    At most ``max_keys`` keys are held; appending to a new key past that
    evicts the key written least recently.
    """

    def __init__(self, maxlen: int = DEFAULT_BUFFER_SIZE, max_keys: int = DEFAULT_BUFFER_KEYS):
        self.maxlen = maxlen
        self.max_keys = max_keys
        self._entries: "OrderedDict[str, Deque[StatusUpdateRecord]]" = OrderedDict()

    def append(self, record: StatusUpdateRecord) -> None:
        key = record.session_id
        entries = self._entries.get(key)
        if entries is None:
            entries = self._entries[key] = deque(maxlen=self.maxlen)
        else:
            self._entries.move_to_end(key)
        entries.append(record)

        while len(self._entries) > self.max_keys:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Status buffer evicted {evicted}")

    @property
    def key_count(self) -> int:
        return len(self._entries)

    def since(self, key: str, since: datetime, limit: int) -> List[StatusUpdateRecord]:
        """Records newer than ``since``, newest first"""
        if key not in self._entries:
            return []
        newer = [r for r in self._entries[key] if r.timestamp > since]
        newer.sort(key=lambda r: r.timestamp, reverse=True)
        return newer[:limit]

    def size(self, key: str) -> int:
        return len(self._entries.get(key, ()))


class IngestResult(BaseModel):
    event: Optional[CallStatusEvent] = None
    persisted: bool = False
    buffered: bool = False
    published: bool = False
    warnings: List[str] = Field(default_factory=list)


class CallStatusIngest:
    """
    Receives provider status callbacks.

    Each valid event is stored as a call_status_updates row (or in the ring
    buffer while the store is unavailable), published on the session
    channel, and folded into the call record through the orchestrator.
    """

    def __init__(
        self,
        repository: DialerRepository,
        orchestrator: DialerOrchestrator,
        publisher: Optional[StatusPublisher] = None,
        buffer: Optional[StatusRingBuffer] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repository
        self.orchestrator = orchestrator
        self.publisher = publisher
        self.buffer = buffer or StatusRingBuffer()
        self._clock = clock
        self.anomalies = 0

    def build_event(self, payload: Dict[str, Any], query: Optional[Dict[str, Any]] = None) -> CallStatusEvent:
        """
        Raises:
            MissingRequiredCallData: No provider call id or no status
        """
        merged = dict(query or {})
        merged.update(payload)

        call_sid = _pick(merged, "call_sid")
        status = normalize_provider_status(_pick(merged, "status"))
        if not call_sid or not status:
            raise MissingRequiredCallData(
                "Missing required call data",
                details={"callSid": call_sid, "status": status},
            )

        duration = _pick(merged, "duration")
        try:
            duration = int(duration) if duration is not None else None
        except (TypeError, ValueError):
            duration = None

        return CallStatusEvent(
            call_sid=str(call_sid),
            status=status,
            session_id=_pick(merged, "session_id"),
            call_id=_pick(merged, "call_id"),
            from_number=_pick(merged, "from_number"),
            to_number=_pick(merged, "to_number"),
            duration=duration,
            answered_by=_pick(merged, "answered_by"),
            timestamp=_parse_event_time(_pick(merged, "timestamp")) or self._clock(),
        )

    def _resolve_session(self, event: CallStatusEvent) -> Optional[str]:
        if event.session_id:
            return event.session_id
        session_id = self.orchestrator.sessions.find_session_for_call(event.call_sid)
        if session_id:
            return session_id
        try:
            row = self.repo.get_call_by_sid(event.call_sid)
        except Exception as e:
            logger.warning(f"Could not look up call {event.call_sid}: {e}")
            return None
        return row.get("session_id") if row else None

    async def record(self, event: CallStatusEvent) -> IngestResult:
        """Persist, publish and apply one event. Never raises."""
        result = IngestResult(event=event)

        session_id = self._resolve_session(event)
        if session_id:
            event = event.model_copy(update={"session_id": session_id})
            result.event = event

        record = StatusUpdateRecord(
            session_id=event.key,
            call_sid=event.call_sid,
            status=event.status,
            timestamp=self._clock(),
            data=event.to_payload(),
        )

        try:
            self.repo.insert_status_update(record.to_row())
            result.persisted = True
        except Exception as e:
            logger.warning(f"Status store unavailable, buffering update for {event.key}: {e}")
            self.buffer.append(record)
            result.buffered = True

        if self.publisher is not None:
            result.published = await self.publisher.publish_call_status(event.key, record.data)

        try:
            await self.orchestrator.apply_provider_status(event)
        except Exception as e:
            logger.error(f"Error applying status {event.status} to {event.call_sid}: {e}", exc_info=True)
            result.warnings.append(str(e))

        return result

    async def handle_provider_webhook(
        self,
        payload: Dict[str, Any],
        query: Optional[Dict[str, Any]] = None,
    ) -> IngestResult:
        """
        Provider-facing entry point. Missing data is recorded as an anomaly
        instead of raised, so the provider always gets its acknowledgement.
        """
        try:
            event = self.build_event(payload, query)
        except MissingRequiredCallData as e:
            self.anomalies += 1
            logger.warning(f"Status webhook without required data: {e.details}")
            return IngestResult(warnings=[e.message])

        logger.info(f"Call status: sid={event.call_sid}, status={event.status}")
        return await self.record(event)

    async def log_status(
        self,
        payload: Dict[str, Any],
        query: Optional[Dict[str, Any]] = None,
    ) -> IngestResult:
        """
        Client-facing entry point.

        Raises:
            MissingRequiredCallData: No provider call id or no status
        """
        event = self.build_event(payload, query)
        return await self.record(event)

    async def get_updates(self, session_id: str, since_ms: int = 0, limit: int = 20) -> List[Dict[str, Any]]:
        """
        Status records for a session newer than ``since_ms``, newest first.

        Reads the store and falls back to the memory buffer when the store
        fails or has nothing.
        """
        since = from_epoch_ms(since_ms)
        try:
            rows = self.repo.list_status_updates(session_id, to_iso(since), limit)
            if rows:
                return [_row_to_update(row) for row in rows]
        except Exception as e:
            logger.warning(f"Status store query failed for {session_id}, using memory: {e}")

        return [_row_to_update(r.to_row()) for r in self.buffer.since(session_id, since, limit)]


def _row_to_update(row: Dict[str, Any]) -> Dict[str, Any]:
    timestamp = parse_timestamp(row.get("timestamp"))
    return {
        "sessionId": row.get("session_id"),
        "callSid": row.get("call_sid"),
        "status": row.get("status"),
        "timestamp": int(timestamp.timestamp() * 1000) if timestamp else None,
        "data": row.get("data") or {},
    }
