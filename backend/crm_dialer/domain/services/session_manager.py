"""
Session Store
Process-local dialing sessions with inactivity garbage collection
"""
import asyncio
import logging
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from crm_dialer.domain.errors import SessionExpired
from crm_dialer.domain.models.session import DialerSession, InFlightCall

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 30 * 60
MAX_TOMBSTONES = 10_000


class SessionStore:
    """
    Attempt counters and in-flight calls keyed by session id.

    Sessions are created on first use and dropped after ``timeout_seconds``
    of inactivity. A dropped id is remembered, so a later request for it
    raises SessionExpired instead of silently starting over.

    Mutations of one session are serialized by a per-session lock.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        gc_interval_seconds: float = 60,
    ):
        self.timeout_seconds = timeout_seconds
        self.gc_interval_seconds = gc_interval_seconds
        self._clock = clock
        self._sessions: Dict[str, DialerSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._expired: "OrderedDict[str, float]" = OrderedDict()
        self._gc_task: Optional[asyncio.Task] = None

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def _is_stale(self, session: DialerSession, now: float) -> bool:
        return now - session.last_activity > self.timeout_seconds

    def _expire(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)
        self._expired[session_id] = self._clock()
        while len(self._expired) > MAX_TOMBSTONES:
            self._expired.popitem(last=False)

    def _touch(self, session_id: str) -> DialerSession:
        """Return the live session, creating it on first use"""
        if session_id in self._expired:
            raise SessionExpired(f"Session {session_id} expired after inactivity")

        now = self._clock()
        session = self._sessions.get(session_id)

        if session is not None and self._is_stale(session, now):
            logger.warning(f"Session {session_id} went stale before use")
            self._expire(session_id)
            raise SessionExpired(f"Session {session_id} expired after inactivity")

        if session is None:
            session = DialerSession(session_id=session_id, created_at=now, last_activity=now)
            self._sessions[session_id] = session
            logger.info(f"Created dialing session: {session_id}")

        session.last_activity = now
        return session

    async def get_or_create(self, session_id: str) -> DialerSession:
        async with self._lock_for(session_id):
            return self._touch(session_id)

    def get(self, session_id: str) -> Optional[DialerSession]:
        """Live session or None, without touching it"""
        return self._sessions.get(session_id)

    async def increment_attempt(self, session_id: str, phone_number: str) -> int:
        """Bump the attempt counter for a number and return the new count"""
        async with self._lock_for(session_id):
            session = self._touch(session_id)
            count = session.attempts.get(phone_number, 0) + 1
            session.attempts[phone_number] = count
            return count

    async def track_call(
        self,
        session_id: str,
        call_sid: str,
        phone_number: str,
        attempt_count: int,
    ) -> None:
        async with self._lock_for(session_id):
            session = self._touch(session_id)
            session.calls[call_sid] = InFlightCall(
                phone_number=phone_number,
                start_time=self._clock(),
                attempt_count=attempt_count,
            )

    async def forget_call(self, session_id: str, call_sid: str) -> Optional[InFlightCall]:
        """Drop an in-flight call. Unknown or expired sessions are ignored."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        async with self._lock_for(session_id):
            return session.calls.pop(call_sid, None)

    def find_session_for_call(self, call_sid: str) -> Optional[str]:
        for session_id, session in self._sessions.items():
            if call_sid in session.calls:
                return session_id
        return None

    def collect_garbage(self) -> List[str]:
        """Expire every session idle for longer than the timeout"""
        now = self._clock()
        stale = [sid for sid, s in self._sessions.items() if self._is_stale(s, now)]
        for session_id in stale:
            logger.info(f"Cleaning up stale session: {session_id}")
            self._expire(session_id)
        return stale

    async def _periodic_gc(self):
        while True:
            try:
                await asyncio.sleep(self.gc_interval_seconds)
                self.collect_garbage()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in session garbage collection: {e}", exc_info=True)

    def start(self) -> None:
        if self._gc_task is None or self._gc_task.done():
            self._gc_task = asyncio.create_task(self._periodic_gc())

    async def shutdown(self) -> None:
        if self._gc_task:
            self._gc_task.cancel()
            try:
                await self._gc_task
            except asyncio.CancelledError:
                pass
            self._gc_task = None
        logger.info(f"SessionStore shut down with {len(self._sessions)} live sessions")

    def get_active_session_count(self) -> int:
        return len(self._sessions)
