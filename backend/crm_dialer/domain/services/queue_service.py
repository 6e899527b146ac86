"""
Call Queue Service
Answered calls waiting for an agent, ordered by priority then arrival
"""
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from crm_dialer.domain.models.dialer import QueueEntry
from crm_dialer.infrastructure.storage.repository import DialerRepository
from crm_dialer.utils.timestamps import to_iso, utc_now

logger = logging.getLogger(__name__)


class CallQueueService:
    """
    Queue of calls waiting for an agent, stored in power_dialer_call_queue.

    Ordering: higher priority first, then oldest created_timestamp first.
    Each call has at most one entry; the entry is deleted exactly once,
    when an agent is connected or when the call ends unassigned.
    """

    def __init__(self, repository: DialerRepository):
        self._repo = repository

    async def enqueue(
        self,
        call_id: str,
        priority: int = 0,
        created_at: Optional[datetime] = None,
    ) -> QueueEntry:
        existing = self._repo.get_queue_entry(call_id)
        if existing:
            logger.debug(f"Call {call_id} already queued")
            return QueueEntry.model_validate(existing)

        row = self._repo.insert_queue_entry({
            "id": str(uuid.uuid4()),
            "call_id": call_id,
            "priority": priority,
            "created_timestamp": to_iso(created_at or utc_now()),
        })
        logger.info(f"Queued call {call_id} (priority={priority})")
        return QueueEntry.model_validate(row)

    async def list_entries(self, limit: int = 50) -> List[QueueEntry]:
        return [QueueEntry.model_validate(r) for r in self._repo.list_queue(limit=limit)]

    async def remove(self, call_id: str) -> int:
        """Delete the entry for a call. Returns how many rows went away."""
        deleted = self._repo.delete_queue_entries(call_id)
        if deleted:
            logger.info(f"Removed call {call_id} from queue")
        return len(deleted)

    async def get_queue_depth(self) -> int:
        return len(self._repo.list_queue(limit=1000))
