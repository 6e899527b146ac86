"""
Disposition Service
Applies terminal outcomes to leads and hands the lead back to the pipeline
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from crm_dialer.domain.errors import (
    BatchTooLarge,
    CallNotFound,
    InvalidDisposition,
    LeadNotFound,
)
from crm_dialer.domain.models.disposition import (
    BULK_DISPOSITION_LIMIT,
    DISPOSITION_ACTIVITY_TYPE,
    SINGLE_DISPOSITION_ACTIVITY_TYPE,
    BulkDispositionResponse,
    Disposition,
    DispositionResponse,
    LeadId,
)
from crm_dialer.domain.services.dialer_orchestrator import DialerOrchestrator
from crm_dialer.domain.services.status_bridge import StatusPublisher
from crm_dialer.infrastructure.storage.repository import DialerRepository
from crm_dialer.utils.timestamps import to_iso, utc_now

logger = logging.getLogger(__name__)


def validate_disposition(disposition: str) -> Disposition:
    """
    Raises:
        InvalidDisposition: Value is not one of the known dispositions
    """
    try:
        return Disposition(disposition)
    except ValueError:
        raise InvalidDisposition(
            f"Invalid disposition '{disposition}'. Valid values: {', '.join(Disposition.values())}",
            details={"validDispositions": Disposition.values()},
        )


class DispositionService:
    """
    Sets lead dispositions, one lead at a time or in batches.

    Validation happens before any write. Once the lead update succeeded,
    failures of the follow-up steps (activity log, ending the call,
    broadcasting) are returned as warnings and never undo the update.
    """

    def __init__(
        self,
        repository: DialerRepository,
        orchestrator: Optional[DialerOrchestrator] = None,
        publisher: Optional[StatusPublisher] = None,
        bulk_limit: int = BULK_DISPOSITION_LIMIT,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repository
        self.orchestrator = orchestrator
        self.publisher = publisher
        self.bulk_limit = bulk_limit
        self._clock = clock

    async def set_disposition(
        self,
        lead_id: LeadId,
        disposition: str,
        call_sid: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> DispositionResponse:
        value = validate_disposition(disposition)
        now = to_iso(self._clock())

        updated = self.repo.update_leads([lead_id], {"disposition": value.value, "updated_at": now})
        if not updated:
            raise LeadNotFound(f"Lead {lead_id} not found")

        warnings: List[str] = []
        description = f"Disposition set to {value.value}"
        if notes:
            description = f"{description}: {notes}"
        try:
            self.repo.insert_activities([{
                "lead_id": lead_id,
                "type": SINGLE_DISPOSITION_ACTIVITY_TYPE,
                "description": description,
                "timestamp": now,
            }])
        except Exception as e:
            logger.warning(f"Failed to log disposition activity for lead {lead_id}: {e}")
            warnings.append(f"Activity log failed: {e}")

        if call_sid and self.orchestrator is not None:
            try:
                await self.orchestrator.end_call(call_sid)
            except CallNotFound:
                logger.warning(f"Disposition for lead {lead_id} referenced unknown call {call_sid}")
                warnings.append(f"Call {call_sid} not found")
            except Exception as e:
                logger.error(f"Failed to end call {call_sid} after disposition: {e}", exc_info=True)
                warnings.append(f"Ending call failed: {e}")

        if self.publisher is not None:
            await self.publisher.publish_lead_update(lead_id, {
                "disposition": value.value,
                "callSid": call_sid,
                "callStatus": "completed" if call_sid else None,
                "timestamp": now,
            })

        logger.info(f"Lead {lead_id} disposition -> {value.value}")
        return DispositionResponse(
            message=f"Disposition updated to {value.value}",
            warnings=warnings,
        )

    async def bulk_set_disposition(self, lead_ids: List[LeadId], disposition: str) -> BulkDispositionResponse:
        """
        Raises:
            BatchTooLarge: More than bulk_limit lead ids, or none
            InvalidDisposition: Unknown disposition
        """
        if not lead_ids:
            raise BatchTooLarge("At least one lead id is required")
        if len(lead_ids) > self.bulk_limit:
            raise BatchTooLarge(
                f"Cannot update more than {self.bulk_limit} leads at once",
                details={"limit": self.bulk_limit, "requested": len(lead_ids)},
            )
        value = validate_disposition(disposition)
        now = to_iso(self._clock())

        updated = self.repo.update_leads(list(lead_ids), {"disposition": value.value, "updated_at": now})
        logger.info(f"Bulk disposition {value.value}: {len(updated)} of {len(lead_ids)} leads updated")

        warnings: List[str] = []
        if updated:
            activities = [
                {
                    "lead_id": row["id"],
                    "type": DISPOSITION_ACTIVITY_TYPE,
                    "description": f"Disposition changed to {value.value} (bulk update)",
                    "timestamp": now,
                }
                for row in updated
            ]
            try:
                self.repo.insert_activities(activities)
            except Exception as e:
                logger.warning(f"Failed to log bulk disposition activities: {e}")
                warnings.append(f"Activity log failed: {e}")

        if self.publisher is not None:
            for row in updated:
                await self.publisher.publish_lead_update(row["id"], {
                    "disposition": value.value,
                    "timestamp": now,
                })

        return BulkDispositionResponse(
            updated_count=len(updated),
            data=updated,
            message=f"Successfully updated {len(updated)} leads to {value.value}",
            warnings=warnings,
        )
