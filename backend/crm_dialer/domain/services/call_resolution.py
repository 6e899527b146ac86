"""
Call Resolution
Finds which call a hang-up request refers to
"""
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from crm_dialer.domain.errors import CallNotFound
from crm_dialer.domain.interfaces.telephony_provider import CallPlacementGateway
from crm_dialer.domain.models.dialer import CallStatus
from crm_dialer.domain.models.results import EndCallResult, ResolvedCall
from crm_dialer.domain.services.dialer_orchestrator import DialerOrchestrator
from crm_dialer.infrastructure.storage.repository import DialerRepository

logger = logging.getLogger(__name__)


Strategy = Callable[[], Awaitable[Optional[ResolvedCall]]]


class CallResolver:
    """
    Finds the call a hang-up request refers to.

    A request naming a call (call id or provider call id) resolves to that
    call only; an unknown call id raises CallNotFound. A request naming
    nothing goes through the fallback strategies, first hit wins:

    1. the most recent in-progress call in the store
    2. the first live call the provider reports
    """

    def __init__(self, repository: DialerRepository, gateway: CallPlacementGateway):
        self.repo = repository
        self.gateway = gateway
        self.strategies: List[Tuple[str, Strategy]] = [
            ("latest_in_progress", self._latest_in_progress),
            ("provider_active", self._provider_active),
        ]

    async def resolve(
        self,
        call_sid: Optional[str] = None,
        call_id: Optional[str] = None,
    ) -> ResolvedCall:
        """
        Raises:
            CallNotFound: The named call is unknown, or nothing is live
        """
        if call_id or call_sid:
            resolved = self._explicit(call_sid, call_id)
            logger.info(f"Resolved call {resolved.call_id or resolved.call_sid} via explicit")
            return resolved

        for name, strategy in self.strategies:
            try:
                resolved = await strategy()
            except Exception as e:
                logger.warning(f"Call resolution '{name}' failed: {e}")
                continue
            if resolved is not None:
                logger.info(f"Resolved call {resolved.call_sid} via {name}")
                return resolved
            logger.info(f"Call resolution '{name}' found nothing")

        raise CallNotFound("No active call found to hang up")

    def _explicit(self, call_sid: Optional[str], call_id: Optional[str]) -> ResolvedCall:
        if call_id:
            row = self.repo.get_call(call_id)
            if row:
                return ResolvedCall(
                    call_sid=row.get("twilio_call_sid"), call_id=row["id"], strategy="explicit"
                )
            if not call_sid:
                raise CallNotFound(f"Call {call_id} not found")
        row = self.repo.get_call_by_sid(call_sid)
        return ResolvedCall(call_sid=call_sid, call_id=row["id"] if row else None, strategy="explicit")

    async def _latest_in_progress(self) -> Optional[ResolvedCall]:
        row = self.repo.latest_call_with_status(CallStatus.IN_PROGRESS.value)
        if row and row.get("twilio_call_sid"):
            return ResolvedCall(call_sid=row["twilio_call_sid"], call_id=row["id"], strategy="latest_in_progress")
        return None

    async def _provider_active(self) -> Optional[ResolvedCall]:
        calls = await self.gateway.list_active_calls()
        if not calls:
            return None
        sid = calls[0].get("sid")
        if not sid:
            return None
        row = self.repo.get_call_by_sid(sid)
        return ResolvedCall(call_sid=sid, call_id=row["id"] if row else None, strategy="provider_active")


async def hang_up(
    orchestrator: DialerOrchestrator,
    resolver: CallResolver,
    call_sid: Optional[str] = None,
    call_id: Optional[str] = None,
) -> Tuple[ResolvedCall, EndCallResult]:
    """Resolve the call and end it; calls unknown to the store are only hung up at the provider"""
    resolved = await resolver.resolve(call_sid=call_sid, call_id=call_id)

    if resolved.call_id:
        return resolved, await orchestrator.end_call(resolved.call_id)

    await orchestrator.gateway.terminate(resolved.call_sid)
    return resolved, EndCallResult()
