"""
Dialer Orchestrator
Owns the contact / call / agent / queue state machine

Cross-request consistency rests on conditional updates against the
store:
- a contact is claimed only while it is still not_contacted
- an agent is bound only while it is still available
- a call is ended only while it is still queued or in_progress
"""
import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional
from urllib.parse import urlencode

from crm_dialer.domain.errors import (
    AgentUnavailable,
    CallNotAssignable,
    CallNotFound,
    PlacementFailure,
    SessionExpired,
)
from crm_dialer.domain.interfaces.telephony_provider import CallPlacementGateway
from crm_dialer.domain.models.call_status import CallStatusEvent, StatusPhase
from crm_dialer.domain.models.dialer import (
    ACTIVE_CALL_STATUSES,
    UNREACHED_PROVIDER_STATUSES,
    ActiveCall,
    Agent,
    AgentStatus,
    Call,
    CallStatus,
    Contact,
    ContactStatus,
    MachineDetection,
)
from crm_dialer.domain.models.results import (
    EndCallResult,
    Exhausted,
    Failed,
    Found,
    MachineDetectionOutcome,
    NextContactResult,
    PlacedCall,
    StartDialingResult,
    StopDialingResult,
)
from crm_dialer.domain.services.queue_service import CallQueueService
from crm_dialer.domain.services.session_manager import SessionStore
from crm_dialer.domain.services.status_bridge import StatusPublisher
from crm_dialer.infrastructure.storage.repository import DialerRepository
from crm_dialer.infrastructure.telephony import twiml
from crm_dialer.utils.timestamps import parse_timestamp, to_iso, utc_now

logger = logging.getLogger(__name__)


CLAIM_BATCH_SIZE = 10
CLAIM_ROUNDS = 3

STATUS_WEBHOOK_PATH = "/api/v1/webhooks/twilio/status"
MACHINE_DETECTION_WEBHOOK_PATH = "/api/v1/webhooks/twilio/machine-detection"

# Agent status requested by the UI -> stored status
AGENT_STATUS_ALIASES = {
    "online": AgentStatus.AVAILABLE.value,
    "available": AgentStatus.AVAILABLE.value,
    "busy": AgentStatus.BUSY.value,
    "offline": AgentStatus.OFFLINE.value,
}


class DialerOrchestrator:
    """
    Assigns contacts to sessions, places calls, binds agents and tears
    calls down.

    Args:
        repository: Store access
        gateway: Call placement provider
        sessions: Session store for attempt counters and in-flight calls
        queue: Call queue service
        publisher: Optional status publisher for UI notifications
        caller_id: From number for outbound calls
        public_base_url: Base url the provider uses to reach our webhooks
        human_answer_priority: Queue priority for answered calls waiting for an agent
        clock: Returns the current UTC datetime
    """

    def __init__(
        self,
        repository: DialerRepository,
        gateway: CallPlacementGateway,
        sessions: SessionStore,
        queue: Optional[CallQueueService] = None,
        publisher: Optional[StatusPublisher] = None,
        caller_id: Optional[str] = None,
        public_base_url: str = "http://localhost:8000",
        human_answer_priority: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repository
        self.gateway = gateway
        self.sessions = sessions
        self.queue = queue or CallQueueService(repository)
        self.publisher = publisher
        self.caller_id = caller_id
        self.public_base_url = public_base_url.rstrip("/")
        self.human_answer_priority = human_answer_priority
        self._clock = clock

    def _now(self) -> str:
        return to_iso(self._clock())

    # ------------------------------------------------------------------
    # Next contact / origination
    # ------------------------------------------------------------------

    async def request_next_contact(
        self,
        session_id: str,
        user_id: Optional[str] = None,
    ) -> NextContactResult:
        """
        Claim the next not_contacted contact for a session and create a
        queued call for it.

        Raises:
            SessionExpired: The session was garbage-collected
        """
        await self.sessions.get_or_create(session_id)

        contact = self._claim_next_contact()
        if contact is None:
            logger.info(f"No more contacts for session {session_id}")
            return Exhausted()

        attempt = await self.sessions.increment_attempt(session_id, contact.phone_number)

        now = self._now()
        call_row = self.repo.insert_call({
            "id": str(uuid.uuid4()),
            "contact_id": contact.id,
            "session_id": session_id,
            "status": CallStatus.QUEUED.value,
            "status_updated_at": now,
        })
        call = Call.model_validate(call_row)

        logger.info(
            f"Session {session_id} claimed contact {contact.id} "
            f"(attempt {attempt}, call {call.id}, user={user_id})"
        )

        if contact.lead_id:
            self._log_call_initiated(contact, user_id)

        return Found(contact=contact, call=call, attempt=attempt)

    def _claim_next_contact(self) -> Optional[Contact]:
        for _ in range(CLAIM_ROUNDS):
            candidates = self.repo.list_contacts_by_status(
                ContactStatus.NOT_CONTACTED.value, limit=CLAIM_BATCH_SIZE
            )
            if not candidates:
                return None

            for candidate in candidates:
                claimed = self.repo.update_contact(
                    candidate["id"],
                    {
                        "status": ContactStatus.IN_PROGRESS.value,
                        "last_call_timestamp": self._now(),
                    },
                    expected_status=ContactStatus.NOT_CONTACTED.value,
                )
                if claimed:
                    return Contact.model_validate(claimed[0])
                logger.debug(f"Contact {candidate['id']} claimed by another session")
        return None

    def _log_call_initiated(self, contact: Contact, user_id: Optional[str]) -> None:
        try:
            self.repo.insert_activities([{
                "lead_id": contact.lead_id,
                "type": "call_initiated",
                "description": f"Power dialer call to {contact.phone_number}",
                "timestamp": self._now(),
            }])
        except Exception as e:
            logger.warning(f"Failed to log call activity for lead {contact.lead_id}: {e}")

    def webhook_urls(self, call: Call) -> Dict[str, str]:
        params = {"callId": call.id}
        if call.session_id:
            params["sessionId"] = call.session_id
        query = urlencode(params)
        return {
            "status_url": f"{self.public_base_url}{STATUS_WEBHOOK_PATH}?{query}",
            "machine_detection_url": f"{self.public_base_url}{MACHINE_DETECTION_WEBHOOK_PATH}?{query}",
        }

    async def originate_call(self, call: Call, destination: str) -> Call:
        """
        Place a queued call through the gateway.

        On failure the call is marked failed and the contact released back
        to not_contacted. The session attempt counter is left as is.

        Raises:
            PlacementFailure: Provider rejected the call or was unreachable
        """
        urls = self.webhook_urls(call)

        try:
            call_sid = await self.gateway.originate(
                to_number=destination,
                from_number=self.caller_id,
                status_url=urls["status_url"],
                machine_detection_url=urls["machine_detection_url"],
            )
        except Exception as e:
            logger.error(f"Failed to place call {call.id} to {destination}: {e}")
            self._release_failed_call(call)
            if isinstance(e, PlacementFailure):
                raise
            raise PlacementFailure(str(e)) from e

        now = self._now()
        updated = self.repo.update_call(
            call.id,
            {
                "twilio_call_sid": call_sid,
                "status": CallStatus.IN_PROGRESS.value,
                "start_timestamp": now,
                "status_updated_at": now,
            },
            expected_statuses=[CallStatus.QUEUED.value],
        )
        if not updated:
            # Ended while the provider request was in flight; keep the sid for hangup lookups
            logger.warning(f"Call {call.id} left queued state during origination")
            self.repo.update_call(call.id, {"twilio_call_sid": call_sid})
            row = self.repo.get_call(call.id)
        else:
            row = updated[0]

        if call.session_id:
            session = self.sessions.get(call.session_id)
            attempt = session.attempt_count(destination) if session else 1
            try:
                await self.sessions.track_call(call.session_id, call_sid, destination, attempt)
            except SessionExpired:
                logger.warning(f"Session {call.session_id} expired while placing call {call.id}")

        logger.info(f"Call {call.id} placed: SID={call_sid}")
        return Call.model_validate(row)

    def _release_failed_call(self, call: Call) -> None:
        now = self._now()
        self.repo.update_call(
            call.id,
            {
                "status": CallStatus.FAILED.value,
                "end_timestamp": now,
                "status_updated_at": now,
            },
            expected_statuses=ACTIVE_CALL_STATUSES,
        )
        if call.contact_id:
            self.repo.update_contact(
                call.contact_id,
                {"status": ContactStatus.NOT_CONTACTED.value},
                expected_status=ContactStatus.IN_PROGRESS.value,
            )
        self.repo.delete_queue_entries(call.id)

    async def dial_next(self, session_id: str, user_id: Optional[str] = None) -> NextContactResult:
        """Claim the next contact and place its call"""
        result = await self.request_next_contact(session_id, user_id)
        if not isinstance(result, Found):
            return result

        try:
            call = await self.originate_call(result.call, result.contact.phone_number)
        except PlacementFailure as e:
            return Failed(contact=result.contact, call=result.call, error=e.message)

        return Found(contact=result.contact, call=call, attempt=result.attempt)

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def _get_agent(self, agent_id: str) -> Agent:
        row = self.repo.get_agent(agent_id)
        if not row:
            raise AgentUnavailable(f"Agent {agent_id} not found")
        return Agent.model_validate(row)

    def _get_call(self, call_ref: str) -> Call:
        """Look a call up by id, then by provider call id"""
        row = self.repo.get_call(call_ref) or self.repo.get_call_by_sid(call_ref)
        if not row:
            raise CallNotFound(f"Call {call_ref} not found")
        return Call.model_validate(row)

    async def register_agent(self, user_id: str, name: Optional[str] = None) -> Agent:
        """Create the agent for a user, or reset an existing one to offline"""
        now = self._now()
        existing = self.repo.get_agent_by_user(user_id)
        if existing:
            fields = {"last_status_change": now}
            if name:
                fields["name"] = name
            if existing.get("status") != AgentStatus.BUSY.value:
                fields["status"] = AgentStatus.OFFLINE.value
            rows = self.repo.update_agent(existing["id"], fields)
            return Agent.model_validate(rows[0] if rows else existing)

        row = self.repo.insert_agent({
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "name": name,
            "status": AgentStatus.OFFLINE.value,
            "current_call_id": None,
            "last_status_change": now,
        })
        logger.info(f"Registered agent {row['id']} for user {user_id}")
        return Agent.model_validate(row)

    async def set_agent_status(self, agent_id: str, status: str) -> Agent:
        """
        Apply an agent status change requested by the UI.

        'online' is an alias of available. Going offline goes through
        stop_dialing. An agent on a live call cannot be made available.
        """
        target = AGENT_STATUS_ALIASES.get(status.lower())
        if target is None:
            raise ValueError(f"Unknown agent status: {status}")

        if target == AgentStatus.OFFLINE.value:
            await self.stop_dialing(agent_id)
            return self._get_agent(agent_id)

        agent = self._get_agent(agent_id)
        if target == AgentStatus.AVAILABLE.value and agent.current_call_id:
            current = self.repo.get_call(agent.current_call_id)
            if current and current["status"] in ACTIVE_CALL_STATUSES:
                raise AgentUnavailable(f"Agent {agent_id} is on call {agent.current_call_id}")

        fields = {"status": target, "last_status_change": self._now()}
        if target == AgentStatus.AVAILABLE.value:
            fields["current_call_id"] = None
        rows = self.repo.update_agent(agent_id, fields)
        agent = Agent.model_validate(rows[0])

        if target == AgentStatus.AVAILABLE.value:
            await self.offer_next_queued_call(agent_id)
            agent = self._get_agent(agent_id)
        return agent

    async def assign_agent(self, call_id: str, agent_id: str) -> Call:
        """
        Bind an available agent to a queued or in-progress call.

        Of two concurrent assignments of one agent exactly one succeeds; the
        other raises AgentUnavailable.

        Raises:
            AgentUnavailable: Agent is offline, busy, or lost the race
            CallNotAssignable: Call is terminal or already has an agent
        """
        agent = self._get_agent(agent_id)
        if agent.status != AgentStatus.AVAILABLE.value:
            raise AgentUnavailable(f"Agent {agent_id} is {agent.status}")

        call = self._get_call(call_id)
        if call.is_terminal or call.agent_id:
            raise CallNotAssignable(
                f"Call {call.id} is {call.status}" + (f" with agent {call.agent_id}" if call.agent_id else "")
            )

        now = self._now()
        won = self.repo.update_agent(
            agent_id,
            {
                "status": AgentStatus.BUSY.value,
                "current_call_id": call.id,
                "last_status_change": now,
            },
            expected_status=AgentStatus.AVAILABLE.value,
        )
        if not won:
            raise AgentUnavailable(f"Agent {agent_id} was taken by another call")

        bound = self.repo.update_call(
            call.id,
            {"agent_id": agent_id},
            expected_statuses=ACTIVE_CALL_STATUSES,
            require_unassigned=True,
        )
        if not bound:
            # Call ended or was taken between the read and the write
            self.repo.update_agent(
                agent_id,
                {
                    "status": AgentStatus.AVAILABLE.value,
                    "current_call_id": None,
                    "last_status_change": self._now(),
                },
                expected_call_id=call.id,
            )
            raise CallNotAssignable(f"Call {call.id} is no longer assignable")

        await self.queue.remove(call.id)
        logger.info(f"Assigned agent {agent_id} to call {call.id}")
        return Call.model_validate(bound[0])

    async def offer_next_queued_call(self, agent_id: str) -> Optional[Call]:
        """Give a freed agent the most urgent waiting call, if any"""
        for entry in await self.queue.list_entries(limit=CLAIM_BATCH_SIZE):
            try:
                return await self.assign_agent(entry.call_id, agent_id)
            except (CallNotAssignable, CallNotFound):
                logger.warning(f"Dropping stale queue entry for call {entry.call_id}")
                await self.queue.remove(entry.call_id)
            except AgentUnavailable as e:
                logger.info(f"Agent {agent_id} not given queued call {entry.call_id}: {e}")
                return None
        return None

    # ------------------------------------------------------------------
    # Ending calls
    # ------------------------------------------------------------------

    def _terminal_contact_status(self, call: Call, provider_status: Optional[str]) -> str:
        if call.machine_detection_result == MachineDetection.MACHINE.value:
            return ContactStatus.VOICEMAIL.value
        if provider_status in UNREACHED_PROVIDER_STATUSES:
            return ContactStatus.NO_ANSWER.value
        return ContactStatus.CONTACTED.value

    async def end_call(
        self,
        call_ref: str,
        terminate_provider: bool = True,
        provider_status: Optional[str] = None,
        duration: Optional[int] = None,
        contact_status: Optional[str] = None,
    ) -> EndCallResult:
        """
        End a call by id or provider call id. Idempotent.

        A call that is already terminal is reported with already_ended and
        nothing is touched. Otherwise: provider hangup (unless the provider
        told us the call ended), call completed, agent freed, residual queue
        entry deleted, contact moved to its terminal status. A freed agent
        is then offered the next queued call.

        Raises:
            CallNotFound: No call matches call_ref
        """
        call = self._get_call(call_ref)
        if call.is_terminal:
            logger.info(f"Call {call.id} already {call.status}")
            return EndCallResult(call=call, already_ended=True)

        warnings: List[str] = []
        if terminate_provider and call.twilio_call_sid:
            try:
                await self.gateway.terminate(call.twilio_call_sid)
            except Exception as e:
                logger.warning(f"Provider hangup failed for {call.twilio_call_sid}: {e}")
                warnings.append(f"Provider hangup failed: {e}")

        ended_at = self._clock()
        if duration is None and call.start_timestamp:
            started = parse_timestamp(call.start_timestamp)
            duration = max(0, int((ended_at - started).total_seconds()))

        fields = {
            "status": CallStatus.COMPLETED.value,
            "end_timestamp": to_iso(ended_at),
            "duration": duration,
            "status_updated_at": to_iso(ended_at),
        }
        if provider_status:
            fields["provider_status"] = provider_status

        ended = self.repo.update_call(call.id, fields, expected_statuses=ACTIVE_CALL_STATUSES)
        if not ended:
            logger.info(f"Call {call.id} was ended concurrently")
            return EndCallResult(call=self._get_call(call.id), already_ended=True, warnings=warnings)
        call = Call.model_validate(ended[0])

        agent_freed = False
        if call.agent_id:
            agent_freed = self._free_agent(call.agent_id, call.id)

        await self.queue.remove(call.id)

        if call.contact_id:
            self.repo.update_contact(
                call.contact_id,
                {"status": contact_status or self._terminal_contact_status(call, provider_status)},
                expected_status=ContactStatus.IN_PROGRESS.value,
            )

        if call.session_id and call.twilio_call_sid:
            await self.sessions.forget_call(call.session_id, call.twilio_call_sid)

        if self.publisher and call.session_id:
            await self.publisher.publish_call_status(call.session_id, {
                "callId": call.id,
                "callSid": call.twilio_call_sid,
                "status": call.status,
                "providerStatus": provider_status,
                "timestamp": to_iso(ended_at),
            })

        logger.info(f"Call {call.id} completed (agent_freed={agent_freed})")

        next_call_id = None
        if agent_freed:
            next_call = await self.offer_next_queued_call(call.agent_id)
            next_call_id = next_call.id if next_call else None

        return EndCallResult(
            call=call,
            agent_freed=agent_freed,
            next_call_id=next_call_id,
            warnings=warnings,
        )

    def _free_agent(self, agent_id: str, call_id: str) -> bool:
        """Release an agent from a call. Only frees it if it is still on that call."""
        now = self._now()
        freed = self.repo.update_agent(
            agent_id,
            {
                "status": AgentStatus.AVAILABLE.value,
                "current_call_id": None,
                "last_status_change": now,
            },
            expected_status=AgentStatus.BUSY.value,
            expected_call_id=call_id,
        )
        if freed:
            return True

        # Stopped agents stay offline but drop the finished call
        self.repo.update_agent(agent_id, {"current_call_id": None}, expected_call_id=call_id)
        return False

    async def stop_dialing(self, agent_id: str) -> StopDialingResult:
        """
        Take an agent offline and hang up calls nobody will take.

        The agent's own call is left to finish. Hangup errors on individual
        calls are logged and reported, never raised.
        """
        self._get_agent(agent_id)
        self.repo.update_agent(agent_id, {
            "status": AgentStatus.OFFLINE.value,
            "last_status_change": self._now(),
        })
        logger.info(f"Stopping dialer for agent {agent_id}")

        result = StopDialingResult(agent_id=agent_id)
        unassigned = self.repo.list_calls_by_status([CallStatus.IN_PROGRESS.value], unassigned_only=True)

        for row in unassigned:
            call_sid = row.get("twilio_call_sid")
            if call_sid:
                try:
                    await self.gateway.terminate(call_sid)
                except Exception as e:
                    logger.error(f"Error ending call with SID {call_sid}: {e}")
                    result.errors.append(f"{call_sid}: {e}")

            ended = await self.end_call(
                row["id"],
                terminate_provider=False,
                provider_status="canceled",
                contact_status=ContactStatus.NOT_CONTACTED.value,
            )
            if not ended.already_ended:
                result.terminated_calls.append(row["id"])

        return result

    async def start_dialing(
        self,
        agent_id: str,
        max_concurrent_calls: int = 3,
        session_id: Optional[str] = None,
    ) -> StartDialingResult:
        """Make the agent available and place up to max_concurrent_calls calls"""
        self._get_agent(agent_id)
        self.repo.update_agent(agent_id, {
            "status": AgentStatus.AVAILABLE.value,
            "last_status_change": self._now(),
        })
        session_id = session_id or f"agent-{agent_id}"

        placed: List[PlacedCall] = []
        for _ in range(max_concurrent_calls):
            result = await self.dial_next(session_id)
            if isinstance(result, Exhausted):
                break
            placed.append(PlacedCall(
                contact_id=result.contact.id,
                call_id=result.call.id,
                call_sid=result.call.twilio_call_sid if isinstance(result, Found) else None,
                success=isinstance(result, Found),
                error=result.error if isinstance(result, Failed) else None,
            ))

        if not placed:
            return StartDialingResult(
                success=False,
                agent_id=agent_id,
                message="No contacts available to call",
            )

        succeeded = sum(1 for p in placed if p.success)
        return StartDialingResult(
            success=succeeded > 0,
            agent_id=agent_id,
            results=placed,
            message=f"Initiated {succeeded} of {len(placed)} calls",
        )

    # ------------------------------------------------------------------
    # Provider callbacks
    # ------------------------------------------------------------------

    async def handle_machine_detection(
        self,
        call_sid: str,
        answered_by: Optional[str],
    ) -> MachineDetectionOutcome:
        """
        React to answering machine detection.

        Humans are bridged to the longest idle available agent, or queued
        when nobody is free. Machines get a voicemail and the contact ends
        up as voicemail when the call completes. Anything else gets a
        generic message.
        """
        call = self._get_call(call_sid)
        detection = MachineDetection.from_answered_by(answered_by)
        self.repo.update_call(call.id, {"machine_detection_result": detection.value})
        logger.info(f"Machine detection for call {call.id}: {answered_by} -> {detection.value}")

        if detection == MachineDetection.MACHINE:
            return MachineDetectionOutcome(
                call_id=call.id, result=detection.value, twiml=twiml.leave_voicemail()
            )

        if detection != MachineDetection.HUMAN or call.is_terminal:
            return MachineDetectionOutcome(
                call_id=call.id, result=detection.value, twiml=twiml.automated_message()
            )

        if call.agent_id:
            return MachineDetectionOutcome(
                call_id=call.id,
                result=detection.value,
                agent_id=call.agent_id,
                twiml=twiml.connect_to_agent(call.agent_id),
            )

        for agent_row in self.repo.list_available_agents():
            try:
                await self.assign_agent(call.id, agent_row["id"])
            except AgentUnavailable:
                continue
            except CallNotAssignable:
                break
            return MachineDetectionOutcome(
                call_id=call.id,
                result=detection.value,
                agent_id=agent_row["id"],
                twiml=twiml.connect_to_agent(agent_row["id"]),
            )

        refreshed = self._get_call(call.id)
        if refreshed.is_terminal or refreshed.agent_id:
            return MachineDetectionOutcome(
                call_id=call.id, result=detection.value, twiml=twiml.automated_message()
            )

        await self.queue.enqueue(call.id, priority=self.human_answer_priority, created_at=self._clock())
        return MachineDetectionOutcome(
            call_id=call.id, result=detection.value, queued=True, twiml=twiml.hold_for_agent()
        )

    async def apply_provider_status(self, event: CallStatusEvent) -> Optional[Call]:
        """
        Fold a provider status callback into the call record.

        Terminal statuses always end the call. Other statuses are applied
        last-write-wins against status_updated_at, so a late 'ringing' never
        overwrites a newer 'in-progress'.
        """
        row = None
        if event.call_id:
            row = self.repo.get_call(event.call_id)
        if row is None:
            row = self.repo.get_call_by_sid(event.call_sid)
        if row is None:
            logger.warning(f"Status {event.status} for unknown call {event.call_sid}")
            return None
        call = Call.model_validate(row)

        if event.answered_by:
            detection = MachineDetection.from_answered_by(event.answered_by)
            self.repo.update_call(call.id, {"machine_detection_result": detection.value})
            call.machine_detection_result = detection.value

        if event.phase == StatusPhase.TERMINAL:
            result = await self.end_call(
                call.id,
                terminate_provider=False,
                provider_status=event.status,
                duration=event.duration,
            )
            return result.call

        if event.phase is None:
            logger.info(f"Ignoring unrecognised status {event.status} for call {call.id}")
            return call

        if call.is_terminal:
            logger.info(f"Ignoring {event.status} for finished call {call.id}")
            return call

        last = parse_timestamp(call.status_updated_at)
        if last is not None and event.timestamp < last:
            logger.info(f"Ignoring stale {event.status} for call {call.id}")
            return call

        fields = {
            "provider_status": event.status,
            "status_updated_at": to_iso(event.timestamp),
        }
        if not call.twilio_call_sid:
            fields["twilio_call_sid"] = event.call_sid
        if event.phase == StatusPhase.LIVE and call.status == CallStatus.QUEUED.value:
            fields["status"] = CallStatus.IN_PROGRESS.value
            fields["start_timestamp"] = to_iso(call.start_timestamp or event.timestamp)

        updated = self.repo.update_call(call.id, fields, expected_statuses=ACTIVE_CALL_STATUSES)
        return Call.model_validate(updated[0]) if updated else self._get_call(call.id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_active_calls(self) -> List[ActiveCall]:
        """Non-terminal calls with their contact and agent"""
        contacts: Dict[str, Optional[Contact]] = {}
        agents: Dict[str, Optional[Agent]] = {}
        active: List[ActiveCall] = []

        for row in self.repo.list_calls_by_status(ACTIVE_CALL_STATUSES):
            call = Call.model_validate(row)
            if call.contact_id and call.contact_id not in contacts:
                contact_row = self.repo.get_contact(call.contact_id)
                contacts[call.contact_id] = Contact.model_validate(contact_row) if contact_row else None
            if call.agent_id and call.agent_id not in agents:
                agent_row = self.repo.get_agent(call.agent_id)
                agents[call.agent_id] = Agent.model_validate(agent_row) if agent_row else None
            active.append(ActiveCall(
                call=call,
                contact=contacts.get(call.contact_id) if call.contact_id else None,
                agent=agents.get(call.agent_id) if call.agent_id else None,
            ))
        return active

    async def get_call_state(self, call_ref: str) -> Optional[ActiveCall]:
        """Live view of one call, or None when it is unknown or finished"""
        row = self.repo.get_call(call_ref) or self.repo.get_call_by_sid(call_ref)
        if not row:
            return None
        call = Call.model_validate(row)
        if call.is_terminal:
            return None
        contact_row = self.repo.get_contact(call.contact_id) if call.contact_id else None
        agent_row = self.repo.get_agent(call.agent_id) if call.agent_id else None
        return ActiveCall(
            call=call,
            contact=Contact.model_validate(contact_row) if contact_row else None,
            agent=Agent.model_validate(agent_row) if agent_row else None,
        )
