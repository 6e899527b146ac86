"""
Unit Tests for the Dialer Orchestrator
Contact claiming, origination, agent binding, hang-up and provider callbacks
"""
import asyncio
from datetime import datetime, timezone

import pytest

from fakes import seed_agent, seed_call, seed_contact

from crm_dialer.domain.errors import (
    AgentUnavailable,
    CallNotAssignable,
    CallNotFound,
    PlacementFailure,
)
from crm_dialer.domain.models.call_status import CallStatusEvent
from crm_dialer.domain.models.results import Exhausted, Failed, Found

CONTACTS = "power_dialer_contacts"
AGENTS = "power_dialer_agents"
CALLS = "power_dialer_calls"
QUEUE = "power_dialer_call_queue"
ACTIVITIES = "lead_activities"


def ts(second: int) -> datetime:
    return datetime(2024, 1, 1, 0, 0, second, tzinfo=timezone.utc)


class TestRequestNextContact:
    """Tests for claiming the next contact"""

    @pytest.mark.asyncio
    async def test_claims_oldest_not_contacted_contact(self, db, orchestrator):
        """Test the oldest not_contacted contact is claimed and a queued call created"""
        seed_contact(db, "K1", "+15550000001", created_at="2024-01-01T00:00:05+00:00")
        seed_contact(db, "K2", "+15550000002", created_at="2024-01-01T00:00:01+00:00")

        result = await orchestrator.request_next_contact("S1")

        assert isinstance(result, Found)
        assert result.contact.id == "K2"
        assert result.attempt == 1
        assert result.call.status == "queued"
        assert result.call.session_id == "S1"
        assert db.find(CONTACTS, "K2")["status"] == "in_progress"
        assert db.find(CONTACTS, "K1")["status"] == "not_contacted"

    @pytest.mark.asyncio
    async def test_exhausted_when_nothing_left(self, db, orchestrator):
        """Test Exhausted is returned once no contact is not_contacted"""
        seed_contact(db, "K1", "+15550000001", status="contacted")

        result = await orchestrator.request_next_contact("S1")

        assert isinstance(result, Exhausted)
        assert result.to_response() == {"hasMoreLeads": False, "contact": None}
        assert db.tables[CALLS] == []

    @pytest.mark.asyncio
    async def test_concurrent_sessions_get_distinct_contacts(self, db, orchestrator):
        """Test two sessions never claim the same contact"""
        seed_contact(db, "K1", "+15550000001")
        seed_contact(db, "K2", "+15550000002")

        first, second = await asyncio.gather(
            orchestrator.request_next_contact("S1"),
            orchestrator.request_next_contact("S2"),
        )

        assert isinstance(first, Found) and isinstance(second, Found)
        assert first.contact.id != second.contact.id

    @pytest.mark.asyncio
    async def test_single_contact_claimed_once(self, db, orchestrator):
        """Test one contact and two sessions yields one Found and one Exhausted"""
        seed_contact(db, "K1", "+15550000001")

        results = await asyncio.gather(
            orchestrator.request_next_contact("S1"),
            orchestrator.request_next_contact("S2"),
        )

        kinds = sorted(r.kind for r in results)
        assert kinds == ["exhausted", "found"]
        assert len(db.tables[CALLS]) == 1

    @pytest.mark.asyncio
    async def test_skips_contact_claimed_by_concurrent_writer(self, db, orchestrator):
        """Test a contact taken between the read and the conditional update is skipped"""
        seed_contact(db, "K1", "+15550000001")
        seed_contact(db, "K2", "+15550000002")
        fired = []

        def steal_first(query):
            if query.table == CONTACTS and query.op == "update" and not fired:
                fired.append(True)
                db.find(CONTACTS, "K1")["status"] = "in_progress"

        db.hooks.append(steal_first)

        result = await orchestrator.request_next_contact("S1")

        assert isinstance(result, Found)
        assert result.contact.id == "K2"

    @pytest.mark.asyncio
    async def test_logs_call_initiated_activity_for_lead(self, db, orchestrator):
        """Test a contact linked to a lead gets a call_initiated activity"""
        seed_contact(db, "K1", "+15550000001", lead_id="42")

        await orchestrator.request_next_contact("S1", user_id="U1")

        activities = db.tables[ACTIVITIES]
        assert len(activities) == 1
        assert activities[0]["type"] == "call_initiated"
        assert activities[0]["lead_id"] == "42"

    @pytest.mark.asyncio
    async def test_activity_failure_does_not_fail_claim(self, db, orchestrator):
        """Test the activity log is best effort"""
        seed_contact(db, "K1", "+15550000001", lead_id="42")
        db.failing.add(ACTIVITIES)

        result = await orchestrator.request_next_contact("S1")

        assert isinstance(result, Found)


class TestDialNext:
    """Tests for claiming and placing a call"""

    @pytest.mark.asyncio
    async def test_places_call_and_tracks_it_in_session(self, db, orchestrator, sessions):
        """Test S1 dialing +15551234567 ends up in progress as CA123"""
        orchestrator.gateway.sids = iter(["CA123"])
        seed_contact(db, "K1", "+15551234567")

        result = await orchestrator.dial_next("S1")

        assert isinstance(result, Found)
        assert result.call.twilio_call_sid == "CA123"
        assert result.call.status == "in_progress"
        assert result.call.start_timestamp is not None

        session = sessions.get("S1")
        assert session.attempt_count("+15551234567") == 1
        assert "CA123" in session.calls
        assert sessions.find_session_for_call("CA123") == "S1"

    @pytest.mark.asyncio
    async def test_webhook_urls_carry_call_and_session(self, db, orchestrator, gateway):
        """Test status and machine detection urls identify the call"""
        seed_contact(db, "K1", "+15551234567")

        result = await orchestrator.dial_next("S1")

        placed = gateway.originated[0]
        query = f"callId={result.call.id}&sessionId=S1"
        assert placed["to"] == "+15551234567"
        assert placed["from"] == "+15550000000"
        assert placed["status_url"] == f"https://dialer.example.com/api/v1/webhooks/twilio/status?{query}"
        assert placed["machine_detection_url"] == (
            f"https://dialer.example.com/api/v1/webhooks/twilio/machine-detection?{query}"
        )

    @pytest.mark.asyncio
    async def test_placement_failure_releases_contact(self, db, orchestrator, gateway, sessions):
        """Test a rejected call is failed and its contact dialable again"""
        seed_contact(db, "K1", "+15551234567")
        gateway.fail_originate = PlacementFailure("Twilio API error: 400")

        result = await orchestrator.dial_next("S1")

        assert isinstance(result, Failed)
        assert result.error == "Twilio API error: 400"
        assert db.find(CALLS, result.call.id)["status"] == "failed"
        assert db.find(CONTACTS, "K1")["status"] == "not_contacted"
        assert sessions.get("S1").attempt_count("+15551234567") == 1

    @pytest.mark.asyncio
    async def test_retry_after_failure_counts_second_attempt(self, db, orchestrator, gateway, sessions):
        """Test the attempt counter keeps counting across failures"""
        seed_contact(db, "K1", "+15551234567")
        gateway.fail_originate = RuntimeError("connection reset")
        first = await orchestrator.dial_next("S1")
        gateway.fail_originate = None

        second = await orchestrator.dial_next("S1")

        assert isinstance(first, Failed)
        assert isinstance(second, Found)
        assert second.attempt == 2
        assert sessions.get("S1").attempt_count("+15551234567") == 2

    @pytest.mark.asyncio
    async def test_originate_call_raises_placement_failure(self, db, orchestrator, gateway):
        """Test originate_call surfaces PlacementFailure after cleanup"""
        seed_contact(db, "K1", "+15551234567")
        found = await orchestrator.request_next_contact("S1")
        gateway.fail_originate = RuntimeError("boom")

        with pytest.raises(PlacementFailure):
            await orchestrator.originate_call(found.call, "+15551234567")

        assert db.find(CALLS, found.call.id)["status"] == "failed"


class TestAgents:
    """Tests for agent registration and status changes"""

    @pytest.mark.asyncio
    async def test_register_agent_creates_offline_agent(self, db, orchestrator):
        """Test a new user gets an offline agent"""
        agent = await orchestrator.register_agent("U1", "Dana")

        assert agent.status == "offline"
        assert agent.user_id == "U1"
        assert len(db.tables[AGENTS]) == 1

    @pytest.mark.asyncio
    async def test_register_agent_is_reused(self, db, orchestrator):
        """Test registering twice returns the same agent"""
        first = await orchestrator.register_agent("U1")
        second = await orchestrator.register_agent("U1", "Dana")

        assert first.id == second.id
        assert second.name == "Dana"
        assert len(db.tables[AGENTS]) == 1

    @pytest.mark.asyncio
    async def test_online_alias_makes_agent_available(self, db, orchestrator):
        """Test 'online' maps to available"""
        seed_agent(db, "A1", status="offline")

        agent = await orchestrator.set_agent_status("A1", "online")

        assert agent.status == "available"

    @pytest.mark.asyncio
    async def test_agent_on_live_call_cannot_become_available(self, db, orchestrator):
        """Test an agent with a live call stays busy"""
        seed_call(db, "C1", agent_id="A1")
        seed_agent(db, "A1", status="busy", current_call_id="C1")

        with pytest.raises(AgentUnavailable):
            await orchestrator.set_agent_status("A1", "available")

        assert db.find(AGENTS, "A1")["status"] == "busy"

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self, db, orchestrator):
        """Test an unknown status is a ValueError"""
        seed_agent(db, "A1")

        with pytest.raises(ValueError):
            await orchestrator.set_agent_status("A1", "lunch")


class TestAssignAgent:
    """Tests for binding agents to calls"""

    @pytest.mark.asyncio
    async def test_assign_binds_agent_and_call(self, db, orchestrator):
        """Test a successful assignment updates both sides"""
        seed_agent(db, "A1")
        seed_call(db, "C1", twilio_call_sid="CA1")

        call = await orchestrator.assign_agent("C1", "A1")

        assert call.agent_id == "A1"
        agent = db.find(AGENTS, "A1")
        assert agent["status"] == "busy"
        assert agent["current_call_id"] == "C1"

    @pytest.mark.asyncio
    async def test_assign_removes_queue_entry(self, db, orchestrator, queue):
        """Test an assigned call leaves the queue"""
        seed_agent(db, "A1")
        seed_call(db, "C1")
        await queue.enqueue("C1", priority=1)

        await orchestrator.assign_agent("C1", "A1")

        assert db.tables[QUEUE] == []

    @pytest.mark.asyncio
    async def test_offline_agent_rejected(self, db, orchestrator):
        """Test an offline agent cannot be assigned"""
        seed_agent(db, "A1", status="offline")
        seed_call(db, "C1")

        with pytest.raises(AgentUnavailable):
            await orchestrator.assign_agent("C1", "A1")

    @pytest.mark.asyncio
    async def test_terminal_call_rejected(self, db, orchestrator):
        """Test a completed call cannot be assigned"""
        seed_agent(db, "A1")
        seed_call(db, "C1", status="completed")

        with pytest.raises(CallNotAssignable):
            await orchestrator.assign_agent("C1", "A1")

        assert db.find(AGENTS, "A1")["status"] == "available"

    @pytest.mark.asyncio
    async def test_same_agent_two_calls_only_one_wins(self, db, orchestrator):
        """Test concurrent assignment of one agent succeeds exactly once"""
        seed_agent(db, "A1")
        seed_call(db, "C1")
        seed_call(db, "C2")

        results = await asyncio.gather(
            orchestrator.assign_agent("C1", "A1"),
            orchestrator.assign_agent("C2", "A1"),
            return_exceptions=True,
        )

        wins = [r for r in results if not isinstance(r, Exception)]
        losses = [r for r in results if isinstance(r, Exception)]
        assert len(wins) == 1
        assert len(losses) == 1
        assert isinstance(losses[0], AgentUnavailable)
        assert db.find(AGENTS, "A1")["current_call_id"] == wins[0].id

    @pytest.mark.asyncio
    async def test_two_agents_one_call_only_one_bound(self, db, orchestrator):
        """Test a call ends up with exactly one agent"""
        seed_agent(db, "A1")
        seed_agent(db, "A2")
        seed_call(db, "C1")

        results = await asyncio.gather(
            orchestrator.assign_agent("C1", "A1"),
            orchestrator.assign_agent("C1", "A2"),
            return_exceptions=True,
        )

        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        statuses = sorted(db.find(AGENTS, a)["status"] for a in ("A1", "A2"))
        assert statuses == ["available", "busy"]

    @pytest.mark.asyncio
    async def test_agent_taken_between_check_and_write(self, db, orchestrator):
        """Test losing the conditional agent update raises AgentUnavailable"""
        seed_agent(db, "A1")
        seed_call(db, "C1")

        def take_agent(query):
            if query.table == AGENTS and query.op == "update":
                db.find(AGENTS, "A1")["status"] = "busy"

        db.hooks.append(take_agent)

        with pytest.raises(AgentUnavailable):
            await orchestrator.assign_agent("C1", "A1")

        assert db.find(CALLS, "C1")["agent_id"] is None

    @pytest.mark.asyncio
    async def test_call_taken_between_check_and_write_rolls_back_agent(self, db, orchestrator):
        """Test the agent is released when the call was bound elsewhere"""
        seed_agent(db, "A1")
        seed_call(db, "C1")
        fired = []

        def take_call(query):
            if query.table == CALLS and query.op == "update" and not fired:
                fired.append(True)
                db.find(CALLS, "C1")["agent_id"] = "A2"

        db.hooks.append(take_call)

        with pytest.raises(CallNotAssignable):
            await orchestrator.assign_agent("C1", "A1")

        agent = db.find(AGENTS, "A1")
        assert agent["status"] == "available"
        assert agent["current_call_id"] is None


class TestEndCall:
    """Tests for ending calls"""

    def _seed_live_call(self, db):
        seed_contact(db, "K1", "+15551234567", status="in_progress")
        seed_agent(db, "A1", status="busy", current_call_id="C1")
        seed_call(db, "C1", contact_id="K1", agent_id="A1", session_id="S1", twilio_call_sid="CA1")

    @pytest.mark.asyncio
    async def test_end_call_releases_everything(self, db, orchestrator, gateway, redis_client):
        """Test ending a call completes it, frees the agent and marks the contact"""
        self._seed_live_call(db)

        result = await orchestrator.end_call("C1")

        assert result.already_ended is False
        assert result.agent_freed is True
        assert gateway.terminated == ["CA1"]
        assert db.find(CALLS, "C1")["status"] == "completed"
        assert db.find(CALLS, "C1")["end_timestamp"] is not None
        assert db.find(AGENTS, "A1")["status"] == "available"
        assert db.find(AGENTS, "A1")["current_call_id"] is None
        assert db.find(CONTACTS, "K1")["status"] == "contacted"

        events = redis_client.messages("call.status.S1")
        assert events[-1]["data"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_end_call_is_idempotent(self, db, orchestrator, gateway):
        """Test a second end is a no-op"""
        self._seed_live_call(db)
        await orchestrator.end_call("C1")
        call_mutations = len(db.mutations(CALLS))

        result = await orchestrator.end_call("C1")

        assert result.already_ended is True
        assert gateway.terminated == ["CA1"]
        assert len(db.mutations(CALLS)) == call_mutations

    @pytest.mark.asyncio
    async def test_end_call_by_provider_sid(self, db, orchestrator):
        """Test a call can be ended by its Twilio SID"""
        self._seed_live_call(db)

        result = await orchestrator.end_call("CA1")

        assert result.call.id == "C1"
        assert result.call.status == "completed"

    @pytest.mark.asyncio
    async def test_unknown_call_raises(self, orchestrator):
        """Test ending an unknown call raises CallNotFound"""
        with pytest.raises(CallNotFound):
            await orchestrator.end_call("nope")

    @pytest.mark.asyncio
    async def test_provider_hangup_failure_is_a_warning(self, db, orchestrator, gateway):
        """Test the record is completed even if Twilio refuses the hangup"""
        self._seed_live_call(db)
        gateway.fail_terminate = PlacementFailure("Twilio API error: 404")

        result = await orchestrator.end_call("C1")

        assert db.find(CALLS, "C1")["status"] == "completed"
        assert result.warnings

    @pytest.mark.asyncio
    async def test_offline_agent_stays_offline(self, db, orchestrator):
        """Test an agent who stopped dialing is not made available by their call ending"""
        self._seed_live_call(db)
        db.find(AGENTS, "A1")["status"] = "offline"

        result = await orchestrator.end_call("C1")

        agent = db.find(AGENTS, "A1")
        assert result.agent_freed is False
        assert agent["status"] == "offline"
        assert agent["current_call_id"] is None

    @pytest.mark.asyncio
    async def test_freed_agent_gets_next_queued_call(self, db, orchestrator, queue):
        """Test the agent picks up a waiting call when theirs ends"""
        self._seed_live_call(db)
        seed_call(db, "C2", twilio_call_sid="CA2")
        await queue.enqueue("C2", priority=1)

        result = await orchestrator.end_call("C1")

        assert result.next_call_id == "C2"
        assert db.find(AGENTS, "A1")["current_call_id"] == "C2"
        assert db.find(CALLS, "C2")["agent_id"] == "A1"
        assert db.tables[QUEUE] == []

    @pytest.mark.asyncio
    async def test_end_call_forgets_in_flight_call(self, db, orchestrator, sessions):
        """Test the session no longer tracks an ended call"""
        self._seed_live_call(db)
        await sessions.track_call("S1", "CA1", "+15551234567", 1)

        await orchestrator.end_call("C1")

        assert "CA1" not in sessions.get("S1").calls


class TestStopDialing:
    """Tests for stopping an agent's dialer"""

    @pytest.mark.asyncio
    async def test_stop_hangs_up_unassigned_calls(self, db, orchestrator, gateway):
        """Test unassigned calls are hung up and their contacts released"""
        seed_agent(db, "A1", status="busy", current_call_id="C1")
        seed_contact(db, "K1", "+15550000001", status="in_progress")
        seed_contact(db, "K2", "+15550000002", status="in_progress")
        seed_call(db, "C1", contact_id="K1", agent_id="A1", twilio_call_sid="CA1")
        seed_call(db, "C2", contact_id="K2", twilio_call_sid="CA2")

        result = await orchestrator.stop_dialing("A1")

        assert result.terminated_calls == ["C2"]
        assert gateway.terminated == ["CA2"]
        assert db.find(AGENTS, "A1")["status"] == "offline"
        assert db.find(CALLS, "C1")["status"] == "in_progress"
        assert db.find(CALLS, "C2")["status"] == "completed"
        assert db.find(CONTACTS, "K2")["status"] == "not_contacted"

    @pytest.mark.asyncio
    async def test_stop_collects_hangup_errors(self, db, orchestrator, gateway):
        """Test a failing hangup is reported and the call still closed"""
        seed_agent(db, "A1")
        seed_call(db, "C2", twilio_call_sid="CA2")
        gateway.fail_terminate = PlacementFailure("Twilio API error: 500")

        result = await orchestrator.stop_dialing("A1")

        assert len(result.errors) == 1
        assert "CA2" in result.errors[0]
        assert db.find(CALLS, "C2")["status"] == "completed"

    @pytest.mark.asyncio
    async def test_set_offline_goes_through_stop(self, db, orchestrator, gateway):
        """Test setting an agent offline hangs up unassigned calls"""
        seed_agent(db, "A1")
        seed_call(db, "C2", twilio_call_sid="CA2")

        agent = await orchestrator.set_agent_status("A1", "offline")

        assert agent.status == "offline"
        assert gateway.terminated == ["CA2"]


class TestStartDialing:
    """Tests for starting a dialing run"""

    @pytest.mark.asyncio
    async def test_start_places_up_to_limit(self, db, orchestrator, gateway):
        """Test start places at most max_concurrent_calls calls"""
        seed_agent(db, "A1", status="offline")
        for n in range(3):
            seed_contact(db, f"K{n}", f"+1555000000{n}")

        result = await orchestrator.start_dialing("A1", max_concurrent_calls=2)

        assert result.success is True
        assert len(result.results) == 2
        assert result.message == "Initiated 2 of 2 calls"
        assert len(gateway.originated) == 2
        assert db.find(AGENTS, "A1")["status"] == "available"

    @pytest.mark.asyncio
    async def test_start_without_contacts(self, db, orchestrator):
        """Test start reports when nothing can be dialed"""
        seed_agent(db, "A1", status="offline")

        result = await orchestrator.start_dialing("A1")

        assert result.success is False
        assert result.message == "No contacts available to call"


class TestMachineDetection:
    """Tests for answering machine detection outcomes"""

    def _seed_answered(self, db):
        seed_contact(db, "K1", "+15551234567", status="in_progress")
        seed_call(db, "C1", contact_id="K1", session_id="S1", twilio_call_sid="CA1")

    @pytest.mark.asyncio
    async def test_human_bridged_to_longest_idle_agent(self, db, orchestrator):
        """Test a human answer is connected to the agent idle the longest"""
        self._seed_answered(db)
        seed_agent(db, "A1", last_status_change="2024-01-01T00:05:00+00:00")
        seed_agent(db, "A2", last_status_change="2024-01-01T00:01:00+00:00")

        outcome = await orchestrator.handle_machine_detection("CA1", "human")

        assert outcome.agent_id == "A2"
        assert "<Client>agent-A2</Client>" in outcome.twiml
        assert db.find(CALLS, "C1")["agent_id"] == "A2"
        assert db.find(CALLS, "C1")["machine_detection_result"] == "human"

    @pytest.mark.asyncio
    async def test_human_queued_when_no_agent(self, db, orchestrator):
        """Test a human answer waits in the queue when nobody is free"""
        self._seed_answered(db)

        outcome = await orchestrator.handle_machine_detection("CA1", "human")

        assert outcome.queued is True
        assert "<Play" in outcome.twiml
        entries = db.tables[QUEUE]
        assert len(entries) == 1
        assert entries[0]["call_id"] == "C1"
        assert entries[0]["priority"] == 1

    @pytest.mark.asyncio
    async def test_queued_call_offered_when_agent_comes_online(self, db, orchestrator):
        """Test an agent going online picks up the waiting call"""
        self._seed_answered(db)
        seed_agent(db, "A1", status="offline")
        await orchestrator.handle_machine_detection("CA1", "human")

        agent = await orchestrator.set_agent_status("A1", "online")

        assert agent.status == "busy"
        assert agent.current_call_id == "C1"
        assert db.tables[QUEUE] == []

    @pytest.mark.asyncio
    async def test_machine_leaves_voicemail(self, db, orchestrator):
        """Test a machine answer gets the voicemail message and a voicemail contact"""
        self._seed_answered(db)
        seed_agent(db, "A1")

        outcome = await orchestrator.handle_machine_detection("CA1", "machine_end_beep")

        assert outcome.result == "machine"
        assert outcome.agent_id is None
        assert "<Pause" in outcome.twiml
        assert db.find(AGENTS, "A1")["status"] == "available"

        await orchestrator.apply_provider_status(
            CallStatusEvent(call_sid="CA1", status="completed", timestamp=ts(30))
        )
        assert db.find(CONTACTS, "K1")["status"] == "voicemail"

    @pytest.mark.asyncio
    async def test_unknown_answer_gets_automated_message(self, db, orchestrator):
        """Test an undetermined answer is not bridged"""
        self._seed_answered(db)
        seed_agent(db, "A1")

        outcome = await orchestrator.handle_machine_detection("CA1", "unknown")

        assert outcome.result == "unknown"
        assert "automated call" in outcome.twiml
        assert db.find(CALLS, "C1")["agent_id"] is None


class TestApplyProviderStatus:
    """Tests for folding provider callbacks into call records"""

    @pytest.mark.asyncio
    async def test_stale_status_does_not_regress(self, db, orchestrator):
        """Test a late ringing never overwrites a newer in-progress"""
        seed_call(db, "C1", status="queued", twilio_call_sid="CA1",
                  start_timestamp=None, status_updated_at="2024-01-01T00:00:10+00:00")

        await orchestrator.apply_provider_status(
            CallStatusEvent(call_sid="CA1", status="in-progress", timestamp=ts(20))
        )
        await orchestrator.apply_provider_status(
            CallStatusEvent(call_sid="CA1", status="ringing", timestamp=ts(15))
        )

        row = db.find(CALLS, "C1")
        assert row["status"] == "in_progress"
        assert row["provider_status"] == "in-progress"

    @pytest.mark.asyncio
    async def test_no_answer_ends_call_and_contact(self, db, orchestrator, gateway):
        """Test a no-answer callback closes the call and marks the contact"""
        seed_contact(db, "K1", "+15551234567", status="in_progress")
        seed_call(db, "C1", contact_id="K1", twilio_call_sid="CA1")

        await orchestrator.apply_provider_status(
            CallStatusEvent(call_sid="CA1", status="no-answer", duration=0, timestamp=ts(40))
        )

        row = db.find(CALLS, "C1")
        assert row["status"] == "completed"
        assert row["provider_status"] == "no-answer"
        assert row["duration"] == 0
        assert db.find(CONTACTS, "K1")["status"] == "no_answer"
        assert gateway.terminated == []

    @pytest.mark.asyncio
    async def test_unknown_call_ignored(self, orchestrator):
        """Test a callback for an unknown SID is ignored"""
        result = await orchestrator.apply_provider_status(
            CallStatusEvent(call_sid="CA404", status="ringing", timestamp=ts(1))
        )

        assert result is None


class TestReads:
    """Tests for live call views"""

    @pytest.mark.asyncio
    async def test_list_active_calls_joins_contact_and_agent(self, db, orchestrator):
        """Test active calls come back with their contact and agent"""
        seed_contact(db, "K1", "+15551234567", status="in_progress", name="Pat")
        seed_agent(db, "A1", status="busy", current_call_id="C1")
        seed_call(db, "C1", contact_id="K1", agent_id="A1")
        seed_call(db, "C2", status="completed")

        active = await orchestrator.list_active_calls()

        assert len(active) == 1
        assert active[0].call.id == "C1"
        assert active[0].contact.name == "Pat"
        assert active[0].agent.id == "A1"

    @pytest.mark.asyncio
    async def test_call_state_none_when_finished(self, db, orchestrator):
        """Test a finished call has no live state"""
        seed_call(db, "C1", status="completed", twilio_call_sid="CA1")

        assert await orchestrator.get_call_state("C1") is None
        assert await orchestrator.get_call_state("CA1") is None
