"""
Unit Tests for the Disposition Service
Single and bulk lead dispositions with activity logging
"""
import pytest

from fakes import seed_agent, seed_call, seed_contact

from crm_dialer.domain.errors import BatchTooLarge, InvalidDisposition, LeadNotFound
from crm_dialer.domain.models.disposition import Disposition
from crm_dialer.domain.services.disposition_service import validate_disposition

LEADS = "leads"
ACTIVITIES = "lead_activities"


def seed_leads(db, *lead_ids):
    for lead_id in lead_ids:
        db.tables[LEADS].append({"id": lead_id, "disposition": "Not Contacted"})


class TestValidateDisposition:
    """Tests for disposition validation"""

    def test_known_values(self):
        """Test every known disposition validates"""
        for value in Disposition.values():
            assert validate_disposition(value).value == value

    def test_unknown_value(self):
        """Test an unknown disposition lists the valid ones"""
        with pytest.raises(InvalidDisposition) as exc_info:
            validate_disposition("Bogus")

        assert "Appointment Set" in exc_info.value.details["validDispositions"]


class TestBulkDisposition:
    """Tests for bulk_set_disposition"""

    @pytest.mark.asyncio
    async def test_three_leads_marked_dead(self, db, dispositions):
        """Test [1, 2, 3] -> Dead updates three leads and logs three activities"""
        seed_leads(db, 1, 2, 3, 4)

        result = await dispositions.bulk_set_disposition([1, 2, 3], "Dead")

        assert result.updated_count == 3
        assert result.message == "Successfully updated 3 leads to Dead"
        assert [db.find(LEADS, i)["disposition"] for i in (1, 2, 3, 4)] == ["Dead", "Dead", "Dead", "Not Contacted"]

        activities = db.tables[ACTIVITIES]
        assert len(activities) == 3
        assert {a["lead_id"] for a in activities} == {1, 2, 3}
        assert all(a["type"] == "Disposition Change" for a in activities)
        assert activities[0]["description"] == "Disposition changed to Dead (bulk update)"

    @pytest.mark.asyncio
    async def test_over_limit_writes_nothing(self, db, dispositions):
        """Test 51 leads are rejected before any mutation"""
        seed_leads(db, *range(51))

        with pytest.raises(BatchTooLarge):
            await dispositions.bulk_set_disposition(list(range(51)), "Dead")

        assert db.mutations(LEADS) == []
        assert db.tables[ACTIVITIES] == []

    @pytest.mark.asyncio
    async def test_exactly_at_limit(self, db, dispositions):
        """Test 50 leads are accepted"""
        seed_leads(db, *range(50))

        result = await dispositions.bulk_set_disposition(list(range(50)), "DNC")

        assert result.updated_count == 50

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, dispositions):
        """Test an empty batch is rejected"""
        with pytest.raises(BatchTooLarge):
            await dispositions.bulk_set_disposition([], "Dead")

    @pytest.mark.asyncio
    async def test_invalid_disposition_leaves_store_unchanged(self, db, dispositions):
        """Test 'Bogus' is rejected with no lead touched"""
        seed_leads(db, 1, 2)

        with pytest.raises(InvalidDisposition):
            await dispositions.bulk_set_disposition([1, 2], "Bogus")

        assert db.mutations(LEADS) == []
        assert db.find(LEADS, 1)["disposition"] == "Not Contacted"

    @pytest.mark.asyncio
    async def test_activity_failure_is_a_warning(self, db, dispositions):
        """Test the lead update stands when the activity log fails"""
        seed_leads(db, 1)
        db.failing.add(ACTIVITIES)

        result = await dispositions.bulk_set_disposition([1], "Submitted")

        assert result.updated_count == 1
        assert result.warnings
        assert db.find(LEADS, 1)["disposition"] == "Submitted"

    @pytest.mark.asyncio
    async def test_each_lead_broadcast(self, db, dispositions, redis_client):
        """Test every updated lead is published on its own channel"""
        seed_leads(db, 1, 2)

        await dispositions.bulk_set_disposition([1, 2], "Contacted")

        assert redis_client.messages("lead.data.1")[0]["data"]["disposition"] == "Contacted"
        assert redis_client.messages("lead.data.2")[0]["leadId"] == "2"


class TestSingleDisposition:
    """Tests for set_disposition"""

    @pytest.mark.asyncio
    async def test_sets_disposition_with_notes(self, db, dispositions):
        """Test notes end up in the activity description"""
        seed_leads(db, 7)

        result = await dispositions.set_disposition(7, "Appointment Set", notes="Tuesday 10am")

        assert result.message == "Disposition updated to Appointment Set"
        activity = db.tables[ACTIVITIES][0]
        assert activity["type"] == "disposition"
        assert activity["description"] == "Disposition set to Appointment Set: Tuesday 10am"

    @pytest.mark.asyncio
    async def test_unknown_lead(self, dispositions):
        """Test a missing lead raises LeadNotFound"""
        with pytest.raises(LeadNotFound):
            await dispositions.set_disposition(404, "Dead")

    @pytest.mark.asyncio
    async def test_call_sid_ends_call(self, db, dispositions, gateway):
        """Test a disposition with a callSid hangs the call up and frees the agent"""
        seed_leads(db, 7)
        seed_contact(db, "K1", "+15551234567", status="in_progress", lead_id="7")
        seed_agent(db, "A1", status="busy", current_call_id="C1")
        seed_call(db, "C1", contact_id="K1", agent_id="A1", twilio_call_sid="CA1")

        result = await dispositions.set_disposition(7, "Contacted", call_sid="CA1")

        assert result.warnings == []
        assert gateway.terminated == ["CA1"]
        assert db.find("power_dialer_calls", "C1")["status"] == "completed"
        assert db.find("power_dialer_agents", "A1")["status"] == "available"

    @pytest.mark.asyncio
    async def test_unknown_call_sid_is_a_warning(self, db, dispositions):
        """Test the disposition stands when its call cannot be found"""
        seed_leads(db, 7)

        result = await dispositions.set_disposition(7, "Dead", call_sid="CA404")

        assert result.success is True
        assert result.warnings == ["Call CA404 not found"]
        assert db.find(LEADS, 7)["disposition"] == "Dead"
