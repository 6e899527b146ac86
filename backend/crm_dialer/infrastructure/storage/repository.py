"""
Dialer Repository
Supabase access for the power dialer tables

Conditional updates (``update(...).eq("status", expected)``) are the
compare-and-set primitive: a write that lost a race matches no rows and
returns an empty list.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from supabase import Client

from crm_dialer.infrastructure.storage.models import (
    CallStatusUpdate,
    Lead,
    LeadActivity,
    PowerDialerAgent,
    PowerDialerCall,
    PowerDialerContact,
    PowerDialerQueueEntry,
)

logger = logging.getLogger(__name__)


CONTACTS = PowerDialerContact.__tablename__
AGENTS = PowerDialerAgent.__tablename__
CALLS = PowerDialerCall.__tablename__
QUEUE = PowerDialerQueueEntry.__tablename__
STATUS_UPDATES = CallStatusUpdate.__tablename__
LEADS = Lead.__tablename__
LEAD_ACTIVITIES = LeadActivity.__tablename__


class DialerRepository:
    """Thin wrapper over the Supabase query builder, one method per query"""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    # Contacts

    def get_contact(self, contact_id: str) -> Optional[Dict[str, Any]]:
        response = self.supabase.table(CONTACTS).select("*").eq("id", contact_id).execute()
        return response.data[0] if response.data else None

    def list_contacts_by_status(self, status: str, limit: int) -> List[Dict[str, Any]]:
        response = self.supabase.table(CONTACTS).select("*").eq(
            "status", status
        ).order("created_at").limit(limit).execute()
        return response.data or []

    def update_contact(
        self,
        contact_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query = self.supabase.table(CONTACTS).update(fields).eq("id", contact_id)
        if expected_status is not None:
            query = query.eq("status", expected_status)
        return query.execute().data or []

    # Agents

    def get_agent(self, agent_id: str) -> Optional[Dict[str, Any]]:
        response = self.supabase.table(AGENTS).select("*").eq("id", agent_id).execute()
        return response.data[0] if response.data else None

    def get_agent_by_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        response = self.supabase.table(AGENTS).select("*").eq("user_id", user_id).execute()
        return response.data[0] if response.data else None

    def insert_agent(self, row: Dict[str, Any]) -> Dict[str, Any]:
        response = self.supabase.table(AGENTS).insert(row).execute()
        return response.data[0]

    def list_available_agents(self) -> List[Dict[str, Any]]:
        """Available agents, longest idle first"""
        response = self.supabase.table(AGENTS).select("*").eq(
            "status", "available"
        ).order("last_status_change").execute()
        return response.data or []

    def update_agent(
        self,
        agent_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[str] = None,
        expected_call_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query = self.supabase.table(AGENTS).update(fields).eq("id", agent_id)
        if expected_status is not None:
            query = query.eq("status", expected_status)
        if expected_call_id is not None:
            query = query.eq("current_call_id", expected_call_id)
        return query.execute().data or []

    # Calls

    def insert_call(self, row: Dict[str, Any]) -> Dict[str, Any]:
        response = self.supabase.table(CALLS).insert(row).execute()
        return response.data[0]

    def get_call(self, call_id: str) -> Optional[Dict[str, Any]]:
        response = self.supabase.table(CALLS).select("*").eq("id", call_id).execute()
        return response.data[0] if response.data else None

    def get_call_by_sid(self, call_sid: str) -> Optional[Dict[str, Any]]:
        response = self.supabase.table(CALLS).select("*").eq("twilio_call_sid", call_sid).execute()
        return response.data[0] if response.data else None

    def update_call(
        self,
        call_id: str,
        fields: Dict[str, Any],
        expected_statuses: Optional[Iterable[str]] = None,
        require_unassigned: bool = False,
    ) -> List[Dict[str, Any]]:
        query = self.supabase.table(CALLS).update(fields).eq("id", call_id)
        if expected_statuses is not None:
            query = query.in_("status", list(expected_statuses))
        if require_unassigned:
            query = query.is_("agent_id", "null")
        return query.execute().data or []

    def list_calls_by_status(
        self,
        statuses: Iterable[str],
        unassigned_only: bool = False,
        agent_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query = self.supabase.table(CALLS).select("*").in_("status", list(statuses))
        if unassigned_only:
            query = query.is_("agent_id", "null")
        if agent_id is not None:
            query = query.eq("agent_id", agent_id)
        return query.order("start_timestamp", desc=True).execute().data or []

    def latest_call_with_status(self, status: str) -> Optional[Dict[str, Any]]:
        response = self.supabase.table(CALLS).select("*").eq(
            "status", status
        ).order("start_timestamp", desc=True).limit(1).execute()
        return response.data[0] if response.data else None

    # Queue

    def insert_queue_entry(self, row: Dict[str, Any]) -> Dict[str, Any]:
        response = self.supabase.table(QUEUE).insert(row).execute()
        return response.data[0]

    def delete_queue_entries(self, call_id: str) -> List[Dict[str, Any]]:
        return self.supabase.table(QUEUE).delete().eq("call_id", call_id).execute().data or []

    def list_queue(self, limit: int) -> List[Dict[str, Any]]:
        """Most urgent first, FIFO among equal priorities"""
        response = self.supabase.table(QUEUE).select("*").order(
            "priority", desc=True
        ).order("created_timestamp").limit(limit).execute()
        return response.data or []

    def get_queue_entry(self, call_id: str) -> Optional[Dict[str, Any]]:
        response = self.supabase.table(QUEUE).select("*").eq("call_id", call_id).execute()
        return response.data[0] if response.data else None

    # Status updates

    def insert_status_update(self, row: Dict[str, Any]) -> None:
        self.supabase.table(STATUS_UPDATES).insert(row).execute()

    def list_status_updates(self, session_id: str, since_iso: str, limit: int) -> List[Dict[str, Any]]:
        response = self.supabase.table(STATUS_UPDATES).select("*").eq(
            "session_id", session_id
        ).gt("timestamp", since_iso).order("timestamp", desc=True).limit(limit).execute()
        return response.data or []

    # Leads

    def update_leads(self, lead_ids: List[Any], fields: Dict[str, Any]) -> List[Dict[str, Any]]:
        if len(lead_ids) == 1:
            query = self.supabase.table(LEADS).update(fields).eq("id", lead_ids[0])
        else:
            query = self.supabase.table(LEADS).update(fields).in_("id", lead_ids)
        return query.execute().data or []

    def insert_activities(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self.supabase.table(LEAD_ACTIVITIES).insert(rows).execute().data or []
