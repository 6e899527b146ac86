"""
Dialer Domain Models
Contacts, agents, calls and queue entries as stored in the power dialer tables
"""
from pydantic import BaseModel, Field
from typing import Optional, Set
from datetime import datetime
from enum import Enum


class ContactStatus(str, Enum):
    """Where a contact is in the dialing cycle"""
    NOT_CONTACTED = "not_contacted"
    IN_PROGRESS = "in_progress"
    CONTACTED = "contacted"
    VOICEMAIL = "voicemail"
    NO_ANSWER = "no_answer"


class AgentStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class CallStatus(str, Enum):
    """
    Call lifecycle.

    queued -> in_progress -> completed | failed
    queued -> completed | failed
    A call never re-enters queued.
    """
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class MachineDetection(str, Enum):
    HUMAN = "human"
    MACHINE = "machine"
    UNKNOWN = "unknown"

    @classmethod
    def from_answered_by(cls, value: Optional[str]) -> "MachineDetection":
        """Map Twilio AnsweredBy values (machine_start, fax, ...) onto three buckets"""
        if not value:
            return cls.UNKNOWN
        value = value.lower()
        if value == "human":
            return cls.HUMAN
        if value.startswith("machine") or value == "fax":
            return cls.MACHINE
        return cls.UNKNOWN


TERMINAL_CALL_STATUSES: Set[str] = {CallStatus.COMPLETED.value, CallStatus.FAILED.value}
ACTIVE_CALL_STATUSES: Set[str] = {CallStatus.QUEUED.value, CallStatus.IN_PROGRESS.value}

# Provider outcomes that leave the contact unreached
UNREACHED_PROVIDER_STATUSES: Set[str] = {"busy", "no-answer", "failed", "canceled"}


class Contact(BaseModel):
    """Dialable contact, optionally linked to a CRM lead"""
    id: str
    phone_number: str
    name: Optional[str] = None
    lead_id: Optional[str] = None
    status: ContactStatus = ContactStatus.NOT_CONTACTED
    last_call_timestamp: Optional[datetime] = None

    model_config = {"use_enum_values": True}


class Agent(BaseModel):
    """Human agent taking bridged calls"""
    id: str
    user_id: Optional[str] = None
    name: Optional[str] = None
    status: AgentStatus = AgentStatus.OFFLINE
    current_call_id: Optional[str] = None
    last_status_change: Optional[datetime] = None

    model_config = {"use_enum_values": True}


class Call(BaseModel):
    """
    One outbound call attempt.

    twilio_call_sid stays empty until origination succeeds.
    """
    id: str
    contact_id: Optional[str] = None
    agent_id: Optional[str] = None
    session_id: Optional[str] = None
    twilio_call_sid: Optional[str] = None
    status: CallStatus = CallStatus.QUEUED
    start_timestamp: Optional[datetime] = None
    end_timestamp: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, description="Seconds")
    machine_detection_result: Optional[MachineDetection] = None
    provider_status: Optional[str] = Field(default=None, description="Last raw provider status")
    status_updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CALL_STATUSES


class QueueEntry(BaseModel):
    """Call waiting for an agent. Higher priority is more urgent."""
    id: str
    call_id: str
    priority: int = 0
    created_timestamp: Optional[datetime] = None
    assigned_agent_id: Optional[str] = None


class ActiveCall(BaseModel):
    """Non-terminal call joined with its contact and agent"""
    call: Call
    contact: Optional[Contact] = None
    agent: Optional[Agent] = None
