"""
Call Status Models
Provider status callbacks and the status-update records derived from them
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional, Set
from datetime import datetime
from enum import Enum


class StatusPhase(str, Enum):
    """What a provider status means for the call lifecycle"""
    PENDING = "pending"
    LIVE = "live"
    TERMINAL = "terminal"


# Twilio CallStatus -> lifecycle phase
PROVIDER_STATUS_MAP: Dict[str, StatusPhase] = {
    "queued": StatusPhase.PENDING,
    "initiated": StatusPhase.PENDING,
    "ringing": StatusPhase.PENDING,
    "in-progress": StatusPhase.LIVE,
    "answered": StatusPhase.LIVE,
    "completed": StatusPhase.TERMINAL,
    "busy": StatusPhase.TERMINAL,
    "no-answer": StatusPhase.TERMINAL,
    "failed": StatusPhase.TERMINAL,
    "canceled": StatusPhase.TERMINAL,
}

TERMINAL_PROVIDER_STATUSES: Set[str] = {
    status for status, phase in PROVIDER_STATUS_MAP.items() if phase == StatusPhase.TERMINAL
}


def normalize_provider_status(status: Optional[str]) -> Optional[str]:
    """'In_Progress' and 'in progress' both become 'in-progress'"""
    if status is None:
        return None
    return status.strip().lower().replace("_", "-").replace(" ", "-")


class CallStatusEvent(BaseModel):
    """A parsed provider callback"""
    call_sid: str
    status: str
    session_id: Optional[str] = None
    call_id: Optional[str] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    duration: Optional[int] = None
    answered_by: Optional[str] = None
    timestamp: datetime

    @property
    def phase(self) -> Optional[StatusPhase]:
        return PROVIDER_STATUS_MAP.get(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PROVIDER_STATUSES

    @property
    def key(self) -> str:
        """Session id when known, provider call id otherwise"""
        return self.session_id or self.call_sid

    def to_payload(self) -> Dict[str, Any]:
        """Shape published to subscribers and stored alongside the record"""
        return {
            "callSid": self.call_sid,
            "callId": self.call_id,
            "status": self.status,
            "from": self.from_number,
            "to": self.to_number,
            "duration": self.duration,
            "timestamp": self.timestamp.isoformat(),
        }


class StatusUpdateRecord(BaseModel):
    """Row of call_status_updates (or an entry of the memory buffer)"""
    session_id: str
    call_sid: str
    status: str
    timestamp: datetime
    data: Dict[str, Any] = Field(default_factory=dict)

    def to_row(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "call_sid": self.call_sid,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }
