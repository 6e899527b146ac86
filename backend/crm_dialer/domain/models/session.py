"""
Dialing Session Models
Process-local state for one dialing session
"""
from pydantic import BaseModel, Field
from typing import Dict


class InFlightCall(BaseModel):
    """A provider call placed from a session"""
    phone_number: str
    start_time: float
    attempt_count: int = 1


class DialerSession(BaseModel):
    """
    Attempt counters and in-flight calls for a session.

    Times are seconds on the owning store's clock.
    """
    session_id: str
    created_at: float
    last_activity: float
    attempts: Dict[str, int] = Field(default_factory=dict)
    calls: Dict[str, InFlightCall] = Field(default_factory=dict)

    def attempt_count(self, phone_number: str) -> int:
        return self.attempts.get(phone_number, 0)
