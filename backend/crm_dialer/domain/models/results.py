"""
Tagged Result Variants
Outcomes of dialer operations that are not errors
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional, Union

from crm_dialer.domain.models.dialer import Call, Contact


class Found(BaseModel):
    """A contact was claimed and a queued call created for it"""
    kind: Literal["found"] = "found"
    contact: Contact
    call: Call
    attempt: int

    def to_response(self) -> Dict[str, Any]:
        return {
            "hasMoreLeads": True,
            "contact": self.contact.model_dump(mode="json"),
            "callId": self.call.id,
            "phoneNumber": self.contact.phone_number,
            "name": self.contact.name,
            "attempt": self.attempt,
        }


class Exhausted(BaseModel):
    """No dialable contact is left"""
    kind: Literal["exhausted"] = "exhausted"

    def to_response(self) -> Dict[str, Any]:
        return {"hasMoreLeads": False, "contact": None}


class Failed(BaseModel):
    """A contact was claimed but its call could not be placed"""
    kind: Literal["failed"] = "failed"
    contact: Contact
    call: Call
    error: str

    def to_response(self) -> Dict[str, Any]:
        return {
            "hasMoreLeads": True,
            "contact": self.contact.model_dump(mode="json"),
            "callId": self.call.id,
            "error": self.error,
        }


NextContactResult = Union[Found, Exhausted, Failed]


class PlacedCall(BaseModel):
    """Result of originating one contact when dialing starts"""
    contact_id: str
    call_id: Optional[str] = None
    call_sid: Optional[str] = None
    success: bool
    error: Optional[str] = None


class StartDialingResult(BaseModel):
    success: bool
    agent_id: str
    results: List[PlacedCall] = Field(default_factory=list)
    message: str


class ResolvedCall(BaseModel):
    """
    Outcome of the hang-up call resolution chain.

    call_sid is empty for a stored call that never reached the provider.
    """
    call_sid: Optional[str] = None
    call_id: Optional[str] = None
    strategy: str


class EndCallResult(BaseModel):
    """
    Outcome of ending a call.

    already_ended is True when the call was terminal before this request,
    in which case nothing was changed.
    """
    call: Optional[Call] = None
    already_ended: bool = False
    agent_freed: bool = False
    next_call_id: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class StopDialingResult(BaseModel):
    agent_id: str
    terminated_calls: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class MachineDetectionOutcome(BaseModel):
    call_id: str
    result: str
    agent_id: Optional[str] = None
    queued: bool = False
    twiml: str
