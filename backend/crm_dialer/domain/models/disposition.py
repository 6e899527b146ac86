"""
Disposition Models
Terminal lead outcomes and the request/response shapes that set them
"""
from pydantic import BaseModel, Field
from typing import List, Optional, Union
from enum import Enum


BULK_DISPOSITION_LIMIT = 50

DISPOSITION_ACTIVITY_TYPE = "Disposition Change"
SINGLE_DISPOSITION_ACTIVITY_TYPE = "disposition"


class Disposition(str, Enum):
    NOT_CONTACTED = "Not Contacted"
    CONTACTED = "Contacted"
    APPOINTMENT_SET = "Appointment Set"
    SUBMITTED = "Submitted"
    DEAD = "Dead"
    DNC = "DNC"

    @classmethod
    def values(cls) -> List[str]:
        return [d.value for d in cls]


LeadId = Union[int, str]


class DispositionRequest(BaseModel):
    """Set one lead's disposition, optionally ending its live call"""
    lead_id: LeadId = Field(..., alias="leadId")
    disposition: str
    call_sid: Optional[str] = Field(default=None, alias="callSid")
    notes: Optional[str] = None

    model_config = {"populate_by_name": True}


class BulkDispositionRequest(BaseModel):
    lead_ids: List[LeadId] = Field(..., alias="leadIds")
    disposition: str

    model_config = {"populate_by_name": True}


class DispositionResponse(BaseModel):
    success: bool = True
    message: str
    warnings: List[str] = Field(default_factory=list)


class BulkDispositionResponse(BaseModel):
    success: bool = True
    updated_count: int = Field(..., alias="updatedCount")
    data: List[dict] = Field(default_factory=list)
    message: str
    warnings: List[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}
