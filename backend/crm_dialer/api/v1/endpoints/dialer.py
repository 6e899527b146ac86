"""
Dialer API Endpoints
Next contact, start/stop, agent connection, hang-up and live state
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from crm_dialer.api.v1.dependencies import (
    get_ingest,
    get_orchestrator,
    get_resolver,
)
from crm_dialer.domain.models.dialer import ActiveCall
from crm_dialer.domain.services.call_resolution import CallResolver, hang_up
from crm_dialer.domain.services.dialer_orchestrator import DialerOrchestrator
from crm_dialer.domain.services.status_ingest import CallStatusIngest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dialer", tags=["dialer"])


class NextContactRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    place_call: bool = Field(default=True, alias="placeCall")

    model_config = {"populate_by_name": True}


class AgentRequest(BaseModel):
    agent_id: str = Field(..., alias="agentId")

    model_config = {"populate_by_name": True}


class StartDialingRequest(AgentRequest):
    max_concurrent_calls: int = Field(default=3, ge=1, le=10, alias="maxConcurrentCalls")
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class AgentConnectRequest(BaseModel):
    user_id: str = Field(..., alias="userId")
    name: Optional[str] = None
    status: Optional[str] = None

    model_config = {"populate_by_name": True}


class EndCallRequest(BaseModel):
    call_sid: Optional[str] = Field(default=None, alias="callSid")
    call_id: Optional[str] = Field(default=None, alias="callId")

    model_config = {"populate_by_name": True}


class ActiveCallsResponse(BaseModel):
    calls: List[ActiveCall]
    total: int


@router.post("/next-contact")
async def next_contact(
    request: NextContactRequest,
    orchestrator: DialerOrchestrator = Depends(get_orchestrator),
):
    """
    Claim the next contact for a session and, unless placeCall is false,
    place the call.

    Returns hasMoreLeads false once no contact is left.
    """
    if request.place_call:
        result = await orchestrator.dial_next(request.session_id, request.user_id)
    else:
        result = await orchestrator.request_next_contact(request.session_id, request.user_id)

    return {"success": result.kind != "failed", **result.to_response()}


@router.post("/start")
async def start_dialing(
    request: StartDialingRequest,
    orchestrator: DialerOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.start_dialing(
        request.agent_id,
        max_concurrent_calls=request.max_concurrent_calls,
        session_id=request.session_id,
    )
    return result.model_dump(by_alias=True)


@router.post("/stop")
async def stop_dialing(
    request: AgentRequest,
    orchestrator: DialerOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.stop_dialing(request.agent_id)
    return {
        "success": True,
        "message": "Dialer stopped successfully",
        "terminatedCalls": result.terminated_calls,
        "errors": result.errors,
    }


@router.post("/agents/connect")
async def connect_agent(
    request: AgentConnectRequest,
    orchestrator: DialerOrchestrator = Depends(get_orchestrator),
):
    """Register the agent for a user and optionally set its status"""
    agent = await orchestrator.register_agent(request.user_id, request.name)
    if request.status:
        agent = await orchestrator.set_agent_status(agent.id, request.status)
    return {"success": True, "agent": agent.model_dump(mode="json")}


@router.post("/calls/{call_id}/assign")
async def assign_agent(
    call_id: str,
    request: AgentRequest,
    orchestrator: DialerOrchestrator = Depends(get_orchestrator),
):
    call = await orchestrator.assign_agent(call_id, request.agent_id)
    return {"success": True, "call": call.model_dump(mode="json")}


@router.post("/end-call")
async def end_call(
    request: EndCallRequest,
    orchestrator: DialerOrchestrator = Depends(get_orchestrator),
    resolver: CallResolver = Depends(get_resolver),
):
    """
    Hang up a call.

    A given callId / callSid ends that call only; an unknown callId is a
    CallNotFound. Without either, the most recent in-progress call is used,
    then the first live call reported by Twilio.
    """
    resolved, result = await hang_up(
        orchestrator, resolver, call_sid=request.call_sid, call_id=request.call_id
    )
    return {
        "success": True,
        "message": "Call already ended" if result.already_ended else "Call ended successfully",
        "callSid": resolved.call_sid,
        "callId": resolved.call_id,
        "resolvedBy": resolved.strategy,
        "agentFreed": result.agent_freed,
        "warnings": result.warnings,
    }


@router.get("/calls/active", response_model=ActiveCallsResponse)
async def list_active_calls(
    orchestrator: DialerOrchestrator = Depends(get_orchestrator),
):
    calls = await orchestrator.list_active_calls()
    return ActiveCallsResponse(calls=calls, total=len(calls))


@router.get("/calls/{call_id}/state")
async def call_state(
    call_id: str,
    orchestrator: DialerOrchestrator = Depends(get_orchestrator),
):
    """Poll target for the live view of one call"""
    state = await orchestrator.get_call_state(call_id)
    if state is None:
        return {"active": False, "call": None}
    return {"active": True, **state.model_dump(mode="json")}


@router.get("/updates")
async def get_call_updates(
    session_id: str = Query(..., alias="sessionId"),
    last_timestamp: int = Query(0, alias="lastTimestamp", ge=0),
    limit: int = Query(20, ge=1, le=100),
    ingest: CallStatusIngest = Depends(get_ingest),
):
    """Status updates for a session newer than lastTimestamp (epoch ms), newest first"""
    updates = await ingest.get_updates(session_id, since_ms=last_timestamp, limit=limit)
    return {"success": True, "updates": updates}
