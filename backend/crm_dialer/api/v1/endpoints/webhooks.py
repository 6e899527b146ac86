"""
Webhooks API Endpoints
Handles incoming Twilio callbacks and client-side status logging

Provider-facing routes always answer 200 with TwiML, whatever happens
while processing the callback.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from crm_dialer.api.v1.dependencies import (
    get_ingest,
    get_optional_ingest,
    get_optional_orchestrator,
)
from crm_dialer.domain.errors import CallNotFound
from crm_dialer.domain.services.dialer_orchestrator import DialerOrchestrator
from crm_dialer.domain.services.status_ingest import CallStatusIngest, parse_payload
from crm_dialer.infrastructure.telephony import twiml

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _twiml_response(body: str) -> Response:
    return Response(content=body, media_type="text/xml")


async def _read_payload(request: Request) -> dict:
    body = await request.body()
    return parse_payload(body, request.headers.get("content-type"))


@router.post("/twilio/status")
async def twilio_status(
    request: Request,
    ingest: Optional[CallStatusIngest] = Depends(get_optional_ingest),
):
    """
    Handle Twilio call status callbacks.

    initiated / ringing / answered / completed, plus busy, no-answer,
    failed and canceled. Terminal statuses end the call, free its agent and
    clear its queue entry.
    """
    try:
        payload = await _read_payload(request)
        if ingest is None:
            logger.warning(f"Dialer runtime not ready - dropped status callback {payload.get('CallSid')}")
        else:
            await ingest.handle_provider_webhook(payload, dict(request.query_params))
    except Exception as e:
        logger.error(f"Error in twilio_status: {e}", exc_info=True)

    return _twiml_response(twiml.empty_response())


@router.post("/twilio/machine-detection")
async def twilio_machine_detection(
    request: Request,
    orchestrator: Optional[DialerOrchestrator] = Depends(get_optional_orchestrator),
):
    """
    Answer url of power dialer calls.

    Twilio posts AnsweredBy once detection is done; the TwiML returned
    bridges a human to an agent, holds them in the queue, or leaves a
    voicemail.
    """
    try:
        payload = await _read_payload(request)
        call_sid = payload.get("CallSid") or request.query_params.get("CallSid")
        answered_by = payload.get("AnsweredBy") or payload.get("MachineDetectionResult")

        if not call_sid or orchestrator is None:
            logger.warning(f"Machine detection callback not processed (CallSid={call_sid})")
            return _twiml_response(twiml.error_message())

        outcome = await orchestrator.handle_machine_detection(call_sid, answered_by)
        return _twiml_response(outcome.twiml)

    except CallNotFound as e:
        logger.error(f"Machine detection for unknown call: {e}")
    except Exception as e:
        logger.error(f"Error in twilio_machine_detection: {e}", exc_info=True)

    return _twiml_response(twiml.error_message())


@router.post("/call-status")
async def call_status_logger(
    request: Request,
    ingest: CallStatusIngest = Depends(get_ingest),
):
    """
    Record a status update reported by a client.

    Unlike the Twilio routes this one rejects events without a call sid or
    status (400 MissingRequiredCallData).
    """
    payload = await _read_payload(request)
    result = await ingest.log_status(payload, dict(request.query_params))

    return {
        "success": True,
        "callSid": result.event.call_sid,
        "status": result.event.status,
        "persisted": result.persisted,
        "buffered": result.buffered,
        "warnings": result.warnings,
    }
