"""
Dialer Errors
Error kinds raised by the orchestration core and surfaced by the API
"""
from typing import Optional


class DialerError(Exception):
    """Base class for dialer failures that map to a structured API error"""
    kind = "DialerError"
    status_code = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class PlacementFailure(DialerError):
    """Provider rejected or could not be reached while placing/ending a call"""
    kind = "PlacementFailure"
    status_code = 502


class AgentUnavailable(DialerError):
    """Agent is not in the available state (offline, busy or lost a race)"""
    kind = "AgentUnavailable"
    status_code = 409


class CallNotAssignable(DialerError):
    """Call is terminal or already has an agent"""
    kind = "CallNotAssignable"
    status_code = 409


class CallNotFound(DialerError):
    kind = "CallNotFound"
    status_code = 400


class MissingRequiredCallData(DialerError):
    """Status event without a provider call id or status"""
    kind = "MissingRequiredCallData"
    status_code = 400


class InvalidDisposition(DialerError):
    kind = "InvalidDisposition"
    status_code = 400


class BatchTooLarge(DialerError):
    kind = "BatchTooLarge"
    status_code = 400


class SessionExpired(DialerError):
    """Session was garbage-collected after inactivity"""
    kind = "SessionExpired"
    status_code = 410


class LeadNotFound(DialerError):
    kind = "LeadNotFound"
    status_code = 404
