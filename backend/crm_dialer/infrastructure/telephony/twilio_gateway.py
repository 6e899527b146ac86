"""
Twilio Call Placement Gateway
Places, ends and lists outbound calls through the Twilio REST API
"""
import os
import uuid
import logging
from typing import Dict, List, Optional

import httpx

from crm_dialer.domain.errors import PlacementFailure
from crm_dialer.domain.interfaces.telephony_provider import CallPlacementGateway

logger = logging.getLogger(__name__)


DEFAULT_API_BASE = "https://api.twilio.com/2010-04-01"
STATUS_CALLBACK_EVENTS = "initiated ringing answered completed"


class TwilioGateway(CallPlacementGateway):
    """
    Twilio Voice REST client.

    Calls are created with answering machine detection. Twilio finishes the
    detection before fetching the answer url, so that request carries
    AnsweredBy and its TwiML decides between agent, queue and voicemail.

    Without TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN the gateway simulates
    calls for development.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport
        self._account_sid: Optional[str] = None
        self._auth_token: Optional[str] = None
        self._api_base = DEFAULT_API_BASE
        self._timeout = 15.0
        self._initialized = False

    async def initialize(self, config: dict) -> None:
        self._account_sid = config.get("account_sid") or os.getenv("TWILIO_ACCOUNT_SID")
        self._auth_token = config.get("auth_token") or os.getenv("TWILIO_AUTH_TOKEN")
        self._api_base = config.get("api_base", DEFAULT_API_BASE).rstrip("/")
        self._timeout = float(config.get("timeout_s", 15))
        self._initialized = True

        if not self.is_configured:
            logger.warning("Twilio credentials not configured - calls will be simulated")
        else:
            logger.info("TwilioGateway initialized")

    @property
    def name(self) -> str:
        return "twilio"

    @property
    def is_configured(self) -> bool:
        return bool(self._account_sid and self._auth_token)

    @property
    def _calls_url(self) -> str:
        return f"{self._api_base}/Accounts/{self._account_sid}/Calls"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            auth=(self._account_sid, self._auth_token),
            transport=self._transport,
            timeout=self._timeout,
        )

    async def originate(
        self,
        to_number: str,
        from_number: str,
        status_url: str,
        machine_detection_url: str,
    ) -> str:
        if not self._initialized:
            await self.initialize({})

        to_number = normalize_number(to_number)
        logger.info(f"Initiating call: {from_number} -> {to_number}")

        if not self.is_configured:
            call_sid = f"SIM{uuid.uuid4().hex}"
            logger.warning(f"Twilio not configured - simulating call with SID: {call_sid}")
            return call_sid

        if not from_number:
            raise PlacementFailure("No caller id configured (TWILIO_PHONE_NUMBER)")

        form = {
            "To": to_number,
            "From": from_number,
            "Url": machine_detection_url,
            "StatusCallback": status_url,
            "StatusCallbackEvent": STATUS_CALLBACK_EVENTS,
            "StatusCallbackMethod": "POST",
            "MachineDetection": "Enable",
        }

        try:
            async with self._client() as client:
                response = await client.post(f"{self._calls_url}.json", data=form)
        except httpx.HTTPError as e:
            logger.error(f"Twilio unreachable while placing call to {to_number}: {e}")
            raise PlacementFailure(f"Twilio unreachable: {e}") from e

        if response.status_code not in (200, 201):
            logger.error(f"Twilio API error: {response.status_code} - {response.text}")
            raise PlacementFailure(
                f"Twilio API error: {response.status_code}",
                details={"status_code": response.status_code, "body": response.text},
            )

        call_sid = response.json().get("sid")
        if not call_sid:
            raise PlacementFailure("No call SID returned from Twilio")

        logger.info(f"Call initiated: SID={call_sid}")
        return call_sid

    async def terminate(self, call_sid: str) -> bool:
        if not self._initialized:
            await self.initialize({})

        if not self.is_configured:
            logger.warning(f"Twilio not configured - simulating hangup for {call_sid}")
            return True

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self._calls_url}/{call_sid}.json",
                    data={"Status": "completed"},
                )
        except httpx.HTTPError as e:
            raise PlacementFailure(f"Twilio unreachable: {e}") from e

        if response.status_code not in (200, 201, 204):
            logger.error(f"Failed to hang up call {call_sid}: {response.status_code} - {response.text}")
            raise PlacementFailure(
                f"Twilio API error: {response.status_code}",
                details={"status_code": response.status_code, "body": response.text},
            )

        logger.info(f"Call hung up: {call_sid}")
        return True

    async def list_active_calls(self) -> List[Dict]:
        if not self._initialized:
            await self.initialize({})

        if not self.is_configured:
            return []

        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self._calls_url}.json",
                    params={"Status": "in-progress"},
                )
        except httpx.HTTPError as e:
            raise PlacementFailure(f"Twilio unreachable: {e}") from e

        if response.status_code != 200:
            raise PlacementFailure(f"Twilio API error: {response.status_code}")

        return response.json().get("calls", [])

    async def cleanup(self) -> None:
        self._initialized = False


def normalize_number(number: str) -> str:
    """
    Normalize phone number to E.164 format.

    Ten digit numbers are assumed to be US/Canada.
    """
    number = number.replace(" ", "").replace("-", "").replace("(", "").replace(")", "").replace(".", "")

    if not number.startswith("+"):
        if len(number) == 10:
            number = "+1" + number
        else:
            number = "+" + number

    return number
