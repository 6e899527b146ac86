"""
Call Placement Gateway Interface
Abstract base class for telephony providers that place and control calls
"""
from abc import ABC, abstractmethod
from typing import Dict, List


class CallPlacementGateway(ABC):
    """Abstract base class for call placement providers"""

    @abstractmethod
    async def initialize(self, config: dict) -> None:
        """Initialize the provider with configuration"""
        pass

    @abstractmethod
    async def originate(
        self,
        to_number: str,
        from_number: str,
        status_url: str,
        machine_detection_url: str,
    ) -> str:
        """
        Place an outbound call

        Args:
            to_number: Destination phone number
            from_number: Caller ID number
            status_url: Webhook receiving call status callbacks
            machine_detection_url: Webhook receiving answering machine detection

        Returns:
            Provider call identifier

        Raises:
            PlacementFailure: Provider rejected the call or was unreachable
        """
        pass

    @abstractmethod
    async def terminate(self, call_sid: str) -> bool:
        """End a live call. Raises PlacementFailure on provider errors."""
        pass

    @abstractmethod
    async def list_active_calls(self) -> List[Dict]:
        """Calls the provider currently reports as in progress"""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Release resources"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass
