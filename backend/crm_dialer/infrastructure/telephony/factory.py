"""
Telephony Provider Factory
"""
from typing import Dict, Type
from crm_dialer.domain.interfaces.telephony_provider import CallPlacementGateway
from crm_dialer.infrastructure.telephony.twilio_gateway import TwilioGateway


class TelephonyFactory:
    """Factory for creating call placement gateways"""

    _providers: Dict[str, Type[CallPlacementGateway]] = {}

    @classmethod
    async def create(cls, provider_name: str, config: dict) -> CallPlacementGateway:
        """Create and initialize a gateway instance"""
        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys()) if cls._providers else "None"
            raise ValueError(f"Unknown Telephony provider: {provider_name}. Available: {available}")

        gateway = cls._providers[provider_name]()
        await gateway.initialize(config)
        return gateway

    @classmethod
    def register(cls, name: str, provider_class: Type[CallPlacementGateway]) -> None:
        cls._providers[name] = provider_class

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers.keys())


TelephonyFactory.register("twilio", TwilioGateway)
