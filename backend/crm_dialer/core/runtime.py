"""
Dialer Runtime
Wires the store, gateway, session store and services into one object per process
"""
import logging
from dataclasses import dataclass
from typing import Optional

from supabase import Client

from crm_dialer.core.config import ConfigManager, Settings, get_settings
from crm_dialer.domain.interfaces.telephony_provider import CallPlacementGateway
from crm_dialer.domain.services.call_resolution import CallResolver
from crm_dialer.domain.services.dialer_orchestrator import DialerOrchestrator
from crm_dialer.domain.services.disposition_service import DispositionService
from crm_dialer.domain.services.queue_service import CallQueueService
from crm_dialer.domain.services.session_manager import SessionStore
from crm_dialer.domain.services.status_bridge import StatusPublisher
from crm_dialer.domain.services.status_ingest import CallStatusIngest, StatusRingBuffer
from crm_dialer.infrastructure.storage.repository import DialerRepository
from crm_dialer.infrastructure.telephony.factory import TelephonyFactory

logger = logging.getLogger(__name__)


@dataclass
class DialerRuntime:
    config: ConfigManager
    repository: DialerRepository
    gateway: CallPlacementGateway
    sessions: SessionStore
    queue: CallQueueService
    publisher: StatusPublisher
    orchestrator: DialerOrchestrator
    ingest: CallStatusIngest
    dispositions: DispositionService
    resolver: CallResolver

    async def start(self) -> None:
        await self.publisher.initialize()
        self.sessions.start()
        logger.info(f"Dialer runtime started (gateway={self.gateway.name}, redis={self.publisher.enabled})")

    async def shutdown(self) -> None:
        await self.sessions.shutdown()
        await self.publisher.close()
        await self.gateway.cleanup()
        logger.info("Dialer runtime stopped")


async def build_runtime(
    supabase: Client,
    settings: Optional[Settings] = None,
    config: Optional[ConfigManager] = None,
    gateway: Optional[CallPlacementGateway] = None,
    publisher: Optional[StatusPublisher] = None,
) -> DialerRuntime:
    settings = settings or get_settings()
    config = config or ConfigManager(env=settings.environment)

    repository = DialerRepository(supabase)

    if gateway is None:
        telephony = config.get_section("telephony")
        provider = telephony.get("active", "twilio")
        provider_config = dict(telephony.get(provider) or {})
        provider_config.setdefault("account_sid", settings.twilio_account_sid)
        provider_config.setdefault("auth_token", settings.twilio_auth_token)
        gateway = await TelephonyFactory.create(provider, provider_config)

    sessions = SessionStore(
        timeout_seconds=config.get("dialer.session_timeout_ms", 1800000) / 1000,
        gc_interval_seconds=config.get("dialer.session_gc_interval_s", 60),
    )
    queue = CallQueueService(repository)
    publisher = publisher or StatusPublisher(redis_url=settings.redis_url)

    caller_id = settings.twilio_phone_number or config.get("dialer.caller_id")
    if caller_id and caller_id.startswith("${"):
        caller_id = None

    orchestrator = DialerOrchestrator(
        repository=repository,
        gateway=gateway,
        sessions=sessions,
        queue=queue,
        publisher=publisher,
        caller_id=caller_id,
        public_base_url=settings.public_base_url,
        human_answer_priority=config.get("dialer.human_answer_priority", 1),
    )
    ingest = CallStatusIngest(
        repository=repository,
        orchestrator=orchestrator,
        publisher=publisher,
        buffer=StatusRingBuffer(
            maxlen=config.get("dialer.status_buffer_size", 100),
            max_keys=config.get("dialer.status_buffer_keys", 1000),
        ),
    )
    dispositions = DispositionService(
        repository=repository,
        orchestrator=orchestrator,
        publisher=publisher,
        bulk_limit=config.get("dispositions.bulk_limit", 50),
    )

    return DialerRuntime(
        config=config,
        repository=repository,
        gateway=gateway,
        sessions=sessions,
        queue=queue,
        publisher=publisher,
        orchestrator=orchestrator,
        ingest=ingest,
        dispositions=dispositions,
        resolver=CallResolver(repository, gateway),
    )
