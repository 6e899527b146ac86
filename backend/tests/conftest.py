"""
Shared fixtures: an orchestration stack wired to in-memory fakes
"""
import os

import pytest

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

from fakes import FakeGateway, FakeRedis, FakeSupabase

from crm_dialer.domain.services.call_resolution import CallResolver
from crm_dialer.domain.services.dialer_orchestrator import DialerOrchestrator
from crm_dialer.domain.services.disposition_service import DispositionService
from crm_dialer.domain.services.queue_service import CallQueueService
from crm_dialer.domain.services.session_manager import SessionStore
from crm_dialer.domain.services.status_bridge import StatusPublisher
from crm_dialer.domain.services.status_ingest import CallStatusIngest, StatusRingBuffer
from crm_dialer.infrastructure.storage.repository import DialerRepository


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def repository(db):
    return DialerRepository(db)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sessions():
    return SessionStore(timeout_seconds=1800)


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def publisher(redis_client):
    return StatusPublisher(redis_client=redis_client)


@pytest.fixture
def queue(repository):
    return CallQueueService(repository)


@pytest.fixture
def orchestrator(repository, gateway, sessions, queue, publisher):
    return DialerOrchestrator(
        repository=repository,
        gateway=gateway,
        sessions=sessions,
        queue=queue,
        publisher=publisher,
        caller_id="+15550000000",
        public_base_url="https://dialer.example.com",
    )


@pytest.fixture
def ingest(repository, orchestrator, publisher):
    return CallStatusIngest(
        repository=repository,
        orchestrator=orchestrator,
        publisher=publisher,
        buffer=StatusRingBuffer(maxlen=100),
    )


@pytest.fixture
def dispositions(repository, orchestrator, publisher):
    return DispositionService(
        repository=repository,
        orchestrator=orchestrator,
        publisher=publisher,
    )


@pytest.fixture
def resolver(repository, gateway):
    return CallResolver(repository, gateway)
