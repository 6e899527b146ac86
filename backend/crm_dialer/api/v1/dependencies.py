"""
API Dependencies
Shared dependencies for Supabase access and the dialer runtime
"""
import os
from typing import Optional

from fastapi import Depends, HTTPException
from supabase import create_client, Client
from dotenv import load_dotenv

from crm_dialer.core.runtime import DialerRuntime
from crm_dialer.domain.services.call_resolution import CallResolver
from crm_dialer.domain.services.dialer_orchestrator import DialerOrchestrator
from crm_dialer.domain.services.disposition_service import DispositionService
from crm_dialer.domain.services.status_ingest import CallStatusIngest

load_dotenv()


_runtime: Optional[DialerRuntime] = None


def get_supabase() -> Client:
    """
    Get Supabase client with validation.

    Raises:
        RuntimeError: If Supabase URL or SERVICE_KEY is not configured
    """
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY")

    if not url:
        raise RuntimeError(
            "SUPABASE_URL is not configured. "
            "Set SUPABASE_URL environment variable."
        )
    if not key:
        raise RuntimeError(
            "SUPABASE_SERVICE_KEY is not configured. "
            "Set SUPABASE_SERVICE_KEY environment variable."
        )

    return create_client(url, key)


def set_runtime(runtime: Optional[DialerRuntime]) -> None:
    global _runtime
    _runtime = runtime


def get_runtime() -> DialerRuntime:
    if _runtime is None:
        raise HTTPException(status_code=503, detail="Dialer runtime not initialized")
    return _runtime


def get_orchestrator(runtime: DialerRuntime = Depends(get_runtime)) -> DialerOrchestrator:
    return runtime.orchestrator


def get_ingest(runtime: DialerRuntime = Depends(get_runtime)) -> CallStatusIngest:
    return runtime.ingest


def get_dispositions(runtime: DialerRuntime = Depends(get_runtime)) -> DispositionService:
    return runtime.dispositions


def get_resolver(runtime: DialerRuntime = Depends(get_runtime)) -> CallResolver:
    return runtime.resolver


def get_optional_ingest() -> Optional[CallStatusIngest]:
    """None until the runtime is started"""
    return _runtime.ingest if _runtime is not None else None


def get_optional_orchestrator() -> Optional[DialerOrchestrator]:
    return _runtime.orchestrator if _runtime is not None else None
