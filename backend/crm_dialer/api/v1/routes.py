"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from crm_dialer.api.v1.endpoints import (
    dialer,
    dispositions,
    webhooks,
)

api_router = APIRouter()

api_router.include_router(dialer.router)
api_router.include_router(dispositions.router)
api_router.include_router(webhooks.router)
