"""
Workers Package
Background workers for the dialer
"""
from crm_dialer.workers.auto_dialer_worker import AutoDialerWorker

__all__ = [
    "AutoDialerWorker"
]
