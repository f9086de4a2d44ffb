"""
Helper modules for the custody service.
"""

from .unified_logger import (
    get_logger,
    get_exchange_logger,
    get_execution_logger,
    get_service_logger,
    get_core_logger,
    log_stage,
    redact,
)

__all__ = [
    'get_logger',
    'get_exchange_logger',
    'get_execution_logger',
    'get_service_logger',
    'get_core_logger',
    'log_stage',
    'redact',
]
