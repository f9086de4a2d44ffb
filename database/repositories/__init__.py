"""
Database repositories
"""

from .account_repository import AccountRepository
from .activity_repository import ActivityRepository
from .order_repository import OrderRepository

__all__ = [
    'AccountRepository',
    'ActivityRepository',
    'OrderRepository',
]
