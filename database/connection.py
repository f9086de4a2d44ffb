"""
Database connection management
"""

from databases import Database

from trading_config.settings import Settings


def create_database(settings: Settings) -> Database:
    """Create a (not yet connected) database pool from settings."""
    return Database(
        settings.database_url,
        min_size=settings.database_pool_min_size,
        max_size=settings.database_pool_max_size,
    )
