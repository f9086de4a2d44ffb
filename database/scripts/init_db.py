#!/usr/bin/env python3
"""
Initialize the database schema

Usage:
    python database/scripts/init_db.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to sys.path
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from databases import Database
from dotenv import load_dotenv

from helpers.unified_logger import get_core_logger
from trading_config.settings import Settings

load_dotenv()

logger = get_core_logger("init_db")

EXPECTED_TABLES = ("accounts", "orders", "activity_log")


def split_statements(schema_sql: str):
    """Split a schema file on ';', dropping comment-only chunks."""
    statements = []
    for chunk in schema_sql.split(';'):
        lines = [line for line in chunk.splitlines() if not line.strip().startswith('--')]
        statement = "\n".join(lines).strip()
        if statement:
            statements.append(statement)
    return statements


async def init_database() -> bool:
    """Initialize database with schema"""
    settings = Settings()

    logger.info("Initializing database...")
    logger.info(f"Database URL: {settings.database_url.split('@')[1] if '@' in settings.database_url else 'localhost'}")

    db = Database(settings.database_url)
    await db.connect()

    try:
        schema_path = PROJECT_ROOT / "database" / "schema.sql"
        if not schema_path.exists():
            logger.error(f"Schema file not found: {schema_path}")
            return False

        statements = split_statements(schema_path.read_text())
        for i, statement in enumerate(statements, 1):
            try:
                await db.execute(statement)
                logger.debug(f"Executed statement {i}/{len(statements)}")
            except Exception as e:
                logger.warning(f"Statement {i} failed (may already exist): {e}")

        rows = await db.fetch_all("""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = 'public'
        """)
        present = {row['table_name'] for row in rows}
        missing = [table for table in EXPECTED_TABLES if table not in present]
        if missing:
            logger.error(f"❌ Missing tables after init: {', '.join(missing)}")
            return False

        logger.info("✅ Database schema initialized successfully!")
        return True
    finally:
        await db.disconnect()


if __name__ == "__main__":
    ok = asyncio.run(init_database())
    sys.exit(0 if ok else 1)
