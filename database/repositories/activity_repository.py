"""
Activity Repository - append-only audit trail
"""

import json
from typing import Any, Dict, List, Optional
from databases import Database


class ActivityRepository:
    """Writes and reads audit entries. Entries are never updated or deleted."""

    def __init__(self, db: Database):
        self.db = db

    async def record(
        self,
        account_id: Optional[str],
        action: str,
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> None:
        await self.db.execute("""
            INSERT INTO activity_log (
                account_id, action, resource, resource_id, details, success, error_message
            )
            VALUES (
                :account_id, :action, :resource, :resource_id,
                CAST(:details AS jsonb), :success, :error_message
            )
        """, {
            "account_id": str(account_id) if account_id else None,
            "action": action,
            "resource": resource,
            "resource_id": resource_id,
            "details": json.dumps(details or {}, default=str),
            "success": success,
            "error_message": error_message,
        })

    async def list_for_account(self, account_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        rows = await self.db.fetch_all("""
            SELECT id, account_id, action, resource, resource_id, details,
                   success, error_message, created_at
            FROM activity_log
            WHERE account_id = :account_id
            ORDER BY created_at DESC
            LIMIT :limit
        """, {"account_id": str(account_id), "limit": limit})
        return [dict(row) for row in rows]
