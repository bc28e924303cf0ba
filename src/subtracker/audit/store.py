"""Audit store — append-only log of identity changes.

Learn: Every register, login and logout appends a row here in the same
transaction as the change itself. Rows are never updated or deleted;
the log is what operators read to reconstruct who signed in from where.
"""

import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from subtracker.db.models import AuditLog

# Actions
CREATE = "create"
REVOKE = "revoke"


class AuditStore:
    """Append-only audit log backed by the audit_logs table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        table_name: str,
        record_id: str,
        action: str,
        user_id: Optional[uuid.UUID] = None,
        new_values: dict | None = None,
        old_values: dict | None = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditLog:
        """Stage an audit row. Committed together with the caller's change."""
        entry = AuditLog(
            user_id=user_id,
            table_name=table_name,
            record_id=record_id,
            action=action,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry
