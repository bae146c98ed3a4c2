"""
Audit trail of staff actions.

Entries are written after the business transaction has committed, in a
separate commit. A failed write is logged and dropped: the audit trail is
not allowed to fail a request whose changes already succeeded.
"""
from typing import Any, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.logging import get_logger
from ambassador.app.models.audit import AuditLog

logger = get_logger(__name__)


class AuditService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        user_id: Optional[int],
        details: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            details=details,
        )
        try:
            self.session.add(entry)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Audit log write failed", action=action, entity_type=entity_type, entity_id=entity_id, error=str(e))
            return None
        return entry

    async def list_entries(
        self,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        user_id: Optional[int] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[AuditLog], int]:
        """Newest first, with the total count for pagination."""
        conditions = []
        if action:
            conditions.append(AuditLog.action == action)
        if entity_type:
            conditions.append(AuditLog.entity_type == entity_type)
        if user_id:
            conditions.append(AuditLog.user_id == user_id)

        total = await self.session.scalar(select(func.count(AuditLog.id)).where(*conditions))
        result = await self.session.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0
