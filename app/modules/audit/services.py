from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional, Dict, Any

from app.modules.audit.models import AuditLog, AuditActorType


class AuditService:
    """Writes and reads audit records inside the caller's DB transaction"""

    @staticmethod
    def record(
        db: AsyncSession,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_user_id: Optional[int] = None,
        diff: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            diff=diff,
            actor_type=AuditActorType.USER if actor_user_id else AuditActorType.SYSTEM,
            actor_user_id=actor_user_id,
        )
        db.add(entry)
        return entry

    @staticmethod
    async def list_entries(
        db: AsyncSession,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AuditLog]:
        query = select(AuditLog)
        if entity_type:
            query = query.where(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.where(AuditLog.entity_id == entity_id)
        query = query.order_by(AuditLog.id).offset(skip).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())
