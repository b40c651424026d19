"""
Activity log API endpoints
"""
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.database import get_db
from backoffice.models.activity_log import ActivityLog
from backoffice.models.user import Profile, Role
from backoffice.api.auth import require_roles
from backoffice.utils.helpers import page_meta, paginate

router = APIRouter()


@router.get("/")
async def list_activity_logs(
    action_type: Optional[str] = None,
    table_name: Optional[str] = None,
    actor_id: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(require_roles(Role.ADMIN)),
):
    query = select(ActivityLog)
    if action_type:
        query = query.where(ActivityLog.action_type == action_type)
    if table_name:
        query = query.where(ActivityLog.table_name == table_name)
    if actor_id:
        query = query.where(ActivityLog.actor_id == actor_id)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    offset, limit = paginate(page, limit)
    result = await db.execute(query.order_by(ActivityLog.created_at.desc()).offset(offset).limit(limit))
    return {
        "data": [
            {
                "id": log.id,
                "actor_id": log.actor_id,
                "actor_role": log.actor_role,
                "target_id": log.target_id,
                "action_type": log.action_type,
                "table_name": log.table_name,
                "changed_fields": log.changed_fields,
                "ip_address": log.ip_address,
                "user_agent": log.user_agent,
                "created_at": log.created_at.isoformat() if log.created_at else None,
            }
            for log in result.scalars().all()
        ],
        "pagination": page_meta(total, page, limit),
    }
