"""
Audit logging of create/update/delete operations
"""
import logging
from typing import Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.models.activity_log import ActivityLog
from backoffice.models.user import Profile

logger = logging.getLogger(__name__)

ACTION_TYPES = {"create", "update", "delete"}


def client_ip(request: Optional[Request]) -> Optional[str]:
    """First X-Forwarded-For entry, or the socket peer"""
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def user_agent(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    return request.headers.get("user-agent")


async def log_activity(
    db: AsyncSession,
    actor: Optional[Profile],
    target_id: Optional[str],
    action_type: str,
    table_name: str,
    changed_fields: Optional[dict] = None,
    request: Optional[Request] = None,
) -> None:
    """Record an activity row. Failures are logged, never raised."""
    if action_type not in ACTION_TYPES:
        logger.warning(f"Unknown activity action_type {action_type!r}")
        return

    entry = ActivityLog(
        actor_id=actor.user_id if actor else None,
        actor_role=actor.role if actor else None,
        target_id=target_id,
        action_type=action_type,
        table_name=table_name,
        changed_fields=changed_fields,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )
    try:
        db.add(entry)
        await db.commit()
    except SQLAlchemyError:
        logger.exception(f"Failed to log {action_type} on {table_name}")
        await db.rollback()
