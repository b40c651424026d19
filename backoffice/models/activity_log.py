"""
Audit trail of create/update/delete operations
"""
from datetime import datetime

from sqlalchemy import Column, String, DateTime, JSON
from backoffice.database import Base
from backoffice.models.user import new_id


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    actor_id = Column(String(36), nullable=True, index=True)
    actor_role = Column(String, nullable=True)
    target_id = Column(String(36), nullable=True)
    action_type = Column(String, nullable=False)  # create, update, delete
    table_name = Column(String, nullable=False)
    changed_fields = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
