"""
Signup invitations
"""
from datetime import datetime

from sqlalchemy import Column, String, DateTime, JSON, ForeignKey
from backoffice.database import Base
from backoffice.models.user import new_id


class Invitation(Base):
    __tablename__ = "invitations"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, nullable=False, index=True)
    token = Column(String, unique=True, nullable=False, index=True)
    role = Column(String, nullable=False)
    invited_by = Column(String(36), ForeignKey("profiles.user_id", ondelete="SET NULL"), nullable=True)
    referred_by = Column(String(36), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    trial_expiry_date = Column(DateTime, nullable=True)
    subscribed_products = Column(JSON, nullable=True)  # list of product ids
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
