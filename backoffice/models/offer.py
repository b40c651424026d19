"""
Promotional commission offers
"""
from datetime import datetime

from sqlalchemy import Column, String, Text, Date, DateTime, Boolean, Numeric, ForeignKey
from backoffice.database import Base
from backoffice.models.user import new_id


class Offer(Base):
    """Time-boxed commission percentage that overrides reseller rates"""
    __tablename__ = "offers"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    commission_percentage = Column(Numeric(5, 2), nullable=False)

    # Inclusive window
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    is_active = Column(Boolean, default=True)
    created_by = Column(String(36), ForeignKey("profiles.user_id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
