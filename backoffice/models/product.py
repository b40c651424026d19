"""
Product catalog and per-user product access
"""
from datetime import datetime

from sqlalchemy import Column, String, Text, DateTime, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from backoffice.database import Base
from backoffice.models.user import new_id


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False, index=True)
    price = Column(Numeric(12, 2), nullable=False, default=0)  # catalog (minimum) price
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class UserProductAccess(Base):
    __tablename__ = "user_product_access"
    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_user_product"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    granted_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("Product")
