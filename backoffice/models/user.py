"""
Auth identity and profile models
"""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, Numeric
from sqlalchemy.orm import relationship
from backoffice.database import Base


class Role(str, Enum):
    ADMIN = "admin"
    RESELLER = "reseller"
    CONSUMER = "consumer"
    USER = "user"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    DEACTIVE = "deactive"
    EXPIRED_SUBSCRIPTION = "expired_subscription"
    PENDING = "pending"


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Login identity. Email is optional: some identities have none on file."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, unique=True, nullable=True, index=True)
    hashed_password = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    profile = relationship("Profile", back_populates="user", uselist=False)


class Profile(Base):
    """Back-office profile attached to an identity"""
    __tablename__ = "profiles"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    full_name = Column(String, nullable=True)
    nickname = Column(String, nullable=True)
    role = Column(String, nullable=False, default=Role.CONSUMER.value, index=True)
    phone = Column(String, nullable=True)
    country = Column(String, nullable=True)
    city = Column(String, nullable=True)

    # Reseller (or admin) that brought this account in
    referred_by = Column(String(36), ForeignKey("profiles.user_id"), nullable=True, index=True)

    account_status = Column(String, nullable=False, default=AccountStatus.ACTIVE.value)
    trial_expiry = Column(DateTime, nullable=True)
    lifetime_access = Column(Boolean, default=False)

    # Per-reseller override of the default commission, percent
    commission_rate = Column(Numeric(5, 2), nullable=True)
    commission_updated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="profile")

    @property
    def email(self):
        return self.user.email if self.user else None

    def has_role(self, *roles) -> bool:
        return self.role in {r.value if isinstance(r, Role) else r for r in roles}
