"""
Invoice models
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, String, Text, Date, DateTime, Integer, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from backoffice.database import Base
from backoffice.models.user import new_id


class InvoiceStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class Invoice(Base):
    """Invoice issued by an admin or reseller to a consumer"""
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=new_id)
    sender_id = Column(String(36), ForeignKey("profiles.user_id"), nullable=False, index=True)
    receiver_id = Column(String(36), ForeignKey("profiles.user_id"), nullable=False, index=True)

    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)

    # Computed once at creation: total_amount = sum(line totals) + tax_total
    total_amount = Column(Numeric(12, 2), nullable=False)
    tax_total = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(String, nullable=False, default=InvoiceStatus.UNPAID.value)
    notes = Column(Text, nullable=True)

    # Commission snapshot, never recomputed
    reseller_commission_percentage = Column(Numeric(5, 2), nullable=True)
    applied_offer_id = Column(String(36), ForeignKey("offers.id", ondelete="SET NULL"), nullable=True)
    commission_calculated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    sender = relationship("Profile", foreign_keys=[sender_id])
    receiver = relationship("Profile", foreign_keys=[receiver_id])
    applied_offer = relationship("Offer")
    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class InvoiceItem(Base):
    """Line item in an invoice"""
    __tablename__ = "invoice_items"

    id = Column(String(36), primary_key=True, default=new_id)
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    total_price = Column(Numeric(12, 2), nullable=False)  # unit_price * quantity * (1 + tax_rate/100)

    # Relationships
    invoice = relationship("Invoice", back_populates="items")
    product = relationship("Product")
