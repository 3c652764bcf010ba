from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Text, JSON, Numeric, Date, Index
from sqlalchemy.orm import relationship

from invex.db.connection import get_base

Base = get_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite does not keep tzinfo"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Invoice(Base):
    """An uploaded invoice and, once completed, its extracted data."""
    __tablename__ = 'invoices'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    original_filename = Column(String(255), nullable=False)
    stored_path = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False, default='pending')

    # Metadata
    invoice_number = Column(String(100))
    invoice_date = Column(Date)
    due_date = Column(Date)
    currency = Column(String(3))

    # Parties
    vendor_name = Column(String(255))
    vendor_address = Column(Text)
    vendor_tax_id = Column(String(50))
    customer_name = Column(String(255))
    customer_address = Column(Text)
    customer_tax_id = Column(String(50))

    # Totals
    subtotal = Column(Numeric(12, 2))
    tax_amount = Column(Numeric(12, 2))
    total = Column(Numeric(12, 2))

    confidence_scores = Column(JSON)
    error_message = Column(Text)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.id"
    )

    __table_args__ = (
        Index('ix_invoices_status', 'status'),
        Index('ix_invoices_user_id', 'user_id'),
    )

    def __repr__(self):
        return f"<Invoice(id={self.id}, status='{self.status}')>"


class InvoiceLineItem(Base):
    """A line item owned by exactly one invoice."""
    __tablename__ = 'invoice_items'

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    description = Column(String(500), nullable=False)
    quantity = Column(Numeric(10, 3), nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    tax = Column(Numeric(12, 2))
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    invoice = relationship("Invoice", back_populates="items")

    def __repr__(self):
        return f"<InvoiceLineItem(id={self.id}, invoice_id={self.invoice_id}, amount={self.amount})>"


class RunLease(Base):
    """Exclusive, time-bounded claim on running the pipeline for one invoice."""
    __tablename__ = 'run_leases'

    invoice_id = Column(Integer, primary_key=True)
    owner = Column(String(64), nullable=False)
    acquired_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    def is_expired(self, now: datetime = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def __repr__(self):
        return f"<RunLease(invoice_id={self.invoice_id}, owner='{self.owner}', expires_at={self.expires_at})>"
