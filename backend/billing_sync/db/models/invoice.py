"""Invoice model: local mirror of a processor invoice."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from billing_sync.db.base import Base
from billing_sync.domain.billing_status import InvoiceStatus


class Invoice(Base):
    """Invoice row.

    ``subscription_id`` is set once the subscription is resolvable locally and
    only cleared when the invoice is voided. ``metadata`` holds the dunning
    marker (see billing_sync.domain.grace_period).
    """

    __tablename__ = "invoices"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id = Column(Uuid, ForeignKey("customers.id"), nullable=False, index=True)
    subscription_id = Column(Uuid, ForeignKey("subscriptions.id"), nullable=True, index=True)
    stripe_invoice_id = Column(String(100), unique=True, nullable=False, index=True)
    invoice_number = Column(String(100), nullable=True)

    # InvoiceStatus value
    status = Column(String(32), nullable=False, default=InvoiceStatus.DRAFT.value)

    # Amounts (cents)
    amount_cents = Column(Integer, nullable=False, default=0)
    amount_paid_cents = Column(Integer, nullable=False, default=0)
    amount_due_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")

    period_start = Column(DateTime(timezone=True), nullable=True)
    period_end = Column(DateTime(timezone=True), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Collection attempts
    attempt_count = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)

    hosted_invoice_url = Column(String(1000), nullable=True)
    invoice_pdf = Column(String(1000), nullable=True)

    metadata_ = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=lambda: datetime.now(UTC),
    )
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    customer = relationship("Customer", back_populates="invoices")
    subscription = relationship("Subscription", back_populates="invoices")
