"""Customer model: local account linked to a processor customer."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, String, Uuid
from sqlalchemy.orm import relationship

from billing_sync.db.base import Base


class Customer(Base):
    """Billing customer.

    ``stripe_customer_id`` is cleared when the processor customer is deleted;
    ``requires_manual_review`` is raised when a remote deletion conflicts with
    live subscriptions and the pipeline refuses to resolve it on its own.
    """

    __tablename__ = "customers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, index=True)
    stripe_customer_id = Column(String(100), unique=True, nullable=True, index=True)

    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)

    requires_manual_review = Column(Boolean, nullable=False, default=False)
    review_reason = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=lambda: datetime.now(UTC),
    )
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    subscriptions = relationship("Subscription", back_populates="customer")
    invoices = relationship("Invoice", back_populates="customer")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)
