"""Plan model: price catalogue mirrored from the processor."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Uuid
from sqlalchemy.orm import relationship

from billing_sync.db.base import Base


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)

    # Processor linkage
    stripe_price_id = Column(String(100), unique=True, nullable=False, index=True)
    stripe_product_id = Column(String(100), nullable=False)

    # Pricing (cents)
    amount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")

    # "month" | "year"
    billing_interval = Column(String(10), nullable=False, default="month")
    interval_count = Column(Integer, nullable=False, default=1)
    trial_period_days = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    metadata_ = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=lambda: datetime.now(UTC),
    )
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    subscriptions = relationship("Subscription", back_populates="plan")
