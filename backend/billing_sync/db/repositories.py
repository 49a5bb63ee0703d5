"""Lookup helpers for reconciliation targets.

Soft-deleted rows are excluded by an explicit predicate at every call site.
Pass ``include_deleted=True`` where a handler legitimately needs them.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_sync.db.models import Customer, Invoice, Plan, Subscription
from billing_sync.domain.billing_status import LIVE_SUBSCRIPTION_STATUSES


def not_deleted(model):
    """Predicate excluding soft-deleted rows of ``model``."""
    return model.is_deleted.is_(False)


async def get_customer_by_stripe_id(
    session: AsyncSession,
    stripe_customer_id: str | None,
    include_deleted: bool = False,
) -> Customer | None:
    if not stripe_customer_id:
        return None
    stmt = select(Customer).where(Customer.stripe_customer_id == stripe_customer_id)
    if not include_deleted:
        stmt = stmt.where(not_deleted(Customer))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_customer(session: AsyncSession, customer_id, include_deleted: bool = False) -> Customer | None:
    stmt = select(Customer).where(Customer.id == customer_id)
    if not include_deleted:
        stmt = stmt.where(not_deleted(Customer))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_plan_by_price_id(session: AsyncSession, stripe_price_id: str | None) -> Plan | None:
    if not stripe_price_id:
        return None
    result = await session.execute(
        select(Plan).where(Plan.stripe_price_id == stripe_price_id, not_deleted(Plan))
    )
    return result.scalar_one_or_none()


async def get_plan(session: AsyncSession, plan_id) -> Plan | None:
    result = await session.execute(select(Plan).where(Plan.id == plan_id, not_deleted(Plan)))
    return result.scalar_one_or_none()


async def get_subscription_by_stripe_id(
    session: AsyncSession,
    stripe_subscription_id: str | None,
    include_deleted: bool = False,
) -> Subscription | None:
    if not stripe_subscription_id:
        return None
    stmt = select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
    if not include_deleted:
        stmt = stmt.where(not_deleted(Subscription))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_subscription(session: AsyncSession, subscription_id) -> Subscription | None:
    result = await session.execute(
        select(Subscription).where(Subscription.id == subscription_id, not_deleted(Subscription))
    )
    return result.scalar_one_or_none()


async def count_live_subscriptions(session: AsyncSession, customer_id) -> int:
    """Number of ACTIVE or TRIALING subscriptions the customer still holds."""
    result = await session.execute(
        select(Subscription.id).where(
            Subscription.customer_id == customer_id,
            Subscription.status.in_([s.value for s in LIVE_SUBSCRIPTION_STATUSES]),
            not_deleted(Subscription),
        )
    )
    return len(result.scalars().all())


async def get_invoice_by_stripe_id(
    session: AsyncSession,
    stripe_invoice_id: str | None,
    include_deleted: bool = False,
) -> Invoice | None:
    if not stripe_invoice_id:
        return None
    stmt = select(Invoice).where(Invoice.stripe_invoice_id == stripe_invoice_id)
    if not include_deleted:
        stmt = stmt.where(not_deleted(Invoice))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
