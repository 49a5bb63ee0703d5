"""checkout.session.completed handler."""

import uuid

from billing_sync.db import repositories as repo
from billing_sync.domain.billing_status import (
    LIVE_SUBSCRIPTION_STATUSES,
    SubscriptionStatus,
    can_transition,
    map_subscription_status,
)
from billing_sync.webhooks.envelope import (
    CheckoutSessionPayload,
    HandlerResult,
    SubscriptionPayload,
    WebhookEnvelope,
)
from billing_sync.webhooks.handlers.base import HandlerContext, WebhookHandler
from billing_sync.webhooks.handlers.subscriptions import build_subscription, schedule_welcome


def _parse_uuid(value: str | None) -> uuid.UUID | None:
    try:
        return uuid.UUID(value) if value else None
    except ValueError:
        return None


class CheckoutSessionCompletedHandler(WebhookHandler):
    """Creates the local subscription for a completed hosted checkout.

    The session metadata carries the local ``customer_id`` and ``plan_id`` set
    when the session was created. Full subscription state is fetched from the
    processor because the session payload only carries its id.
    """

    event_type = "checkout.session.completed"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        session_payload = CheckoutSessionPayload.model_validate(envelope.object)
        log = ctx.log.bind(checkout_session_id=session_payload.id)

        if session_payload.status != "complete":
            log.warning("checkout_session_not_complete", status=session_payload.status)
            return HandlerResult.ok(f"Session status is {session_payload.status}, not processing")

        if not session_payload.subscription:
            return HandlerResult.ok("Session has no subscription (one-time payment)")

        customer_id = _parse_uuid(session_payload.metadata.get("customer_id"))
        if customer_id is None:
            log.error("checkout_session_missing_customer_id")
            return HandlerResult.fail("Missing customer_id in metadata")

        plan_id = _parse_uuid(session_payload.metadata.get("plan_id"))
        if plan_id is None:
            log.error("checkout_session_missing_plan_id")
            return HandlerResult.fail("Missing plan_id in metadata")

        existing = await repo.get_subscription_by_stripe_id(
            ctx.session, session_payload.subscription, include_deleted=True
        )
        if existing is not None:
            return await self._refresh_existing(existing, session_payload, ctx)

        customer = await repo.get_customer(ctx.session, customer_id)
        if customer is None:
            return HandlerResult.retry(f"Customer {customer_id} not found")

        plan = await repo.get_plan(ctx.session, plan_id)
        if plan is None:
            return HandlerResult.retry(f"Plan {plan_id} not found")

        remote = await self._fetch_subscription(session_payload.subscription)
        if remote is None:
            log.error("checkout_remote_subscription_not_found", stripe_subscription_id=session_payload.subscription)
            return HandlerResult.retry(f"Subscription {session_payload.subscription} not found at processor")

        if customer.stripe_customer_id is None and session_payload.customer:
            customer.stripe_customer_id = session_payload.customer

        subscription = build_subscription(remote, customer, plan)
        ctx.session.add(subscription)
        await ctx.session.flush()

        log.info(
            "subscription_created_from_checkout",
            subscription_id=str(subscription.id),
            customer_id=str(customer.id),
            status=subscription.status,
        )
        schedule_welcome(ctx, self, customer, plan)

        return HandlerResult.ok(
            f"Subscription created: {subscription.id}",
            subscription_id=str(subscription.id),
            customer_id=str(customer.id),
            plan_id=str(plan.id),
        )

    async def _fetch_subscription(self, stripe_subscription_id: str) -> SubscriptionPayload | None:
        if self.client is None:
            return None
        data = await self.client.get_subscription(stripe_subscription_id)
        return SubscriptionPayload.model_validate(data) if data is not None else None

    async def _refresh_existing(self, existing, session_payload: CheckoutSessionPayload, ctx: HandlerContext) -> HandlerResult:
        ctx.log.info("checkout_subscription_already_exists", subscription_id=str(existing.id))

        current = SubscriptionStatus(existing.status)
        if current not in LIVE_SUBSCRIPTION_STATUSES and not existing.is_deleted:
            remote = await self._fetch_subscription(session_payload.subscription)
            if remote is None or remote.status is None:
                # Without remote state there is nothing to mirror; keep the local status
                ctx.log.warning(
                    "checkout_subscription_status_unavailable",
                    subscription_id=str(existing.id),
                    status=current.value,
                )
                return HandlerResult.ok(
                    f"Subscription already exists: {existing.id}",
                    subscription_id=str(existing.id),
                    status_refreshed=False,
                )

            target = map_subscription_status(remote.status)
            if can_transition(current, target):
                existing.status = target.value
                ctx.log.info(
                    "subscription_status_refreshed",
                    subscription_id=str(existing.id),
                    from_status=current.value,
                    to_status=target.value,
                )

        return HandlerResult.ok(
            f"Subscription already exists: {existing.id}",
            subscription_id=str(existing.id),
        )
