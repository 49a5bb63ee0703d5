"""customer.subscription.* handlers."""

import uuid
from datetime import datetime

from billing_sync.core.clock import ensure_utc, from_unix, utcnow
from billing_sync.core.exceptions import ProcessorError
from billing_sync.db import repositories as repo
from billing_sync.db.models import Customer, Plan, Subscription
from billing_sync.domain.billing_status import (
    SubscriptionStatus,
    can_transition,
    compute_period_end,
    map_subscription_status,
)
from billing_sync.webhooks.envelope import HandlerResult, SubscriptionPayload, WebhookEnvelope
from billing_sync.webhooks.handlers.base import HandlerContext, WebhookHandler, assign


def build_subscription(
    payload: SubscriptionPayload,
    customer: Customer,
    plan: Plan,
    status: SubscriptionStatus | None = None,
    event_at: datetime | None = None,
) -> Subscription:
    """New local row from a remote subscription; period end follows the plan interval."""
    period_start = from_unix(payload.period_start or payload.start_date) or utcnow()
    return Subscription(
        id=uuid.uuid4(),
        customer_id=customer.id,
        plan_id=plan.id,
        stripe_subscription_id=payload.id,
        status=(status or map_subscription_status(payload.status)).value,
        current_period_start=period_start,
        current_period_end=compute_period_end(period_start, plan.billing_interval, plan.interval_count),
        cancel_at=from_unix(payload.cancel_at),
        canceled_at=from_unix(payload.canceled_at),
        cancel_at_period_end=payload.cancel_at_period_end,
        trial_start=from_unix(payload.trial_start),
        trial_end=from_unix(payload.trial_end),
        ended_at=from_unix(payload.ended_at),
        quantity=payload.quantity,
        metadata_=dict(payload.metadata),
        last_event_at=event_at,
    )


def schedule_welcome(ctx: HandlerContext, handler: WebhookHandler, customer: Customer, plan: Plan) -> None:
    customer_id, email, plan_name = str(customer.id), customer.email, plan.name
    ctx.notify(
        "welcome",
        lambda: handler.notifications.sender.send_welcome_email(customer_id, email, plan_name),
    )


class SubscriptionCreatedHandler(WebhookHandler):
    event_type = "customer.subscription.created"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = SubscriptionPayload.model_validate(envelope.object)

        existing = await repo.get_subscription_by_stripe_id(ctx.session, payload.id, include_deleted=True)
        if existing is not None:
            # Usually created first by checkout.session.completed
            ctx.log.info("subscription_already_exists", subscription_id=str(existing.id))
            return HandlerResult.ok(
                f"Subscription already exists: {existing.id}",
                subscription_id=str(existing.id),
            )

        return await self.create_from_payload(payload, ctx, envelope.occurred_at)

    async def create_from_payload(
        self,
        payload: SubscriptionPayload,
        ctx: HandlerContext,
        event_at: datetime | None = None,
    ) -> HandlerResult:
        customer = await repo.get_customer_by_stripe_id(ctx.session, payload.customer)
        if customer is None:
            ctx.log.warning("subscription_customer_not_found", stripe_customer_id=payload.customer)
            return HandlerResult.retry(f"Customer {payload.customer} not found for subscription")

        price_id = payload.price_id
        if not price_id:
            return HandlerResult.fail("Subscription has no price id")

        plan = await repo.get_plan_by_price_id(ctx.session, price_id)
        if plan is None:
            ctx.log.warning("subscription_plan_not_found", price_id=price_id)
            return HandlerResult.retry(f"Plan not found for price {price_id}")

        subscription = build_subscription(payload, customer, plan, event_at=event_at)
        ctx.session.add(subscription)
        await ctx.session.flush()

        ctx.log.info(
            "subscription_created",
            subscription_id=str(subscription.id),
            stripe_subscription_id=payload.id,
            status=subscription.status,
        )

        if subscription.status != SubscriptionStatus.TRIALING.value:
            schedule_welcome(ctx, self, customer, plan)

        return HandlerResult.ok(
            f"Subscription created: {subscription.id}",
            subscription_id=str(subscription.id),
            customer_id=str(customer.id),
            plan_id=str(plan.id),
        )


class SubscriptionUpdatedHandler(SubscriptionCreatedHandler):
    event_type = "customer.subscription.updated"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = SubscriptionPayload.model_validate(envelope.object)

        subscription = await repo.get_subscription_by_stripe_id(ctx.session, payload.id, include_deleted=True)
        if subscription is None:
            ctx.log.warning("subscription_missing_creating", stripe_subscription_id=payload.id)
            return await self.create_from_payload(payload, ctx, envelope.occurred_at)

        if subscription.is_deleted:
            return HandlerResult.ok(
                f"Subscription {subscription.id} is deleted, update ignored",
                subscription_id=str(subscription.id),
            )

        changes: list[str] = []
        log = ctx.log.bind(subscription_id=str(subscription.id))

        event_at = envelope.occurred_at
        last_event_at = ensure_utc(subscription.last_event_at)
        if event_at is not None and last_event_at is not None and event_at < last_event_at:
            # A newer event has already been applied; this one would rewind it
            log.info(
                "subscription_update_out_of_order",
                event_at=event_at.isoformat(),
                last_event_at=last_event_at.isoformat(),
            )
            return HandlerResult.ok(
                f"Subscription {subscription.id} already reflects a newer event, update ignored",
                subscription_id=str(subscription.id),
                stale=True,
            )
        if event_at is not None:
            subscription.last_event_at = event_at

        current = SubscriptionStatus(subscription.status)
        target = map_subscription_status(payload.status) if payload.status is not None else current
        if current != target:
            if can_transition(current, target):
                subscription.status = target.value
                changes.append(f"status: {current.value} -> {target.value}")
                log.info("subscription_status_changed", from_status=current.value, to_status=target.value)
            else:
                log.warning(
                    "subscription_status_transition_rejected",
                    from_status=current.value,
                    to_status=target.value,
                )

        # Direct mirrors of remote truth
        assign(subscription, "cancel_at", from_unix(payload.cancel_at), changes)
        assign(subscription, "canceled_at", from_unix(payload.canceled_at), changes)
        assign(subscription, "cancel_at_period_end", payload.cancel_at_period_end, changes)
        assign(subscription, "trial_start", from_unix(payload.trial_start), changes)
        assign(subscription, "trial_end", from_unix(payload.trial_end), changes)
        assign(subscription, "ended_at", from_unix(payload.ended_at), changes)
        assign(subscription, "quantity", payload.quantity, changes)
        assign(subscription, "metadata_", dict(payload.metadata), changes)
        if payload.period_start is not None:
            assign(subscription, "current_period_start", from_unix(payload.period_start), changes)
        if payload.period_end is not None:
            assign(subscription, "current_period_end", from_unix(payload.period_end), changes)

        if subscription.cancel_at_period_end:
            log.warning("subscription_cancels_at_period_end", period_end=str(subscription.current_period_end))

        price_id = payload.price_id
        if price_id:
            plan = await repo.get_plan(ctx.session, subscription.plan_id)
            if plan is None or plan.stripe_price_id != price_id:
                new_plan = await repo.get_plan_by_price_id(ctx.session, price_id)
                if new_plan is not None:
                    subscription.plan_id = new_plan.id
                    changes.append(f"plan: {new_plan.name}")
                    log.info("subscription_plan_changed", price_id=price_id, plan_id=str(new_plan.id))
                else:
                    log.warning("subscription_plan_not_found", price_id=price_id)

        summary = "; ".join(changes) if changes else "No changes"
        log.info("subscription_updated", changes=changes)
        return HandlerResult.ok(
            f"Subscription updated: {summary}",
            subscription_id=str(subscription.id),
            changes=changes,
        )


class SubscriptionDeletedHandler(WebhookHandler):
    event_type = "customer.subscription.deleted"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = SubscriptionPayload.model_validate(envelope.object)

        subscription = await repo.get_subscription_by_stripe_id(ctx.session, payload.id, include_deleted=True)
        if subscription is None:
            ctx.log.info("subscription_delete_not_found", stripe_subscription_id=payload.id)
            return HandlerResult.ok(f"Subscription {payload.id} not found, nothing to cancel")

        if subscription.is_deleted:
            return HandlerResult.ok(
                f"Subscription {subscription.id} already deleted",
                subscription_id=str(subscription.id),
            )

        now = utcnow()
        current = SubscriptionStatus(subscription.status)
        if can_transition(current, SubscriptionStatus.CANCELED):
            subscription.status = SubscriptionStatus.CANCELED.value
        subscription.canceled_at = from_unix(payload.canceled_at) or now
        subscription.ended_at = from_unix(payload.ended_at) or now
        subscription.is_deleted = True
        subscription.deleted_at = now

        ctx.log.info(
            "subscription_canceled",
            subscription_id=str(subscription.id),
            previous_status=current.value,
        )

        customer = await repo.get_customer(ctx.session, subscription.customer_id, include_deleted=True)
        if customer is not None:
            customer_id, email = str(customer.id), customer.email
            subscription_id, ended_at = str(subscription.id), subscription.ended_at
            ctx.notify(
                "cancellation",
                lambda: self.notifications.sender.send_cancellation_email(
                    customer_id, email, subscription_id, ended_at
                ),
            )

        return HandlerResult.ok(
            f"Subscription {subscription.id} canceled",
            subscription_id=str(subscription.id),
        )


class SubscriptionTrialWillEndHandler(WebhookHandler):
    event_type = "customer.subscription.trial_will_end"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = SubscriptionPayload.model_validate(envelope.object)

        subscription = await repo.get_subscription_by_stripe_id(ctx.session, payload.id)
        if subscription is None:
            return HandlerResult.retry(f"Subscription {payload.id} not found")

        trial_end = from_unix(payload.trial_end)
        if trial_end is None:
            ctx.log.warning("subscription_trial_end_missing", subscription_id=str(subscription.id))
            return HandlerResult.ok("Subscription has no trial end date")

        customer = await repo.get_customer(ctx.session, subscription.customer_id)
        if customer is None:
            return HandlerResult.retry(f"Customer for subscription {subscription.id} not found")

        has_payment_method = False
        if self.client is not None and customer.stripe_customer_id:
            try:
                methods = await self.client.list_payment_methods(customer.stripe_customer_id)
                has_payment_method = bool(methods)
            except ProcessorError as exc:
                ctx.log.warning("payment_method_check_failed", customer_id=str(customer.id), error=str(exc))

        days_left = round((trial_end - utcnow()).total_seconds() / 86_400, 1)
        ctx.log.info(
            "subscription_trial_ending",
            subscription_id=str(subscription.id),
            days_left=days_left,
            has_payment_method=has_payment_method,
        )

        customer_id, email, subscription_id = str(customer.id), customer.email, str(subscription.id)
        ctx.notify(
            "trial_ending",
            lambda: self.notifications.sender.send_trial_ending_email(
                customer_id, email, subscription_id, trial_end, has_payment_method
            ),
        )
        return HandlerResult.ok(
            f"Trial ending reminder scheduled for subscription {subscription.id}",
            subscription_id=subscription_id,
            days_left=days_left,
            has_payment_method=has_payment_method,
        )
