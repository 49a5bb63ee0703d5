"""customer.* handlers."""

from billing_sync.core.clock import utcnow
from billing_sync.db import repositories as repo
from billing_sync.webhooks.envelope import CustomerPayload, HandlerResult, WebhookEnvelope
from billing_sync.webhooks.handlers.base import HandlerContext, WebhookHandler, assign


def split_name(name: str | None) -> tuple[str | None, str | None]:
    """'Ada King Lovelace' -> ('Ada', 'King Lovelace')."""
    if not name or not name.strip():
        return None, None
    first, _, last = name.strip().partition(" ")
    return first, (last.strip() or None)


class CustomerCreatedHandler(WebhookHandler):
    """Local customers are created by the signup flow; this only records the event."""

    event_type = "customer.created"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = CustomerPayload.model_validate(envelope.object)
        customer = await repo.get_customer_by_stripe_id(ctx.session, payload.id)
        ctx.log.info(
            "customer_created_received",
            stripe_customer_id=payload.id,
            linked=customer is not None,
        )
        return HandlerResult.ok(f"Customer created event recorded for {payload.id}")


class CustomerUpdatedHandler(WebhookHandler):
    event_type = "customer.updated"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = CustomerPayload.model_validate(envelope.object)

        customer = await repo.get_customer_by_stripe_id(ctx.session, payload.id)
        if customer is None:
            ctx.log.warning("customer_update_not_found", stripe_customer_id=payload.id)
            return HandlerResult.ok(f"Customer {payload.id} not found locally")

        changes: list[str] = []
        if payload.email:
            assign(customer, "email", payload.email, changes)
        if payload.phone:
            assign(customer, "phone", payload.phone, changes)
        if payload.name:
            first, last = split_name(payload.name)
            assign(customer, "first_name", first, changes)
            assign(customer, "last_name", last, changes)

        ctx.log.info("customer_updated", customer_id=str(customer.id), changes=changes)
        return HandlerResult.ok(
            f"Customer updated: {', '.join(changes) if changes else 'no changes'}",
            customer_id=str(customer.id),
            changes=changes,
        )


class CustomerDeletedHandler(WebhookHandler):
    event_type = "customer.deleted"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = CustomerPayload.model_validate(envelope.object)

        customer = await repo.get_customer_by_stripe_id(ctx.session, payload.id, include_deleted=True)
        if customer is None:
            ctx.log.info("customer_delete_not_found", stripe_customer_id=payload.id)
            return HandlerResult.ok(f"Customer {payload.id} not found locally")

        if customer.is_deleted:
            return HandlerResult.ok(f"Customer {customer.id} already deleted", customer_id=str(customer.id))

        live = await repo.count_live_subscriptions(ctx.session, customer.id)
        if live:
            # Conflict the pipeline cannot resolve safely: keep the row, flag it
            reason = f"Deleted at processor with {live} active subscription(s)"
            customer.requires_manual_review = True
            customer.review_reason = reason
            ctx.log.warning(
                "customer_delete_conflict",
                customer_id=str(customer.id),
                live_subscriptions=live,
                manual_review=True,
            )
            return HandlerResult.ok(
                "Customer has active subscriptions - manual review needed",
                customer_id=str(customer.id),
                manual_review=True,
            )

        customer.is_deleted = True
        customer.deleted_at = utcnow()
        customer.stripe_customer_id = None

        ctx.log.info("customer_soft_deleted", customer_id=str(customer.id))
        return HandlerResult.ok(f"Customer {customer.id} soft deleted", customer_id=str(customer.id))
