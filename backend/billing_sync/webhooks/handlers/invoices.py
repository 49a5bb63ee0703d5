"""invoice.* handlers, including the payment-failure grace period."""

import uuid

from billing_sync.core.clock import ensure_utc, from_unix, utcnow
from billing_sync.db import repositories as repo
from billing_sync.db.models import Customer, Invoice
from billing_sync.domain.billing_status import (
    InvoiceStatus,
    SubscriptionStatus,
    can_transition,
    map_invoice_status,
)
from billing_sync.domain.grace_period import evaluate_grace_period, stamp_first_failure
from billing_sync.webhooks.envelope import HandlerResult, InvoicePayload, WebhookEnvelope
from billing_sync.webhooks.handlers.base import HandlerContext, WebhookHandler


def build_invoice(payload: InvoicePayload, customer: Customer, status: InvoiceStatus) -> Invoice:
    invoice = Invoice(
        id=uuid.uuid4(),
        customer_id=customer.id,
        stripe_invoice_id=payload.id,
        status=status.value,
        metadata_={},
    )
    apply_invoice_fields(invoice, payload)
    return invoice


def apply_invoice_fields(invoice: Invoice, payload: InvoicePayload) -> None:
    """Copy remote amounts, dates and links onto the local invoice."""
    invoice.invoice_number = payload.number or invoice.invoice_number
    invoice.amount_cents = payload.total or payload.amount_due
    invoice.amount_paid_cents = payload.amount_paid
    invoice.amount_due_cents = payload.amount_remaining
    invoice.currency = (payload.currency or invoice.currency or "usd").lower()
    invoice.period_start = from_unix(payload.period_start)
    invoice.period_end = from_unix(payload.period_end)
    invoice.due_date = from_unix(payload.due_date)
    invoice.attempt_count = payload.attempt_count
    invoice.next_attempt_at = from_unix(payload.next_payment_attempt)
    invoice.hosted_invoice_url = payload.hosted_invoice_url or invoice.hosted_invoice_url
    invoice.invoice_pdf = payload.invoice_pdf or invoice.invoice_pdf


async def link_subscription(ctx: HandlerContext, invoice: Invoice, payload: InvoicePayload) -> None:
    """Attach the local subscription once it is resolvable. Never unsets the link."""
    if invoice.subscription_id is not None or invoice.status == InvoiceStatus.VOID.value:
        return
    subscription = await repo.get_subscription_by_stripe_id(ctx.session, payload.subscription_id)
    if subscription is not None:
        invoice.subscription_id = subscription.id
        ctx.log.info("invoice_linked_to_subscription", subscription_id=str(subscription.id))


class InvoiceHandler(WebhookHandler):
    """Shared lookups for invoice events."""

    async def resolve_customer(self, ctx: HandlerContext, payload: InvoicePayload) -> Customer | None:
        customer = await repo.get_customer_by_stripe_id(ctx.session, payload.customer)
        if customer is None:
            ctx.log.error("invoice_customer_not_found", stripe_customer_id=payload.customer)
        return customer

    async def resolve_open_invoice(
        self,
        ctx: HandlerContext,
        payload: InvoicePayload,
        customer: Customer,
    ) -> tuple[Invoice, bool]:
        """Existing invoice, or a new one in OPEN. Returns (invoice, created)."""
        invoice = await repo.get_invoice_by_stripe_id(ctx.session, payload.id)
        if invoice is not None:
            return invoice, False
        invoice = build_invoice(payload, customer, InvoiceStatus.OPEN)
        ctx.session.add(invoice)
        return invoice, True


class InvoiceCreatedHandler(InvoiceHandler):
    event_type = "invoice.created"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = InvoicePayload.model_validate(envelope.object)

        if map_invoice_status(payload.status) == InvoiceStatus.DRAFT:
            ctx.log.debug("invoice_draft_skipped", stripe_invoice_id=payload.id)
            return HandlerResult.ok("Draft invoice ignored (will process when finalized)")

        existing = await repo.get_invoice_by_stripe_id(ctx.session, payload.id)
        if existing is not None:
            return HandlerResult.ok(f"Invoice already exists: {existing.id}", invoice_id=str(existing.id))

        customer = await self.resolve_customer(ctx, payload)
        if customer is None:
            return HandlerResult.retry(f"Customer {payload.customer} not found")

        invoice = build_invoice(payload, customer, map_invoice_status(payload.status))
        await link_subscription(ctx, invoice, payload)
        ctx.session.add(invoice)
        await ctx.session.flush()

        ctx.log.info("invoice_created", invoice_id=str(invoice.id), status=invoice.status)
        return HandlerResult.ok(
            f"Invoice created: {invoice.id}",
            invoice_id=str(invoice.id),
            customer_id=str(customer.id),
        )


class InvoiceFinalizedHandler(InvoiceHandler):
    event_type = "invoice.finalized"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = InvoicePayload.model_validate(envelope.object)

        customer = await self.resolve_customer(ctx, payload)
        if customer is None:
            return HandlerResult.retry(f"Customer {payload.customer} not found")

        invoice, created = await self.resolve_open_invoice(ctx, payload, customer)
        if not created:
            if invoice.status not in (InvoiceStatus.PAID.value, InvoiceStatus.VOID.value):
                invoice.status = InvoiceStatus.OPEN.value
            invoice.invoice_number = payload.number or invoice.invoice_number
            invoice.hosted_invoice_url = payload.hosted_invoice_url or invoice.hosted_invoice_url
            invoice.invoice_pdf = payload.invoice_pdf or invoice.invoice_pdf
            invoice.due_date = from_unix(payload.due_date) or invoice.due_date

        await link_subscription(ctx, invoice, payload)
        await ctx.session.flush()

        ctx.log.info("invoice_finalized", invoice_id=str(invoice.id), created=created, status=invoice.status)
        return HandlerResult.ok(f"Invoice finalized: {invoice.id}", invoice_id=str(invoice.id))


class InvoicePaidHandler(InvoiceHandler):
    """The only handler allowed to move a subscription out of PAST_DUE."""

    event_type = "invoice.paid"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = InvoicePayload.model_validate(envelope.object)

        if payload.status != InvoiceStatus.PAID.value:
            return HandlerResult.ok(f"Invoice status is {payload.status}, not paid")

        customer = await self.resolve_customer(ctx, payload)
        if customer is None:
            return HandlerResult.retry(f"Customer {payload.customer} not found")

        paid_at = from_unix(payload.status_transitions.paid_at if payload.status_transitions else None)
        invoice = await repo.get_invoice_by_stripe_id(ctx.session, payload.id)
        already_paid = invoice is not None and invoice.status == InvoiceStatus.PAID.value

        if invoice is None:
            invoice = build_invoice(payload, customer, InvoiceStatus.PAID)
            invoice.amount_cents = payload.amount_due or payload.total
            ctx.session.add(invoice)
            ctx.log.info("invoice_created_paid", invoice_id=str(invoice.id))
        else:
            invoice.status = InvoiceStatus.PAID.value
            invoice.amount_paid_cents = payload.amount_paid
            invoice.attempt_count = payload.attempt_count
        invoice.amount_due_cents = 0
        invoice.next_attempt_at = None
        if invoice.paid_at is None:
            invoice.paid_at = paid_at or utcnow()

        await link_subscription(ctx, invoice, payload)

        recovered = False
        if invoice.subscription_id is not None:
            recovered = await self._apply_to_subscription(ctx, invoice, payload)

        await ctx.session.flush()

        if not already_paid:
            customer_id, email = str(customer.id), customer.email
            invoice_id, amount, currency = str(invoice.id), invoice.amount_paid_cents, invoice.currency
            ctx.notify(
                "receipt",
                lambda: self.notifications.sender.send_receipt_email(
                    customer_id, email, invoice_id, amount, currency
                ),
            )

        ctx.log.info("invoice_paid", invoice_id=str(invoice.id), recovered=recovered, already_paid=already_paid)
        return HandlerResult.ok(
            f"Invoice {invoice.id} marked as paid",
            invoice_id=str(invoice.id),
            customer_id=str(customer.id),
            amount_paid_cents=invoice.amount_paid_cents,
            subscription_recovered=recovered,
        )

    async def _apply_to_subscription(self, ctx: HandlerContext, invoice: Invoice, payload: InvoicePayload) -> bool:
        subscription = await repo.get_subscription(ctx.session, invoice.subscription_id)
        if subscription is None:
            return False

        # Only move the period forward; a late paid event for an old invoice must not rewind it
        period_end = from_unix(payload.period_end)
        if period_end is not None and (
            subscription.current_period_end is None or period_end > ensure_utc(subscription.current_period_end)
        ):
            subscription.current_period_start = from_unix(payload.period_start)
            subscription.current_period_end = period_end

        current = SubscriptionStatus(subscription.status)
        if current == SubscriptionStatus.PAST_DUE and can_transition(
            current, SubscriptionStatus.ACTIVE, recovery=True
        ):
            subscription.status = SubscriptionStatus.ACTIVE.value
            ctx.log.info("subscription_recovered", subscription_id=str(subscription.id))
            return True

        if subscription.cancel_at_period_end and current == SubscriptionStatus.ACTIVE:
            ctx.log.info("subscription_paid_but_cancels_at_period_end", subscription_id=str(subscription.id))
        return False


class InvoicePaymentFailedHandler(InvoiceHandler):
    event_type = "invoice.payment_failed"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = InvoicePayload.model_validate(envelope.object)

        customer = await self.resolve_customer(ctx, payload)
        if customer is None:
            return HandlerResult.retry(f"Customer {payload.customer} not found")

        # Grace is measured at the time the failure happened, not when it is processed
        now = envelope.occurred_at or utcnow()
        invoice, created = await self.resolve_open_invoice(ctx, payload, customer)
        if not created and invoice.status in (InvoiceStatus.PAID.value, InvoiceStatus.VOID.value):
            # A later paid/void event already won; this failure is stale
            ctx.log.info("invoice_payment_failed_stale", invoice_id=str(invoice.id), status=invoice.status)
            return HandlerResult.ok(
                f"Invoice {invoice.id} is {invoice.status}, payment failure ignored",
                invoice_id=str(invoice.id),
            )

        if not created:
            invoice.status = InvoiceStatus.OPEN.value
            invoice.attempt_count = payload.attempt_count
            invoice.next_attempt_at = from_unix(payload.next_payment_attempt)
            invoice.amount_due_cents = payload.amount_remaining
        invoice.last_attempt_at = now

        invoice.metadata_, first_failure_at = stamp_first_failure(invoice.metadata_, now=now)
        decision = evaluate_grace_period(first_failure_at, self.settings.grace_period_days, now=now)

        await link_subscription(ctx, invoice, payload)
        await ctx.session.flush()

        log = ctx.log.bind(invoice_id=str(invoice.id))
        log.warning(
            "invoice_payment_failed",
            attempt_count=invoice.attempt_count,
            days_since_first_failure=round(decision.days_since_first_failure, 2),
            grace_period_days=decision.grace_period_days,
        )

        escalated = False
        if invoice.subscription_id is not None:
            subscription = await repo.get_subscription(ctx.session, invoice.subscription_id)
            if subscription is not None and decision.escalate:
                current = SubscriptionStatus(subscription.status)
                if current != SubscriptionStatus.PAST_DUE and can_transition(current, SubscriptionStatus.PAST_DUE):
                    subscription.status = SubscriptionStatus.PAST_DUE.value
                    log.warning(
                        "subscription_marked_past_due",
                        subscription_id=str(subscription.id),
                        previous_status=current.value,
                    )
                escalated = SubscriptionStatus(subscription.status) == SubscriptionStatus.PAST_DUE
            elif subscription is not None:
                log.info("subscription_in_grace_period", subscription_id=str(subscription.id))

        customer_id, email = str(customer.id), customer.email
        invoice_id, attempts, next_attempt_at = str(invoice.id), invoice.attempt_count, invoice.next_attempt_at
        ctx.notify(
            "payment_failed",
            lambda: self.notifications.sender.send_payment_failed_email(
                customer_id, email, invoice_id, attempts, next_attempt_at, escalated
            ),
        )

        return HandlerResult.ok(
            f"Payment failure recorded for invoice {invoice.id}",
            invoice_id=str(invoice.id),
            customer_id=str(customer.id),
            attempt_count=invoice.attempt_count,
            in_grace_period=decision.in_grace_period,
            days_since_first_failure=int(decision.days_since_first_failure),
            escalated=escalated,
        )


class InvoicePaymentActionRequiredHandler(InvoiceHandler):
    event_type = "invoice.payment_action_required"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = InvoicePayload.model_validate(envelope.object)

        customer = await self.resolve_customer(ctx, payload)
        if customer is None:
            return HandlerResult.retry(f"Customer {payload.customer} not found")

        invoice, created = await self.resolve_open_invoice(ctx, payload, customer)
        if not created and invoice.status in (InvoiceStatus.PAID.value, InvoiceStatus.VOID.value):
            return HandlerResult.ok(f"Invoice {invoice.id} is {invoice.status}, no action required")

        invoice.hosted_invoice_url = payload.hosted_invoice_url or invoice.hosted_invoice_url
        await link_subscription(ctx, invoice, payload)
        await ctx.session.flush()

        customer_id, email = str(customer.id), customer.email
        invoice_id, url = str(invoice.id), invoice.hosted_invoice_url
        ctx.notify(
            "payment_action_required",
            lambda: self.notifications.sender.send_payment_action_required_email(customer_id, email, invoice_id, url),
        )

        ctx.log.info("invoice_payment_action_required", invoice_id=invoice_id)
        return HandlerResult.ok(f"Payment action required for invoice {invoice.id}", invoice_id=invoice_id)


class InvoiceVoidedHandler(InvoiceHandler):
    event_type = "invoice.voided"

    async def handle_core(self, envelope: WebhookEnvelope, ctx: HandlerContext) -> HandlerResult:
        payload = InvoicePayload.model_validate(envelope.object)

        invoice = await repo.get_invoice_by_stripe_id(ctx.session, payload.id)
        if invoice is None:
            return HandlerResult.ok(f"Invoice {payload.id} not found, nothing to void")

        if invoice.status == InvoiceStatus.VOID.value and invoice.subscription_id is None:
            return HandlerResult.ok(f"Invoice {invoice.id} already void", invoice_id=str(invoice.id))

        invoice.status = InvoiceStatus.VOID.value
        invoice.amount_due_cents = 0
        invoice.next_attempt_at = None
        invoice.subscription_id = None

        ctx.log.info("invoice_voided", invoice_id=str(invoice.id))
        return HandlerResult.ok(f"Invoice {invoice.id} voided", invoice_id=str(invoice.id))
