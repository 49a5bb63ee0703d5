"""Customer notifications scheduled by reconciliation handlers.

Sends are fire-and-forget: they run as background tasks after the handler's
transaction has committed, and a failing send is logged, never raised.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class NotificationSender(Protocol):
    async def send_welcome_email(self, customer_id: str, email: str, plan_name: str) -> None: ...

    async def send_receipt_email(
        self,
        customer_id: str,
        email: str,
        invoice_id: str,
        amount_cents: int,
        currency: str,
    ) -> None: ...

    async def send_payment_failed_email(
        self,
        customer_id: str,
        email: str,
        invoice_id: str,
        attempt_count: int,
        next_attempt_at: datetime | None,
        escalated: bool,
    ) -> None: ...

    async def send_payment_action_required_email(
        self,
        customer_id: str,
        email: str,
        invoice_id: str,
        hosted_invoice_url: str | None,
    ) -> None: ...

    async def send_cancellation_email(
        self,
        customer_id: str,
        email: str,
        subscription_id: str,
        ended_at: datetime | None,
    ) -> None: ...

    async def send_trial_ending_email(
        self,
        customer_id: str,
        email: str,
        subscription_id: str,
        trial_end: datetime,
        has_payment_method: bool,
    ) -> None: ...


class LoggingNotificationSender:
    """Default sender: records each notification as a structured log line."""

    async def send_welcome_email(self, customer_id: str, email: str, plan_name: str) -> None:
        logger.info("email_welcome", customer_id=customer_id, email=email, plan_name=plan_name)

    async def send_receipt_email(self, customer_id, email, invoice_id, amount_cents, currency) -> None:
        logger.info(
            "email_receipt",
            customer_id=customer_id,
            email=email,
            invoice_id=invoice_id,
            amount_cents=amount_cents,
            currency=currency,
        )

    async def send_payment_failed_email(
        self, customer_id, email, invoice_id, attempt_count, next_attempt_at, escalated
    ) -> None:
        logger.info(
            "email_payment_failed",
            customer_id=customer_id,
            email=email,
            invoice_id=invoice_id,
            attempt_count=attempt_count,
            next_attempt_at=next_attempt_at.isoformat() if next_attempt_at else None,
            escalated=escalated,
        )

    async def send_payment_action_required_email(self, customer_id, email, invoice_id, hosted_invoice_url) -> None:
        logger.info(
            "email_payment_action_required",
            customer_id=customer_id,
            email=email,
            invoice_id=invoice_id,
            hosted_invoice_url=hosted_invoice_url,
        )

    async def send_cancellation_email(self, customer_id, email, subscription_id, ended_at) -> None:
        logger.info(
            "email_cancellation",
            customer_id=customer_id,
            email=email,
            subscription_id=subscription_id,
            ended_at=ended_at.isoformat() if ended_at else None,
        )

    async def send_trial_ending_email(
        self, customer_id, email, subscription_id, trial_end, has_payment_method
    ) -> None:
        logger.info(
            "email_trial_ending",
            customer_id=customer_id,
            email=email,
            subscription_id=subscription_id,
            trial_end=trial_end.isoformat(),
            has_payment_method=has_payment_method,
        )


class NotificationDispatcher:
    """Runs notification sends in the background and keeps track of them."""

    def __init__(self, sender: NotificationSender):
        self.sender = sender
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, send: Callable[[], Awaitable[None]], kind: str) -> asyncio.Task:
        task = asyncio.create_task(self._run(send, kind))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, send: Callable[[], Awaitable[None]], kind: str) -> None:
        try:
            await send()
        except Exception as exc:
            logger.error("notification_send_failed", kind=kind, error=str(exc), error_type=type(exc).__name__)

    async def drain(self) -> None:
        """Wait for every outstanding send to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)
