"""Outbound payment processor client.

Wraps the Stripe SDK's async API. Every operation returns a plain dict, None
when the remote object does not exist, or raises a classified ProcessorError.
Transient errors are retried here with exponential backoff; this is separate
from the webhook job retry loop.
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any

import stripe
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from billing_sync.core.exceptions import (
    ProcessorError,
    ProcessorPermanentError,
    ProcessorTransientError,
)

logger = structlog.get_logger(__name__)


def classify_stripe_error(exc: stripe.StripeError) -> ProcessorError | None:
    """Map an SDK error to a transient/permanent error, or None for not-found."""
    status = getattr(exc, "http_status", None)
    code = getattr(exc, "code", None)
    message = getattr(exc, "user_message", None) or str(exc)

    if status == 404 or code == "resource_missing":
        return None
    if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError)):
        return ProcessorTransientError(message, status_code=status, code=code)
    if status is not None and (status == 429 or status >= 500):
        return ProcessorTransientError(message, status_code=status, code=code)
    if isinstance(exc, stripe.APIError) and status is None:
        return ProcessorTransientError(message, status_code=status, code=code)
    return ProcessorPermanentError(message, status_code=status, code=code)


def _to_dict(obj: Any) -> dict:
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    return json.loads(str(obj))


class ProcessorClient:
    def __init__(self, api_key: str, max_attempts: int = 3, wait_multiplier: float = 0.5):
        self.api_key = api_key
        self.max_attempts = max(max_attempts, 1)
        self.wait_multiplier = wait_multiplier

    async def _call(self, operation: str, fn: Callable[[], Awaitable[Any]]) -> Any | None:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ProcessorTransientError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.wait_multiplier, min=self.wait_multiplier, max=10),
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "processor_call_retrying",
                operation=operation,
                attempt=rs.attempt_number,
                sleep_seconds=rs.next_action.sleep,
            ),
        ):
            with attempt:
                try:
                    return await fn()
                except stripe.StripeError as exc:
                    classified = classify_stripe_error(exc)
                    if classified is None:
                        logger.info("processor_object_not_found", operation=operation)
                        return None
                    raise classified from exc

    async def get_subscription(self, subscription_id: str) -> dict | None:
        obj = await self._call(
            "get_subscription",
            lambda: stripe.Subscription.retrieve_async(subscription_id, api_key=self.api_key),
        )
        return _to_dict(obj) if obj is not None else None

    async def get_checkout_session(self, session_id: str) -> dict | None:
        obj = await self._call(
            "get_checkout_session",
            lambda: stripe.checkout.Session.retrieve_async(session_id, api_key=self.api_key),
        )
        return _to_dict(obj) if obj is not None else None

    async def get_customer(self, customer_id: str) -> dict | None:
        obj = await self._call(
            "get_customer",
            lambda: stripe.Customer.retrieve_async(customer_id, api_key=self.api_key),
        )
        return _to_dict(obj) if obj is not None else None

    async def list_payment_methods(self, customer_id: str, limit: int = 10) -> list[dict]:
        """Payment methods attached to a customer. Empty when the customer is gone."""
        obj = await self._call(
            "list_payment_methods",
            lambda: stripe.PaymentMethod.list_async(customer=customer_id, limit=limit, api_key=self.api_key),
        )
        if obj is None:
            return []
        return _to_dict(obj).get("data", [])
