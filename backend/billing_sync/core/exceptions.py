class BillingSyncError(Exception):
    """Base exception for the billing sync service."""

    pass


class WebhookNotConfiguredError(BillingSyncError):
    """Raised when the inbound webhook secret is missing."""

    pass


class WebhookSignatureError(BillingSyncError):
    """Raised when a webhook signature is missing or does not match."""

    pass


class WebhookPayloadError(BillingSyncError):
    """Raised when a correctly signed body cannot be parsed into an envelope."""

    pass


class LedgerRecordMissingError(BillingSyncError):
    """Raised when a queued job references an event the ledger does not hold."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"No ledger record for event '{event_id}'")


class WebhookJobError(BillingSyncError):
    """Raised by the job runner when an event could not be applied.

    ``retryable`` tells the worker whether the whole unit of work should be
    scheduled again.
    """

    def __init__(self, event_id: str, message: str, retryable: bool):
        self.event_id = event_id
        self.retryable = retryable
        super().__init__(f"Webhook {event_id} failed: {message}")


class ProcessorError(BillingSyncError):
    """Raised when a call to the payment processor fails."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class ProcessorTransientError(ProcessorError):
    """Connection failures, rate limits and 5xx responses. Safe to retry."""

    pass


class ProcessorPermanentError(ProcessorError):
    """Validation, authentication and other 4xx failures. Retrying will not help."""

    pass
