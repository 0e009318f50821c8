"""Exception taxonomy for the call orchestration core.

None of these are fatal to the host process. Generator and extraction
failures are recovered where they occur; the rest are raised to the caller
(webhook handler or operator action), which maps them to a safe response.
"""


class CallError(Exception):
    """Base class for per-call orchestration errors."""

    def __init__(self, call_id: str, message: str = ""):
        self.call_id = call_id
        super().__init__(message or f"{self.__class__.__name__}: {call_id}")


class UnknownCallError(CallError):
    """Event for a CallId with no active conversation state."""


class DuplicateCallError(CallError):
    """initialize() called twice for the same CallId."""


class CallNotActiveError(CallError):
    """Customer turn delivered to a call that has already ended."""


class CallNotEndedError(CallError):
    """finalize() called while the call is still active."""


class GeneratorFailure(Exception):
    """Response generator unreachable or returned malformed output."""


class ExtractionFailure(Exception):
    """Sentiment scoring or signal extraction failed during finalize."""


class StoreError(Exception):
    """A lead, campaign or call record store operation failed."""


class FeedbackApplyFailure(Exception):
    """Lead update failed after the call record was finalized."""

    def __init__(self, lead_id: str, cause: Exception | None = None):
        self.lead_id = lead_id
        self.cause = cause
        super().__init__(f"lead feedback failed for {lead_id}: {cause}")


class TelephonyError(Exception):
    """The telephony provider rejected or failed a request."""


class LeadNotCallableError(Exception):
    """Lead is flagged do-not-call or already converted."""

    def __init__(self, lead_id: str, reason: str = ""):
        self.lead_id = lead_id
        super().__init__(f"lead {lead_id} is not callable ({reason})")
