from enum import Enum

TERMINAL_STATUSES = {"ended", "finalized"}


class Phase(Enum):
    OPENING = "opening"
    QUALIFICATION = "qualification"
    PRESENTATION = "presentation"
    OBJECTION = "objection"
    CLOSING = "closing"


class CallStatus(Enum):
    ACTIVE = "active"
    ENDED = "ended"
    FINALIZED = "finalized"

    @property
    def is_active(self) -> bool:
        return self is CallStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_STATUSES


class Speaker(Enum):
    AGENT = "agent"
    CUSTOMER = "customer"


class Outcome(Enum):
    SALE = "sale"
    INTERESTED = "interested"
    NOT_INTERESTED = "not-interested"
    CALLBACK = "callback"
    VOICEMAIL = "voicemail"
    WRONG_NUMBER = "wrong-number"
    NO_ANSWER = "no-answer"


class EndReason(Enum):
    CUSTOMER_REQUESTED = "customer-requested"
    PROVIDER_COMPLETED = "provider-signaled-completion"
    PROVIDER_FAILED = "provider-signaled-failure"
    OPERATOR = "manual-operator-action"


class ProviderSignal(Enum):
    """Call status values delivered by the telephony status webhook."""

    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BUSY = "busy"
    FAILED = "failed"
    NO_ANSWER = "no-answer"
    CANCELED = "canceled"
    OPERATOR_HANGUP = "operator-hangup"

    @property
    def end_reason(self) -> EndReason | None:
        return SIGNAL_END_REASONS.get(self)

    @property
    def is_terminal(self) -> bool:
        return self in SIGNAL_END_REASONS


SIGNAL_END_REASONS = {
    ProviderSignal.COMPLETED: EndReason.PROVIDER_COMPLETED,
    ProviderSignal.BUSY: EndReason.PROVIDER_FAILED,
    ProviderSignal.FAILED: EndReason.PROVIDER_FAILED,
    ProviderSignal.NO_ANSWER: EndReason.PROVIDER_FAILED,
    ProviderSignal.CANCELED: EndReason.PROVIDER_FAILED,
    ProviderSignal.OPERATOR_HANGUP: EndReason.OPERATOR,
}
