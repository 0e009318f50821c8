import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from salescall.records import Campaign, Lead
from salescall.states import CallStatus, EndReason, Outcome, Phase
from salescall.transcript import Transcript

logger = logging.getLogger(__name__)


def time_of_day(now: datetime, tz_name: str = "") -> str:
    """Coarse bucket in the lead's local time: morning, afternoon or evening."""
    if tz_name:
        try:
            now = now.astimezone(ZoneInfo(tz_name))
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, using %s", tz_name, now.tzinfo)
    if now.hour < 12:
        return "morning"
    if now.hour < 17:
        return "afternoon"
    return "evening"


@dataclass(frozen=True)
class CallContext:
    attempt_number: int
    time_of_day: str

    @classmethod
    def for_lead(cls, lead: Lead, now: datetime) -> "CallContext":
        return cls(
            attempt_number=lead.total_calls + 1,
            time_of_day=time_of_day(now, lead.timezone),
        )


@dataclass
class ConversationState:
    call_id: str
    lead: Lead
    campaign: Campaign
    call_context: CallContext
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    transcript: Transcript = field(default_factory=Transcript)
    phase: Phase = Phase.OPENING
    status: CallStatus = CallStatus.ACTIVE

    # Set once when the call leaves ACTIVE
    end_reason: Optional[EndReason] = None
    ended_at: Optional[datetime] = None
    operator_outcome: Optional[Outcome] = None

    recording_url: str = ""

    # In-flight response generator call, cancelled when the call ends
    pending_reply: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def lead_id(self) -> str:
        return self.lead.id

    @property
    def campaign_id(self) -> str:
        return self.campaign.id

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def mark_ended(self, reason: EndReason, now: datetime | None = None) -> bool:
        """Move ACTIVE -> ENDED. Returns False if the call had already ended."""
        if not self.status.is_active:
            return False
        self.status = CallStatus.ENDED
        self.end_reason = reason
        self.ended_at = now or datetime.now(timezone.utc)
        if self.pending_reply is not None and not self.pending_reply.done():
            self.pending_reply.cancel()
        return True

    @property
    def duration_seconds(self) -> int:
        end = self.ended_at or datetime.now(timezone.utc)
        return max(0, int((end - self.started_at).total_seconds()))
