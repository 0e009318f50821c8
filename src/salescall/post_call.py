import logging
from dataclasses import dataclass, field

from salescall.records import ExtractedSignals, Sentiment
from salescall.session import ConversationState
from salescall.states import EndReason, Outcome
from salescall.transcript import chunk_transcript_dump, to_json_array, to_timestamped_dump

logger = logging.getLogger(__name__)


@dataclass
class CallSummary:
    call_id: str
    lead_id: str
    outcome: Outcome
    end_reason: EndReason
    duration: int
    sentiment: Sentiment
    signals: ExtractedSignals
    summary: str = ""
    record_saved: bool = True
    feedback_applied: bool = True
    extraction_errors: list = field(default_factory=list)


def build_call_record(
    state: ConversationState,
    outcome: Outcome,
    sentiment: Sentiment,
    signals: ExtractedSignals,
    summary: str,
) -> dict:
    """Build the persisted call record for a finished call."""
    started = state.started_at.isoformat()
    ended = state.ended_at.isoformat() if state.ended_at else started
    record = {
        "callId": state.call_id,
        "leadId": state.lead_id,
        "campaignId": state.campaign_id,
        "phoneNumber": state.lead.phone_number or "unknown",
        "direction": "outbound",
        "status": "completed",
        "attemptNumber": state.call_context.attempt_number,
        "startedAt": started,
        "endedAt": ended,
        "duration": state.duration_seconds,
        "outcome": outcome.value,
        "endReason": state.end_reason.value if state.end_reason else None,
        "finalPhase": state.phase.value,
        "conversation": to_json_array(state.transcript.all()),
        "sentiment": sentiment.to_dict(),
        "extractedInfo": signals.to_dict(),
        "notes": summary,
    }
    if state.recording_url:
        record["recordingUrl"] = state.recording_url
    return record


def log_transcript_dump(state: ConversationState) -> None:
    """Emit the chunked TRANSCRIPT_DUMP lines read by scripts/call_transcript.py."""
    dump = to_timestamped_dump(
        state.transcript.all(),
        started_at=state.started_at,
        call_id=state.call_id,
        phone=state.lead.phone_number,
        final_phase=state.phase.value,
    )
    dump["end_reason"] = state.end_reason.value if state.end_reason else ""
    dump["duration_s"] = state.duration_seconds
    for line in chunk_transcript_dump(dump):
        logger.info(line)
