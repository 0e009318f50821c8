import json
import logging
from datetime import datetime, timedelta, timezone

import pytest

from salescall.post_call import build_call_record, log_transcript_dump
from salescall.records import Campaign, ExtractedSignals, Lead, Sentiment
from salescall.session import CallContext, ConversationState
from salescall.states import EndReason, Outcome, Phase, Speaker
from salescall.transcript import Turn

T0 = datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def ended_state():
    """A call that ran a short qualification exchange and was completed by the provider."""
    lead = Lead(id="lead_1", first_name="Dana", phone_number="+15125551234", total_calls=1)
    s = ConversationState(
        call_id="CA_test_123",
        lead=lead,
        campaign=Campaign(id="camp_1"),
        call_context=CallContext.for_lead(lead, T0),
        started_at=T0,
    )
    s.transcript.append(Turn(Speaker.AGENT, "Hi Dana, this is Sam from Acme.", T0))
    s.transcript.append(Turn(Speaker.CUSTOMER, "Hi, go ahead.", T0 + timedelta(seconds=3)))
    s.transcript.append(Turn(Speaker.AGENT, "What budget do you have for scheduling tools?", T0 + timedelta(seconds=5)))
    s.phase = Phase.QUALIFICATION
    s.mark_ended(EndReason.PROVIDER_COMPLETED, T0 + timedelta(seconds=42))
    return s


class TestBuildCallRecord:
    def test_core_fields(self, ended_state):
        record = build_call_record(
            ended_state,
            Outcome.INTERESTED,
            Sentiment(overall="positive", score=0.5, confidence=0.8),
            ExtractedSignals(budget="$10k"),
            "Prospect shared budget.",
        )
        assert record["callId"] == "CA_test_123"
        assert record["leadId"] == "lead_1"
        assert record["campaignId"] == "camp_1"
        assert record["phoneNumber"] == "+15125551234"
        assert record["attemptNumber"] == 2
        assert record["duration"] == 42
        assert record["outcome"] == "interested"
        assert record["endReason"] == "provider-signaled-completion"
        assert record["finalPhase"] == "qualification"
        assert record["sentiment"]["overall"] == "positive"
        assert record["extractedInfo"]["budget"] == "$10k"
        assert record["notes"] == "Prospect shared budget."
        assert record["endedAt"] == (T0 + timedelta(seconds=42)).isoformat()

    def test_conversation_in_order(self, ended_state):
        record = build_call_record(ended_state, Outcome.INTERESTED, Sentiment(), ExtractedSignals(), "")
        assert [c["speaker"] for c in record["conversation"]] == ["agent", "customer", "agent"]

    def test_record_is_json_serializable(self, ended_state):
        record = build_call_record(ended_state, Outcome.NO_ANSWER, Sentiment(), ExtractedSignals(), "")
        json.dumps(record)

    def test_recording_url_only_when_present(self, ended_state):
        record = build_call_record(ended_state, Outcome.NO_ANSWER, Sentiment(), ExtractedSignals(), "")
        assert "recordingUrl" not in record
        ended_state.recording_url = "https://rec.example.com/RE1"
        record = build_call_record(ended_state, Outcome.NO_ANSWER, Sentiment(), ExtractedSignals(), "")
        assert record["recordingUrl"] == "https://rec.example.com/RE1"


class TestLogTranscriptDump:
    def test_emits_parseable_dump(self, ended_state, caplog):
        with caplog.at_level(logging.INFO, logger="salescall.post_call"):
            log_transcript_dump(ended_state)
        lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("TRANSCRIPT_DUMP|")]
        assert len(lines) == 1
        dump = json.loads(lines[0].split("|", 2)[2])
        assert dump["call_id"] == "CA_test_123"
        assert dump["final_phase"] == "qualification"
        assert dump["end_reason"] == "provider-signaled-completion"
        assert dump["duration_s"] == 42
        assert [e["t"] for e in dump["entries"]] == [0.0, 3.0, 5.0]
