import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from salescall.records import Campaign, Lead
from salescall.session import CallContext, ConversationState, time_of_day
from salescall.states import CallStatus, EndReason, Phase

NOW = datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def state():
    lead = Lead(id="lead_1", first_name="Dana", total_calls=2)
    return ConversationState(
        call_id="CA_1",
        lead=lead,
        campaign=Campaign(id="camp_1"),
        call_context=CallContext.for_lead(lead, NOW),
        started_at=NOW,
    )


class TestTimeOfDay:
    def test_morning_in_lead_timezone(self):
        # 15:00 UTC is 11:00 in New York (EDT)
        assert time_of_day(NOW, "America/New_York") == "morning"

    def test_afternoon(self):
        assert time_of_day(NOW, "UTC") == "afternoon"

    def test_evening(self):
        assert time_of_day(NOW.replace(hour=20), "UTC") == "evening"

    def test_unknown_timezone_uses_given_time(self):
        assert time_of_day(NOW, "Not/AZone") == "afternoon"


class TestCallContext:
    def test_attempt_number_follows_total_calls(self):
        lead = Lead(id="l", first_name="A", total_calls=2)
        assert CallContext.for_lead(lead, NOW).attempt_number == 3

    def test_first_call_is_attempt_one(self):
        lead = Lead(id="l", first_name="A")
        assert CallContext.for_lead(lead, NOW).attempt_number == 1


class TestConversationState:
    def test_new_state_is_active_in_opening(self, state):
        assert state.status is CallStatus.ACTIVE
        assert state.phase is Phase.OPENING
        assert state.end_reason is None
        assert len(state.transcript) == 0

    def test_mark_ended_sets_reason_once(self, state):
        assert state.mark_ended(EndReason.CUSTOMER_REQUESTED, NOW + timedelta(seconds=30)) is True
        assert state.mark_ended(EndReason.PROVIDER_COMPLETED, NOW + timedelta(seconds=40)) is False
        assert state.status is CallStatus.ENDED
        assert state.end_reason is EndReason.CUSTOMER_REQUESTED
        assert state.duration_seconds == 30

    @pytest.mark.asyncio
    async def test_mark_ended_cancels_pending_reply(self, state):
        state.pending_reply = asyncio.create_task(asyncio.sleep(10))
        state.mark_ended(EndReason.OPERATOR, NOW)
        with pytest.raises(asyncio.CancelledError):
            await state.pending_reply
        assert state.pending_reply.cancelled()

    def test_ids_come_from_lead_and_campaign(self, state):
        assert state.lead_id == "lead_1"
        assert state.campaign_id == "camp_1"
