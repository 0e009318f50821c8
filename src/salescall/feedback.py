import copy
import logging
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from salescall.errors import FeedbackApplyFailure
from salescall.records import Campaign, ExtractedSignals, Lead, Sentiment
from salescall.states import Outcome

logger = logging.getLogger(__name__)

SCORE_MIN = 0
SCORE_MAX = 100

SCORE_DELTAS = {
    Outcome.SALE: 30,
    Outcome.INTERESTED: 20,
    Outcome.CALLBACK: 10,
    Outcome.NOT_INTERESTED: -15,
    Outcome.WRONG_NUMBER: -30,
}
DEFAULT_SCORE_DELTA = -5
SENTIMENT_DELTA = 5

OUTCOME_STATUS = {
    Outcome.SALE: "converted",
    Outcome.INTERESTED: "interested",
    Outcome.CALLBACK: "callback",
    Outcome.NOT_INTERESTED: "not-interested",
    Outcome.WRONG_NUMBER: "do-not-call",
}


def score_delta(outcome: Outcome, sentiment: Sentiment | None) -> int:
    delta = SCORE_DELTAS.get(outcome, DEFAULT_SCORE_DELTA)
    if sentiment is not None:
        if sentiment.overall == "positive":
            delta += SENTIMENT_DELTA
        elif sentiment.overall == "negative":
            delta -= SENTIMENT_DELTA
    return delta


def apply_score(lead: Lead, outcome: Outcome, sentiment: Sentiment | None) -> None:
    lead.score = max(SCORE_MIN, min(SCORE_MAX, lead.score + score_delta(outcome, sentiment)))


def apply_status(lead: Lead, outcome: Outcome) -> None:
    status = OUTCOME_STATUS.get(outcome)
    if status:
        lead.status = status
    elif lead.status == "new":
        lead.status = "contacted"
    if outcome is Outcome.WRONG_NUMBER:
        lead.do_not_call = True
        lead.do_not_call_reason = "Wrong number"


def merge_signals(lead: Lead, signals: ExtractedSignals | None) -> None:
    if signals is None:
        return
    if signals.budget:
        lead.budget = signals.budget
    if signals.timeline:
        lead.timeframe = signals.timeline
    if signals.decision_maker is not None:
        lead.decision_maker = signals.decision_maker
    lead.topics.extend(signals.interests)
    lead.objections.extend(signals.objections)


def _lead_zone(lead: Lead):
    try:
        return ZoneInfo(lead.timezone) if lead.timezone else timezone.utc
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r for lead %s, scheduling in UTC", lead.timezone, lead.id)
        return timezone.utc


def next_business_day(now: datetime, hour: int, tz) -> datetime:
    """Next Mon-Fri date after now, at hour:00 local time, returned in UTC."""
    local = now.astimezone(tz)
    day = local.date() + timedelta(days=1)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    scheduled = datetime(day.year, day.month, day.day, hour, 0, tzinfo=tz)
    return scheduled.astimezone(timezone.utc)


def schedule_next_contact(lead: Lead, outcome: Outcome, campaign: Campaign | None, now: datetime) -> None:
    callback_hour = campaign.callback_hour if campaign else 9
    interested_delay = campaign.interested_delay_hours if campaign else 72.0

    if outcome is Outcome.CALLBACK:
        lead.next_call_date = next_business_day(now, callback_hour, _lead_zone(lead))
    elif outcome is Outcome.INTERESTED:
        lead.next_call_date = now + timedelta(hours=interested_delay)
    elif campaign is not None and campaign.retry_policy is not None and lead.is_callable:
        policy = campaign.retry_policy
        if lead.total_calls < policy.max_attempts:
            lead.next_call_date = now + timedelta(hours=policy.retry_delay_hours)
        else:
            logger.info("Lead %s exhausted %d attempts, not rescheduling", lead.id, policy.max_attempts)


def apply_feedback(
    lead: Lead,
    outcome: Outcome,
    signals: ExtractedSignals | None,
    sentiment: Sentiment | None,
    campaign: Campaign | None = None,
    now: datetime | None = None,
) -> Lead:
    """Fold a finished call's outcome back onto the lead record in place."""
    now = now or datetime.now(timezone.utc)
    apply_score(lead, outcome, sentiment)
    apply_status(lead, outcome)
    lead.total_calls += 1
    lead.last_call_date = now
    merge_signals(lead, signals)
    schedule_next_contact(lead, outcome, campaign, now)
    return lead


class LeadFeedbackUpdater:
    """Applies call outcomes to leads and persists them through a lead store."""

    def __init__(self, lead_store):
        self.lead_store = lead_store

    async def apply(
        self,
        lead: Lead,
        outcome: Outcome,
        signals: ExtractedSignals | None,
        sentiment: Sentiment | None,
        campaign: Campaign | None = None,
        now: datetime | None = None,
    ) -> Lead:
        try:
            # Re-read so concurrent edits made during the call are not clobbered
            current = await self.lead_store.get(lead.id) or copy.deepcopy(lead)
            apply_feedback(current, outcome, signals, sentiment, campaign, now)
            await self.lead_store.save(current)
        except Exception as e:
            raise FeedbackApplyFailure(lead.id, e) from e

        logger.debug(
            "Lead %s updated: outcome=%s score=%d status=%s",
            current.id, outcome.value, current.score, current.status,
        )
        return current
