from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from salescall.feedback import LeadFeedbackUpdater
from salescall.orchestrator import ConversationOrchestrator
from salescall.records import Campaign, ExtractedSignals, Lead, RetryPolicy, Sentiment
from salescall.registry import CallRegistry
from salescall.stores import InMemoryCallStore, InMemoryCampaignStore, InMemoryLeadStore

# Wednesday 2026-03-11 15:00 UTC (11:00 in New York)
NOW = datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock: each read advances one second."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current += timedelta(seconds=1)
        return value


@pytest.fixture
def lead():
    return Lead(
        id="lead_1",
        first_name="Dana",
        last_name="Reyes",
        phone_number="+15125551234",
        company="Acme Corp",
        job_title="Operations Manager",
    )


@pytest.fixture
def campaign():
    return Campaign(
        id="camp_1",
        name="Spring outreach",
        opening_script="Hi {firstName}, this is Sam from Acme. Do you have a minute?",
        closing_script="Thanks for your time, {firstName}. Goodbye!",
        retry_policy=RetryPolicy(max_attempts=3, retry_delay_hours=24),
    )


@pytest.fixture
def generator():
    gen = AsyncMock()
    gen.generate_next_utterance.return_value = "Great. What does your current process look like?"
    gen.score_sentiment.return_value = Sentiment(overall="positive", score=0.6, confidence=0.8)
    gen.extract_signals.return_value = ExtractedSignals()
    gen.summarize.return_value = "Short call."
    return gen


@pytest.fixture
def lead_store(lead):
    return InMemoryLeadStore([lead])


@pytest.fixture
def campaign_store(campaign):
    return InMemoryCampaignStore([campaign])


@pytest.fixture
def call_store():
    return InMemoryCallStore()


@pytest.fixture
def registry():
    return CallRegistry()


@pytest.fixture
def orchestrator(registry, generator, call_store, lead_store):
    return ConversationOrchestrator(
        registry,
        generator,
        call_store,
        LeadFeedbackUpdater(lead_store),
        clock=FakeClock(),
    )
