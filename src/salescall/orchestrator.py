import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from salescall.classification import classify_phase
from salescall.errors import (
    CallNotActiveError,
    CallNotEndedError,
    ExtractionFailure,
    FeedbackApplyFailure,
    StoreError,
    UnknownCallError,
)
from salescall.feedback import LeadFeedbackUpdater
from salescall.outcome import resolve
from salescall.post_call import CallSummary, build_call_record, log_transcript_dump
from salescall.prompts import DEFAULT_CLOSING, DEFAULT_OPENING, fallback_summary, fallback_utterance
from salescall.records import Campaign, ExtractedSignals, Lead, Sentiment
from salescall.registry import CallRegistry
from salescall.session import CallContext, ConversationState
from salescall.states import CallStatus, EndReason, Outcome, ProviderSignal, Speaker
from salescall.telephony import DEFAULT_GATHER_TIMEOUT, Directive
from salescall.transcript import Turn
from salescall.validation import render_template, termination_intent

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PendingFeedback:
    lead: Lead
    outcome: Outcome
    signals: ExtractedSignals
    sentiment: Sentiment
    campaign: Campaign
    now: datetime
    attempts: int = 1


class ConversationOrchestrator:
    """Owns each call's conversation state from connect to finalize.

    Lifecycle per CallId: initialize() creates ACTIVE state; customer turns
    and provider signals move it to ENDED; finalize() resolves the outcome,
    persists the call record, feeds the lead and drops the state.

    Per-call operations are serialized by the registry's per-call locks.
    The response generator is awaited outside the state lock so an end
    signal can cancel it; a reply that arrives after the call ended is
    discarded.
    """

    def __init__(
        self,
        registry: CallRegistry,
        generator,
        call_store,
        feedback: LeadFeedbackUpdater,
        *,
        gather_timeout: int = DEFAULT_GATHER_TIMEOUT,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.registry = registry
        self.generator = generator
        self.call_store = call_store
        self.feedback = feedback
        self.gather_timeout = gather_timeout
        self._now = clock
        self.pending_feedback: list[PendingFeedback] = []
        self.pending_records: list[dict] = []

    # ── Lookup ──

    def get_state(self, call_id: str) -> Optional[ConversationState]:
        return self.registry.get(call_id)

    def active_call_count(self) -> int:
        return len(self.registry)

    def _state_lock(self, call_id: str) -> asyncio.Lock:
        lock = self.registry.state_lock(call_id)
        if lock is None:
            raise UnknownCallError(call_id)
        return lock

    def _require_state(self, call_id: str) -> ConversationState:
        state = self.registry.get(call_id)
        if state is None:
            raise UnknownCallError(call_id)
        return state

    # ── Conversation ──

    async def initialize(self, call_id: str, lead: Lead, campaign: Campaign) -> Directive:
        now = self._now()
        state = ConversationState(
            call_id=call_id,
            lead=lead,
            campaign=campaign,
            call_context=CallContext.for_lead(lead, now),
            started_at=now,
        )
        self.registry.create(state)

        opening = render_template(campaign.opening_script or DEFAULT_OPENING, lead)
        state.transcript.append(Turn(Speaker.AGENT, opening, now))

        logger.info(
            "Conversation initialized: call=%s lead=%s campaign=%s attempt=%d",
            call_id, lead.id, campaign.id, state.call_context.attempt_number,
        )
        return Directive(speak=opening, gather_timeout=self.gather_timeout)

    async def on_customer_turn(self, call_id: str, utterance: str) -> Optional[Directive]:
        """Handle one customer utterance.

        Returns the next directive, or None when the call ended while the
        reply was being generated.
        """
        turn_lock = self.registry.turn_lock(call_id)
        if turn_lock is None:
            raise UnknownCallError(call_id)

        async with turn_lock:
            state_lock = self._state_lock(call_id)
            async with state_lock:
                state = self._require_state(call_id)
                if not state.is_active:
                    raise CallNotActiveError(call_id)

                text = utterance.strip()
                state.transcript.append(Turn(Speaker.CUSTOMER, text, self._now()))
                logger.info("[%s] Customer: %s", state.phase.value, text)

                intent = termination_intent(text)
                if intent:
                    closing = render_template(state.campaign.closing_script or DEFAULT_CLOSING, state.lead)
                    state.transcript.append(Turn(Speaker.AGENT, closing, self._now()))
                    state.mark_ended(EndReason.CUSTOMER_REQUESTED, self._now())
                    logger.info("Call %s ended by customer (%s)", call_id, intent)
                    return Directive(speak=closing, hangup=True)

                task = asyncio.create_task(self._generate_reply(state, state.transcript.all()))
                state.pending_reply = task

            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                task.cancel()
                raise

            async with state_lock:
                if state.pending_reply is task:
                    state.pending_reply = None
                if task.cancelled() or not state.is_active:
                    logger.info("Discarding late reply for %s: call already %s", call_id, state.status.value)
                    return None

                reply = task.result()
                state.transcript.append(Turn(Speaker.AGENT, reply, self._now()))
                previous = state.phase
                state.phase = classify_phase(reply, previous)
                if state.phase is not previous:
                    logger.debug("Call %s phase %s -> %s", call_id, previous.value, state.phase.value)
                logger.info("[%s] Agent: %s", state.phase.value, reply)
                return Directive(speak=reply, gather_timeout=self.gather_timeout)

    async def _generate_reply(self, state: ConversationState, turns: tuple) -> str:
        agent_turns = sum(1 for t in turns if t.speaker is Speaker.AGENT)
        try:
            reply = await self.generator.generate_next_utterance(
                turns,
                lead=state.lead,
                campaign=state.campaign,
                call_context=state.call_context,
            )
        except Exception as e:
            logger.error("Response generator failed for %s, using fallback: %s", state.call_id, e)
            return fallback_utterance(agent_turns)
        if not reply or not reply.strip():
            logger.warning("Empty reply for %s, using fallback", state.call_id)
            return fallback_utterance(agent_turns)
        return reply.strip()

    # ── Ending ──

    async def on_provider_signal(self, call_id: str, signal: ProviderSignal | str) -> bool:
        """Apply a provider status. Returns True if the call is ended afterward."""
        signal = ProviderSignal(signal)
        async with self._state_lock(call_id):
            state = self._require_state(call_id)
            if not signal.is_terminal:
                logger.debug("Call %s status %s ignored", call_id, signal.value)
                return state.status.is_terminal
            self._end(state, signal.end_reason)
            return True

    async def end_call(
        self,
        call_id: str,
        reason: EndReason = EndReason.OPERATOR,
        outcome: Outcome | None = None,
    ) -> bool:
        """End a call outside the conversational flow, e.g. operator hangup."""
        async with self._state_lock(call_id):
            state = self._require_state(call_id)
            if outcome is not None and state.is_active:
                state.operator_outcome = outcome
            return self._end(state, reason)

    def _end(self, state: ConversationState, reason: EndReason) -> bool:
        if state.mark_ended(reason, self._now()):
            logger.info("Call %s ended: %s (phase=%s)", state.call_id, reason.value, state.phase.value)
            return True
        logger.debug(
            "Call %s already %s (%s), ignoring %s",
            state.call_id, state.status.value, state.end_reason.value if state.end_reason else "", reason.value,
        )
        return False

    async def on_recording_ready(self, call_id: str, url: str) -> None:
        lock = self.registry.state_lock(call_id)
        if lock is not None:
            async with lock:
                state = self.registry.get(call_id)
                if state is not None:
                    state.recording_url = url
                    return
        try:
            await self.call_store.attach_recording(call_id, url)
        except StoreError as e:
            logger.error("Failed to attach recording to %s: %s", call_id, e)

    # ── Finalize ──

    async def finalize(self, call_id: str) -> Optional[CallSummary]:
        """Resolve, persist and feed back a finished call, then drop its state.

        A call that was already finalized is a no-op returning None.
        """
        lock = self.registry.state_lock(call_id)
        if lock is None:
            logger.debug("finalize(%s): no state, already finalized", call_id)
            return None

        async with lock:
            state = self.registry.get(call_id)
            if state is None or state.status is CallStatus.FINALIZED:
                return None
            if state.is_active:
                raise CallNotEndedError(call_id)

            turns = state.transcript.all()
            errors: list[str] = []
            sentiment = await self._score_sentiment(state, turns, errors)
            signals = await self._extract_signals(state, turns, errors)

            outcome = resolve(turns, signals, state.end_reason, state.operator_outcome)
            duration = state.duration_seconds
            summary = await self._summarize(state, turns, outcome, duration)

            record = build_call_record(state, outcome, sentiment, signals, summary)
            record_saved = await self._save_record(record)
            feedback_applied = await self._apply_feedback(state, outcome, signals, sentiment)

            state.status = CallStatus.FINALIZED
            self.registry.remove(call_id)

        log_transcript_dump(state)
        logger.info(
            "Conversation finalized: call=%s reason=%s outcome=%s duration=%ds sentiment=%s",
            call_id, state.end_reason.value, outcome.value, duration, sentiment.overall,
        )
        return CallSummary(
            call_id=call_id,
            lead_id=state.lead_id,
            outcome=outcome,
            end_reason=state.end_reason,
            duration=duration,
            sentiment=sentiment,
            signals=signals,
            summary=summary,
            record_saved=record_saved,
            feedback_applied=feedback_applied,
            extraction_errors=errors,
        )

    async def _score_sentiment(self, state, turns, errors: list) -> Sentiment:
        try:
            return await self.generator.score_sentiment(turns)
        except ExtractionFailure as e:
            logger.warning("Sentiment scoring failed for %s, using neutral: %s", state.call_id, e)
        except Exception as e:
            logger.error("Unexpected sentiment error for %s: %s", state.call_id, e)
        errors.append("sentiment")
        return Sentiment()

    async def _extract_signals(self, state, turns, errors: list) -> ExtractedSignals:
        try:
            return await self.generator.extract_signals(turns, state.campaign.extraction_goals)
        except ExtractionFailure as e:
            logger.warning("Signal extraction failed for %s, using empty signals: %s", state.call_id, e)
        except Exception as e:
            logger.error("Unexpected extraction error for %s: %s", state.call_id, e)
        errors.append("signals")
        return ExtractedSignals()

    async def _summarize(self, state, turns, outcome: Outcome, duration: int) -> str:
        try:
            return await self.generator.summarize(turns, {"outcome": outcome.value, "duration": duration})
        except Exception as e:
            logger.error("Summary failed for %s: %s", state.call_id, e)
            return fallback_summary(outcome.value, duration)

    async def _save_record(self, record: dict) -> bool:
        try:
            await self.call_store.save(record)
            return True
        except Exception as e:
            logger.error("Failed to persist call record %s, queued for retry: %s", record["callId"], e)
            self.pending_records.append(record)
            return False

    async def _apply_feedback(self, state, outcome, signals, sentiment) -> bool:
        now = self._now()
        try:
            await self.feedback.apply(state.lead, outcome, signals, sentiment, state.campaign, now)
            return True
        except FeedbackApplyFailure as e:
            logger.error("Lead feedback failed for call %s, queued for retry: %s", state.call_id, e)
            self.pending_feedback.append(
                PendingFeedback(state.lead, outcome, signals, sentiment, state.campaign, now)
            )
            return False

    async def retry_pending_feedback(self) -> int:
        """Retry queued call records and lead updates. Returns how many remain queued."""
        records, self.pending_records = self.pending_records, []
        for record in records:
            await self._save_record(record)

        pending, self.pending_feedback = self.pending_feedback, []
        for item in pending:
            try:
                await self.feedback.apply(item.lead, item.outcome, item.signals, item.sentiment, item.campaign, item.now)
                logger.info("Lead feedback retry succeeded for %s", item.lead.id)
            except FeedbackApplyFailure as e:
                item.attempts += 1
                logger.error("Lead feedback retry %d failed for %s: %s", item.attempts, item.lead.id, e)
                self.pending_feedback.append(item)

        return len(self.pending_records) + len(self.pending_feedback)
