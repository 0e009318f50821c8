"""Outcome resolution for finished calls.

A layered heuristic expressed as an ordered table of named rules. Each rule
looks at the transcript, the extracted signals and the end reason and either
returns an Outcome or passes. The first rule that answers wins.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from salescall.records import ExtractedSignals
from salescall.states import EndReason, Outcome, Speaker
from salescall.validation import detect_callback_request

logger = logging.getLogger(__name__)

MIN_ENGAGED_CUSTOMER_TURNS = 2
LONG_ENGAGEMENT_CUSTOMER_TURNS = 5


@dataclass(frozen=True)
class OutcomeInputs:
    turns: tuple
    signals: ExtractedSignals
    end_reason: EndReason
    operator_outcome: Optional[Outcome] = None

    @property
    def customer_turn_count(self) -> int:
        return sum(1 for t in self.turns if t.speaker is Speaker.CUSTOMER)


def operator_disposition(inputs: OutcomeInputs) -> Optional[Outcome]:
    if inputs.end_reason is EndReason.OPERATOR and inputs.operator_outcome is not None:
        return inputs.operator_outcome
    return None


def customer_requested(inputs: OutcomeInputs) -> Optional[Outcome]:
    if inputs.end_reason is EndReason.CUSTOMER_REQUESTED:
        return Outcome.NOT_INTERESTED
    return None


def callback_requested(inputs: OutcomeInputs) -> Optional[Outcome]:
    if detect_callback_request(inputs.signals.next_steps):
        return Outcome.CALLBACK
    return None


def signals_interest(inputs: OutcomeInputs) -> Optional[Outcome]:
    if inputs.signals.next_steps or inputs.signals.interests:
        return Outcome.INTERESTED
    return None


def short_engagement(inputs: OutcomeInputs) -> Optional[Outcome]:
    if inputs.customer_turn_count < MIN_ENGAGED_CUSTOMER_TURNS:
        return Outcome.NO_ANSWER
    return None


def long_engagement(inputs: OutcomeInputs) -> Optional[Outcome]:
    if inputs.customer_turn_count > LONG_ENGAGEMENT_CUSTOMER_TURNS:
        return Outcome.INTERESTED
    return None


# Callback is checked before generic interest: a next step that explicitly
# asks for a callback must resolve to callback, not interested.
OUTCOME_RULES: tuple[tuple[str, Callable[[OutcomeInputs], Optional[Outcome]]], ...] = (
    ("operator_disposition", operator_disposition),
    ("customer_requested", customer_requested),
    ("callback_requested", callback_requested),
    ("signals_interest", signals_interest),
    ("short_engagement", short_engagement),
    ("long_engagement", long_engagement),
)

DEFAULT_OUTCOME = Outcome.NOT_INTERESTED


def resolve(
    turns,
    signals: ExtractedSignals | None,
    end_reason: EndReason,
    operator_outcome: Outcome | None = None,
) -> Outcome:
    """Resolve one terminal outcome for a finished call."""
    inputs = OutcomeInputs(
        turns=tuple(turns),
        signals=signals or ExtractedSignals(),
        end_reason=end_reason,
        operator_outcome=operator_outcome,
    )
    for name, rule in OUTCOME_RULES:
        outcome = rule(inputs)
        if outcome is not None:
            logger.debug("Outcome rule %s matched: %s", name, outcome.value)
            return outcome
    return DEFAULT_OUTCOME
