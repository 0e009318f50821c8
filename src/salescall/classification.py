from salescall.states import Phase
from salescall.validation import match_any_keyword

# --- Keyword buckets for conversational phase ---

# Evaluated in this order; the first bucket with a match wins.
PHASE_PRIORITY = (
    Phase.QUALIFICATION,
    Phase.PRESENTATION,
    Phase.OBJECTION,
    Phase.CLOSING,
)

PHASE_KEYWORDS = {
    Phase.QUALIFICATION: {
        "qualify", "budget", "timeline", "decision", "decision maker",
        "how many", "currently using",
    },
    Phase.PRESENTATION: {
        "solution", "solutions", "product", "products", "service", "services",
        "benefit", "benefits", "feature", "features",
    },
    Phase.OBJECTION: {
        "concern", "concerns", "but", "however", "objection", "understand your hesitation",
    },
    Phase.CLOSING: {
        "next step", "next steps", "schedule", "sign up", "purchase",
        "book a", "demo",
    },
}


def classify_phase(agent_utterance: str, current: Phase) -> Phase:
    """Heuristic phase for an agent utterance.

    No match keeps the current phase. Transitions are not validated; a call
    can move back from closing to objection.
    """
    if not agent_utterance:
        return current
    for phase in PHASE_PRIORITY:
        if match_any_keyword(agent_utterance, PHASE_KEYWORDS[phase]):
            return phase
    return current
