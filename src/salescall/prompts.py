from salescall.records import Campaign, Lead
from salescall.session import CallContext

DEFAULT_OPENING = "Hello, this is an automated sales call. Am I speaking with {firstName}?"
DEFAULT_CLOSING = "Thank you for your time. Goodbye!"

PERSONA = """You are a professional sales agent conducting an outbound phone call. Your goal is to:
1. Build rapport with the prospect
2. Understand their needs and pain points
3. Present your solution effectively
4. Handle objections professionally
5. Move the conversation toward a positive outcome

Keep your responses:
- Natural and conversational, this is a phone call and everything you write is spoken aloud
- Concise (under 50 words when possible)
- Professional but friendly
- Focused on the prospect's needs"""

RULES = """IMPORTANT:
- Keep responses under 50 words
- Ask one question at a time
- Listen actively and respond to what the prospect actually says
- If the prospect asks to be removed from calls, respect their request immediately
- If the prospect is not interested, politely end the call"""

# Neutral clarifying lines used when the language model is unavailable.
FALLBACK_UTTERANCES = (
    "I understand. Can you tell me more about that?",
    "That's interesting. What's most important to you in this area?",
    "I appreciate you sharing that with me. How can I help you with this?",
    "Thank you for that information. What would you like to know about our solution?",
    "I see. What challenges are you currently facing with this?",
)


def fallback_utterance(turn_index: int) -> str:
    """Deterministic fallback: rotate through the set by agent turn count."""
    return FALLBACK_UTTERANCES[turn_index % len(FALLBACK_UTTERANCES)]


def _lead_context(lead: Lead) -> str:
    parts = ["Prospect Information:", f"- Name: {lead.full_name}"]
    if lead.company:
        parts.append(f"- Company: {lead.company}")
    if lead.job_title:
        parts.append(f"- Job Title: {lead.job_title}")
    if lead.industry:
        parts.append(f"- Industry: {lead.industry}")
    if lead.objections:
        parts.append(f"- Previous objections: {', '.join(lead.objections)}")
    if lead.topics:
        parts.append(f"- Topics of interest: {', '.join(lead.topics)}")
    return "\n".join(parts)


def _campaign_context(campaign: Campaign) -> str:
    sections = []
    handling = [oh for oh in campaign.objection_handling if oh.get("objection")]
    if handling:
        lines = ["Objection Handling:"]
        for oh in handling:
            lines.append(f"- If prospect says \"{oh['objection']}\": {oh.get('response', '')}")
        sections.append("\n".join(lines))

    questions = [q for q in campaign.qualification_questions if q.get("question")]
    if questions:
        lines = ["Qualification Questions:"]
        for i, q in enumerate(questions, start=1):
            line = f"{i}. {q['question']}"
            expected = q.get("expectedResponses") or []
            if expected:
                line += f" (Look for: {', '.join(expected)})"
            lines.append(line)
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


def _call_context(context: CallContext) -> str:
    parts = []
    if context.attempt_number > 1:
        parts.append(
            f"This is follow-up call #{context.attempt_number}. "
            "Reference previous conversations appropriately."
        )
    if context.time_of_day:
        parts.append(f"Current time context: {context.time_of_day}")
    return "\n\n".join(parts)


def get_system_prompt(lead: Lead, campaign: Campaign, context: CallContext) -> str:
    base = campaign.system_prompt or PERSONA
    sections = [base, _lead_context(lead), _campaign_context(campaign), _call_context(context), RULES]
    return "\n\n".join(s for s in sections if s)


SENTIMENT_PROMPT = """Analyze the sentiment of this customer's responses in a sales call.
Respond with a JSON object containing:
- overall: "positive", "neutral", or "negative"
- score: number between -1 (very negative) and 1 (very positive)
- confidence: number between 0 and 1
- reasons: array of key phrases that influenced the sentiment"""

DEFAULT_EXTRACTION_GOALS = {
    "budget": "Extract any budget information mentioned",
    "timeline": "Extract purchase timeline or urgency",
    "decisionMaker": "Determine if this person makes purchasing decisions (true/false)",
    "painPoints": "Identify customer pain points or challenges",
    "interests": "Note topics or features the customer showed interest in",
    "objections": "List any objections or concerns raised",
    "nextSteps": "Identify any requested follow-up actions, e.g. a callback",
}


def extraction_prompt(goals: dict) -> str:
    merged = {**DEFAULT_EXTRACTION_GOALS, **(goals or {})}
    goal_lines = "\n".join(f"- {key}: {goal}" for key, goal in merged.items())
    return (
        "Extract key information from this sales call conversation.\n"
        f"Return ONLY a JSON object with the following fields: {', '.join(merged)}.\n"
        "For each field, provide either the extracted information or null if not mentioned.\n"
        "Do not guess or fabricate values. Only extract what the customer actually said.\n\n"
        f"Extraction goals:\n{goal_lines}"
    )


SUMMARY_PROMPT = """Generate a concise summary of this sales call conversation. Include:
- Key discussion points
- Customer's response and sentiment
- Any objections or concerns raised
- Next steps or follow-up required
- Overall call outcome assessment

Keep the summary under 200 words and professional in tone."""


def fallback_summary(outcome: str, duration: int) -> str:
    return f"Call completed with outcome: {outcome or 'Unknown'}. Duration: {duration or 0} seconds."
