import re

from salescall.records import Lead


def match_any_keyword(text: str, keywords) -> bool:
    """Check if any keyword appears in text as a whole word (not substring)."""
    lower = text.lower()
    return any(re.search(rf"\b{re.escape(kw)}\b", lower) for kw in keywords)


# --- Termination intents ---

TERMINATION_PHRASES = {
    "REMOVE_REQUEST": {
        "remove me", "take me off your list", "take me off the list",
        "take me off your calling list", "do not call", "don't call me",
        "stop calling", "put me on your do not call",
    },
    "NOT_INTERESTED": {"not interested", "no thanks", "no thank you"},
    "WRONG_NUMBER": {
        "you have the wrong number", "you've got the wrong number",
        "you got the wrong number", "this is the wrong number",
        "you dialed the wrong number", "you called the wrong number",
        "wrong person", "no one by that name",
    },
    "GOODBYE": {
        "goodbye", "bye", "hang up", "end call", "end the call",
        "i have to go now", "i've got to go now", "i gotta go now",
    },
    "UNSUBSCRIBE": {"unsubscribe", "opt out"},
}

# Benign speech that contains a termination phrase. Stripped before matching.
BENIGN_PHRASES = {
    "don't hang up", "do not hang up", "please don't hang up",
    "before you hang up", "before we hang up", "not hang up",
    "not not interested", "wasn't not interested",
    "i'm not interested in waiting", "not interested in waiting",
    "bye for now, just kidding",
}


def _strip_benign(text: str) -> str:
    lower = text.lower()
    # Longest first so "please don't hang up" wins over "don't hang up"
    for phrase in sorted(BENIGN_PHRASES, key=len, reverse=True):
        lower = lower.replace(phrase, " ")
    return lower


def termination_intent(text: str) -> str | None:
    """Return the termination intent tag a customer utterance signals, or None."""
    if not text or not text.strip():
        return None
    cleaned = _strip_benign(text)
    for intent, phrases in TERMINATION_PHRASES.items():
        if match_any_keyword(cleaned, phrases):
            return intent
    return None


def should_end(text: str) -> bool:
    """Does this customer utterance ask to end the engagement?"""
    return termination_intent(text) is not None


# --- Callback requests ---

CALLBACK_REQUEST_KEYWORDS = {
    "callback", "call back", "call me back", "call-back",
    "call later", "call me later", "follow up call", "follow-up call",
    "try again", "reach out later",
}


def detect_callback_request(text: str | None) -> bool:
    if not text:
        return False
    return match_any_keyword(text, CALLBACK_REQUEST_KEYWORDS)


# --- Script placeholders ---

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


def lead_placeholders(lead: Lead) -> dict[str, str]:
    return {
        "firstName": lead.first_name or "",
        "lastName": lead.last_name or "",
        "fullName": lead.full_name,
        "company": lead.company or "",
        "jobTitle": lead.job_title or "",
    }


def render_template(template: str, lead: Lead) -> str:
    """Replace {placeholder} tokens from the lead record.

    Unknown placeholders and missing lead values render as empty string,
    never as literal braces.
    """
    values = lead_placeholders(lead)
    rendered = PLACEHOLDER_PATTERN.sub(lambda m: values.get(m.group(1), ""), template)
    return re.sub(r"[ \t]{2,}", " ", rendered).strip()
