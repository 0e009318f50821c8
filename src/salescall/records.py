import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)

NON_CALLABLE_STATUSES = {"do-not-call", "converted"}


def _parse_dt(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable datetime %r, ignoring", value)
        return None


def _as_list(value) -> list[str]:
    """Normalize LLM/dashboard list fields: None, "a, b", or ["a", "b"]."""
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item and str(item).strip()]
    return [str(value)]


@dataclass
class Lead:
    id: str
    first_name: str
    phone_number: str = ""
    last_name: str = ""
    email: str = ""
    company: str = ""
    job_title: str = ""
    industry: str = ""
    timezone: str = "America/New_York"

    # Scoring / status
    status: str = "new"
    score: int = 50

    # Call history
    total_calls: int = 0
    last_call_date: Optional[datetime] = None
    next_call_date: Optional[datetime] = None
    do_not_call: bool = False
    do_not_call_reason: str = ""

    # Conversation history carried across calls
    topics: list = field(default_factory=list)
    objections: list = field(default_factory=list)

    # Qualification
    budget: str = ""
    timeframe: str = ""
    decision_maker: Optional[bool] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def is_callable(self) -> bool:
        return not self.do_not_call and self.status not in NON_CALLABLE_STATUSES

    @classmethod
    def from_dict(cls, data: dict) -> "Lead":
        return cls(
            id=str(data.get("id") or data.get("_id") or ""),
            first_name=data.get("firstName") or data.get("first_name") or "",
            last_name=data.get("lastName") or data.get("last_name") or "",
            phone_number=data.get("phoneNumber") or data.get("phone_number") or "",
            email=data.get("email") or "",
            company=data.get("company") or "",
            job_title=data.get("jobTitle") or data.get("job_title") or "",
            industry=data.get("industry") or "",
            timezone=data.get("timezone") or "America/New_York",
            status=data.get("status") or "new",
            score=int(data["score"]) if data.get("score") is not None else 50,
            total_calls=int(data.get("totalCalls", data.get("total_calls", 0)) or 0),
            last_call_date=_parse_dt(data.get("lastCallDate") or data.get("last_call_date")),
            next_call_date=_parse_dt(data.get("nextCallDate") or data.get("next_call_date")),
            do_not_call=bool(data.get("doNotCall", data.get("do_not_call", False))),
            do_not_call_reason=data.get("doNotCallReason") or data.get("do_not_call_reason") or "",
            topics=_as_list((data.get("preferences") or {}).get("topics") or data.get("topics")),
            objections=_as_list((data.get("preferences") or {}).get("objections") or data.get("objections")),
            budget=str(data.get("budget") or ""),
            timeframe=data.get("timeframe") or "",
            decision_maker=data.get("decisionMaker", data.get("decision_maker")),
        )

    def to_update_payload(self) -> dict:
        """Fields the feedback updater mutates, in dashboard camelCase."""
        return {
            "id": self.id,
            "status": self.status,
            "score": self.score,
            "totalCalls": self.total_calls,
            "lastCallDate": self.last_call_date.isoformat() if self.last_call_date else None,
            "nextCallDate": self.next_call_date.isoformat() if self.next_call_date else None,
            "doNotCall": self.do_not_call,
            "doNotCallReason": self.do_not_call_reason,
            "preferences": {"topics": list(self.topics), "objections": list(self.objections)},
            "budget": self.budget,
            "timeframe": self.timeframe,
            "decisionMaker": self.decision_maker,
        }


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    retry_delay_hours: float = 24.0


@dataclass
class Campaign:
    id: str
    name: str = ""
    opening_script: str = ""
    closing_script: str = ""
    system_prompt: str = ""

    # Model settings
    model: str = ""
    temperature: float = 0.7
    max_tokens: int = 150

    # Voice settings
    voice: str = "alice"
    language: str = "en-US"

    objection_handling: list = field(default_factory=list)  # [{"objection": ..., "response": ...}]
    qualification_questions: list = field(default_factory=list)  # [{"question": ..., "expectedResponses": [...]}]
    extraction_goals: dict = field(default_factory=dict)

    retry_policy: Optional[RetryPolicy] = None
    callback_hour: int = 9
    interested_delay_hours: float = 72.0

    @classmethod
    def from_dict(cls, data: dict) -> "Campaign":
        script = data.get("script") or {}
        ai = data.get("aiSettings") or {}
        voice = data.get("voiceSettings") or {}
        retry = data.get("retryPolicy") or data.get("callSettings")
        retry_policy = None
        if retry:
            retry_policy = RetryPolicy(
                max_attempts=int(retry.get("maxAttempts", retry.get("maxRetries", 3))),
                retry_delay_hours=float(retry.get("retryDelayHours", retry.get("retryDelay", 24))),
            )
        return cls(
            id=str(data.get("id") or data.get("_id") or ""),
            name=data.get("name") or "",
            opening_script=script.get("opening") or data.get("opening_script") or "",
            closing_script=script.get("closing") or data.get("closing_script") or "",
            system_prompt=ai.get("systemPrompt") or data.get("system_prompt") or "",
            model=ai.get("model") or "",
            temperature=float(ai.get("temperature", 0.7)),
            max_tokens=int(ai.get("maxTokens", 150)),
            voice=voice.get("voice") or "alice",
            language=voice.get("language") or "en-US",
            objection_handling=list(script.get("objectionHandling") or []),
            qualification_questions=list(script.get("qualification") or []),
            extraction_goals=dict(data.get("extractionGoals") or {}),
            retry_policy=retry_policy,
            callback_hour=int(data.get("callbackHour", 9)),
            interested_delay_hours=float(data.get("interestedDelayHours", 72)),
        )


@dataclass
class ExtractedSignals:
    """Advisory facts pulled from a finished transcript. Every field may be absent."""

    budget: Optional[str] = None
    timeline: Optional[str] = None
    decision_maker: Optional[bool] = None
    pain_points: list = field(default_factory=list)
    interests: list = field(default_factory=list)
    objections: list = field(default_factory=list)
    next_steps: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "ExtractedSignals":
        if not isinstance(data, dict):
            return cls()
        decision_maker = data.get("decisionMaker", data.get("decision_maker"))
        if not isinstance(decision_maker, bool):
            decision_maker = None
        next_steps = data.get("nextSteps", data.get("next_steps"))
        if isinstance(next_steps, list):
            next_steps = ", ".join(str(s) for s in next_steps if s)
        return cls(
            budget=str(data["budget"]) if data.get("budget") else None,
            timeline=str(data["timeline"]) if data.get("timeline") else None,
            decision_maker=decision_maker,
            pain_points=_as_list(data.get("painPoints", data.get("pain_points"))),
            interests=_as_list(data.get("interests")),
            objections=_as_list(data.get("objections")),
            next_steps=str(next_steps).strip() or None if next_steps else None,
        )

    def to_dict(self) -> dict:
        return {
            "budget": self.budget,
            "timeline": self.timeline,
            "decisionMaker": self.decision_maker,
            "painPoints": list(self.pain_points),
            "interests": list(self.interests),
            "objections": list(self.objections),
            "nextSteps": self.next_steps,
        }


SENTIMENT_LABELS = {"positive", "neutral", "negative"}


@dataclass
class Sentiment:
    overall: str = "neutral"
    score: float = 0.0
    confidence: float = 0.0
    reasons: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None) -> "Sentiment":
        if not isinstance(data, dict):
            return cls()
        overall = str(data.get("overall", "neutral")).lower()
        if overall not in SENTIMENT_LABELS:
            overall = "neutral"
        try:
            score = max(-1.0, min(1.0, float(data.get("score", 0))))
            confidence = max(0.0, min(1.0, float(data.get("confidence", 0))))
        except (TypeError, ValueError):
            score, confidence = 0.0, 0.0
        return cls(overall=overall, score=score, confidence=confidence, reasons=_as_list(data.get("reasons")))

    def to_dict(self) -> dict:
        return {
            "overall": self.overall,
            "score": self.score,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
        }
