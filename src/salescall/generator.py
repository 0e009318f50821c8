import json
import logging
import os

import httpx

from salescall.circuit_breaker import CircuitBreaker
from salescall.errors import ExtractionFailure, GeneratorFailure
from salescall.prompts import (
    SENTIMENT_PROMPT,
    SUMMARY_PROMPT,
    extraction_prompt,
    fallback_summary,
    fallback_utterance,
    get_system_prompt,
)
from salescall.records import ExtractedSignals, Sentiment
from salescall.states import Speaker
from salescall.transcript import to_chat_messages, to_plain_text

logger = logging.getLogger(__name__)

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o-mini"


class ResponseGenerator:
    """Language model client for turn generation and post-call analysis.

    Turn generation never raises: any failure, including an open circuit,
    degrades to a fixed clarifying utterance. The analysis calls raise
    ExtractionFailure so the orchestrator can substitute its own defaults.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        analysis_model: str = "",
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY", "")
        self.model = model or os.getenv("OPENAI_MODEL", DEFAULT_MODEL)
        self.analysis_model = analysis_model or os.getenv("OPENAI_ANALYSIS_MODEL", DEFAULT_MODEL)
        self.timeout = timeout
        self._circuit = CircuitBreaker(failure_threshold=3, cooldown_seconds=30.0, label="OpenAI")
        self._client = client or httpx.AsyncClient(timeout=self.timeout)

    async def close(self):
        await self._client.aclose()

    async def _complete(self, payload: dict) -> str:
        if not self._circuit.should_try():
            raise GeneratorFailure("OpenAI circuit breaker open")
        try:
            resp = await self._client.post(
                OPENAI_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=payload,
            )
            resp.raise_for_status()
            content = resp.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            self._circuit.record_failure()
            raise GeneratorFailure(str(e)) from e

        if not content or not content.strip():
            self._circuit.record_failure()
            raise GeneratorFailure("empty completion")
        self._circuit.record_success()
        return content.strip()

    async def _complete_json(self, system: str, user: str, max_tokens: int) -> dict:
        content = await self._complete({
            "model": self.analysis_model,
            "temperature": 0.1,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        })
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError(f"expected JSON object, got {type(data).__name__}")
        return data

    async def generate_next_utterance(self, turns, *, lead, campaign, call_context) -> str:
        """Next agent line for the conversation so far. Falls back, never raises."""
        agent_turns = sum(1 for t in turns if t.speaker is Speaker.AGENT)
        messages = [
            {"role": "system", "content": get_system_prompt(lead, campaign, call_context)},
            *to_chat_messages(turns),
        ]
        try:
            reply = await self._complete({
                "model": campaign.model or self.model,
                "temperature": campaign.temperature,
                "max_tokens": campaign.max_tokens,
                "presence_penalty": 0.3,
                "frequency_penalty": 0.3,
                "messages": messages,
            })
        except GeneratorFailure as e:
            logger.error("generate_next_utterance failed: %s", e)
            return fallback_utterance(agent_turns)
        logger.debug("Generated reply (%d chars) from %d messages", len(reply), len(messages))
        return reply

    async def score_sentiment(self, turns) -> Sentiment:
        customer_text = " ".join(t.text for t in turns if t.speaker is Speaker.CUSTOMER)
        if not customer_text.strip():
            return Sentiment()
        try:
            data = await self._complete_json(SENTIMENT_PROMPT, customer_text, max_tokens=200)
        except (GeneratorFailure, ValueError) as e:
            raise ExtractionFailure(f"sentiment scoring failed: {e}") from e
        return Sentiment.from_dict(data)

    async def extract_signals(self, turns, goals: dict | None = None) -> ExtractedSignals:
        if not turns:
            return ExtractedSignals()
        try:
            data = await self._complete_json(extraction_prompt(goals or {}), to_plain_text(turns), max_tokens=300)
        except (GeneratorFailure, ValueError) as e:
            raise ExtractionFailure(f"signal extraction failed: {e}") from e
        return ExtractedSignals.from_dict(data)

    async def summarize(self, turns, outcome_context: dict) -> str:
        outcome = outcome_context.get("outcome", "")
        duration = outcome_context.get("duration", 0)
        if not turns:
            return fallback_summary(outcome, duration)
        try:
            return await self._complete({
                "model": self.analysis_model,
                "temperature": 0.3,
                "max_tokens": 250,
                "messages": [
                    {"role": "system", "content": SUMMARY_PROMPT},
                    {
                        "role": "user",
                        "content": f"Conversation:\n{to_plain_text(turns)}\n\nCall Outcome: {outcome or 'Unknown'}",
                    },
                ],
            })
        except GeneratorFailure as e:
            logger.warning("summarize failed: %s", e)
            return fallback_summary(outcome, duration)
