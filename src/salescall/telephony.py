import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from urllib.parse import urlencode
from xml.sax.saxutils import escape, quoteattr

import httpx

from salescall.errors import TelephonyError

logger = logging.getLogger(__name__)

TWILIO_API = "https://api.twilio.com/2010-04-01"
DEFAULT_GATHER_TIMEOUT = 5


@dataclass
class Directive:
    """What the transport should do next: speak, then gather or hang up."""

    speak: str = ""
    hangup: bool = False
    gather_timeout: int = DEFAULT_GATHER_TIMEOUT

    @property
    def gather(self) -> bool:
        return not self.hangup


def render_twiml(
    directive: Directive,
    action_url: str = "",
    voice: str = "alice",
    language: str = "en-US",
    no_input_message: str = "",
) -> str:
    """Render a Directive as a TwiML document."""
    say_attrs = f"voice={quoteattr(voice)} language={quoteattr(language)}"
    parts = ["<?xml version=\"1.0\" encoding=\"UTF-8\"?>", "<Response>"]

    if directive.gather:
        parts.append(
            f"<Gather input=\"speech\" speechTimeout=\"auto\" method=\"POST\" "
            f"timeout=\"{int(directive.gather_timeout)}\" action={quoteattr(action_url)}>"
        )
        if directive.speak:
            parts.append(f"<Say {say_attrs}>{escape(directive.speak)}</Say>")
        parts.append("</Gather>")
        if no_input_message:
            parts.append(f"<Say {say_attrs}>{escape(no_input_message)}</Say>")
    else:
        if directive.speak:
            parts.append(f"<Say {say_attrs}>{escape(directive.speak)}</Say>")
        parts.append("<Hangup/>")

    parts.append("</Response>")
    return "".join(parts)


def hangup_twiml(message: str = "") -> str:
    return render_twiml(Directive(speak=message, hangup=True))


def webhook_signature(auth_token: str, url: str, params) -> str:
    """Twilio request signature: base64 HMAC-SHA1 over the URL plus sorted POST params."""
    payload = url + "".join(f"{key}{value}" for key, value in sorted(params))
    digest = hmac.new(auth_token.encode(), payload.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def valid_webhook_signature(auth_token: str, url: str, params, signature: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(webhook_signature(auth_token, url, params), signature)


class TwilioClient:
    """Minimal Twilio REST client: place and hang up calls."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.account_sid = account_sid
        self.from_number = from_number
        self._client = client or httpx.AsyncClient(
            base_url=f"{TWILIO_API}/Accounts/{account_sid}",
            auth=(account_sid, auth_token),
            timeout=timeout,
        )

    async def close(self):
        await self._client.aclose()

    async def place_call(
        self,
        to_number: str,
        callback_url: str,
        params: dict | None = None,
        status_callback: str = "",
        recording_callback: str = "",
        ring_timeout: int = 30,
    ) -> str:
        """Start an outbound call. Returns the provider CallId."""
        url = f"{callback_url}?{urlencode(params)}" if params else callback_url
        data = {
            "To": to_number,
            "From": self.from_number,
            "Url": url,
            "Method": "POST",
            "Timeout": str(ring_timeout),
        }
        if status_callback:
            data["StatusCallback"] = status_callback
            data["StatusCallbackMethod"] = "POST"
            # Terminal event only
            data["StatusCallbackEvent"] = "completed"
        if recording_callback:
            data["Record"] = "true"
            data["RecordingStatusCallback"] = recording_callback
            data["RecordingStatusCallbackMethod"] = "POST"

        logger.info("Placing call to %s", to_number)
        try:
            resp = await self._client.post("/Calls.json", data=data)
            resp.raise_for_status()
            call_id = resp.json()["sid"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("place_call to %s failed: %s", to_number, e)
            raise TelephonyError(f"place_call failed: {e}") from e

        logger.info("Call placed: %s -> %s", call_id, to_number)
        return call_id

    async def hangup(self, call_id: str) -> None:
        try:
            resp = await self._client.post(f"/Calls/{call_id}.json", data={"Status": "completed"})
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("hangup %s failed: %s", call_id, e)
            raise TelephonyError(f"hangup failed: {e}") from e
