import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import BackgroundTasks, Body, Depends, FastAPI, Form, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, Response

from salescall.config import dashboard_enabled, gather_timeout, validate_config
from salescall.dashboard_sync import (
    DashboardCallStore,
    DashboardCampaignStore,
    DashboardClient,
    DashboardLeadStore,
)
from salescall.dialer import dial_lead
from salescall.errors import (
    CallNotActiveError,
    CallNotEndedError,
    DuplicateCallError,
    LeadNotCallableError,
    StoreError,
    TelephonyError,
    UnknownCallError,
)
from salescall.feedback import LeadFeedbackUpdater
from salescall.generator import ResponseGenerator
from salescall.orchestrator import ConversationOrchestrator
from salescall.records import Campaign
from salescall.registry import CallRegistry
from salescall.states import EndReason, Outcome, ProviderSignal, Speaker
from salescall.stores import InMemoryCallStore, InMemoryCampaignStore, InMemoryLeadStore
from salescall.telephony import (
    Directive,
    TwilioClient,
    hangup_twiml,
    render_twiml,
    valid_webhook_signature,
)

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

REPROMPT = "I'm sorry, I didn't catch that. Could you say that again?"
NO_INPUT_MESSAGE = "It seems we got disconnected. We'll try you again another time. Goodbye."
CONNECT_FAILURE_MESSAGE = "We're sorry, we're unable to continue this call. Goodbye."


@dataclass
class Services:
    orchestrator: ConversationOrchestrator
    leads: object
    campaigns: object
    telephony: Optional[TwilioClient]
    base_url: str
    # None disables webhook signature checks
    auth_token: Optional[str] = None


def build_services() -> Services:
    """Wire the orchestrator and its collaborators from the environment."""
    validate_config()

    if dashboard_enabled():
        client = DashboardClient(
            leads_url=os.environ["DASHBOARD_LEADS_URL"],
            campaigns_url=os.environ["DASHBOARD_CAMPAIGNS_URL"],
            calls_url=os.environ["DASHBOARD_CALLS_URL"],
            webhook_secret=os.getenv("DASHBOARD_WEBHOOK_SECRET", ""),
        )
        leads = DashboardLeadStore(client)
        campaigns = DashboardCampaignStore(client)
        calls = DashboardCallStore(client)
    else:
        logger.warning("Dashboard URLs not set, using in-memory stores")
        leads = InMemoryLeadStore()
        campaigns = InMemoryCampaignStore()
        calls = InMemoryCallStore()

    orchestrator = ConversationOrchestrator(
        CallRegistry(),
        ResponseGenerator(),
        calls,
        LeadFeedbackUpdater(leads),
        gather_timeout=gather_timeout(),
    )
    telephony = TwilioClient(
        os.environ["TWILIO_ACCOUNT_SID"],
        os.environ["TWILIO_AUTH_TOKEN"],
        os.environ["TWILIO_PHONE_NUMBER"],
    )
    return Services(
        orchestrator=orchestrator,
        leads=leads,
        campaigns=campaigns,
        telephony=telephony,
        base_url=os.environ["BASE_URL"].rstrip("/"),
        auth_token=os.environ["TWILIO_AUTH_TOKEN"],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    services = app.state.services
    yield
    if services.orchestrator.active_call_count():
        logger.warning("Shutting down with %d live calls", services.orchestrator.active_call_count())
    await services.orchestrator.generator.close()
    if services.telephony is not None:
        await services.telephony.close()


app = FastAPI(title="Sales Call Agent", lifespan=lifespan)


def _services(request: Request) -> Services:
    return request.app.state.services


async def verify_twilio_signature(request: Request) -> None:
    """Reject webhooks whose X-Twilio-Signature does not match the public URL and form body."""
    services = _services(request)
    if not services.auth_token:
        return
    # Signed URL is the public one Twilio called, not the proxied request URL
    url = f"{services.base_url}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    form = await request.form()
    signature = request.headers.get("X-Twilio-Signature", "")
    if not valid_webhook_signature(services.auth_token, url, form.multi_items(), signature):
        logger.warning("Rejected webhook %s: bad or missing signature", request.url.path)
        raise HTTPException(status_code=403, detail="invalid signature")


def _twiml(services: Services, directive: Directive, campaign: Optional[Campaign] = None) -> Response:
    xml = render_twiml(
        directive,
        action_url=f"{services.base_url}/twilio/gather",
        voice=campaign.voice if campaign else "alice",
        language=campaign.language if campaign else "en-US",
        no_input_message=NO_INPUT_MESSAGE,
    )
    return Response(content=xml, media_type="application/xml")


def _hangup(message: str = "") -> Response:
    return Response(content=hangup_twiml(message), media_type="application/xml")


async def _finalize(orchestrator: ConversationOrchestrator, call_id: str) -> None:
    try:
        summary = await orchestrator.finalize(call_id)
    except CallNotEndedError:
        logger.warning("finalize(%s) skipped: call still active", call_id)
        return
    if summary is not None and not (summary.record_saved and summary.feedback_applied):
        logger.warning(
            "Call %s finalized with pending writes: record_saved=%s feedback_applied=%s",
            call_id, summary.record_saved, summary.feedback_applied,
        )


@app.get("/health")
async def health():
    return PlainTextResponse("ok")


# ── Telephony webhooks ──


@app.post("/twilio/voice", dependencies=[Depends(verify_twilio_signature)])
async def twilio_voice(
    request: Request,
    CallSid: str = Form(...),
    leadId: str = Query(...),
    campaignId: str = Query(...),
):
    """Call connected: load the lead/campaign pairing and speak the opening."""
    services = _services(request)
    orchestrator = services.orchestrator

    try:
        lead = await services.leads.get(leadId)
        campaign = await services.campaigns.get(campaignId)
    except StoreError as e:
        logger.error("Call %s: failed to load lead/campaign: %s", CallSid, e)
        return _hangup(CONNECT_FAILURE_MESSAGE)
    if lead is None or campaign is None:
        logger.error("Call %s: unknown lead %s or campaign %s", CallSid, leadId, campaignId)
        return _hangup(CONNECT_FAILURE_MESSAGE)

    try:
        directive = await orchestrator.initialize(CallSid, lead, campaign)
    except DuplicateCallError:
        # Provider retried the connect webhook; repeat the last agent line
        state = orchestrator.get_state(CallSid)
        if state is None or not state.is_active:
            return _hangup()
        last = state.transcript.agent_turns()[-1].text
        logger.warning("Duplicate connect for %s, repeating last agent line", CallSid)
        directive = Directive(speak=last, gather_timeout=orchestrator.gather_timeout)
    return _twiml(services, directive, campaign)


@app.post("/twilio/gather", dependencies=[Depends(verify_twilio_signature)])
async def twilio_gather(
    request: Request,
    background_tasks: BackgroundTasks,
    CallSid: str = Form(...),
    SpeechResult: str = Form(""),
    Confidence: Optional[float] = Form(None),
):
    """One customer utterance in, the next agent directive out."""
    services = _services(request)
    orchestrator = services.orchestrator
    state = orchestrator.get_state(CallSid)
    campaign = state.campaign if state else None

    if not SpeechResult.strip():
        if state is None or not state.is_active:
            return _hangup()
        logger.info("Call %s: empty speech, re-prompting", CallSid)
        return _twiml(services, Directive(speak=REPROMPT, gather_timeout=orchestrator.gather_timeout), campaign)

    logger.debug("Call %s speech confidence=%s", CallSid, Confidence)
    try:
        directive = await orchestrator.on_customer_turn(CallSid, SpeechResult)
    except (UnknownCallError, CallNotActiveError) as e:
        logger.warning("Rejected speech for %s: %s", CallSid, e)
        return _hangup()

    if directive is None:
        return _hangup()
    if directive.hangup:
        background_tasks.add_task(_finalize, orchestrator, CallSid)
    return _twiml(services, directive, campaign)


@app.post("/twilio/status", dependencies=[Depends(verify_twilio_signature)])
async def twilio_status(
    request: Request,
    background_tasks: BackgroundTasks,
    CallSid: str = Form(...),
    CallStatus: str = Form(...),
):
    orchestrator = _services(request).orchestrator
    try:
        signal = ProviderSignal(CallStatus)
    except ValueError:
        logger.warning("Call %s: unrecognized status %r", CallSid, CallStatus)
        return PlainTextResponse("ignored")
    if not signal.is_terminal and orchestrator.get_state(CallSid) is None:
        # Progress events can precede the connect webhook
        logger.debug("Call %s: status %s before connect, ignoring", CallSid, CallStatus)
        return PlainTextResponse("ignored")

    try:
        ended = await orchestrator.on_provider_signal(CallSid, signal)
    except UnknownCallError:
        logger.info("Status %s for unknown call %s rejected", CallStatus, CallSid)
        raise HTTPException(status_code=404, detail="unknown call")

    if ended:
        background_tasks.add_task(_finalize, orchestrator, CallSid)
    return PlainTextResponse("ok")


@app.post("/twilio/recording", dependencies=[Depends(verify_twilio_signature)])
async def twilio_recording(
    request: Request,
    CallSid: str = Form(...),
    RecordingUrl: str = Form(...),
    RecordingStatus: str = Form("completed"),
):
    if RecordingStatus != "completed":
        logger.info("Call %s recording status %s, ignoring", CallSid, RecordingStatus)
        return PlainTextResponse("ignored")
    await _services(request).orchestrator.on_recording_ready(CallSid, RecordingUrl)
    return PlainTextResponse("ok")


# ── Operator actions ──


@app.get("/calls")
async def list_calls(request: Request):
    orchestrator = _services(request).orchestrator
    calls = []
    for call_id in orchestrator.registry.call_ids():
        state = orchestrator.get_state(call_id)
        if state is None:
            continue
        calls.append({
            "callId": call_id,
            "leadId": state.lead_id,
            "campaignId": state.campaign_id,
            "status": state.status.value,
            "phase": state.phase.value,
            "turns": len(state.transcript),
            "customerTurns": sum(1 for t in state.transcript if t.speaker is Speaker.CUSTOMER),
        })
    return {"active": orchestrator.active_call_count(), "calls": calls}


@app.post("/calls/{call_id}/hangup")
async def hangup_call(
    call_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: Optional[dict] = Body(None),
):
    """Operator hangup, optionally recording a disposition such as sale or voicemail."""
    services = _services(request)
    outcome = None
    if payload and payload.get("outcome"):
        try:
            outcome = Outcome(payload["outcome"])
        except ValueError:
            raise HTTPException(status_code=422, detail=f"unknown outcome {payload['outcome']!r}")

    try:
        ended = await services.orchestrator.end_call(call_id, EndReason.OPERATOR, outcome)
    except UnknownCallError:
        raise HTTPException(status_code=404, detail="unknown call")

    if services.telephony is not None:
        try:
            await services.telephony.hangup(call_id)
        except TelephonyError as e:
            logger.error("Provider hangup for %s failed: %s", call_id, e)

    background_tasks.add_task(_finalize, services.orchestrator, call_id)
    return {"callId": call_id, "ended": ended}


@app.post("/calls/retry-pending")
async def retry_pending(request: Request):
    remaining = await _services(request).orchestrator.retry_pending_feedback()
    return {"remaining": remaining}


@app.post("/leads/{lead_id}/dial")
async def dial(lead_id: str, request: Request, campaignId: str = Query(...)):
    services = _services(request)
    lead = await services.leads.get(lead_id)
    campaign = await services.campaigns.get(campaignId)
    if lead is None or campaign is None:
        raise HTTPException(status_code=404, detail="unknown lead or campaign")
    if services.telephony is None:
        raise HTTPException(status_code=503, detail="telephony not configured")
    try:
        call_id = await dial_lead(services.telephony, lead, campaign, services.base_url)
    except LeadNotCallableError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except TelephonyError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"callId": call_id}


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8765"))
    uvicorn.run("salescall.bot:app", host="0.0.0.0", port=port, reload=True)
