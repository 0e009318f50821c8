import logging

from salescall.errors import LeadNotCallableError
from salescall.records import Campaign, Lead
from salescall.telephony import TwilioClient

logger = logging.getLogger(__name__)


async def dial_lead(
    telephony: TwilioClient,
    lead: Lead,
    campaign: Campaign,
    base_url: str,
    ring_timeout: int = 30,
) -> str:
    """Place an outbound call for a lead. Returns the provider CallId.

    The lead/campaign pairing rides on the voice webhook URL so the connect
    handler can load both and initialize the conversation.
    """
    if not lead.is_callable:
        raise LeadNotCallableError(lead.id, lead.do_not_call_reason or lead.status)
    if not lead.phone_number:
        raise ValueError(f"lead {lead.id} has no phone number")

    base = base_url.rstrip("/")
    call_id = await telephony.place_call(
        lead.phone_number,
        f"{base}/twilio/voice",
        params={"leadId": lead.id, "campaignId": campaign.id},
        status_callback=f"{base}/twilio/status",
        recording_callback=f"{base}/twilio/recording",
        ring_timeout=ring_timeout,
    )
    logger.info("Dialed lead %s for campaign %s: call=%s", lead.id, campaign.id, call_id)
    return call_id
