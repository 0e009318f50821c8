import asyncio
import logging
from typing import Optional

import httpx

from salescall.errors import StoreError
from salescall.records import Campaign, Lead

logger = logging.getLogger(__name__)


class DashboardClient:
    """HTTP client for the dashboard's lead, campaign and call record endpoints.

    Exposes the same methods as the in-memory stores so the orchestrator can
    use either. Writes retry once with a 2-second backoff; a write that still
    fails raises StoreError.
    """

    def __init__(
        self,
        *,
        leads_url: str,
        campaigns_url: str,
        calls_url: str,
        webhook_secret: str,
        timeout: float = 15.0,
        retry_delay: float = 2.0,
    ):
        self.leads_url = leads_url.rstrip("/")
        self.campaigns_url = campaigns_url.rstrip("/")
        self.calls_url = calls_url.rstrip("/")
        self.secret = webhook_secret
        self.timeout = timeout
        self.retry_delay = retry_delay

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "X-Webhook-Secret": self.secret,
        }

    async def _send_with_retry(self, method: str, url: str, payload: dict, label: str) -> dict:
        """Send with one retry after a short delay on failure."""
        last_error: Exception | None = None
        for attempt in range(2):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.request(method, url, json=payload, headers=self._headers())
                    if resp.status_code >= 400:
                        logger.error("%s returned %d: %s", label, resp.status_code, resp.text[:500])
                    resp.raise_for_status()
                    return resp.json() if resp.content else {}
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                if attempt == 0:
                    logger.warning("%s failed (attempt 1), retrying in %.0fs: %s", label, self.retry_delay, e)
                    await asyncio.sleep(self.retry_delay)
                else:
                    logger.error("%s failed after retry: %s", label, e)
        raise StoreError(f"{label} failed: {last_error}")

    async def _fetch(self, url: str, label: str) -> Optional[dict]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(url, headers=self._headers())
                if resp.status_code == 404:
                    return None
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("%s failed: %s", label, e)
            raise StoreError(f"{label} failed: {e}") from e

    async def get_lead(self, lead_id: str) -> Optional[Lead]:
        data = await self._fetch(f"{self.leads_url}/{lead_id}", "Dashboard lead fetch")
        return Lead.from_dict(data) if data else None

    async def save_lead(self, lead: Lead) -> None:
        await self._send_with_retry("PATCH", f"{self.leads_url}/{lead.id}", lead.to_update_payload(), "Dashboard lead sync")

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        data = await self._fetch(f"{self.campaigns_url}/{campaign_id}", "Dashboard campaign fetch")
        return Campaign.from_dict(data) if data else None

    async def save_call(self, record: dict) -> None:
        await self._send_with_retry("POST", self.calls_url, record, "Dashboard call sync")

    async def attach_recording(self, call_id: str, url: str) -> None:
        await self._send_with_retry(
            "PATCH", f"{self.calls_url}/{call_id}", {"recordingUrl": url}, "Dashboard recording sync",
        )


class DashboardLeadStore:
    """Lead-store view over a DashboardClient."""

    def __init__(self, client: DashboardClient):
        self.client = client

    async def get(self, lead_id: str) -> Optional[Lead]:
        return await self.client.get_lead(lead_id)

    async def save(self, lead: Lead) -> None:
        await self.client.save_lead(lead)


class DashboardCampaignStore:
    """Campaign-store view over a DashboardClient."""

    def __init__(self, client: DashboardClient):
        self.client = client

    async def get(self, campaign_id: str) -> Optional[Campaign]:
        return await self.client.get_campaign(campaign_id)


class DashboardCallStore:
    """Call-record-store view over a DashboardClient."""

    def __init__(self, client: DashboardClient):
        self.client = client

    async def save(self, record: dict) -> None:
        await self.client.save_call(record)

    async def attach_recording(self, call_id: str, url: str) -> None:
        await self.client.attach_recording(call_id, url)
