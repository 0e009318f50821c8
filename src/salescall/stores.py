"""In-memory lead, campaign and call record stores.

Used by tests and local runs. DashboardClient in dashboard_sync exposes the
same async methods against the dashboard's HTTP API.
"""

import copy
import logging
from typing import Optional

from salescall.errors import StoreError
from salescall.records import Campaign, Lead

logger = logging.getLogger(__name__)


class InMemoryLeadStore:
    def __init__(self, leads: list[Lead] | None = None):
        self._leads: dict[str, Lead] = {}
        for lead in leads or []:
            self._leads[lead.id] = copy.deepcopy(lead)

    async def get(self, lead_id: str) -> Optional[Lead]:
        lead = self._leads.get(lead_id)
        return copy.deepcopy(lead) if lead else None

    async def save(self, lead: Lead) -> None:
        self._leads[lead.id] = copy.deepcopy(lead)


class InMemoryCampaignStore:
    def __init__(self, campaigns: list[Campaign] | None = None):
        self._campaigns = {c.id: c for c in campaigns or []}

    async def get(self, campaign_id: str) -> Optional[Campaign]:
        return self._campaigns.get(campaign_id)

    async def save(self, campaign: Campaign) -> None:
        self._campaigns[campaign.id] = campaign


class InMemoryCallStore:
    def __init__(self):
        self.records: dict[str, dict] = {}

    async def get(self, call_id: str) -> Optional[dict]:
        return self.records.get(call_id)

    async def save(self, record: dict) -> None:
        call_id = record.get("callId")
        if not call_id:
            raise StoreError("call record without callId")
        if call_id in self.records:
            logger.warning("Overwriting call record %s", call_id)
        self.records[call_id] = dict(record)

    async def attach_recording(self, call_id: str, url: str) -> None:
        record = self.records.get(call_id)
        if record is None:
            raise StoreError(f"no call record for {call_id}")
        record["recordingUrl"] = url
