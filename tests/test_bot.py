from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from salescall.bot import REPROMPT, Services, app
from salescall.errors import TelephonyError
from salescall.records import Lead
from salescall.telephony import webhook_signature

BASE = "https://agent.example.com"


@pytest.fixture
def telephony():
    t = AsyncMock()
    t.place_call.return_value = "CA_dialed"
    return t


@pytest.fixture
def services(orchestrator, lead_store, campaign_store, telephony):
    return Services(
        orchestrator=orchestrator,
        leads=lead_store,
        campaigns=campaign_store,
        telephony=telephony,
        base_url=BASE,
    )


@pytest.fixture
def client(services):
    app.state.services = services
    with TestClient(app) as c:
        yield c
    app.state.services = None


def _connect(client, call_id="CA_1"):
    return client.post("/twilio/voice?leadId=lead_1&campaignId=camp_1", data={"CallSid": call_id})


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.text == "ok"


class TestVoiceWebhook:
    def test_speaks_opening_and_gathers(self, client):
        resp = _connect(client)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/xml")
        assert "Hi Dana, this is Sam from Acme." in resp.text
        assert f'action="{BASE}/twilio/gather"' in resp.text

    def test_unknown_lead_hangs_up(self, client, orchestrator):
        resp = client.post("/twilio/voice?leadId=nope&campaignId=camp_1", data={"CallSid": "CA_1"})
        assert "<Hangup/>" in resp.text
        assert orchestrator.active_call_count() == 0

    def test_repeated_connect_repeats_opening(self, client, orchestrator):
        _connect(client)
        resp = _connect(client)
        assert "Hi Dana, this is Sam from Acme." in resp.text
        assert orchestrator.active_call_count() == 1


class TestGatherWebhook:
    def test_returns_generated_reply(self, client):
        _connect(client)
        resp = client.post("/twilio/gather", data={"CallSid": "CA_1", "SpeechResult": "Sure", "Confidence": "0.92"})
        assert "What does your current process look like?" in resp.text
        assert "<Gather" in resp.text

    def test_empty_speech_reprompts_without_turn(self, client, orchestrator):
        _connect(client)
        resp = client.post("/twilio/gather", data={"CallSid": "CA_1", "SpeechResult": ""})
        assert REPROMPT in resp.text
        assert len(orchestrator.get_state("CA_1").transcript) == 1

    def test_termination_hangs_up_and_finalizes(self, client, orchestrator, call_store):
        _connect(client)
        resp = client.post("/twilio/gather", data={"CallSid": "CA_1", "SpeechResult": "Stop calling me"})
        assert "Thanks for your time, Dana. Goodbye!" in resp.text
        assert "<Hangup/>" in resp.text
        assert orchestrator.get_state("CA_1") is None
        assert call_store.records["CA_1"]["outcome"] == "not-interested"

    def test_unknown_call_hangs_up(self, client, orchestrator):
        resp = client.post("/twilio/gather", data={"CallSid": "CA_X", "SpeechResult": "hello"})
        assert "<Hangup/>" in resp.text
        assert orchestrator.get_state("CA_X") is None


class TestStatusWebhook:
    def test_completed_finalizes(self, client, orchestrator, call_store):
        _connect(client)
        resp = client.post("/twilio/status", data={"CallSid": "CA_1", "CallStatus": "completed"})
        assert resp.status_code == 200
        assert orchestrator.get_state("CA_1") is None
        assert call_store.records["CA_1"]["endReason"] == "provider-signaled-completion"

    def test_progress_status_keeps_call_active(self, client, orchestrator):
        _connect(client)
        client.post("/twilio/status", data={"CallSid": "CA_1", "CallStatus": "in-progress"})
        assert orchestrator.get_state("CA_1").is_active

    def test_unknown_call_rejected(self, client):
        resp = client.post("/twilio/status", data={"CallSid": "CA_X", "CallStatus": "completed"})
        assert resp.status_code == 404

    def test_unrecognized_status_ignored(self, client, orchestrator):
        _connect(client)
        resp = client.post("/twilio/status", data={"CallSid": "CA_1", "CallStatus": "answered-by-robot"})
        assert resp.status_code == 200
        assert orchestrator.get_state("CA_1").is_active

    def test_progress_for_unconnected_call_ignored(self, client, orchestrator):
        resp = client.post("/twilio/status", data={"CallSid": "CA_new", "CallStatus": "ringing"})
        assert resp.status_code == 200
        assert resp.text == "ignored"
        assert orchestrator.get_state("CA_new") is None


class TestRecordingWebhook:
    def test_recording_after_finalize_attaches_to_record(self, client, call_store):
        _connect(client)
        client.post("/twilio/status", data={"CallSid": "CA_1", "CallStatus": "completed"})
        resp = client.post("/twilio/recording", data={
            "CallSid": "CA_1",
            "RecordingUrl": "https://api.twilio.com/recordings/RE1",
            "RecordingStatus": "completed",
        })
        assert resp.status_code == 200
        assert call_store.records["CA_1"]["recordingUrl"] == "https://api.twilio.com/recordings/RE1"


class TestOperatorHangup:
    def test_records_disposition(self, client, telephony, call_store):
        _connect(client)
        resp = client.post("/calls/CA_1/hangup", json={"outcome": "sale"})
        assert resp.json() == {"callId": "CA_1", "ended": True}
        telephony.hangup.assert_awaited_once_with("CA_1")
        assert call_store.records["CA_1"]["outcome"] == "sale"
        assert call_store.records["CA_1"]["endReason"] == "manual-operator-action"

    def test_provider_failure_still_ends_call(self, client, telephony, orchestrator):
        telephony.hangup.side_effect = TelephonyError("twilio down")
        _connect(client)
        resp = client.post("/calls/CA_1/hangup")
        assert resp.status_code == 200
        assert orchestrator.get_state("CA_1") is None

    def test_unknown_call(self, client):
        assert client.post("/calls/CA_X/hangup").status_code == 404

    def test_invalid_outcome(self, client):
        _connect(client)
        assert client.post("/calls/CA_1/hangup", json={"outcome": "maybe"}).status_code == 422


class TestCalls:
    def test_lists_active_calls(self, client):
        _connect(client)
        body = client.get("/calls").json()
        assert body["active"] == 1
        assert body["calls"][0]["callId"] == "CA_1"
        assert body["calls"][0]["phase"] == "opening"

    def test_dial_lead(self, client, telephony):
        resp = client.post("/leads/lead_1/dial?campaignId=camp_1")
        assert resp.json() == {"callId": "CA_dialed"}
        args, kwargs = telephony.place_call.call_args
        assert args[1] == f"{BASE}/twilio/voice"
        assert kwargs["params"] == {"leadId": "lead_1", "campaignId": "camp_1"}

    def test_dial_unknown_lead(self, client):
        assert client.post("/leads/nope/dial?campaignId=camp_1").status_code == 404


class TestDialDoNotCall:
    @pytest.fixture
    def lead(self):
        return Lead(id="lead_1", first_name="Dana", phone_number="+15125551234", do_not_call=True)

    def test_rejected(self, client, telephony):
        assert client.post("/leads/lead_1/dial?campaignId=camp_1").status_code == 409
        telephony.place_call.assert_not_called()


class TestWebhookSignature:
    TOKEN = "twilio_token"

    @pytest.fixture
    def services(self, orchestrator, lead_store, campaign_store, telephony):
        return Services(
            orchestrator=orchestrator,
            leads=lead_store,
            campaigns=campaign_store,
            telephony=telephony,
            base_url=BASE,
            auth_token=self.TOKEN,
        )

    def _signed_connect(self, client, token=TOKEN):
        path = "/twilio/voice?leadId=lead_1&campaignId=camp_1"
        data = {"CallSid": "CA_1", "CallStatus": "in-progress"}
        signature = webhook_signature(token, f"{BASE}{path}", data.items())
        return client.post(path, data=data, headers={"X-Twilio-Signature": signature})

    def test_valid_signature_accepted(self, client, orchestrator):
        resp = self._signed_connect(client)
        assert resp.status_code == 200
        assert "Hi Dana, this is Sam from Acme." in resp.text
        assert orchestrator.active_call_count() == 1

    def test_wrong_token_rejected(self, client, orchestrator):
        resp = self._signed_connect(client, token="someone_else")
        assert resp.status_code == 403
        assert orchestrator.active_call_count() == 0

    def test_missing_signature_rejected(self, client):
        assert _connect(client).status_code == 403

    def test_forged_status_cannot_end_call(self, client, orchestrator):
        self._signed_connect(client)
        resp = client.post(
            "/twilio/status",
            data={"CallSid": "CA_1", "CallStatus": "completed"},
            headers={"X-Twilio-Signature": "bm90IGEgcmVhbCBzaWduYXR1cmU="},
        )
        assert resp.status_code == 403
        assert orchestrator.get_state("CA_1").is_active

    def test_operator_routes_not_signed(self, client):
        assert client.get("/calls").status_code == 200
