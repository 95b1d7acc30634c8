"""Integration tests for call flows driven through the webhook routes."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ivrflow.api import build_components, create_app
from ivrflow.config import Settings, TelephonyConfig
from ivrflow.telephony import WebhookSignatureValidator

TENANT_NUMBER = "+441234567890"
CALLER = "+447700900123"


def _form(call_id: str = "CA200", **extra) -> dict:
    form = {"CallSid": call_id, "From": CALLER, "To": TENANT_NUMBER, "CallStatus": "in-progress"}
    form.update(extra)
    return form


class TestInboundCall:
    """A caller navigating the menu workflow over HTTP."""

    @pytest.mark.asyncio
    async def test_menu_to_transfer(self, client, w1_workflow, next_url):
        welcome = await client.post("/ivr/welcome", data=_form())

        assert welcome.status_code == 200
        assert welcome.headers["content-type"].startswith("text/xml")
        assert "Welcome to Acme." in welcome.text

        menu = await client.post(next_url(welcome.text), data=_form())
        assert "<Gather" in menu.text

        transfer = await client.post(next_url(menu.text), data=_form(Digits="1"))
        assert "+442071234567</Dial>" in transfer.text

        execution = (await client.get("/executions/CA200")).json()
        assert execution["currentNodeId"] == "T"
        assert execution["status"] == "running"
        assert [v["nodeId"] for v in execution["visitedNodes"]] == ["greet", "I", "T"]

    @pytest.mark.asyncio
    async def test_menu_to_voicemail(self, client, w1_workflow, next_url):
        welcome = await client.post("/ivr/welcome", data=_form())
        menu = await client.post(next_url(welcome.text), data=_form())

        voicemail = await client.post(next_url(menu.text), data=_form(Digits="2"))
        assert "<Record" in voicemail.text

        done = await client.post(
            next_url(voicemail.text),
            data=_form(RecordingUrl="https://recordings.example.com/RE9", RecordingDuration="7"),
        )
        assert "Thank you for your message. Goodbye." in done.text
        assert "<Hangup />" in done.text

        execution = (await client.get("/executions/CA200")).json()
        assert execution["status"] == "completed"
        assert execution["variables"]["recording_url"] == "https://recordings.example.com/RE9"

    @pytest.mark.asyncio
    async def test_invalid_digits_until_apology(self, client, w1_workflow, next_url):
        welcome = await client.post("/ivr/welcome", data=_form())
        xml = (await client.post(next_url(welcome.text), data=_form())).text

        for _ in range(2):
            xml = (await client.post(next_url(xml), data=_form(Digits="9"))).text
            assert "Sorry, that is not a valid option." in xml

        final = await client.post(next_url(xml), data=_form(Digits="9"))

        assert final.status_code == 200
        assert "We are sorry, an error occurred. Goodbye." in final.text
        assert "<Hangup />" in final.text

    @pytest.mark.asyncio
    async def test_call_status_ends_execution(self, client, w1_workflow):
        await client.post("/ivr/welcome", data=_form())
        assert (await client.get("/active-calls")).json()["count"] == 1

        response = await client.post("/ivr/call-status", data=_form(CallStatus="completed"))

        assert response.status_code == 200
        assert (await client.get("/active-calls")).json()["count"] == 0
        assert (await client.get("/executions/CA200")).json()["endReason"] == "call_completed"

    @pytest.mark.asyncio
    async def test_unknown_number(self, client, w1_workflow):
        response = await client.post("/ivr/welcome", data=_form(To="+15550000000"))

        assert response.status_code == 200
        assert "We are sorry, an error occurred. Goodbye." in response.text

    @pytest.mark.asyncio
    async def test_operator_stop(self, client, w1_workflow):
        await client.post("/ivr/welcome", data=_form())

        stopped = await client.post("/executions/CA200/stop")

        assert stopped.status_code == 200
        assert stopped.json()["status"] == "cancelled"
        assert stopped.json()["endReason"] == "stopped_by_operator"

        assert (await client.post("/executions/CA404/stop")).status_code == 404


@pytest_asyncio.fixture
async def signed_client(workflow_repo):
    settings = Settings(
        telephony=TelephonyConfig(
            tenant_numbers={TENANT_NUMBER: "acme"},
            validate_signatures=True,
            auth_token="secret",
            public_base_url="https://ivr.example.com",
        )
    )
    components = build_components(settings, workflows=workflow_repo)
    transport = ASGITransport(app=create_app(components=components))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await components.close()


class TestSignatures:
    """Webhook signature enforcement."""

    @pytest.mark.asyncio
    async def test_unsigned_webhook_rejected(self, signed_client, w1_workflow):
        response = await signed_client.post("/ivr/welcome", data=_form())

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_signed_webhook_accepted(self, signed_client, w1_workflow):
        form = _form()
        signature = WebhookSignatureValidator("secret").compute("https://ivr.example.com/ivr/welcome", form)

        response = await signed_client.post(
            "/ivr/welcome", data=form, headers={"X-Twilio-Signature": signature}
        )

        assert response.status_code == 200
        assert "Welcome to Acme." in response.text
