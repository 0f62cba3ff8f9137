import asyncio
import json
from datetime import datetime, timezone

import httpx

from evoting.broadcast import PORTAL_STATUS, VOTE_UPDATE, Broadcaster
from evoting.notifications import REGISTRATION_SUBJECT, Notifier

VOTER = {
    "fullName": "Grace Wangari",
    "email": "grace.wangari@gmail.com",
    "votingNumber": "KGY-MWE-3FA9C1-7B2E",
    "county": "Kirinyaga",
    "constituency": "Mwea",
    "ward": "Thiba",
}


def notifier_with(handler):
    return Notifier(api_key="test-key", api_url="https://brevo.test/v3/smtp/email", transport=httpx.MockTransport(handler))


def test_registration_email_is_posted_to_brevo():
    sent = []

    def handler(request):
        sent.append(request)
        return httpx.Response(201, json={"messageId": "<abc@brevo>"})

    assert notifier_with(handler).send_registration_email(VOTER) is True

    request = sent[0]
    assert request.headers["api-key"] == "test-key"
    body = json.loads(request.content)
    assert body["to"] == [{"email": "grace.wangari@gmail.com", "name": "Grace Wangari"}]
    assert body["subject"] == REGISTRATION_SUBJECT
    assert "KGY-MWE-3FA9C1-7B2E" in body["htmlContent"]


def test_vote_confirmation_omits_voting_number():
    sent = []

    def handler(request):
        sent.append(json.loads(request.content))
        return httpx.Response(201, json={})

    assert notifier_with(handler).send_vote_confirmation(VOTER) is True
    assert "KGY-MWE-3FA9C1-7B2E" not in sent[0]["htmlContent"]


def test_vote_confirmation_states_commit_time():
    sent = []

    def handler(request):
        sent.append(json.loads(request.content))
        return httpx.Response(201, json={})

    voted_at = datetime(2027, 8, 9, 7, 42, 13, tzinfo=timezone.utc)
    assert notifier_with(handler).send_vote_confirmation(VOTER, voted_at) is True
    assert "2027-08-09 07:42 UTC" in sent[0]["htmlContent"]


def test_delivery_failure_is_reported_not_raised():
    def handler(request):
        return httpx.Response(401, json={"message": "Key not found"})

    assert notifier_with(handler).send_registration_email(VOTER) is False


def test_transport_error_is_reported_not_raised():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    assert notifier_with(handler).send_vote_confirmation(VOTER) is False


def test_disabled_without_api_key():
    def handler(request):
        raise AssertionError("no request expected")

    notifier = Notifier(api_key="", transport=httpx.MockTransport(handler))
    assert notifier.enabled is False
    assert notifier.send_registration_email(VOTER) is False


# ------------------------------
# Realtime broadcaster
# ------------------------------

def test_broadcaster_delivers_to_subscribers():
    broadcaster = Broadcaster()

    async def scenario():
        queue = broadcaster.subscribe()
        assert broadcaster.vote_recorded("Mwea", "Thiba") == 1
        broadcaster.portal_status(False)
        first = await asyncio.wait_for(queue.get(), timeout=1)
        second = await asyncio.wait_for(queue.get(), timeout=1)
        broadcaster.unsubscribe(queue)
        return first, second

    first, second = asyncio.run(scenario())

    assert first["event"] == VOTE_UPDATE
    assert first["data"]["constituency"] == "Mwea"
    assert first["data"]["ward"] == "Thiba"
    assert isinstance(first["data"]["timestamp"], str)
    assert second == {"event": PORTAL_STATUS, "data": {"status": "closed", "timestamp": second["data"]["timestamp"]}}
    assert broadcaster.subscriber_count == 0


def test_broadcaster_without_subscribers():
    assert Broadcaster().vote_recorded("Mwea", "Thiba") == 0
