"""
Tests for the HTTP clients (payment processor, email provider, airline
channels) and the idempotency keys they carry.
"""
import json
from urllib.parse import parse_qs

import httpx
import pytest

from flightclaims.core.exceptions import ConfigurationError, ExternalServiceError
from flightclaims.services.airlines import AIRLINE_CONFIGS, AirlineConfig, generate_submission
from flightclaims.services.email import ResendEmailProvider
from flightclaims.services.idempotency import (
    filing_idempotency_key,
    payment_intent_idempotency_key,
    refund_idempotency_key,
    strip_email,
)
from flightclaims.services.payments import StripePaymentClient
from flightclaims.services.submission import HttpAirlineSubmitter

from conftest import FakeEmailProvider


class TestIdempotencyKeys:
    """Test deterministic key derivation."""

    def test_refund_key_is_deterministic(self):
        assert refund_idempotency_key("CLM001", "claim_not_filed_deadline") == \
            "refund-CLM001-claim_not_filed_deadline"
        assert refund_idempotency_key("CLM001", "x") == refund_idempotency_key("CLM001", "x")

    def test_intent_key_strips_email(self):
        assert strip_email("Jane.Doe+eu@mail.com") == "JaneDoeeumailcom"
        assert payment_intent_idempotency_key("CLM001", "jane@x.io") == "intent-CLM001-janexio"

    def test_keys_are_capped(self):
        assert len(payment_intent_idempotency_key("C" * 300, "a@b.c")) == 255
        assert len(filing_idempotency_key("CLM001", max_length=8)) == 8


class TestStripePaymentClient:
    """Test the Stripe REST client against a mock transport."""

    @pytest.mark.asyncio
    async def test_refund_sends_idempotency_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["headers"] = request.headers
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"id": "re_123", "status": "succeeded", "amount": 4900, "currency": "eur"})

        client = StripePaymentClient("sk_test_abc", transport=httpx.MockTransport(handler))

        refund = await client.refund("pi_1", 4900, "refund-CLM001-system_error", {"claim_id": "CLM001"})

        assert refund.id == "re_123"
        assert refund.amount == 4900
        assert seen["path"] == "/v1/refunds"
        assert seen["headers"]["Idempotency-Key"] == "refund-CLM001-system_error"
        assert seen["headers"]["Authorization"] == "Bearer sk_test_abc"
        assert seen["form"]["payment_intent"] == ["pi_1"]
        assert seen["form"]["metadata[claim_id]"] == ["CLM001"]

    @pytest.mark.asyncio
    async def test_error_response_raises_external_service_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(402, json={"error": "declined"}))
        client = StripePaymentClient("sk_test_abc", transport=transport)

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.refund("pi_1", 100, "key")
        assert exc_info.value.service == "payment"

    @pytest.mark.asyncio
    async def test_create_intent(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Idempotency-Key"] == "intent-CLM001-janexio"
            return httpx.Response(200, json={"id": "pi_9", "client_secret": "cs", "amount": 4900, "currency": "eur"})

        client = StripePaymentClient("sk_test_abc", transport=httpx.MockTransport(handler))

        intent = await client.create_intent(4900, "eur", {"claim_id": "CLM001"}, "intent-CLM001-janexio")

        assert intent.id == "pi_9"
        assert intent.client_secret == "cs"

    def test_missing_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            StripePaymentClient("")


class TestResendEmailProvider:
    """Test the Resend client against a mock transport."""

    @pytest.mark.asyncio
    async def test_send_returns_message_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["to"] == ["jane@example.com"]
            assert request.headers["Authorization"] == "Bearer re_testkey123"
            return httpx.Response(200, json={"id": "msg_1"})

        provider = ResendEmailProvider("re_testkey123", "claims@test", transport=httpx.MockTransport(handler))

        assert await provider.send("jane@example.com", "Hi", "<p>Hi</p>", "Hi") == "msg_1"

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        provider = ResendEmailProvider("re_testkey123", "claims@test", transport=transport)

        with pytest.raises(ExternalServiceError):
            await provider.send("jane@example.com", "Hi", "<p>Hi</p>", "Hi")


class TestHttpAirlineSubmitter:
    """Test the airline submission channels."""

    @pytest.mark.asyncio
    async def test_email_channel_uses_provider(self, make_claim):
        provider = FakeEmailProvider()
        submitter = HttpAirlineSubmitter(provider)
        claim = make_claim()

        receipt = await submitter.submit(generate_submission(AIRLINE_CONFIGS["FR"], claim), claim)

        assert receipt.airline_reference == "EMAIL-msg-1"
        assert provider.sent[0]["to"] == "eu261@ryanair.com"

    @pytest.mark.asyncio
    async def test_web_form_channel_posts_form(self, make_claim):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, text="<html>Thank you</html>")

        submitter = HttpAirlineSubmitter(FakeEmailProvider(), transport=httpx.MockTransport(handler))
        claim = make_claim(airline="U2")

        receipt = await submitter.submit(generate_submission(AIRLINE_CONFIGS["U2"], claim), claim)

        assert receipt.method == "web_form"
        assert receipt.airline_reference == f"WEB-{claim.claim_id}"
        assert seen["form"]["Flight Number"] == ["FR1234"]

    @pytest.mark.asyncio
    async def test_api_channel_sends_filing_key(self, make_claim):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Idempotency-Key"] == "filing-CLM001"
            assert json.loads(request.content)["external_reference"] == "CLM001"
            return httpx.Response(201, json={"reference": "ZZ-42"})

        config = AirlineConfig(
            airline_code="ZZ",
            airline_name="Test Air",
            submission_method="api",
            api_endpoint="https://claims.testair.example/v1/claims",
        )
        submitter = HttpAirlineSubmitter(FakeEmailProvider(), transport=httpx.MockTransport(handler))
        claim = make_claim("CLM001", airline="ZZ")

        receipt = await submitter.submit(generate_submission(config, claim), claim)

        assert receipt.airline_reference == "ZZ-42"

    @pytest.mark.asyncio
    async def test_airline_error_raises(self, make_claim):
        submitter = HttpAirlineSubmitter(
            FakeEmailProvider(), transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )
        claim = make_claim(airline="U2")

        with pytest.raises(ExternalServiceError) as exc_info:
            await submitter.submit(generate_submission(AIRLINE_CONFIGS["U2"], claim), claim)
        assert exc_info.value.service == "airline"
