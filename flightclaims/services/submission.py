"""
Airline submission channels.

`AirlineSubmitter.submit(submission, claim)` delivers a generated submission
and returns the airline reference; every channel failure is raised as
ExternalServiceError(service="airline").
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from html import escape
from typing import Optional

import httpx

from flightclaims.core import get_logger, settings
from flightclaims.core.exceptions import ConfigurationError, ExternalServiceError
from flightclaims.db.models import Claim
from flightclaims.services.airlines import Submission
from flightclaims.services.email import EmailProvider
from flightclaims.services.idempotency import filing_idempotency_key

logger = get_logger(__name__)


@dataclass
class SubmissionReceipt:
    airline_reference: str
    method: str


class AirlineSubmitter(ABC):
    """Abstract airline submission channel."""

    @abstractmethod
    async def submit(self, submission: Submission, claim: Claim) -> SubmissionReceipt:
        """Deliver `submission` for `claim` and return the airline reference."""


class HttpAirlineSubmitter(AirlineSubmitter):
    """
    Email, web form and API channels.

    Email submissions go out directly through the email provider so that the
    claim is only marked filed once the message was accepted. Web forms are
    posted form-encoded; APIs receive JSON with an Idempotency-Key header.
    """

    def __init__(
        self,
        email_provider: EmailProvider,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.email_provider = email_provider
        self._timeout = timeout
        self._transport = transport

    async def submit(self, submission: Submission, claim: Claim) -> SubmissionReceipt:
        if submission.method == "email":
            return await self._submit_email(submission, claim)
        if submission.method == "web_form":
            return await self._submit_web_form(submission, claim)
        if submission.method == "api":
            return await self._submit_api(submission, claim)
        raise ConfigurationError(f"Unknown submission method: {submission.method}", claim.claim_id)

    async def _submit_email(self, submission: Submission, claim: Claim) -> SubmissionReceipt:
        if not submission.to:
            raise ConfigurationError("Airline has no claims email address", claim.claim_id)

        text = submission.body
        if submission.attachments:
            text += "\n\nDocuments:\n" + "\n".join(submission.attachments)
        html = "".join(f"<p>{escape(p)}</p>" for p in text.split("\n\n"))

        message_id = await self.email_provider.send(submission.to, submission.subject, html, text)
        logger.info(f"Claim {claim.claim_id} emailed to airline ({message_id})")
        return SubmissionReceipt(airline_reference=f"EMAIL-{message_id}", method="email")

    async def _post(self, url: str, claim: Claim, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                f"Airline endpoint returned {exc.response.status_code}",
                service="airline",
                claim_id=claim.claim_id,
                original_error=exc,
            )
        except httpx.HTTPError as exc:
            raise ExternalServiceError(
                f"Airline submission failed: {exc}",
                service="airline",
                claim_id=claim.claim_id,
                original_error=exc,
            )

    @staticmethod
    def _reference_from(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        return body.get("reference") or body.get("claim_reference") or body.get("id")

    async def _submit_web_form(self, submission: Submission, claim: Claim) -> SubmissionReceipt:
        if not submission.url:
            raise ConfigurationError("Airline has no claim form URL", claim.claim_id)

        response = await self._post(submission.url, claim, data=submission.form_data)
        reference = self._reference_from(response) or f"WEB-{claim.claim_id}"
        logger.info(f"Claim {claim.claim_id} submitted via web form ({reference})")
        return SubmissionReceipt(airline_reference=reference, method="web_form")

    async def _submit_api(self, submission: Submission, claim: Claim) -> SubmissionReceipt:
        if not submission.url:
            raise ConfigurationError("Airline has no claims API endpoint", claim.claim_id)

        response = await self._post(
            submission.url,
            claim,
            json=submission.payload,
            headers={"Idempotency-Key": filing_idempotency_key(claim.claim_id)},
        )
        reference = self._reference_from(response)
        if not reference:
            raise ExternalServiceError(
                "Airline API response carried no claim reference",
                service="airline",
                claim_id=claim.claim_id,
            )
        logger.info(f"Claim {claim.claim_id} submitted via API ({reference})")
        return SubmissionReceipt(airline_reference=reference, method="api")


def build_airline_submitter(email_provider: EmailProvider) -> AirlineSubmitter:
    return HttpAirlineSubmitter(email_provider, timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS)
