"""
Test configuration and fixtures for FlightClaims backend tests.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("ADMIN_EMAIL", "ops@flightclaims.test")
os.environ.setdefault("EMAIL_QUEUE_AUTOSTART", "false")

import itertools
from typing import Callable, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from main import app
from flightclaims.api.deps import (
    get_airline_submitter,
    get_notification_queue,
    get_payment_client,
)
from flightclaims.core import utcnow
from flightclaims.core.exceptions import ExternalServiceError
from flightclaims.db.base import Base
from flightclaims.db.models import Claim, ClaimStatus, Payment, PaymentStatus
from flightclaims.db.session import get_db
from flightclaims.services.airlines import Submission
from flightclaims.services.email import EmailProvider
from flightclaims.services.lifecycle import ClaimStateMachine
from flightclaims.services.notification_queue import NotificationQueue, QueueConfig
from flightclaims.services.payments import PaymentClient, PaymentIntent, RefundTransaction
from flightclaims.services.store import SqlClaimStore
from flightclaims.services.submission import AirlineSubmitter, SubmissionReceipt


# Use in-memory SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

CRON_SECRET = os.environ["CRON_SECRET"]


# Fakes for external services

class FakePaymentClient(PaymentClient):
    """Records refunds; a repeated idempotency key returns the original refund."""

    def __init__(self):
        self.calls: List[Dict] = []
        self.refunds: Dict[str, RefundTransaction] = {}
        self.failing_transactions: set = set()

    async def refund(self, transaction_id, amount, idempotency_key, metadata=None):
        self.calls.append({
            "transaction_id": transaction_id,
            "amount": amount,
            "idempotency_key": idempotency_key,
            "metadata": metadata,
        })
        if transaction_id in self.failing_transactions:
            raise ExternalServiceError("card_declined", service="payment")
        if idempotency_key not in self.refunds:
            self.refunds[idempotency_key] = RefundTransaction(
                id=f"re_{len(self.refunds) + 1:08d}",
                status="succeeded",
                amount=amount,
                currency="eur",
            )
        return self.refunds[idempotency_key]

    async def create_intent(self, amount, currency, metadata, idempotency_key):
        return PaymentIntent(id="pi_test", client_secret="secret", amount=amount, currency=currency)


class FakeEmailProvider(EmailProvider):
    """Captures sent messages; fails the first `fail_times` sends."""

    name = "fake"

    def __init__(self, fail_times: int = 0):
        self.sent: List[Dict] = []
        self.attempts = 0
        self.fail_times = fail_times

    async def send(self, to, subject, html, text):
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise ExternalServiceError("provider unavailable", service="email")
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return f"msg-{len(self.sent)}"


class FakeAirlineSubmitter(AirlineSubmitter):
    """Accepts every submission unless the claim id is in `failing_claims`."""

    def __init__(self):
        self.submissions: List[Submission] = []
        self.failing_claims: set = set()

    async def submit(self, submission, claim):
        if claim.claim_id in self.failing_claims:
            raise ExternalServiceError("airline form unavailable", service="airline", claim_id=claim.claim_id)
        self.submissions.append(submission)
        return SubmissionReceipt(airline_reference=f"REF-{claim.claim_id}", method=submission.method)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db: Session) -> SqlClaimStore:
    return SqlClaimStore(db)


@pytest.fixture
def state_machine(store: SqlClaimStore) -> ClaimStateMachine:
    return ClaimStateMachine(store)


@pytest.fixture
def email_provider() -> FakeEmailProvider:
    return FakeEmailProvider()


@pytest.fixture
def queue(email_provider: FakeEmailProvider) -> NotificationQueue:
    """Queue with no retry delay so retries are due on the next cycle."""
    return NotificationQueue(
        email_provider,
        QueueConfig(max_retries=3, retry_delay=0, batch_size=10, processing_interval=0.01, send_timeout=1),
    )


@pytest.fixture
def payment_client() -> FakePaymentClient:
    return FakePaymentClient()


@pytest.fixture
def submitter() -> FakeAirlineSubmitter:
    return FakeAirlineSubmitter()


@pytest.fixture
def make_claim(db: Session) -> Callable[..., Claim]:
    """Factory for claims; defaults describe a complete Ryanair claim."""
    counter = itertools.count(1)

    def _make_claim(claim_id: Optional[str] = None, **overrides) -> Claim:
        claim_id = claim_id or f"CLM{next(counter):03d}"
        values = {
            "claim_id": claim_id,
            "first_name": "Jane",
            "last_name": "Doe",
            "email": "jane.doe@example.com",
            "flight_number": "FR1234",
            "airline": "FR",
            "departure_date": "2024-03-01",
            "departure_airport": "DUB",
            "arrival_airport": "STN",
            "delay_duration": "4 hours",
            "delay_reason": "Technical issue",
            "booking_reference": "ABC123",
            "boarding_pass_url": "https://files.test/boarding.pdf",
            "delay_proof_url": "https://files.test/delay.pdf",
            "status": ClaimStatus.READY_TO_FILE.value,
            "submitted_at": utcnow(),
            "estimated_compensation": 25000,
            "payment_id": f"pay-{claim_id}",
            "timeline": [],
        }
        values.update(overrides)
        claim = Claim(**values)
        db.add(claim)
        db.commit()
        db.refresh(claim)
        return claim

    return _make_claim


@pytest.fixture
def make_payment(db: Session) -> Callable[..., Payment]:
    """Factory for a captured service-fee payment linked to a claim."""

    def _make_payment(claim: Claim, amount: int = 4900, status: str = PaymentStatus.SUCCEEDED.value) -> Payment:
        payment = Payment(
            payment_id=f"pay-{claim.claim_id}",
            claim_id=claim.claim_id,
            transaction_id=f"pi_{claim.claim_id}",
            amount=amount,
            currency="eur",
            status=status,
        )
        db.add(payment)
        claim.payment_id = payment.payment_id
        db.commit()
        db.refresh(payment)
        return payment

    return _make_payment


@pytest.fixture(scope="function")
def client(
    db: Session,
    queue: NotificationQueue,
    payment_client: FakePaymentClient,
    submitter: FakeAirlineSubmitter,
) -> Generator[TestClient, None, None]:
    """Create a test client with database and external service overrides."""
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notification_queue] = lambda: queue
    app.dependency_overrides[get_payment_client] = lambda: payment_client
    app.dependency_overrides[get_airline_submitter] = lambda: submitter
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def cron_headers() -> dict:
    """Authorization headers carrying the trigger secret."""
    return {"Authorization": f"Bearer {CRON_SECRET}"}
