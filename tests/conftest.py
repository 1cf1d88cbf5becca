"""
Test configuration and fixtures.

Provides:
- In-memory SQLite schema created and dropped around each test
- Users, items, claims and payout accounts for both sides of a claim
- JWT minting for authenticated requests
- HTTPX AsyncClient against the app with a fake payment processor
"""
import os
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Generator

# Must be set before the app (and its settings) are imported
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["TESTING"] = "1"
os.environ["REDIS_URL"] = "memory://"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["JWT_SECRET"] = "test-jwt-secret"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from lostfound.core import message_bus
from lostfound.core.deps import CSRF_HEADER, CSRF_HEADER_VALUE, get_db
from lostfound.core.security import create_session_token
from lostfound.db.base import Base
from lostfound.db.enums import ClaimStatus
from lostfound.db.models import Claim, Item, PayoutAccount, User
from lostfound.db.session import SessionLocal, engine
from lostfound.main import app
from lostfound.services.payment_processor import (
    PaymentProcessorError,
    ProcessorAccount,
    ProcessorIntent,
    get_payment_processor,
)


# =============================================================================
# Fake payment processor
# =============================================================================

class FakeProcessor:
    """In-memory stand-in for the Stripe client."""

    def __init__(self):
        self.intents: dict[str, ProcessorIntent] = {}
        self.accounts: dict[str, ProcessorAccount] = {}
        self.created: list[dict] = []
        self.canceled: list[str] = []
        self.fail_create: PaymentProcessorError | None = None
        self.fail_retrieve = False
        self._seq = 0

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}_test_{self._seq}"

    async def create_payment_intent(self, **kwargs) -> ProcessorIntent:
        if self.fail_create is not None:
            raise self.fail_create
        intent_id = self._next_id("pi")
        intent = ProcessorIntent(
            id=intent_id,
            status="requires_payment_method",
            amount=kwargs["amount"],
            client_secret=f"{intent_id}_secret",
            metadata=dict(kwargs["metadata"]),
        )
        self.intents[intent_id] = intent
        self.created.append(kwargs)
        return intent

    async def cancel_payment_intent(self, intent_id: str) -> None:
        self.canceled.append(intent_id)
        if intent_id in self.intents:
            self.intents[intent_id].status = "canceled"

    async def retrieve_payment_intent(self, intent_id: str) -> ProcessorIntent:
        if self.fail_retrieve:
            raise PaymentProcessorError("Payment processor unreachable", retryable=True)
        return self.intents[intent_id]

    async def create_account(self, *, email: str, user_id: str) -> ProcessorAccount:
        account = ProcessorAccount(id=self._next_id("acct"))
        self.accounts[account.id] = account
        return account

    async def retrieve_account(self, account_id: str) -> ProcessorAccount:
        if self.fail_retrieve:
            raise PaymentProcessorError("Payment processor unreachable", retryable=True)
        return self.accounts[account_id]

    async def create_account_link(
        self, account_id: str, *, refresh_url: str, return_url: str
    ) -> str:
        return f"https://connect.stripe.test/setup/{account_id}?return={return_url}"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def _schema() -> Generator[None, None, None]:
    """Fresh schema per test; the in-memory database lives on one pooled connection."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _fresh_message_bus() -> Generator[None, None, None]:
    message_bus._bus = None
    yield
    message_bus._bus = None


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    session = SessionLocal()
    yield session
    session.close()


def _make_user(db: Session, name: str) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"{name}-{uuid.uuid4().hex[:8]}@test.com",
        display_name=name.title(),
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture(scope="function")
def owner(db: Session) -> User:
    """The finder who reported the item."""
    return _make_user(db, "owner")


@pytest.fixture(scope="function")
def claimer(db: Session) -> User:
    return _make_user(db, "claimer")


@pytest.fixture(scope="function")
def outsider(db: Session) -> User:
    return _make_user(db, "outsider")


@pytest.fixture(scope="function")
def item(db: Session, owner: User) -> Item:
    item = Item(owner_user_id=owner.id, title="Blue backpack", description="Left on the 5 bus")
    db.add(item)
    db.commit()
    return item


@pytest.fixture(scope="function")
def claim(db: Session, item: Item, claimer: User) -> Claim:
    claim = Claim(
        item_id=item.id,
        claimer_user_id=claimer.id,
        claimer_name="Claimer",
        claimer_email=claimer.email,
        description="Has my laptop stickers on the front",
        room_id=f"claim-{uuid.uuid4().hex}",
        status=ClaimStatus.PENDING.value,
    )
    db.add(claim)
    db.commit()
    return claim


@pytest.fixture(scope="function")
def accepted_claim(db: Session, claim: Claim, item: Item) -> Claim:
    claim.status = ClaimStatus.ACCEPTED.value
    item.is_claimed = True
    db.commit()
    return claim


@pytest.fixture(scope="function")
def payout_account(db: Session, owner: User) -> PayoutAccount:
    """Owner's connected account, fully onboarded."""
    account = PayoutAccount(
        user_id=owner.id,
        external_account_id="acct_owner",
        enabled=True,
        onboarded=True,
    )
    db.add(account)
    db.commit()
    return account


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Headers for a caller."""
    headers: dict[str, str]


def auth_headers(user: User) -> dict[str, str]:
    token = create_session_token(user.id, user.token_version)
    return {"Authorization": f"Bearer {token}", CSRF_HEADER: CSRF_HEADER_VALUE}


@pytest.fixture(scope="function")
def owner_auth(owner: User) -> TestAuth:
    return TestAuth(headers=auth_headers(owner))


@pytest.fixture(scope="function")
def claimer_auth(claimer: User) -> TestAuth:
    return TestAuth(headers=auth_headers(claimer))


@pytest.fixture(scope="function")
def outsider_auth(outsider: User) -> TestAuth:
    return TestAuth(headers=auth_headers(outsider))


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def fake_processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture(scope="function")
async def client(
    db: Session, fake_processor: FakeProcessor
) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient sharing the test session, with the fake processor injected."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_processor] = lambda: fake_processor

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
