"""
Integration tests for POST /billing/webhook.
Stripe signature verification is stubbed with monkeypatch.
"""
import pytest
import stripe
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from hiready.main import app
from hiready.db.base import Base
from hiready.db.models.entitlement import Entitlement
from hiready.db.models.interview_set import InterviewSet, Purchase
from hiready.db.models.subscription import Subscription
from hiready.db.session import get_db


TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def override_get_db():
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function", autouse=True)
def setup_db():
    app.dependency_overrides[get_db] = override_get_db
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    db.add(InterviewSet(id=1, name="Behavioral Deep Dive", interview_types=["behavioral"]))
    db.commit()
    db.close()
    yield
    Base.metadata.drop_all(bind=test_engine)
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def db_session():
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def deliver(client, monkeypatch):
    """Post an event as if Stripe had signed it."""
    def _deliver(event):
        monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig_header, secret: event)
        return client.post("/billing/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=test"})
    return _deliver


def payment_event(intent_id="pi_123"):
    return {
        "id": "evt_pi",
        "type": "payment_intent.succeeded",
        "data": {"object": {
            "id": intent_id,
            "amount_received": 19900,
            "metadata": {"user_id": "5", "interview_set_id": "1"},
        }},
    }


def subscription_event(event_type, subscription_id="sub_1", metadata=None):
    return {
        "id": f"evt_{event_type}",
        "type": event_type,
        "data": {"object": {
            "id": subscription_id,
            "customer": "cus_1",
            "current_period_start": 1767225600,
            "current_period_end": 4102444800,
            "metadata": metadata if metadata is not None else {"user_id": "5", "plan_type": "pro"},
        }},
    }


def test_bad_signature_rejected(client, monkeypatch):
    def reject(payload, sig_header, secret):
        raise stripe.SignatureVerificationError("bad signature", sig_header)

    monkeypatch.setattr(stripe.Webhook, "construct_event", reject)
    response = client.post("/billing/webhook", content=b"{}", headers={"stripe-signature": "bogus"})

    assert response.status_code == 400


def test_payment_intent_records_purchase_once(deliver, db_session):
    """Redelivery of the same payment leaves a single purchase."""
    first = deliver(payment_event())
    second = deliver(payment_event())

    assert first.status_code == 200
    assert second.status_code == 200
    purchase = db_session.query(Purchase).one()
    assert purchase.user_id == 5
    assert purchase.amount_cents == 19900
    assert db_session.query(Entitlement).filter(Entitlement.user_id == 5).one().tier == "set_access"


def test_payment_intent_without_metadata_is_400(deliver):
    event = payment_event()
    event["data"]["object"]["metadata"] = {}

    response = deliver(event)

    assert response.status_code == 400


def test_subscription_created_and_deleted(deliver, db_session):
    created = deliver(subscription_event("customer.subscription.created"))
    redelivered = deliver(subscription_event("customer.subscription.created"))

    assert created.status_code == 200
    assert redelivered.status_code == 200
    subscription = db_session.query(Subscription).one()
    assert subscription.plan_type == "pro"
    assert subscription.status == "active"
    assert subscription.current_period_end is not None

    deleted = deliver(subscription_event("customer.subscription.deleted"))

    assert deleted.status_code == 200
    db_session.refresh(subscription)
    assert subscription.status == "canceled"
    assert subscription.canceled_at is not None
    assert db_session.query(Entitlement).filter(Entitlement.user_id == 5).one().tier == "free"


def test_role_pack_subscription_from_metadata(deliver, db_session):
    response = deliver(subscription_event(
        "customer.subscription.created",
        metadata={"user_id": "5", "plan_type": "role_pack", "role_kit_id": "3"},
    ))

    assert response.status_code == 200
    subscription = db_session.query(Subscription).one()
    assert subscription.plan_type == "role_pack"
    assert subscription.role_kit_id == 3


def test_unknown_subscription_deleted_is_ignored(deliver):
    response = deliver(subscription_event("customer.subscription.deleted", subscription_id="sub_missing"))

    assert response.status_code == 200


def test_unhandled_event_type_ignored(deliver):
    response = deliver({"id": "evt_x", "type": "invoice.created", "data": {"object": {}}})

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
