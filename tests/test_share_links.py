"""
Tests for company share-link validation and redemption.
"""
import logging
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import hiready.db.models  # noqa: F401
from hiready.core.config import AccessSettings
from hiready.core.errors import InvalidInputError
from hiready.db.base import Base, utcnow
from hiready.db.models.interview_set import InterviewSet
from hiready.db.models.share_link import CompanyShareLink, ShareLinkAccess
from hiready.services.entitlement_service import AccessChannel, AccessTarget, EntitlementResolver
from hiready.services.storage import SqlAlchemyEntitlementStore


TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

NOW = utcnow()


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def store(db):
    return SqlAlchemyEntitlementStore(db)


@pytest.fixture
def resolver(store):
    return EntitlementResolver(store, settings=AccessSettings(), clock=lambda: NOW)


def make_link(db, token="acme", max_uses=None, expires_at=None, is_active=True, current_uses=0):
    if db.get(InterviewSet, 1) is None:
        db.add(InterviewSet(id=1, name="Acme Onsite", interview_types=["behavioral", "technical"]))
    link = CompanyShareLink(
        interview_set_id=1,
        share_token=token,
        company_name="Acme",
        max_uses=max_uses,
        expires_at=expires_at,
        is_active=is_active,
        current_uses=current_uses,
    )
    db.add(link)
    db.commit()
    db.refresh(link)
    return link


def test_validate_unknown_token(resolver):
    result = resolver.validate_share_token("missing")

    assert result.valid is False
    assert result.reason == "Invalid or inactive share link"


def test_validate_active_link(db, resolver):
    link = make_link(db, max_uses=5)

    result = resolver.validate_share_token("acme")

    assert result.valid is True
    assert result.share_link_id == link.id
    assert result.interview_set_id == 1


def test_validate_inactive_link(db, resolver):
    make_link(db, is_active=False)

    assert resolver.validate_share_token("acme").valid is False


def test_validate_expired_link(db, resolver):
    make_link(db, expires_at=NOW - timedelta(minutes=1))

    result = resolver.validate_share_token("acme")

    assert result.valid is False
    assert result.reason == "Share link has expired"


def test_validate_link_at_cap(db, resolver):
    make_link(db, max_uses=2, current_uses=2)

    result = resolver.validate_share_token("acme")

    assert result.valid is False
    assert result.reason == "Share link has reached maximum uses"


def test_redeem_grants_access_to_set(db, store, resolver):
    link = make_link(db, max_uses=2)

    decision = resolver.redeem_share_link(10, "acme")

    assert decision.allowed is True
    assert decision.channel == AccessChannel.COMPANY_SHARED
    assert store.get_share_link_access(10, link.id) is True
    access = resolver.resolve(10, AccessTarget(interview_set_id=1))
    assert access.channel == AccessChannel.COMPANY_SHARED


def test_redeem_logs_only_token_prefix(db, resolver, caplog):
    make_link(db, token="acme-secret-token", max_uses=2)

    with caplog.at_level(logging.INFO, logger="hiready.services.entitlement_service"):
        assert resolver.redeem_share_link(10, "acme-secret-token").allowed is True

    assert "Share link redeemed" in caplog.text
    assert "acme****" in caplog.text
    assert "acme-secret-token" not in caplog.text


def test_redeem_twice_counts_one_use(db, resolver):
    link = make_link(db, max_uses=2)

    resolver.redeem_share_link(10, "acme")
    resolver.redeem_share_link(10, "acme")

    db.refresh(link)
    assert link.current_uses == 1
    assert db.query(ShareLinkAccess).count() == 1


def test_granted_user_keeps_access_after_cap(db, store, resolver):
    """Once the cap is reached new users are refused but existing grants stay."""
    link = make_link(db, max_uses=1)
    assert resolver.redeem_share_link(10, "acme").allowed is True

    refused = resolver.redeem_share_link(11, "acme")
    again = resolver.redeem_share_link(10, "acme")

    assert refused.allowed is False
    assert refused.reason == "Share link has reached maximum uses"
    assert again.allowed is True
    assert store.get_share_link_access(10, link.id) is True
    assert store.get_share_link_access(11, link.id) is False
    db.refresh(link)
    assert link.current_uses == 1


def test_store_grant_refuses_at_cap(db, store):
    link = make_link(db, max_uses=1, current_uses=1)

    assert store.grant_share_link_access(10, link.id, now=NOW) is False
    db.refresh(link)
    assert link.current_uses == 1


def test_store_grant_refuses_expired_link(db, store):
    link = make_link(db, expires_at=NOW - timedelta(seconds=1))

    assert store.grant_share_link_access(10, link.id, now=NOW) is False


def test_grant_stops_applying_after_expiry(db, store, resolver):
    make_link(db, expires_at=NOW + timedelta(days=1))
    resolver.redeem_share_link(10, "acme")

    later = NOW + timedelta(days=2)

    assert store.has_shared_access_to_set(10, 1, now=NOW) is True
    assert store.has_shared_access_to_set(10, 1, now=later) is False


def test_redeem_requires_token(resolver):
    with pytest.raises(InvalidInputError):
        resolver.redeem_share_link(10, "")
