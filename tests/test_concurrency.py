"""
Concurrency tests for the conditional-update storage paths.
Each worker thread uses its own session against a shared file database.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import hiready.db.models  # noqa: F401
from hiready.core.config import AccessSettings
from hiready.db.base import Base
from hiready.db.models.entitlement import Entitlement
from hiready.db.models.interview_set import InterviewSet
from hiready.db.models.share_link import CompanyShareLink, ShareLinkAccess
from hiready.db.models.skill import SkillEstimate, SkillSignal
from hiready.db.models.usage import UsageEvent
from hiready.services.entitlement_service import (
    AccessChannel,
    ConsumeContext,
    EntitlementResolver,
)
from hiready.services.readiness_service import ReadinessAggregator
from hiready.services.storage import SqlAlchemyEntitlementStore, SqlAlchemySkillStore

WORKERS = 8


@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite so that every thread gets a real connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield factory
    finally:
        engine.dispose()


def run_in_threads(factory, work, count=WORKERS):
    """Run work(session, index) in parallel, one session per call."""
    def task(index):
        db = factory()
        try:
            return work(db, index)
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(task, range(count)))


@pytest.mark.parametrize("units", [1, 2, 3, 4, 5])
def test_concurrent_free_trial_consumption_spends_available_units(session_factory, units):
    """Simultaneous consumers of N free interviews: exactly N win, each on its own role kit."""
    with session_factory() as db:
        db.add(Entitlement(user_id=1, tier="free", free_interviews_remaining=units))
        db.commit()

    def consume(db, index):
        resolver = EntitlementResolver(SqlAlchemyEntitlementStore(db), settings=AccessSettings())
        return resolver.consume(1, AccessChannel.FREE_TRIAL, ConsumeContext(role_kit_id=100 + index, session_id=index))

    results = run_in_threads(session_factory, consume)

    assert results.count(True) == units
    with session_factory() as db:
        entitlement = db.query(Entitlement).filter(Entitlement.user_id == 1).one()
        assert entitlement.free_interviews_remaining == 0
        assert db.query(UsageEvent).count() == units


def test_concurrent_free_trial_on_one_role_kit_respects_kit_limit(session_factory):
    """A ledger larger than the per-kit limit still admits one session per role kit."""
    with session_factory() as db:
        db.add(Entitlement(user_id=1, tier="free", free_interviews_remaining=3))
        db.commit()
    settings = AccessSettings().with_overrides(free_trial_limit=1, initial_free_interviews=3)

    def consume(db, index):
        resolver = EntitlementResolver(SqlAlchemyEntitlementStore(db), settings=settings)
        return resolver.consume(1, AccessChannel.FREE_TRIAL, ConsumeContext(role_kit_id=7, session_id=index))

    results = run_in_threads(session_factory, consume)

    assert results.count(True) == 1
    with session_factory() as db:
        entitlement = db.query(Entitlement).filter(Entitlement.user_id == 1).one()
        assert entitlement.free_interviews_remaining == 2
        assert db.query(UsageEvent).filter(UsageEvent.role_kit_id == 7).count() == 1


def test_concurrent_share_link_redemptions_respect_cap(session_factory):
    """Distinct users racing for a capped link never push uses past the cap."""
    with session_factory() as db:
        db.add(InterviewSet(id=1, name="Acme Loop", interview_types=["behavioral"]))
        db.add(CompanyShareLink(
            interview_set_id=1,
            share_token="acme-token",
            company_name="Acme",
            max_uses=3,
        ))
        db.commit()

    def redeem(db, index):
        resolver = EntitlementResolver(SqlAlchemyEntitlementStore(db), settings=AccessSettings())
        return resolver.redeem_share_link(100 + index, "acme-token").allowed

    results = run_in_threads(session_factory, redeem)

    assert results.count(True) == 3
    with session_factory() as db:
        link = db.query(CompanyShareLink).filter(CompanyShareLink.share_token == "acme-token").one()
        assert link.current_uses == 3
        assert db.query(ShareLinkAccess).count() == 3


def test_concurrent_redemptions_by_same_user_count_once(session_factory):
    with session_factory() as db:
        db.add(InterviewSet(id=1, name="Acme Loop", interview_types=["behavioral"]))
        db.add(CompanyShareLink(interview_set_id=1, share_token="acme-token", company_name="Acme", max_uses=5))
        db.commit()

    def redeem(db, index):
        resolver = EntitlementResolver(SqlAlchemyEntitlementStore(db), settings=AccessSettings())
        return resolver.redeem_share_link(42, "acme-token").allowed

    results = run_in_threads(session_factory, redeem)

    assert all(results)
    with session_factory() as db:
        link = db.query(CompanyShareLink).one()
        assert link.current_uses == 1
        assert db.query(ShareLinkAccess).filter(ShareLinkAccess.user_id == 42).count() == 1


def test_concurrent_signals_all_blend(session_factory):
    """No signal is lost when many arrive at once for the same skill."""
    def record(db, index):
        aggregator = ReadinessAggregator(SqlAlchemySkillStore(db), settings=AccessSettings())
        return aggregator.record_signal(1, 5, 1.0, "explicit")

    run_in_threads(session_factory, record)

    with session_factory() as db:
        estimate = db.query(SkillEstimate).filter(SkillEstimate.user_id == 1, SkillEstimate.skill_id == 5).one()
        assert estimate.signal_count == WORKERS
        # Order does not matter when every signal has the same strength
        assert estimate.estimate == pytest.approx(1 - 0.4 ** WORKERS)
        assert db.query(SkillSignal).count() == WORKERS
