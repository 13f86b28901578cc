"""
Pytest fixtures for the cycle engine test suite.

Provides:
- In-memory SQLite sessions (SAVEPOINT-correct) with all tables created
- A DeterministicClock starting 2026-02-01 12:00
- A scripted fake PaymentAdapter
- Builders for circles, members, payout orders and cycle rows
- Structured log capture
"""

import json
import logging
from datetime import date, timedelta
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import rosca_kernel.models  # noqa: F401
from rosca_config.schema import EngineSettings
from rosca_kernel.db.base import Base
from rosca_kernel.db.engine import enable_sqlite_savepoints
from rosca_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from rosca_kernel.domain.clock import DeterministicClock
from rosca_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from rosca_kernel.models import (
    Circle,
    CircleCycle,
    CircleMember,
    IncompleteContributionPolicy,
    PaymentMethod,
    PayoutOrder,
    ReserveFund,
    Vouch,
)

from rosca_engine.context import EngineContext
from rosca_engine.domain.types import PaymentWebhookPayload
from rosca_engine.orchestrator import CycleProgressionEngine
from rosca_engine.services.contribution_processor import ContributionProcessor

from tests.support import START, CircleSetup, FakePaymentAdapter


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ``rosca`` logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, run_engine):
            run_engine()
            logs = captured_logs()
            assert any(r["message"] == "engine_run_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("rosca")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()


@pytest.fixture
def db_engine():
    eng = enable_sqlite_savepoints(create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    ))
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(START)


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def payments() -> FakePaymentAdapter:
    return FakePaymentAdapter()


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def make_circle(session):
    """Create an active circle with members, a final payout order, payment
    methods and one scheduled cycle row per position.

    Cycle N starts ``start + 30 * (N - 1)`` days; its deadline is seven days
    after its start.  Position N (cycle N's recipient) is member N.
    """

    def _make(
        members: int = 5,
        amount: Decimal = Decimal("100.00"),
        policy: IncompleteContributionPolicy = IncompleteContributionPolicy.GRACE_THEN_PROCEED,
        grace_period_days: int = 2,
        total_cycles: int | None = None,
        community_id: UUID | None = None,
        reserve_balance: Decimal | None = None,
        start: date = START.date(),
        with_payout_order: bool = True,
    ) -> CircleSetup:
        total = total_cycles or members
        community = community_id or uuid4()
        circle = Circle(
            name="Harbour Savers",
            community_id=community,
            contribution_amount=amount,
            total_cycles=total,
            incomplete_contribution_policy=policy.value,
            grace_period_days=grace_period_days,
            platform_fee_percent=Decimal("0.02"),
        )
        session.add(circle)
        session.flush()

        member_ids = [uuid4() for _ in range(members)]
        for user_id in member_ids:
            session.add(CircleMember(circle_id=circle.id, user_id=user_id))
            session.add(PaymentMethod(
                user_id=user_id,
                provider="fake",
                account_reference=f"acct-{user_id.hex[:8]}",
                is_primary=True,
            ))

        if with_payout_order:
            session.add(PayoutOrder(
                circle_id=circle.id,
                is_final=True,
                order_data=[
                    {"position": i + 1, "user_id": str(uid)}
                    for i, uid in enumerate(member_ids)
                ],
            ))

        if reserve_balance is not None:
            session.add(ReserveFund(community_id=community, balance=reserve_balance))

        cycles = {}
        for number in range(1, total + 1):
            cycle_start = start + timedelta(days=30 * (number - 1))
            cycle = CircleCycle(
                circle_id=circle.id,
                cycle_number=number,
                start_date=cycle_start,
                contribution_deadline=cycle_start + timedelta(days=7),
                expected_payout_date=cycle_start + timedelta(days=8),
            )
            session.add(cycle)
            cycles[number] = cycle
        session.flush()

        circle.current_cycle_id = cycles[1].id
        session.flush()
        return CircleSetup(circle=circle, member_ids=member_ids, cycles=cycles)

    return _make


@pytest.fixture
def add_voucher(session):
    def _add(setup: CircleSetup, vouchee_id: UUID) -> UUID:
        voucher_id = uuid4()
        session.add(Vouch(
            voucher_id=voucher_id, vouchee_id=vouchee_id, circle_id=setup.circle.id,
        ))
        session.flush()
        return voucher_id

    return _add


# =============================================================================
# Engine and webhook helpers
# =============================================================================


@pytest.fixture
def make_engine(session, clock, settings, payments):
    def _make(**overrides) -> CycleProgressionEngine:
        kwargs = {
            "session": session,
            "clock": clock,
            "settings": settings,
            "payment_adapter": payments,
        }
        kwargs.update(overrides)
        return CycleProgressionEngine(**kwargs)

    return _make


@pytest.fixture
def run_engine(make_engine):
    def _run(**overrides):
        return make_engine(**overrides).run()

    return _run


@pytest.fixture
def engine_ctx(session, clock, settings, payments) -> EngineContext:
    return EngineContext.build(session, clock=clock, settings=settings, payments=payments)


@pytest.fixture
def processor(session, clock, settings, payments) -> ContributionProcessor:
    return ContributionProcessor.from_session(
        session, clock=clock, settings=settings, payment_adapter=payments,
    )


@pytest.fixture
def pay(processor):
    """Send a successful contribution webhook for one member."""

    def _pay(
        setup: CircleSetup,
        user_id: UUID,
        cycle_number: int = 1,
        amount: Decimal | None = None,
        transaction_id: str | None = None,
    ):
        return processor.process_contribution_received(PaymentWebhookPayload(
            transaction_id=transaction_id or f"pay-{uuid4().hex[:12]}",
            user_id=user_id,
            circle_id=setup.circle.id,
            cycle_number=cycle_number,
            amount=amount if amount is not None else setup.circle.contribution_amount,
            payment_method="card",
        ))

    return _pay


@pytest.fixture
def started_circle(make_circle, run_engine):
    """A circle whose first cycle has been started (status collecting)."""

    def _start(**kwargs) -> CircleSetup:
        setup = make_circle(**kwargs)
        run_engine()
        return setup

    return _start
