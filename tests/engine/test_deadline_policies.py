"""
End-to-end tests for deadline handling under each incomplete-contribution
policy.

Timeline for every test: the cycle starts 2026-02-01, its deadline is
2026-02-08, and the engine notices the passed deadline on 2026-02-09.
Circles have five members contributing 100 each with a 2% platform fee.
"""

from datetime import date, datetime
from decimal import Decimal

from rosca_kernel.models import (
    ContributionStatus,
    CycleStatus,
    IncompleteContributionPolicy,
)

from tests.support import (
    contribution_of,
    defaults_for,
    event_types,
    notification_types,
    reserve_balance,
    score_points,
)

POLICY = IncompleteContributionPolicy


def _pay_all_but_last(setup, pay):
    for user_id in setup.member_ids[:-1]:
        pay(setup, user_id)
    return setup.member_ids[-1]


class TestAllPaid:

    def test_fully_paid_cycle_goes_straight_to_payout(
        self, session, clock, started_circle, pay, run_engine, payments,
    ):
        setup = started_circle(members=5)
        for user_id in setup.member_ids:
            pay(setup, user_id)

        clock.advance_days(8)
        result = run_engine()

        cycle = setup.cycle(1)
        assert result.deadlines_processed == 1
        assert result.grace_periods_started == 0
        assert result.payouts_initiated == 1
        assert cycle.status == CycleStatus.PAYOUT_PENDING.value
        assert cycle.collected_amount == Decimal("500")
        assert cycle.platform_fee == Decimal("10.00")
        assert cycle.payout_amount == Decimal("490.00")
        assert cycle.received_contributions == 5

        request = payments.requests[0]
        assert request.amount == Decimal("490.00")
        assert request.recipient_user_id == setup.recipient(1)
        assert request.idempotency_key == f"payout-{cycle.id}-1"
        assert defaults_for(session, cycle.id) == []

        events = event_types(session, cycle.id)
        assert "deadline_reached" in events
        assert "ready_for_payout" in events
        assert "payout_initiated" in events

    def test_deadline_day_is_still_collecting(self, clock, started_circle, run_engine):
        setup = started_circle(members=3)

        clock.advance_days(7)
        result = run_engine()

        assert result.deadlines_processed == 0
        assert setup.cycle(1).status == CycleStatus.COLLECTING.value

    def test_excused_member_counts_as_resolved(
        self, clock, started_circle, pay, processor, run_engine,
    ):
        setup = started_circle(members=3, policy=POLICY.IMMEDIATE_PROCEED)
        absent = _pay_all_but_last(setup, pay)
        processor.excuse_contribution(
            setup.cycle(1).id, absent, reason="medical", admin_id=setup.recipient(1),
        )

        clock.advance_days(8)
        run_engine()

        cycle = setup.cycle(1)
        assert cycle.status == CycleStatus.PAYOUT_PENDING.value
        assert cycle.collected_amount == Decimal("200")
        assert cycle.received_contributions == 2


class TestGraceThenProceed:

    def test_unpaid_member_opens_grace_period(
        self, session, clock, started_circle, pay, run_engine,
    ):
        setup = started_circle(members=5)
        late = _pay_all_but_last(setup, pay)

        clock.advance_days(8)
        result = run_engine()

        cycle = setup.cycle(1)
        assert result.grace_periods_started == 1
        assert cycle.status == CycleStatus.GRACE_PERIOD.value
        assert cycle.grace_period_end == date(2026, 2, 11)

        contribution = contribution_of(session, cycle.id, late)
        assert contribution.status == ContributionStatus.LATE.value
        assert contribution.in_grace_period is True
        assert score_points(session, late, "contribution_late") == [-5]
        assert "contribution_late" in notification_types(session, late)
        assert "payout_delayed" in notification_types(session, setup.recipient(1))
        assert "grace_period_started" in event_types(session, cycle.id)

    def test_payment_within_grace_has_no_late_fee(
        self, session, clock, started_circle, pay, run_engine,
    ):
        setup = started_circle(members=5)
        late = _pay_all_but_last(setup, pay)
        clock.advance_days(8)
        run_engine()

        clock.advance_days(1)
        result = pay(setup, late)

        assert result.success
        assert result.days_late == 2
        assert result.late_fee == Decimal("0")
        assert result.was_on_time is False
        cycle = setup.cycle(1)
        # Last outstanding payment after the deadline frees the payout at once.
        assert cycle.status == CycleStatus.READY_PAYOUT.value
        assert cycle.collected_amount == Decimal("500")

    def test_payment_after_grace_days_charges_late_fee(
        self, session, clock, started_circle, pay, run_engine,
    ):
        setup = started_circle(members=5)
        late = _pay_all_but_last(setup, pay)
        clock.advance_days(8)
        run_engine()

        # 2026-02-11: three days late, grace is two days, engine has not run yet.
        clock.advance_days(2)
        result = pay(setup, late)

        assert result.days_late == 3
        assert result.late_fee == Decimal("5.00")
        contribution = contribution_of(session, setup.cycle(1).id, late)
        assert contribution.late_fee_amount == Decimal("5.00")
        assert contribution.late_fee_paid is False
        assert setup.cycle(1).late_fees_collected == Decimal("5.00")

    def test_expired_grace_records_default(
        self, session, clock, started_circle, pay, run_engine,
    ):
        setup = started_circle(members=5)
        late = _pay_all_but_last(setup, pay)
        clock.advance_days(8)
        run_engine()

        clock.advance_days(1)
        result = run_engine()
        assert result.grace_periods_ended == 0
        assert setup.cycle(1).status == CycleStatus.GRACE_PERIOD.value

        clock.advance_days(1)
        result = run_engine()

        cycle = setup.cycle(1)
        assert result.grace_periods_ended == 1
        assert result.payouts_initiated == 1
        assert cycle.status == CycleStatus.PAYOUT_PENDING.value
        assert cycle.collected_amount == Decimal("400")
        assert cycle.platform_fee == Decimal("8.00")
        assert cycle.payout_amount == Decimal("392.00")

        contribution = contribution_of(session, cycle.id, late)
        assert contribution.status == ContributionStatus.MISSED.value
        assert contribution.in_grace_period is False

        [record] = defaults_for(session, cycle.id)
        assert record.user_id == late
        assert record.paid_amount == Decimal("0")
        assert record.default_amount == Decimal("100")
        assert record.covered_by_reserve is False
        assert score_points(session, late, "contribution_default") == [-30]
        assert "default_recorded" in notification_types(session, late)

        events = event_types(session, cycle.id)
        assert "grace_period_ended" in events
        assert "default_recorded" in events

    def test_partial_payment_default_records_paid_amount(
        self, session, clock, started_circle, pay, run_engine,
    ):
        setup = started_circle(members=3)
        partial = _pay_all_but_last(setup, pay)
        pay(setup, partial, amount=Decimal("30"))

        clock.advance_days(8)
        run_engine()
        clock.advance_days(2)
        run_engine()

        [record] = defaults_for(session, setup.cycle(1).id)
        assert record.paid_amount == Decimal("30")
        assert record.default_amount == Decimal("70")
        # Partial money is not part of the pooled payout.
        assert setup.cycle(1).collected_amount == Decimal("200")

    def test_vouchers_penalized_for_default(
        self, session, clock, started_circle, pay, add_voucher, run_engine,
    ):
        setup = started_circle(members=3, policy=POLICY.IMMEDIATE_PROCEED)
        late = _pay_all_but_last(setup, pay)
        voucher_a = add_voucher(setup, late)
        voucher_b = add_voucher(setup, late)
        unrelated = add_voucher(setup, setup.member_ids[0])

        clock.advance_days(8)
        run_engine()

        assert score_points(session, voucher_a, "vouchee_default") == [-10]
        assert score_points(session, voucher_b, "vouchee_default") == [-10]
        assert score_points(session, unrelated) == []
        assert "vouchee_defaulted" in notification_types(session, voucher_a)

    def test_grace_resolved_out_of_band_ends_early(
        self, session, clock, started_circle, pay, run_engine,
    ):
        setup = started_circle(members=3)
        late = _pay_all_but_last(setup, pay)
        clock.advance_days(8)
        run_engine()

        # Operator settles the contribution directly in the database.
        contribution = contribution_of(session, setup.cycle(1).id, late)
        contribution.status = ContributionStatus.COMPLETED.value
        contribution.contributed_amount = Decimal("100")
        session.flush()

        result = run_engine()

        assert result.grace_periods_ended == 1
        assert setup.cycle(1).status == CycleStatus.PAYOUT_PENDING.value
        assert defaults_for(session, setup.cycle(1).id) == []


class TestStrictWait:

    def test_grace_uses_strict_wait_maximum(self, clock, started_circle, pay, run_engine):
        setup = started_circle(members=3, policy=POLICY.STRICT_WAIT)
        _pay_all_but_last(setup, pay)

        clock.advance_days(8)
        run_engine()

        cycle = setup.cycle(1)
        assert cycle.status == CycleStatus.GRACE_PERIOD.value
        assert cycle.grace_period_end == date(2026, 3, 11)

        clock.advance_days(10)
        run_engine()
        assert cycle.status == CycleStatus.GRACE_PERIOD.value


class TestGraceThenCover:

    def test_reserve_covers_at_grace_expiry_without_default(
        self, session, clock, started_circle, pay, run_engine,
    ):
        setup = started_circle(
            members=5, policy=POLICY.GRACE_THEN_COVER, reserve_balance=Decimal("1000"),
        )
        late = _pay_all_but_last(setup, pay)

        clock.advance_days(8)
        run_engine()
        clock.advance_days(2)
        run_engine()

        cycle = setup.cycle(1)
        contribution = contribution_of(session, cycle.id, late)
        assert contribution.status == ContributionStatus.COVERED.value
        assert contribution.covered_amount == Decimal("100")
        assert cycle.collected_amount == Decimal("500")
        assert cycle.payout_amount == Decimal("490.00")
        assert defaults_for(session, cycle.id) == []
        assert "reserve_used" in event_types(session, cycle.id)

    def test_partly_covered_gap_still_defaults(
        self, session, clock, started_circle, pay, run_engine,
    ):
        # Balance 100 -> cap 20, below the 100 gap.
        setup = started_circle(
            members=5, policy=POLICY.GRACE_THEN_COVER, reserve_balance=Decimal("100"),
        )
        late = _pay_all_but_last(setup, pay)

        clock.advance_days(8)
        run_engine()
        clock.advance_days(2)
        run_engine()

        cycle = setup.cycle(1)
        contribution = contribution_of(session, cycle.id, late)
        assert contribution.status == ContributionStatus.MISSED.value
        assert contribution.covered_amount == Decimal("20")
        [record] = defaults_for(session, cycle.id)
        assert record.covered_by_reserve is True
        assert record.paid_amount == Decimal("0")
        assert cycle.collected_amount == Decimal("420")
        assert reserve_balance(session, setup.circle.community_id) == Decimal("80")
        assert "reserve_partial_coverage" in event_types(session, cycle.id)


class TestImmediatePolicies:

    def test_immediate_proceed_defaults_without_grace(
        self, session, clock, started_circle, pay, run_engine,
    ):
        setup = started_circle(members=5, policy=POLICY.IMMEDIATE_PROCEED)
        late = _pay_all_but_last(setup, pay)

        clock.advance_days(8)
        result = run_engine()

        cycle = setup.cycle(1)
        assert result.grace_periods_started == 0
        assert cycle.grace_period_end is None
        assert cycle.status == CycleStatus.PAYOUT_PENDING.value
        assert cycle.collected_amount == Decimal("400")
        assert contribution_of(session, cycle.id, late).status == ContributionStatus.MISSED.value
        assert score_points(session, late, "contribution_late") == []
        assert score_points(session, late, "contribution_default") == [-30]

    def test_immediate_cover_records_default_even_when_covered(
        self, session, clock, started_circle, pay, run_engine,
    ):
        setup = started_circle(
            members=5, policy=POLICY.IMMEDIATE_COVER, reserve_balance=Decimal("1000"),
        )
        late = _pay_all_but_last(setup, pay)

        clock.advance_days(8)
        run_engine()

        cycle = setup.cycle(1)
        contribution = contribution_of(session, cycle.id, late)
        assert contribution.status == ContributionStatus.COVERED.value
        assert cycle.collected_amount == Decimal("500")
        assert cycle.payout_amount == Decimal("490.00")

        [record] = defaults_for(session, cycle.id)
        assert record.covered_by_reserve is True
        assert record.paid_amount == Decimal("0")
        assert record.default_amount == Decimal("100")
        assert score_points(session, late, "contribution_default") == [-30]

    def test_immediate_cover_with_small_reserve(
        self, session, clock, started_circle, pay, run_engine,
    ):
        setup = started_circle(
            members=5, policy=POLICY.IMMEDIATE_COVER, reserve_balance=Decimal("400"),
        )
        late = _pay_all_but_last(setup, pay)

        clock.advance_days(8)
        run_engine()

        cycle = setup.cycle(1)
        contribution = contribution_of(session, cycle.id, late)
        assert contribution.status == ContributionStatus.MISSED.value
        assert contribution.covered_amount == Decimal("80")
        assert contribution.member_paid_amount == Decimal("0")
        assert reserve_balance(session, setup.circle.community_id) == Decimal("320")
        assert cycle.collected_amount == Decimal("480")
        assert cycle.payout_amount == Decimal("470.40")

        [record] = defaults_for(session, cycle.id)
        assert record.covered_by_reserve is True
        assert record.default_amount == Decimal("100")
        assert "reserve_partial_coverage" in event_types(session, cycle.id)

    def test_state_survives_engine_restart(
        self, session, clock, started_circle, pay, make_engine,
    ):
        setup = started_circle(members=3)
        _pay_all_but_last(setup, pay)
        clock.advance_days(8)
        make_engine().run()

        # A brand-new engine instance picks up from persisted status.
        clock.set_time(datetime(2026, 2, 11, 6, 0, 0))
        result = make_engine().run()

        assert result.grace_periods_ended == 1
        assert setup.cycle(1).status == CycleStatus.PAYOUT_PENDING.value
