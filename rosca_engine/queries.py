"""Read helpers shared by phases and webhook handlers."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from rosca_kernel.exceptions import CycleNotFoundError, PaymentMethodNotFoundError
from rosca_kernel.models.circle import (
    Circle,
    CircleMember,
    MemberStatus,
    PaymentMethod,
    PaymentMethodStatus,
    PayoutOrder,
    Vouch,
    VouchStatus,
)
from rosca_kernel.models.cycle import CircleCycle, CycleContribution


def get_cycle(session: Session, cycle_id: UUID) -> CircleCycle:
    cycle = session.get(CircleCycle, cycle_id)
    if cycle is None:
        raise CycleNotFoundError(str(cycle_id))
    return cycle


def get_cycle_by_number(session: Session, circle_id: UUID, cycle_number: int) -> CircleCycle:
    cycle = session.execute(
        select(CircleCycle).where(
            CircleCycle.circle_id == circle_id,
            CircleCycle.cycle_number == cycle_number,
        )
    ).scalar_one_or_none()
    if cycle is None:
        raise CycleNotFoundError(f"{circle_id}#{cycle_number}")
    return cycle


def get_circle(session: Session, circle_id: UUID) -> Circle:
    return session.get_one(Circle, circle_id)


def contributions_for(session: Session, cycle_id: UUID) -> list[CycleContribution]:
    return list(
        session.execute(
            select(CycleContribution)
            .where(CycleContribution.cycle_id == cycle_id)
            .order_by(CycleContribution.created_at, CycleContribution.id)
        ).scalars()
    )


def active_members(session: Session, circle_id: UUID) -> list[CircleMember]:
    return list(
        session.execute(
            select(CircleMember)
            .where(
                CircleMember.circle_id == circle_id,
                CircleMember.status == MemberStatus.ACTIVE.value,
            )
            .order_by(CircleMember.created_at, CircleMember.id)
        ).scalars()
    )


def final_payout_order(session: Session, circle_id: UUID) -> PayoutOrder | None:
    return session.execute(
        select(PayoutOrder)
        .where(PayoutOrder.circle_id == circle_id, PayoutOrder.is_final.is_(True))
        .order_by(PayoutOrder.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def active_vouchers(session: Session, circle_id: UUID, vouchee_id: UUID) -> list[UUID]:
    return list(
        session.execute(
            select(Vouch.voucher_id).where(
                Vouch.circle_id == circle_id,
                Vouch.vouchee_id == vouchee_id,
                Vouch.status == VouchStatus.ACTIVE.value,
            )
        ).scalars()
    )


def primary_payment_method(session: Session, user_id: UUID) -> PaymentMethod:
    method = session.execute(
        select(PaymentMethod)
        .where(
            PaymentMethod.user_id == user_id,
            PaymentMethod.is_primary.is_(True),
            PaymentMethod.status == PaymentMethodStatus.ACTIVE.value,
        )
        .limit(1)
    ).scalar_one_or_none()
    if method is None:
        raise PaymentMethodNotFoundError(str(user_id))
    return method
