"""
CycleTransitionService -- the one path through which cycle status changes.

Responsibility:
    Validates the requested edge against VALID_TRANSITIONS and applies it with
    a compare-and-swap UPDATE conditioned on the status the caller observed,
    together with any column values that change alongside it.

Invariants enforced:
    - Strictly forward progression except payout_retry -> ready_payout.
    - No lost update: if another writer moved the cycle first, zero rows match
      and StaleCycleStatusError is raised instead of overwriting.
    - status_changed_at is stamped from the injected clock on every change.

Failure modes:
    - InvalidCycleTransitionError: edge not in the state machine.
    - StaleCycleStatusError: CAS matched no row.
"""

from typing import Any

from sqlalchemy import update

from rosca_kernel.exceptions import StaleCycleStatusError
from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.cycle import CircleCycle, CycleStatus, validate_transition
from rosca_kernel.services.base import BaseService

logger = get_logger("services.transitions")


class CycleTransitionService(BaseService):

    def transition(
        self,
        cycle: CircleCycle,
        to_status: CycleStatus,
        **values: Any,
    ) -> CircleCycle:
        """Move ``cycle`` to ``to_status``, writing ``values`` in the same UPDATE.

        The in-session object is refreshed from the row afterwards.
        """
        from_status = CycleStatus(cycle.status)
        validate_transition(cycle.id, from_status, to_status)

        result = self.session.execute(
            update(CircleCycle)
            .where(
                CircleCycle.id == cycle.id,
                CircleCycle.status == from_status.value,
            )
            .values(
                status=to_status.value,
                status_changed_at=self.clock.now(),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleCycleStatusError(
                str(cycle.id), from_status.value, to_status.value,
            )
        self.session.refresh(cycle)

        logger.info(
            "cycle_transitioned",
            extra={
                "transition_cycle_id": str(cycle.id),
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )
        return cycle
