"""
CycleEventRecorder -- append-only writer for the cycle audit trail.

Responsibility:
    Persists one CycleEvent per transition, decision or external effect,
    stamped with the injected clock and the current engine run.

Invariants enforced:
    - Payloads are normalized to JSON-safe values before insert.
    - Rows are never updated (see db/immutability.py).
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from rosca_kernel.db.types import json_safe
from rosca_kernel.domain.clock import Clock
from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.cycle import CircleCycle
from rosca_kernel.models.cycle_event import CycleEvent, CycleEventType
from rosca_kernel.services.base import BaseService

logger = get_logger("services.events")


class CycleEventRecorder(BaseService):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        run_id: UUID | None = None,
    ):
        super().__init__(session, clock)
        self.run_id = run_id

    def record(
        self,
        event_type: CycleEventType,
        cycle: CircleCycle | None = None,
        *,
        cycle_id: UUID | None = None,
        circle_id: UUID | None = None,
        data: dict[str, Any] | None = None,
        actor: str = "system",
    ) -> CycleEvent:
        """Append one event.  ``cycle`` supplies ids when given."""
        if cycle is not None:
            cycle_id = cycle.id
            circle_id = cycle.circle_id

        evt = CycleEvent(
            cycle_id=cycle_id,
            circle_id=circle_id,
            event_type=event_type.value,
            event_data=json_safe(data or {}),
            actor=actor,
            run_id=self.run_id,
            occurred_at=self.clock.now(),
        )
        self.session.add(evt)
        self.session.flush()

        logger.debug(
            "cycle_event_recorded",
            extra={
                "event_type": event_type.value,
                "cycle_id": str(cycle_id) if cycle_id else None,
            },
        )
        return evt

    def events_for(
        self, cycle_id: UUID, event_type: CycleEventType | None = None,
    ) -> list[CycleEvent]:
        stmt = select(CycleEvent).where(CycleEvent.cycle_id == cycle_id)
        if event_type is not None:
            stmt = stmt.where(CycleEvent.event_type == event_type.value)
        return list(
            self.session.execute(
                stmt.order_by(CycleEvent.occurred_at)
            ).scalars()
        )
