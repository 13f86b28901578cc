"""
ORM-level immutability enforcement for write-once records.

SQLAlchemy fires ``before_update`` / ``before_delete`` before SQL reaches
the database.  Listeners registered here raise ImmutabilityViolationError
for the engine's audit artifacts:

Entity            | When immutable  | Why
------------------|-----------------|---------------------------------------
CycleEvent        | Always          | The cycle audit trail
MemberDefault     | Always          | Default snapshot drives score penalties
CircleCompletion  | Always          | Final statistics of a finished circle

Bulk ``update()`` statements bypass ORM events; nothing in the engine
issues bulk writes against these tables.

Usage:

    from rosca_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

    # TESTS ONLY
    unregister_immutability_listeners()
"""

from sqlalchemy import event

from rosca_kernel.exceptions import ImmutabilityViolationError
from rosca_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(target, operation: str) -> None:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} rows are write-once ({operation} refused)",
    )


def _check_write_once_update(mapper, connection, target):
    _block(target, "UPDATE")


def _check_write_once_delete(mapper, connection, target):
    _block(target, "DELETE")


def _write_once_models():
    from rosca_kernel.models.cycle_event import CycleEvent
    from rosca_kernel.models.member_default import CircleCompletion, MemberDefault

    return (CycleEvent, MemberDefault, CircleCompletion)


def register_immutability_listeners() -> None:
    """Register write-once listeners (idempotent)."""
    for model in _write_once_models():
        if not event.contains(model, "before_update", _check_write_once_update):
            event.listen(model, "before_update", _check_write_once_update)
        if not event.contains(model, "before_delete", _check_write_once_delete):
            event.listen(model, "before_delete", _check_write_once_delete)


def unregister_immutability_listeners() -> None:
    """
    Remove write-once listeners.

    WARNING: Only for tests that need to violate immutability on purpose.
    """
    for model in _write_once_models():
        if event.contains(model, "before_update", _check_write_once_update):
            event.remove(model, "before_update", _check_write_once_update)
        if event.contains(model, "before_delete", _check_write_once_delete):
            event.remove(model, "before_delete", _check_write_once_delete)
