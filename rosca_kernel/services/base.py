"""
BaseService -- common constructor for kernel services.

Every write-side kernel service receives the caller's ``Session`` and an
injected ``Clock``.  Services persist with ``session.flush()`` only; the
caller (engine orchestrator, webhook handler via ``session_scope()``, or
test harness) owns commit and rollback.
"""

from abc import ABC

from sqlalchemy.orm import Session

from rosca_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Contract:
        Uses ``session.flush()`` within the active transaction.

    Non-goals:
        - Never calls ``session.commit()`` or ``session.rollback()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
