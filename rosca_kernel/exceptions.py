"""
Typed exception hierarchy for the rotating-savings cycle engine.

Every error has a typed class, a machine-readable ``code`` class attribute,
and carries its context as structured attributes so callers catch by type
and read fields instead of parsing messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RoscaKernelError (base)
    |
    +-- CycleError
    |   +-- CycleNotFoundError
    |   +-- InvalidCycleTransitionError
    |   +-- StaleCycleStatusError
    |   +-- UnhandledPolicyError
    |
    +-- CycleSetupError
    |   +-- CircleNotActiveError
    |   +-- NoActiveMembersError
    |   +-- PayoutOrderNotFoundError
    |   +-- RecipientNotAssignedError
    |
    +-- ContributionError
    |   +-- ContributionNotFoundError
    |   +-- ContributionNotAcceptedError
    |
    +-- PayoutError
    |   +-- MissingRecipientError
    |   +-- PaymentMethodNotFoundError
    |   +-- PayoutInitiationError
    |
    +-- ReserveError
    |   +-- ReserveDebitConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError
        +-- InvalidEngineSettingsError

===============================================================================
HANDLING PATTERNS
===============================================================================

CycleSetupError subclasses abort a single cycle start; the cycle keeps its
``scheduled`` status and is retried on the next engine run.

PayoutInitiationError is counted against the cycle's bounded payout attempts.

StaleCycleStatusError means another writer moved the cycle first; the engine
records it on the run and leaves the cycle for the next invocation.
"""


class RoscaKernelError(Exception):
    """
    Base exception for all cycle engine errors.

    All subclasses carry a ``code`` class attribute.
    """

    code: str = "ROSCA_KERNEL_ERROR"


# Cycle state exceptions


class CycleError(RoscaKernelError):
    """Base exception for cycle lifecycle errors."""

    code: str = "CYCLE_ERROR"


class CycleNotFoundError(CycleError):
    """Cycle with given identifier was not found."""

    code: str = "CYCLE_NOT_FOUND"

    def __init__(self, cycle_ref: str):
        self.cycle_ref = cycle_ref
        super().__init__(f"Cycle not found: {cycle_ref}")


class InvalidCycleTransitionError(CycleError):
    """Requested status change is not an edge of the cycle state machine."""

    code: str = "INVALID_CYCLE_TRANSITION"

    def __init__(self, cycle_id: str, from_status: str, to_status: str):
        self.cycle_id = cycle_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cycle {cycle_id} cannot move from {from_status} to {to_status}"
        )


class StaleCycleStatusError(CycleError):
    """
    Compare-and-swap on cycle status matched no row.

    Another writer changed the status after it was read.
    """

    code: str = "STALE_CYCLE_STATUS"

    def __init__(self, cycle_id: str, expected_status: str, to_status: str):
        self.cycle_id = cycle_id
        self.expected_status = expected_status
        self.to_status = to_status
        super().__init__(
            f"Cycle {cycle_id} is no longer {expected_status}; "
            f"refusing transition to {to_status}"
        )


class UnhandledPolicyError(CycleError):
    """Incomplete-contribution policy has no registered handler."""

    code: str = "UNHANDLED_POLICY"

    def __init__(self, policies: list[str]):
        self.policies = policies
        super().__init__(f"No handler for policies: {', '.join(policies)}")


# Cycle setup exceptions


class CycleSetupError(RoscaKernelError):
    """Base exception for errors that prevent a cycle from starting."""

    code: str = "CYCLE_SETUP_ERROR"


class CircleNotActiveError(CycleSetupError):
    code: str = "CIRCLE_NOT_ACTIVE"

    def __init__(self, circle_id: str, status: str):
        self.circle_id = circle_id
        self.status = status
        super().__init__(f"Circle {circle_id} is {status}, expected active")


class NoActiveMembersError(CycleSetupError):
    code: str = "NO_ACTIVE_MEMBERS"

    def __init__(self, circle_id: str):
        self.circle_id = circle_id
        super().__init__(f"Circle {circle_id} has no active members")


class PayoutOrderNotFoundError(CycleSetupError):
    code: str = "PAYOUT_ORDER_NOT_FOUND"

    def __init__(self, circle_id: str):
        self.circle_id = circle_id
        super().__init__(f"Circle {circle_id} has no finalized payout order")


class RecipientNotAssignedError(CycleSetupError):
    """Payout order has no entry for the cycle's position."""

    code: str = "RECIPIENT_NOT_ASSIGNED"

    def __init__(self, circle_id: str, cycle_number: int):
        self.circle_id = circle_id
        self.cycle_number = cycle_number
        super().__init__(
            f"Payout order for circle {circle_id} has no recipient "
            f"at position {cycle_number}"
        )


# Contribution exceptions


class ContributionError(RoscaKernelError):
    """Base exception for contribution errors."""

    code: str = "CONTRIBUTION_ERROR"


class ContributionNotFoundError(ContributionError):
    code: str = "CONTRIBUTION_NOT_FOUND"

    def __init__(self, cycle_id: str, user_id: str):
        self.cycle_id = cycle_id
        self.user_id = user_id
        super().__init__(
            f"No contribution for user {user_id} in cycle {cycle_id}"
        )


class ContributionNotAcceptedError(ContributionError):
    """Cycle is past the point where payments can be applied."""

    code: str = "CONTRIBUTION_NOT_ACCEPTED"

    def __init__(self, cycle_id: str, cycle_status: str):
        self.cycle_id = cycle_id
        self.cycle_status = cycle_status
        super().__init__(
            f"Cycle {cycle_id} is {cycle_status} and no longer accepts contributions"
        )


# Payout exceptions


class PayoutError(RoscaKernelError):
    """Base exception for payout errors."""

    code: str = "PAYOUT_ERROR"


class MissingRecipientError(PayoutError):
    code: str = "MISSING_RECIPIENT"

    def __init__(self, cycle_id: str):
        self.cycle_id = cycle_id
        super().__init__(f"Cycle {cycle_id} has no payout recipient")


class PaymentMethodNotFoundError(PayoutError):
    code: str = "PAYMENT_METHOD_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No active primary payment method for user {user_id}")


class PayoutInitiationError(PayoutError):
    """Payment provider refused or failed to start a transfer."""

    code: str = "PAYOUT_INITIATION_FAILED"

    def __init__(self, reason: str, provider: str | None = None):
        self.reason = reason
        self.provider = provider
        super().__init__(f"Payout initiation failed: {reason}")


# Reserve exceptions


class ReserveError(RoscaKernelError):
    """Base exception for reserve fund errors."""

    code: str = "RESERVE_ERROR"


class ReserveDebitConflictError(ReserveError):
    """Atomic balance decrement matched no row (balance moved underneath)."""

    code: str = "RESERVE_DEBIT_CONFLICT"

    def __init__(self, reserve_id: str, amount: str):
        self.reserve_id = reserve_id
        self.amount = amount
        super().__init__(
            f"Reserve {reserve_id} could not be debited by {amount}"
        )


# Immutability exceptions


class ImmutabilityError(RoscaKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    MemberDefault, CycleEvent and CircleCompletion rows are write-once.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigurationError(RoscaKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class InvalidEngineSettingsError(ConfigurationError):
    code: str = "INVALID_ENGINE_SETTINGS"

    def __init__(self, field_name: str, value: object, reason: str):
        self.field_name = field_name
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid setting {field_name}={value!r}: {reason}")
