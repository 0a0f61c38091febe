"""
Statuses -- enumerations shared by models, domain logic and services.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by models so the ORM
    layer and the state machine agree on the same values.
"""

from enum import Enum


class StageInstanceStatus(str, Enum):
    """Completion state of a stage instance."""

    PENDING = "pending"
    COMPLETED = "completed"


class ContractServiceStatus(str, Enum):
    """Status of a service inside a contract.

    Automatic transitions: NOT_STARTED -> IN_PROGRESS -> COMPLETED.
    CANCELLED and SUSPENDED are hold states set by people only.
    """

    NOT_STARTED = "not_started"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"


HOLD_STATES: frozenset[ContractServiceStatus] = frozenset(
    {ContractServiceStatus.CANCELLED, ContractServiceStatus.SUSPENDED}
)


class ContractStatus(str, Enum):
    """Contract lifecycle status.  Only ACTIVE contracts count for clients."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RoutineStatus(str, Enum):
    """Routine mirror status."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def allowed_values(enum_cls: type[Enum]) -> tuple[str, ...]:
    """Return the string values of an enum, in declaration order."""
    return tuple(member.value for member in enum_cls)


def status_value(status: "Enum | str") -> str:
    """Normalize an enum member or raw column value to its string value."""
    if isinstance(status, Enum):
        return status.value
    return status
