"""Job lifecycle engine for a laundry service shop.

This package tracks customer orders as wash/dry jobs: machine assignment,
timed cycles, completion, pickup claiming and the disposal of laundry that is
never collected.
"""

from .domain import (
    ClaimReceipt,
    LaundryJob,
    LoadAssignment,
    LoadStatus,
    Machine,
    MachineStatus,
    MachineType,
    PickupStatus,
)
from .exceptions import (
    ConflictError,
    InvalidStateError,
    LaundryError,
    NotFoundError,
    ValidationError,
)
from .scheduler import DisposalSweepScheduler
from .services import LaundryService, LifecycleOptions, SweepReport

__all__ = [
    "ClaimReceipt",
    "LaundryJob",
    "LoadAssignment",
    "LoadStatus",
    "Machine",
    "MachineStatus",
    "MachineType",
    "PickupStatus",
    "ConflictError",
    "InvalidStateError",
    "LaundryError",
    "NotFoundError",
    "ValidationError",
    "DisposalSweepScheduler",
    "LaundryService",
    "LifecycleOptions",
    "SweepReport",
]
