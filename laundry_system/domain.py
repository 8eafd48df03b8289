"""Core data structures for the laundry shop job lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence


class MachineType(str, Enum):
    """Kinds of physical units on the shop floor."""

    WASHER = "Washer"
    DRYER = "Dryer"


class MachineStatus(str, Enum):
    """Availability of a machine."""

    AVAILABLE = "Available"
    IN_USE = "In Use"
    MAINTENANCE = "Maintenance"


class LoadStatus(str, Enum):
    """Stages a single load moves through."""

    QUEUED = "QUEUED"
    IN_PROGRESS = "IN_PROGRESS"
    WASHING = "WASHING"
    WASHED = "WASHED"
    DRYING = "DRYING"
    DRIED = "DRIED"
    FOLDING = "FOLDING"
    COMPLETED = "COMPLETED"

    @property
    def is_running(self) -> bool:
        return self in RUNNING_STATUSES

    @classmethod
    def parse(cls, value: str) -> "LoadStatus":
        normalized = value.strip().upper().replace(" ", "_")
        if normalized == "COMPLETE":
            normalized = "COMPLETED"
        if normalized == "NOT_STARTED":
            normalized = "QUEUED"
        return cls(normalized)


RUNNING_STATUSES = frozenset({LoadStatus.WASHING, LoadStatus.DRYING})
DRYING_STATUSES = frozenset({LoadStatus.DRYING, LoadStatus.DRIED})


class PickupStatus(str, Enum):
    UNCLAIMED = "UNCLAIMED"
    CLAIMED = "CLAIMED"


class ServiceType(str, Enum):
    """Service offered on a transaction; decides the status flow of its loads."""

    WASH = "wash"
    DRY = "dry"
    WASH_AND_DRY = "wash & dry"

    @classmethod
    def from_name(cls, name: Optional[str]) -> Optional["ServiceType"]:
        if not name:
            return None
        try:
            return cls(name.strip().lower())
        except ValueError:
            return None


GENERIC_FLOW: Sequence[LoadStatus] = (
    LoadStatus.QUEUED,
    LoadStatus.IN_PROGRESS,
    LoadStatus.COMPLETED,
)

SERVICE_FLOWS = {
    ServiceType.WASH: (
        LoadStatus.QUEUED,
        LoadStatus.WASHING,
        LoadStatus.WASHED,
        LoadStatus.COMPLETED,
    ),
    ServiceType.DRY: (
        LoadStatus.QUEUED,
        LoadStatus.DRYING,
        LoadStatus.DRIED,
        LoadStatus.FOLDING,
        LoadStatus.COMPLETED,
    ),
    ServiceType.WASH_AND_DRY: (
        LoadStatus.QUEUED,
        LoadStatus.WASHING,
        LoadStatus.WASHED,
        LoadStatus.DRYING,
        LoadStatus.DRIED,
        LoadStatus.FOLDING,
        LoadStatus.COMPLETED,
    ),
}


def status_flow_for(service_name: Optional[str]) -> List[str]:
    """Return the named stages a job walks through for the given service."""

    service_type = ServiceType.from_name(service_name)
    flow = SERVICE_FLOWS.get(service_type, GENERIC_FLOW)
    return [status.value for status in flow]


@dataclass(slots=True)
class Machine:
    """A washer or dryer unit."""

    id: str
    name: str
    type: MachineType
    capacity_kg: float
    status: MachineStatus = MachineStatus.AVAILABLE
    last_maintenance: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.capacity_kg <= 0:
            raise ValueError("Machine capacity must be positive")


@dataclass(slots=True)
class ConsumableEntry:
    """A consumable line (detergent, fabric conditioner, ...) on a transaction."""

    name: str
    quantity: int


@dataclass(slots=True)
class TransactionRecord:
    """The slice of an external sales transaction the job lifecycle consumes."""

    transaction_id: str
    customer_name: str
    contact: str
    service_name: str
    service_quantity: int
    consumables: List[ConsumableEntry] = field(default_factory=list)
    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None

    def consumable_quantity(self, keyword: str) -> int:
        """Sum quantities of consumables whose name contains ``keyword``."""

        needle = keyword.lower()
        return sum(
            entry.quantity for entry in self.consumables if needle in entry.name.lower()
        )


@dataclass(slots=True)
class LoadAssignment:
    """One washer/dryer cycle inside a job."""

    load_number: int
    machine_id: Optional[str] = None
    status: LoadStatus = LoadStatus.QUEUED
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == LoadStatus.COMPLETED


@dataclass(slots=True)
class LaundryJob:
    """Physical processing state for one customer transaction."""

    transaction_id: str
    customer_name: str
    contact: str
    load_assignments: List[LoadAssignment] = field(default_factory=list)
    detergent_qty: int = 0
    fabric_qty: int = 0
    service_type: str = ""
    status_flow: List[str] = field(default_factory=list)
    current_step: int = 0
    pickup_status: PickupStatus = PickupStatus.UNCLAIMED
    claim_receipt_number: Optional[str] = None
    claimed_by_staff_id: Optional[str] = None
    claim_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    completion_notified: bool = False
    disposal_warning_sent_at: Optional[datetime] = None
    expired: bool = False
    expired_at: Optional[datetime] = None
    disposed: bool = False
    disposed_by: Optional[str] = None
    disposed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def all_loads_completed(self) -> bool:
        return bool(self.load_assignments) and all(
            load.is_completed for load in self.load_assignments
        )

    @property
    def is_claimed(self) -> bool:
        return self.pickup_status == PickupStatus.CLAIMED

    def find_load(self, load_number: int) -> Optional[LoadAssignment]:
        for load in self.load_assignments:
            if load.load_number == load_number:
                return load
        return None

    def completion_time(self) -> Optional[datetime]:
        """Moment the last load finished, or ``None`` while any load is open."""

        if not self.all_loads_completed:
            return None
        moments = [
            load.completed_at or load.end_time
            for load in self.load_assignments
            if (load.completed_at or load.end_time) is not None
        ]
        return max(moments) if moments else None


@dataclass(slots=True)
class FormatSettings:
    """Store details printed on receipts and quoted in customer messages."""

    store_name: str = "Laundry Shop"
    address: str = ""
    phone: str = ""
    footer_note: str = "Thank you for your business!"
    tracking_url: str = ""


@dataclass(slots=True)
class ClaimReceipt:
    """Receipt handed to the customer when laundry is picked up."""

    claim_receipt_number: str
    transaction_id: str
    customer_name: str
    contact: str
    service_type: str
    total_loads: int
    completion_date: Optional[datetime]
    claim_date: datetime
    claimed_by_staff: str
    format_settings: FormatSettings


@dataclass(slots=True)
class StaffNotice:
    """Message posted to every staff member's notification feed."""

    id: str
    kind: str
    title: str
    message: str
    transaction_id: str
    created_at: datetime


@dataclass(slots=True)
class JobView:
    """Read projection of a job enriched with data from its transaction."""

    job: LaundryJob
    detergent_qty: int
    fabric_qty: int
    service_type: str
    issue_date: Optional[datetime]
    total_loads: int


__all__ = [
    "MachineType",
    "MachineStatus",
    "LoadStatus",
    "PickupStatus",
    "ServiceType",
    "RUNNING_STATUSES",
    "DRYING_STATUSES",
    "SERVICE_FLOWS",
    "GENERIC_FLOW",
    "status_flow_for",
    "Machine",
    "ConsumableEntry",
    "TransactionRecord",
    "LoadAssignment",
    "LaundryJob",
    "FormatSettings",
    "ClaimReceipt",
    "StaffNotice",
    "JobView",
]
