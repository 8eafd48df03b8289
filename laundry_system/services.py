"""Service layer that implements the laundry job lifecycle."""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from .domain import (
    DRYING_STATUSES,
    ClaimReceipt,
    ConsumableEntry,
    FormatSettings,
    JobView,
    LaundryJob,
    LoadAssignment,
    LoadStatus,
    Machine,
    MachineStatus,
    MachineType,
    PickupStatus,
    ServiceType,
    StaffNotice,
    TransactionRecord,
    status_flow_for,
)
from .exceptions import (
    ConflictError,
    InvalidStateError,
    JobAlreadyClaimedError,
    NotFoundError,
    ValidationError,
)
from .machines import MachineRegistry
from .notifications import LoggingNotifier, NotificationKind, Notifier
from .repository import InMemoryRepository, RecordNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_DUE_DAYS = 3
RECEIPT_PREFIX = "CLM-"


@dataclass(slots=True)
class LifecycleOptions:
    """Tunable timings for cycles, disposal warnings and the sweep."""

    washing_minutes: int = 35
    drying_minutes: int = 40
    other_cycle_minutes: int = 20
    warning_after_hours: float = 48.0
    expire_after_hours: float = 168.0
    sweep_interval_minutes: float = 30.0
    sms_timeout_seconds: float = 10.0

    @property
    def warning_after(self) -> timedelta:
        return timedelta(hours=self.warning_after_hours)

    @property
    def expire_after(self) -> timedelta:
        return timedelta(hours=self.expire_after_hours)

    def default_duration(self, status: LoadStatus) -> int:
        if status == LoadStatus.WASHING:
            return self.washing_minutes
        if status == LoadStatus.DRYING:
            return self.drying_minutes
        return self.other_cycle_minutes

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LifecycleOptions":
        """Build options from ``LAUNDRY_*`` environment variables."""

        env = os.environ if environ is None else environ
        defaults = cls()

        def read(name: str, cast: Callable[[str], Any], default: Any) -> Any:
            raw = env.get(name)
            if raw is None or not raw.strip():
                return default
            try:
                return cast(raw)
            except ValueError as exc:
                raise ValidationError(f"Invalid value for {name}: {raw!r}") from exc

        return cls(
            washing_minutes=read("LAUNDRY_WASHING_MINUTES", int, defaults.washing_minutes),
            drying_minutes=read("LAUNDRY_DRYING_MINUTES", int, defaults.drying_minutes),
            other_cycle_minutes=read(
                "LAUNDRY_OTHER_CYCLE_MINUTES", int, defaults.other_cycle_minutes
            ),
            warning_after_hours=read(
                "LAUNDRY_WARNING_AFTER_HOURS", float, defaults.warning_after_hours
            ),
            expire_after_hours=read(
                "LAUNDRY_EXPIRE_AFTER_HOURS", float, defaults.expire_after_hours
            ),
            sweep_interval_minutes=read(
                "LAUNDRY_SWEEP_INTERVAL_MINUTES", float, defaults.sweep_interval_minutes
            ),
            sms_timeout_seconds=read(
                "LAUNDRY_SMS_TIMEOUT_SECONDS", float, defaults.sms_timeout_seconds
            ),
        )


@dataclass(slots=True)
class DisposalCheck:
    """Outcome of evaluating one job against the disposal thresholds."""

    transaction_id: str
    eligible: bool = False
    warning_sent: bool = False
    expired_marked: bool = False
    error: Optional[str] = None


@dataclass(slots=True)
class SweepReport:
    """Summary of one pass over the completed-but-unclaimed jobs."""

    started_at: datetime
    scanned: int = 0
    warnings_sent: int = 0
    expired_marked: int = 0
    failures: List[str] = field(default_factory=list)


_UPDATABLE_JOB_FIELDS = (
    "detergent_qty",
    "fabric_qty",
    "status_flow",
    "current_step",
    "load_assignments",
    "contact",
)


class LaundryService:
    """Facade that exposes the job lifecycle use-cases to clients.

    Every mutation of a job runs under that job's lock, so the sweep thread and
    request handlers never lose each other's updates. Jobs with different
    transaction ids never contend.
    """

    def __init__(
        self,
        job_repo: Optional[InMemoryRepository[LaundryJob]] = None,
        machine_repo: Optional[InMemoryRepository[Machine]] = None,
        transaction_repo: Optional[InMemoryRepository[TransactionRecord]] = None,
        staff_notice_repo: Optional[InMemoryRepository[StaffNotice]] = None,
        *,
        notifier: Optional[Notifier] = None,
        options: Optional[LifecycleOptions] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.jobs = job_repo if job_repo is not None else InMemoryRepository()
        self.transactions = (
            transaction_repo if transaction_repo is not None else InMemoryRepository()
        )
        self.staff_notices = (
            staff_notice_repo if staff_notice_repo is not None else InMemoryRepository()
        )
        self.machines = MachineRegistry(machine_repo, clock=clock)
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.options = options or LifecycleOptions()
        self.format_settings = FormatSettings()
        self._clock = clock
        self._job_locks: Dict[str, threading.RLock] = {}
        self._job_locks_guard = threading.Lock()

    def now(self) -> datetime:
        return self._clock()

    @contextmanager
    def _job_lock(self, transaction_id: str) -> Iterator[None]:
        with self._job_locks_guard:
            lock = self._job_locks.setdefault(transaction_id, threading.RLock())
        with lock:
            yield

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def update_lifecycle_options(
        self,
        *,
        washing_minutes: int,
        drying_minutes: int,
        other_cycle_minutes: int,
        warning_after_hours: float,
        expire_after_hours: float,
        sweep_interval_minutes: float,
        sms_timeout_seconds: Optional[float] = None,
    ) -> LifecycleOptions:
        warning = max(warning_after_hours, 0.0)
        self.options = LifecycleOptions(
            washing_minutes=max(washing_minutes, 1),
            drying_minutes=max(drying_minutes, 1),
            other_cycle_minutes=max(other_cycle_minutes, 1),
            warning_after_hours=warning,
            expire_after_hours=max(expire_after_hours, warning),
            sweep_interval_minutes=max(sweep_interval_minutes, 1.0),
            sms_timeout_seconds=(
                self.options.sms_timeout_seconds
                if sms_timeout_seconds is None
                else max(sms_timeout_seconds, 0.1)
            ),
        )
        return self.options

    def update_format_settings(
        self,
        *,
        store_name: Optional[str] = None,
        address: Optional[str] = None,
        phone: Optional[str] = None,
        footer_note: Optional[str] = None,
        tracking_url: Optional[str] = None,
    ) -> FormatSettings:
        current = self.format_settings
        self.format_settings = FormatSettings(
            store_name=current.store_name if store_name is None else store_name,
            address=current.address if address is None else address,
            phone=current.phone if phone is None else phone,
            footer_note=current.footer_note if footer_note is None else footer_note,
            tracking_url=current.tracking_url if tracking_url is None else tracking_url,
        )
        return self.format_settings

    # ------------------------------------------------------------------
    # Transactions (records owned by the sales side of the shop)
    # ------------------------------------------------------------------
    def register_transaction(
        self,
        transaction_id: str,
        customer_name: str,
        contact: str,
        service_name: str,
        service_quantity: int,
        *,
        consumables: Optional[Sequence[Tuple[str, int]]] = None,
        issue_date: Optional[datetime] = None,
        due_date: Optional[datetime] = None,
    ) -> TransactionRecord:
        if not transaction_id:
            raise ValidationError("Transaction id is required")
        if service_quantity < 1:
            raise ValidationError("A transaction must cover at least one load")
        record = TransactionRecord(
            transaction_id=transaction_id,
            customer_name=customer_name,
            contact=contact,
            service_name=service_name,
            service_quantity=service_quantity,
            consumables=[
                ConsumableEntry(name=name, quantity=quantity)
                for name, quantity in (consumables or [])
            ],
            issue_date=_naive(issue_date) or self.now(),
            due_date=_naive(due_date),
        )
        self.transactions.add(record.transaction_id, record)
        return record

    def _find_transaction(self, transaction_id: str) -> Optional[TransactionRecord]:
        try:
            return self.transactions.get(transaction_id)
        except RecordNotFoundError:
            return None

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    def create_job(
        self,
        transaction_id: str,
        *,
        load_count: Optional[int] = None,
        detergent_qty: int = 0,
        fabric_qty: int = 0,
        contact: Optional[str] = None,
    ) -> LaundryJob:
        if load_count is not None and load_count < 1:
            raise ValidationError("A job needs at least one load")
        if detergent_qty < 0 or fabric_qty < 0:
            raise ValidationError("Consumable quantities cannot be negative")

        with self._job_lock(transaction_id):
            if transaction_id in self.jobs:
                raise ConflictError(f"A job already exists for transaction {transaction_id!r}")
            transaction = self._find_transaction(transaction_id)
            if transaction is None:
                raise NotFoundError(f"Transaction {transaction_id!r} not found")
            count = load_count or transaction.service_quantity
            now = self.now()
            job = LaundryJob(
                transaction_id=transaction_id,
                customer_name=transaction.customer_name,
                contact=contact or transaction.contact,
                load_assignments=[
                    LoadAssignment(load_number=number) for number in range(1, count + 1)
                ],
                detergent_qty=detergent_qty,
                fabric_qty=fabric_qty,
                service_type=transaction.service_name,
                status_flow=status_flow_for(transaction.service_name),
                current_step=0,
                due_date=transaction.due_date or now + timedelta(days=DEFAULT_DUE_DAYS),
                created_at=now,
                updated_at=now,
            )
            self.jobs.add(job.transaction_id, job)
        logger.info(
            f"Created job {transaction_id} for {job.customer_name} with {count} load(s)"
        )
        return job

    def get_job(self, transaction_id: str) -> LaundryJob:
        try:
            return self.jobs.get(transaction_id)
        except RecordNotFoundError as exc:
            raise NotFoundError(f"Laundry job not found for transaction {transaction_id!r}") from exc

    def get_job_view(self, transaction_id: str) -> JobView:
        return self._to_view(self.get_job(transaction_id))

    def list_jobs(self, *, active_only: bool = False) -> List[JobView]:
        """Jobs ordered by due date, enriched with their transaction's consumables."""

        jobs = self.jobs.list()
        if active_only:
            jobs = [job for job in jobs if not job.all_loads_completed]
        jobs.sort(key=lambda job: (job.due_date or datetime.max, job.transaction_id))
        return [self._to_view(job) for job in jobs]

    def search_jobs_by_customer(self, customer_name: str) -> List[LaundryJob]:
        needle = customer_name.strip().lower()
        return self.jobs.filter(lambda job: needle in job.customer_name.lower())

    def _to_view(self, job: LaundryJob) -> JobView:
        transaction = self._find_transaction(job.transaction_id)
        if transaction is None:
            return JobView(
                job=job,
                detergent_qty=job.detergent_qty,
                fabric_qty=job.fabric_qty,
                service_type=job.service_type,
                issue_date=None,
                total_loads=len(job.load_assignments),
            )
        # Consumables are matched by name fragment; there is no category field.
        return JobView(
            job=job,
            detergent_qty=transaction.consumable_quantity("detergent"),
            fabric_qty=transaction.consumable_quantity("fabric"),
            service_type=transaction.service_name,
            issue_date=transaction.issue_date,
            total_loads=len(job.load_assignments),
        )

    def update_job(self, transaction_id: str, fields: Mapping[str, Any]) -> LaundryJob:
        """Staff correction path.

        Overwrites the given fields after checking their types only. None of the
        lifecycle rules (machine occupancy, progress, claim eligibility) are
        re-checked, so this is an escape hatch for fixing bad data.
        """

        unknown = sorted(set(fields) - set(_UPDATABLE_JOB_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")
        changes = {name: _coerce_job_field(name, value) for name, value in fields.items()}

        with self._job_lock(transaction_id):
            job = self.get_job(transaction_id)
            for name, value in changes.items():
                setattr(job, name, value)
            self._save(job)
        logger.info(f"Job {transaction_id} corrected: {', '.join(sorted(changes))}")
        return job

    def delete_job(self, transaction_id: str) -> None:
        with self._job_lock(transaction_id):
            job = self.get_job(transaction_id)
            for load in job.load_assignments:
                if load.machine_id and not load.is_completed:
                    self.machines.release(load.machine_id)
            self.jobs.remove(transaction_id)
        with self._job_locks_guard:
            self._job_locks.pop(transaction_id, None)
        logger.info(f"Deleted job {transaction_id}")

    def _save(self, job: LaundryJob) -> None:
        job.updated_at = self.now()
        self.jobs.upsert(job.transaction_id, job)

    # ------------------------------------------------------------------
    # Loads
    # ------------------------------------------------------------------
    @staticmethod
    def _get_load(job: LaundryJob, load_number: int) -> LoadAssignment:
        load = job.find_load(load_number)
        if load is None:
            raise NotFoundError(
                f"Load {load_number} not found on job {job.transaction_id!r}"
            )
        return load

    def assign_machine(
        self, transaction_id: str, load_number: int, machine_id: str
    ) -> LaundryJob:
        with self._job_lock(transaction_id):
            job = self.get_job(transaction_id)
            self._settle_elapsed(job)
            load = self._get_load(job, load_number)
            if load.is_completed:
                raise InvalidStateError(f"Load {load_number} is already completed")
            if load.machine_id == machine_id:
                return job
            if load.status.is_running:
                raise InvalidStateError(
                    f"Load {load_number} is {load.status.value}; wait for the cycle to end"
                )
            machine = self.machines.acquire(machine_id)
            previous = load.machine_id
            load.machine_id = machine.id
            if previous:
                self.machines.release(previous)
            self._save(job)
        logger.info(f"Job {transaction_id} load {load_number} assigned to {machine.name!r}")
        return job

    def start_load(
        self,
        transaction_id: str,
        load_number: int,
        duration_minutes: Optional[int] = None,
    ) -> LaundryJob:
        if duration_minutes is not None and duration_minutes <= 0:
            raise ValidationError("Duration must be a positive number of minutes")
        with self._job_lock(transaction_id):
            job = self.get_job(transaction_id)
            self._settle_elapsed(job)
            load = self._get_load(job, load_number)
            if load.is_completed:
                raise InvalidStateError(f"Load {load_number} is already completed")
            if load.machine_id is None:
                raise InvalidStateError(f"Load {load_number} has no machine assigned")
            machine = self.machines.get(load.machine_id)
            next_status = self._next_running_status(job, load, machine)
            self._hold_machine(machine)
            minutes = duration_minutes or self.options.default_duration(next_status)
            self._run_timer(load, next_status, minutes)
            self._refresh_progress(job)
            self._save(job)
        logger.info(
            f"Job {transaction_id} load {load_number} {next_status.value} on "
            f"{machine.name!r} for {minutes} min (ends {load.end_time:%Y-%m-%d %H:%M})"
        )
        return job

    def dry_again(self, transaction_id: str, load_number: int) -> LaundryJob:
        with self._job_lock(transaction_id):
            job = self.get_job(transaction_id)
            self._settle_elapsed(job)
            load = self._get_load(job, load_number)
            if load.status not in DRYING_STATUSES:
                raise InvalidStateError(
                    f"Load {load_number} is {load.status.value}; only drying loads can dry again"
                )
            if load.machine_id is None:
                raise InvalidStateError(f"Load {load_number} has no machine assigned")
            self._hold_machine(self.machines.get(load.machine_id))
            minutes = load.duration_minutes or self.options.drying_minutes
            self._run_timer(load, LoadStatus.DRYING, minutes)
            self._refresh_progress(job)
            self._save(job)
        logger.info(f"Job {transaction_id} load {load_number} drying again for {minutes} min")
        return job

    def advance_load(
        self, transaction_id: str, load_number: int, new_status: Any
    ) -> LaundryJob:
        """Manually override a load's status.

        Moving a load to ``COMPLETED`` goes through :meth:`complete_load` so the
        machine is released and the completion event fires. Any other target
        leaves the machine binding alone.
        """

        status = _parse_status(new_status)
        if status == LoadStatus.COMPLETED:
            return self.complete_load(transaction_id, load_number)

        with self._job_lock(transaction_id):
            job = self.get_job(transaction_id)
            self._settle_elapsed(job)
            load = self._get_load(job, load_number)
            if job.is_claimed or job.expired:
                raise InvalidStateError(
                    f"Job {transaction_id!r} is closed for pickup; loads cannot be reopened"
                )
            previous = load.status
            if load.is_completed:
                # A reopened load has given its machine back; it must be reassigned.
                load.machine_id = None
                load.completed_at = None
                job.completion_notified = False
            load.status = status
            self._refresh_progress(job)
            self._save(job)
        logger.info(
            f"Job {transaction_id} load {load_number} moved {previous.value} -> {status.value}"
        )
        return job

    def complete_load(self, transaction_id: str, load_number: int) -> LaundryJob:
        with self._job_lock(transaction_id):
            job = self.get_job(transaction_id)
            load = self._get_load(job, load_number)
            if load.is_completed:
                logger.info(f"Job {transaction_id} load {load_number} already completed")
                return job
            load.status = LoadStatus.COMPLETED
            load.completed_at = self.now()
            if load.machine_id:
                self.machines.release(load.machine_id)
            self._refresh_progress(job)
            announce = job.all_loads_completed and not job.completion_notified
            if announce:
                job.completion_notified = True
            self._save(job)
        logger.info(f"Job {transaction_id} load {load_number} completed")
        if announce:
            self._announce_completion(job)
        return job

    def force_advance_load(self, transaction_id: str, load_number: int) -> LaundryJob:
        """Push a load one stage along its job's flow without waiting on the timer.

        A running cycle is cut short to its finished stage; a finished stage moves
        to the next one. Starting a machine still goes through :meth:`start_load`.
        """

        with self._job_lock(transaction_id):
            job = self.get_job(transaction_id)
            self._settle_elapsed(job)
            load = self._get_load(job, load_number)
            if load.is_completed:
                raise InvalidStateError(f"Load {load_number} is already completed")
            if load.status.is_running:
                previous = load.status
                load.status = (
                    LoadStatus.WASHED if previous == LoadStatus.WASHING else LoadStatus.DRIED
                )
                load.end_time = self.now()
                self._refresh_progress(job)
                self._save(job)
                logger.info(
                    f"Job {transaction_id} load {load_number} cut short "
                    f"{previous.value} -> {load.status.value}"
                )
                return job
            target = _next_stage(job.status_flow, load.status)
            if target is None or target.is_running:
                raise InvalidStateError(
                    f"Load {load_number} is {load.status.value}; start the machine instead"
                )

        if target == LoadStatus.COMPLETED:
            return self.complete_load(transaction_id, load_number)
        return self.advance_load(transaction_id, load_number, target)

    def update_load_duration(
        self, transaction_id: str, load_number: int, minutes: int
    ) -> LaundryJob:
        if minutes <= 0:
            raise ValidationError("Duration must be a positive number of minutes")
        with self._job_lock(transaction_id):
            job = self.get_job(transaction_id)
            load = self._get_load(job, load_number)
            load.duration_minutes = minutes
            if load.start_time is not None:
                load.end_time = load.start_time + timedelta(minutes=minutes)
            self._save(job)
        return job

    def advance_elapsed_cycles(self, now: Optional[datetime] = None) -> int:
        """Move loads whose timer ran out from WASHING/DRYING to WASHED/DRIED.

        Jobs are settled one at a time; a job that fails is logged and skipped
        so the rest of the pass still runs.
        """

        now = now or self.now()
        advanced = 0
        for job in self.jobs.list():
            try:
                if not _has_elapsed_cycle(job, now):
                    continue
                with self._job_lock(job.transaction_id):
                    current = self.get_job(job.transaction_id)
                    advanced += len(self._settle_elapsed(current, now))
            except NotFoundError:
                continue
            except Exception:
                logger.exception(
                    f"Could not advance finished cycles for job {job.transaction_id}"
                )
        return advanced

    def _settle_elapsed(
        self, job: LaundryJob, now: Optional[datetime] = None
    ) -> List[LoadAssignment]:
        """Move every load of ``job`` whose timer has run out to its finished stage.

        Runs under the job lock, before any operation that reads load status, so
        a finished cycle never waits for the next sweep tick.
        """

        now = now or self.now()
        finished = []
        for load in job.load_assignments:
            if load.status.is_running and load.end_time is not None and load.end_time <= now:
                load.status = (
                    LoadStatus.WASHED if load.status == LoadStatus.WASHING else LoadStatus.DRIED
                )
                finished.append(load)
        if not finished:
            return finished
        self._refresh_progress(job)
        self._save(job)
        for load in finished:
            self._post_staff_notice(
                job,
                kind=f"load_{load.status.value.lower()}",
                title=f"Load {load.status.value.title()}",
                message=(
                    f"Load {load.load_number} for {job.customer_name} is "
                    f"{load.status.value.lower()}."
                ),
            )
        return finished

    def _next_running_status(
        self, job: LaundryJob, load: LoadAssignment, machine: Machine
    ) -> LoadStatus:
        if load.status.is_running:
            next_status = load.status
        else:
            service_type = ServiceType.from_name(job.service_type)
            next_status = None
            if load.status == LoadStatus.QUEUED:
                if service_type == ServiceType.DRY:
                    next_status = LoadStatus.DRYING
                elif service_type is None:
                    next_status = (
                        LoadStatus.DRYING
                        if machine.type == MachineType.DRYER
                        else LoadStatus.WASHING
                    )
                else:
                    next_status = LoadStatus.WASHING
            elif load.status == LoadStatus.WASHED and service_type == ServiceType.WASH_AND_DRY:
                next_status = LoadStatus.DRYING
            if next_status is None:
                raise InvalidStateError(
                    f"Load {load.load_number} cannot start a cycle from {load.status.value}"
                )
        required = MachineType.WASHER if next_status == LoadStatus.WASHING else MachineType.DRYER
        if machine.type != required:
            raise InvalidStateError(
                f"{next_status.value} needs a {required.value.lower()}, "
                f"but {machine.name!r} is a {machine.type.value.lower()}"
            )
        return next_status

    def _hold_machine(self, machine: Machine) -> None:
        # The load already references this machine; re-take it if a correction freed it.
        if machine.status != MachineStatus.IN_USE:
            self.machines.acquire(machine.id)

    def _run_timer(self, load: LoadAssignment, status: LoadStatus, minutes: int) -> None:
        now = self.now()
        load.status = status
        load.start_time = now
        load.duration_minutes = minutes
        load.end_time = now + timedelta(minutes=minutes)

    @staticmethod
    def _refresh_progress(job: LaundryJob) -> None:
        """Point ``current_step`` at the stage of the least advanced load."""

        if not job.status_flow:
            return
        if job.all_loads_completed:
            job.current_step = len(job.status_flow) - 1
            return
        job.current_step = min(
            _flow_index(job.status_flow, load.status) for load in job.load_assignments
        )

    def _announce_completion(self, job: LaundryJob) -> None:
        self._post_staff_notice(
            job,
            kind="load_completed",
            title="Load Completed",
            message=(
                f"All {len(job.load_assignments)} load(s) for {job.customer_name} are "
                f"completed. Transaction: {job.transaction_id}"
            ),
        )
        payload = {
            "customer_name": job.customer_name,
            "transaction_id": job.transaction_id,
            "service_type": job.service_type,
            "store_name": self.format_settings.store_name,
            "address": self.format_settings.address,
        }
        try:
            self.notifier.notify(job.contact, NotificationKind.LOAD_COMPLETED, payload)
        except Exception as exc:
            logger.warning(f"Completion notice for job {job.transaction_id} not delivered: {exc}")

    # ------------------------------------------------------------------
    # Staff notices
    # ------------------------------------------------------------------
    def _post_staff_notice(
        self, job: LaundryJob, *, kind: str, title: str, message: str
    ) -> StaffNotice:
        notice = StaffNotice(
            id=str(uuid4()),
            kind=kind,
            title=title,
            message=message,
            transaction_id=job.transaction_id,
            created_at=self.now(),
        )
        self.staff_notices.add(notice.id, notice)
        return notice

    def list_staff_notices(self, *, limit: int = 50) -> List[StaffNotice]:
        notices = sorted(
            self.staff_notices.list(), key=lambda notice: notice.created_at, reverse=True
        )
        return notices[:limit] if limit else notices

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------
    def claim_laundry(self, transaction_id: str, staff_name: str) -> ClaimReceipt:
        if not staff_name or not staff_name.strip():
            raise ValidationError("Staff name is required to record a claim")
        with self._job_lock(transaction_id):
            job = self.get_job(transaction_id)
            if job.is_claimed:
                raise JobAlreadyClaimedError(f"Job {transaction_id!r} has already been claimed")
            if job.disposed:
                raise InvalidStateError(f"Job {transaction_id!r} has been disposed")
            if job.expired:
                raise InvalidStateError(f"Cannot claim expired job {transaction_id!r}")
            pending = [
                str(load.load_number)
                for load in job.load_assignments
                if not load.is_completed
            ]
            if pending or not job.load_assignments:
                raise InvalidStateError(
                    f"Job {transaction_id!r} has unfinished loads: {', '.join(pending) or 'none'}"
                )
            job.claim_receipt_number = self._new_receipt_number()
            job.claim_date = self.now()
            job.claimed_by_staff_id = staff_name.strip()
            job.pickup_status = PickupStatus.CLAIMED
            self._save(job)
        logger.info(
            f"Job {transaction_id} claimed by {job.claimed_by_staff_id} "
            f"(receipt {job.claim_receipt_number})"
        )
        return self._build_receipt(job)

    def get_claim_receipt(self, transaction_id: str) -> ClaimReceipt:
        job = self.get_job(transaction_id)
        if not job.is_claimed:
            raise InvalidStateError(f"Job {transaction_id!r} has not been claimed yet")
        return self._build_receipt(job)

    def list_claimed_jobs(self) -> List[LaundryJob]:
        return self.jobs.filter(lambda job: job.is_claimed)

    def list_completed_unclaimed_jobs(self) -> List[LaundryJob]:
        """Jobs with every load done that are still on the shelf and not expired."""
        return self.jobs.filter(lambda job: _awaiting_pickup(job) and not job.expired)

    def _new_receipt_number(self) -> str:
        taken = {job.claim_receipt_number for job in self.list_claimed_jobs()}
        while True:
            number = RECEIPT_PREFIX + uuid4().hex[:8].upper()
            if number not in taken:
                return number

    def _build_receipt(self, job: LaundryJob) -> ClaimReceipt:
        if job.claim_date is None or job.claim_receipt_number is None:
            raise InvalidStateError(f"Job {job.transaction_id!r} has not been claimed")
        return ClaimReceipt(
            claim_receipt_number=job.claim_receipt_number,
            transaction_id=job.transaction_id,
            customer_name=job.customer_name,
            contact=job.contact,
            service_type=job.service_type,
            total_loads=len(job.load_assignments),
            completion_date=job.completion_time() or job.claim_date,
            claim_date=job.claim_date,
            claimed_by_staff=job.claimed_by_staff_id or "Staff",
            format_settings=replace(self.format_settings),
        )

    # ------------------------------------------------------------------
    # Disposal
    # ------------------------------------------------------------------
    def check_and_send_disposal_warnings_for_job(
        self, transaction_id: str, *, now: Optional[datetime] = None
    ) -> DisposalCheck:
        """Apply the warning/expiry rules to one job, exactly as the sweep does."""

        with self._job_lock(transaction_id):
            job = self.get_job(transaction_id)
            return self._evaluate_disposal(job, now or self.now())

    def run_disposal_sweep(self, *, now: Optional[datetime] = None) -> SweepReport:
        now = now or self.now()
        report = SweepReport(started_at=now)
        for job in self.jobs.filter(_awaiting_pickup):
            report.scanned += 1
            try:
                check = self.check_and_send_disposal_warnings_for_job(
                    job.transaction_id, now=now
                )
            except NotFoundError:
                continue
            except Exception:
                logger.exception(f"Disposal check failed for job {job.transaction_id}")
                report.failures.append(job.transaction_id)
                continue
            report.warnings_sent += int(check.warning_sent)
            report.expired_marked += int(check.expired_marked)
            if check.error:
                report.failures.append(job.transaction_id)
        logger.info(
            f"Disposal sweep scanned {report.scanned} job(s): "
            f"{report.warnings_sent} warned, {report.expired_marked} expired, "
            f"{len(report.failures)} failed"
        )
        return report

    def manually_trigger_disposal_warnings(self) -> SweepReport:
        logger.info("Disposal warnings triggered manually")
        return self.run_disposal_sweep()

    def list_pending_disposal_warnings(self) -> List[LaundryJob]:
        now = self.now()
        threshold = self.options.warning_after

        def pending(job: LaundryJob) -> bool:
            if not _awaiting_pickup(job) or job.expired or job.disposal_warning_sent_at:
                return False
            completed_at = job.completion_time() or job.updated_at
            return completed_at is not None and now - completed_at >= threshold

        return self.jobs.filter(pending)

    def list_expired_jobs(self) -> List[LaundryJob]:
        return self.jobs.filter(lambda job: job.expired and not job.disposed)

    def list_disposed_jobs(self) -> List[LaundryJob]:
        return self.jobs.filter(lambda job: job.disposed)

    def dispose_expired_job(self, transaction_id: str, staff_name: str) -> LaundryJob:
        with self._job_lock(transaction_id):
            job = self.get_job(transaction_id)
            if job.disposed:
                raise InvalidStateError(f"Job {transaction_id!r} is already disposed")
            if not job.expired:
                raise InvalidStateError(f"Cannot dispose non-expired job {transaction_id!r}")
            job.disposed = True
            job.disposed_by = staff_name
            job.disposed_at = self.now()
            self._save(job)
        logger.info(f"Job {transaction_id} disposed by {staff_name}")
        return job

    def _evaluate_disposal(self, job: LaundryJob, now: datetime) -> DisposalCheck:
        check = DisposalCheck(transaction_id=job.transaction_id)
        if not _awaiting_pickup(job):
            return check
        completed_at = job.completion_time() or job.updated_at
        if completed_at is None:
            return check
        check.eligible = True
        elapsed = now - completed_at
        changed = False

        if (
            elapsed >= self.options.warning_after
            and job.disposal_warning_sent_at is None
            and not job.expired
        ):
            remaining = self.options.expire_after - elapsed
            payload = {
                "customer_name": job.customer_name,
                "transaction_id": job.transaction_id,
                "days_until_disposal": max(remaining.days, 0),
                "store_name": self.format_settings.store_name,
                "address": self.format_settings.address,
            }
            try:
                self.notifier.notify(job.contact, NotificationKind.DISPOSAL_WARNING, payload)
            except Exception as exc:
                check.error = str(exc)
                logger.warning(f"Disposal warning for job {job.transaction_id} failed: {exc}")
            else:
                job.disposal_warning_sent_at = now
                check.warning_sent = True
                changed = True
                logger.info(f"Disposal warning sent for job {job.transaction_id}")

        if elapsed >= self.options.expire_after and not job.expired:
            job.expired = True
            job.expired_at = now
            check.expired_marked = True
            changed = True
            logger.info(f"Job {job.transaction_id} expired after {elapsed} unclaimed")

        if changed:
            self._save(job)
        return check


def _awaiting_pickup(job: LaundryJob) -> bool:
    return not job.is_claimed and not job.disposed and job.all_loads_completed


def _next_stage(flow: Sequence[str], status: LoadStatus) -> Optional[LoadStatus]:
    if status.value not in flow:
        return None
    position = flow.index(status.value) + 1
    if position >= len(flow):
        return None
    return _parse_status(flow[position])


def _has_elapsed_cycle(job: LaundryJob, now: datetime) -> bool:
    return any(
        load.status.is_running and load.end_time is not None and load.end_time <= now
        for load in job.load_assignments
    )


def _flow_index(flow: Sequence[str], status: LoadStatus) -> int:
    if status.value in flow:
        return flow.index(status.value)
    if status not in (LoadStatus.QUEUED, LoadStatus.COMPLETED):
        if LoadStatus.IN_PROGRESS.value in flow:
            return flow.index(LoadStatus.IN_PROGRESS.value)
    return 0


def _parse_status(value: Any) -> LoadStatus:
    if isinstance(value, LoadStatus):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"Unknown load status: {value!r}")
    try:
        return LoadStatus.parse(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown load status: {value!r}") from exc


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    """Express an offset-aware timestamp in the service clock's local, naive form."""

    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


_LOAD_TIMESTAMPS = ("start_time", "end_time", "completed_at")


def _coerce_load(value: Any) -> LoadAssignment:
    if isinstance(value, LoadAssignment):
        return replace(
            value, **{name: _naive(getattr(value, name)) for name in _LOAD_TIMESTAMPS}
        )
    if not isinstance(value, Mapping):
        raise ValidationError("Load assignments must be objects")
    try:
        data = dict(value)
        data["status"] = _parse_status(data.get("status", LoadStatus.QUEUED))
        for name in _LOAD_TIMESTAMPS:
            stamp = data.get(name)
            if stamp is not None and not isinstance(stamp, datetime):
                raise ValidationError(f"{name} must be a datetime")
            data[name] = _naive(stamp)
        return LoadAssignment(**data)
    except TypeError as exc:
        raise ValidationError(f"Invalid load assignment: {exc}") from exc


def _coerce_job_field(name: str, value: Any) -> Any:
    if name in ("detergent_qty", "fabric_qty", "current_step"):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{name} must be an integer")
        return value
    if name == "contact":
        if not isinstance(value, str):
            raise ValidationError("contact must be a string")
        return value
    if name == "status_flow":
        if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
            raise ValidationError("status_flow must be a list of stage names")
        return list(value)
    if not isinstance(value, (list, tuple)):
        raise ValidationError("load_assignments must be a list")
    loads = [_coerce_load(item) for item in value]
    numbers = [load.load_number for load in loads]
    if len(numbers) != len(set(numbers)):
        raise ValidationError("Load numbers must be unique within a job")
    return loads


__all__ = [
    "LaundryService",
    "LifecycleOptions",
    "DisposalCheck",
    "SweepReport",
]
