"""Machine registry: washer/dryer units and their availability."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional
from uuid import uuid4

from .domain import Machine, MachineStatus, MachineType
from .exceptions import ConflictError, NotFoundError, ValidationError
from .repository import InMemoryRepository, RecordNotFoundError

logger = logging.getLogger(__name__)


class MachineRegistry:
    """Authoritative owner of ``Machine.status``.

    ``acquire`` and ``release`` are the only paths that move a machine in and out
    of ``IN_USE``; both run under one lock so a check-then-set on the status can
    never interleave with another assignment attempt.
    """

    def __init__(
        self,
        repository: Optional[InMemoryRepository[Machine]] = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.machines = repository if repository is not None else InMemoryRepository()
        self._clock = clock
        self._lock = threading.RLock()

    def register_machine(
        self,
        name: str,
        machine_type: MachineType,
        *,
        capacity_kg: float,
        status: MachineStatus = MachineStatus.AVAILABLE,
    ) -> Machine:
        if capacity_kg <= 0:
            raise ValidationError("Machine capacity must be positive")
        if status == MachineStatus.IN_USE:
            raise ValidationError("New machines cannot start in use")
        machine = Machine(
            id=str(uuid4()),
            name=name,
            type=MachineType(machine_type),
            capacity_kg=float(capacity_kg),
            status=status,
            updated_at=self._clock(),
        )
        self.machines.add(machine.id, machine)
        logger.info(f"Registered {machine.type.value} {machine.name!r} ({machine.id})")
        return machine

    def get(self, machine_id: str) -> Machine:
        try:
            return self.machines.get(machine_id)
        except RecordNotFoundError as exc:
            raise NotFoundError(f"Machine {machine_id!r} not found") from exc

    def list(self, machine_type: Optional[MachineType] = None) -> List[Machine]:
        machines = self.machines.list()
        if machine_type is not None:
            machines = [machine for machine in machines if machine.type == machine_type]
        return sorted(machines, key=lambda machine: machine.name)

    def list_available(self, machine_type: Optional[MachineType] = None) -> List[Machine]:
        return [
            machine
            for machine in self.list(machine_type)
            if machine.status == MachineStatus.AVAILABLE
        ]

    def set_status(self, machine_id: str, status: MachineStatus) -> Machine:
        """Toggle a machine between ``AVAILABLE`` and ``MAINTENANCE``.

        Occupancy is owned by the load engine, so this path refuses to mark a
        machine in use and refuses to touch one that is currently occupied.
        """

        status = MachineStatus(status)
        if status == MachineStatus.IN_USE:
            raise ValidationError("Machines are marked in use only by load assignment")
        with self._lock:
            machine = self.get(machine_id)
            if machine.status == MachineStatus.IN_USE:
                raise ConflictError(f"Machine {machine.name!r} is hosting a load")
            if status == MachineStatus.MAINTENANCE:
                machine.last_maintenance = self._clock()
            machine.status = status
            machine.updated_at = self._clock()
            self.machines.upsert(machine.id, machine)
        logger.info(f"Machine {machine.name!r} set to {status.value}")
        return machine

    def acquire(self, machine_id: str) -> Machine:
        """Atomically flip an available machine to in use."""

        with self._lock:
            machine = self.get(machine_id)
            if machine.status != MachineStatus.AVAILABLE:
                raise ConflictError(
                    f"Machine {machine.name!r} is not available ({machine.status.value})"
                )
            machine.status = MachineStatus.IN_USE
            machine.updated_at = self._clock()
            self.machines.upsert(machine.id, machine)
            return machine

    def release(self, machine_id: str) -> bool:
        """Return an in-use machine to the pool; a no-op otherwise."""

        with self._lock:
            try:
                machine = self.get(machine_id)
            except NotFoundError:
                logger.warning(f"Cannot release unknown machine {machine_id!r}")
                return False
            if machine.status != MachineStatus.IN_USE:
                return False
            machine.status = MachineStatus.AVAILABLE
            machine.updated_at = self._clock()
            self.machines.upsert(machine.id, machine)
        logger.info(f"Released machine {machine.name!r}")
        return True


__all__ = ["MachineRegistry"]
