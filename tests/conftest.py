"""Shared fixtures: a movable clock, a recording notifier and a fresh service."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping

import pytest

from laundry_system import LaundryService, LifecycleOptions, MachineType
from laundry_system.exceptions import NotificationError
from laundry_system.notifications import NotificationKind

START = datetime(2024, 5, 6, 8, 0)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class RecordingNotifier:
    """Keeps every delivered message; contacts in ``failing`` raise instead."""

    def __init__(self, failing: Iterable[str] = ()) -> None:
        self.sent: list[tuple[str, NotificationKind, dict[str, Any]]] = []
        self.failing = set(failing)

    def notify(
        self, contact: str, kind: NotificationKind, payload: Mapping[str, Any]
    ) -> None:
        if contact in self.failing:
            raise NotificationError(f"gateway rejected {contact}")
        self.sent.append((contact, kind, dict(payload)))

    def of_kind(self, kind: NotificationKind) -> list[tuple[str, NotificationKind, dict[str, Any]]]:
        return [entry for entry in self.sent if entry[1] == kind]


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def options() -> LifecycleOptions:
    return LifecycleOptions(warning_after_hours=1, expire_after_hours=24)


@pytest.fixture()
def service(clock, notifier, options) -> LaundryService:
    return LaundryService(notifier=notifier, options=options, clock=clock)


@pytest.fixture()
def washer(service):
    return service.machines.register_machine("Washer 1", MachineType.WASHER, capacity_kg=8)


@pytest.fixture()
def second_washer(service):
    return service.machines.register_machine("Washer 2", MachineType.WASHER, capacity_kg=8)


@pytest.fixture()
def dryer(service):
    return service.machines.register_machine("Dryer 1", MachineType.DRYER, capacity_kg=10)


@pytest.fixture()
def make_job(service):
    """Register a transaction and open its job in one call."""

    def _make(
        transaction_id: str = "INV-1",
        *,
        loads: int = 1,
        service_name: str = "Wash",
        customer_name: str = "Juan Dela Cruz",
        contact: str = "+639171234567",
        consumables=None,
    ):
        service.register_transaction(
            transaction_id,
            customer_name,
            contact,
            service_name,
            loads,
            consumables=consumables,
        )
        return service.create_job(transaction_id)

    return _make


@pytest.fixture()
def finish_job(service, washer):
    """Run every load of a job through the washer and complete it."""

    def _finish(transaction_id: str) -> None:
        job = service.get_job(transaction_id)
        for load in job.load_assignments:
            service.assign_machine(transaction_id, load.load_number, washer.id)
            service.start_load(transaction_id, load.load_number)
            service.complete_load(transaction_id, load.load_number)

    return _finish
