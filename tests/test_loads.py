from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from laundry_system import LoadStatus, MachineStatus, PickupStatus
from laundry_system.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from laundry_system.notifications import NotificationKind


def _machine_status(service, machine_id):
    return service.machines.get(machine_id).status


def test_assign_and_start_runs_the_wash_cycle(service, clock, make_job, washer):
    make_job(loads=2)

    service.assign_machine("INV-1", 1, washer.id)
    job = service.start_load("INV-1", 1, 30)

    load = job.find_load(1)
    assert load.status == LoadStatus.WASHING
    assert load.machine_id == washer.id
    assert load.start_time == clock()
    assert load.end_time == clock() + timedelta(minutes=30)
    assert load.duration_minutes == 30
    assert _machine_status(service, washer.id) == MachineStatus.IN_USE


def test_busy_machine_cannot_be_double_booked(service, make_job, washer):
    make_job(loads=2)
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1, 30)

    with pytest.raises(ConflictError):
        service.assign_machine("INV-1", 2, washer.id)

    load = service.get_job("INV-1").find_load(2)
    assert load.machine_id is None
    assert load.status == LoadStatus.QUEUED


def test_start_uses_configured_default_duration(service, options, make_job, washer):
    make_job()
    service.assign_machine("INV-1", 1, washer.id)

    load = service.start_load("INV-1", 1).find_load(1)

    assert load.duration_minutes == options.washing_minutes


def test_start_requires_a_machine(service, make_job):
    make_job()

    with pytest.raises(InvalidStateError):
        service.start_load("INV-1", 1)


def test_start_rejects_non_positive_duration(service, make_job, washer):
    make_job()
    service.assign_machine("INV-1", 1, washer.id)

    with pytest.raises(ValidationError):
        service.start_load("INV-1", 1, 0)


def test_start_rejects_machine_of_the_wrong_kind(service, make_job, dryer):
    make_job(service_name="Wash")
    service.assign_machine("INV-1", 1, dryer.id)

    with pytest.raises(InvalidStateError):
        service.start_load("INV-1", 1)


def test_dry_service_starts_in_drying(service, make_job, dryer):
    make_job(service_name="Dry")
    service.assign_machine("INV-1", 1, dryer.id)

    load = service.start_load("INV-1", 1).find_load(1)

    assert load.status == LoadStatus.DRYING


def test_unknown_load_number_is_not_found(service, make_job, washer):
    make_job()

    with pytest.raises(NotFoundError):
        service.assign_machine("INV-1", 9, washer.id)


def test_complete_releases_machine_and_stamps_time(service, clock, make_job, washer):
    make_job(loads=2)
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1, 30)
    clock.advance(minutes=31)

    job = service.complete_load("INV-1", 1)

    load = job.find_load(1)
    assert load.status == LoadStatus.COMPLETED
    assert load.completed_at == clock()
    assert load.end_time >= load.start_time
    assert _machine_status(service, washer.id) == MachineStatus.AVAILABLE


def test_complete_twice_is_a_no_op(service, make_job, washer):
    make_job("INV-1")
    make_job("INV-2")
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1)
    first = service.complete_load("INV-1", 1).find_load(1).completed_at

    # The washer now belongs to another job; a repeated completion must not free it.
    service.assign_machine("INV-2", 1, washer.id)
    job = service.complete_load("INV-1", 1)

    assert job.find_load(1).completed_at == first
    assert _machine_status(service, washer.id) == MachineStatus.IN_USE


def test_completion_notifies_customer_once(service, notifier, make_job, washer):
    make_job()
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1)

    service.complete_load("INV-1", 1)
    service.complete_load("INV-1", 1)

    sent = notifier.of_kind(NotificationKind.LOAD_COMPLETED)
    assert len(sent) == 1
    contact, _, payload = sent[0]
    assert contact == "+639171234567"
    assert payload["transaction_id"] == "INV-1"
    notices = service.list_staff_notices()
    assert [notice.kind for notice in notices] == ["load_completed"]


def test_completion_fires_only_after_last_load(service, notifier, make_job, washer):
    make_job(loads=2)
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1)
    service.complete_load("INV-1", 1)

    assert notifier.sent == []

    service.assign_machine("INV-1", 2, washer.id)
    service.start_load("INV-1", 2)
    job = service.complete_load("INV-1", 2)

    assert len(notifier.sent) == 1
    assert job.pickup_status == PickupStatus.UNCLAIMED
    assert job.current_step == len(job.status_flow) - 1


def test_completion_notice_failure_is_not_raised(service, notifier, make_job, washer):
    notifier.failing.add("+639171234567")
    make_job()
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1)

    job = service.complete_load("INV-1", 1)

    assert job.all_loads_completed
    assert [notice.kind for notice in service.list_staff_notices()] == ["load_completed"]


def test_advance_load_rejects_unknown_status(service, make_job):
    make_job()

    with pytest.raises(ValidationError):
        service.advance_load("INV-1", 1, "SPINNING")


def test_advance_load_to_completed_goes_through_completion(
    service, notifier, make_job, washer
):
    make_job()
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1)

    job = service.advance_load("INV-1", 1, "complete")

    assert job.find_load(1).status == LoadStatus.COMPLETED
    assert _machine_status(service, washer.id) == MachineStatus.AVAILABLE
    assert len(notifier.sent) == 1


def test_advance_load_keeps_machine_for_other_statuses(service, make_job, washer):
    make_job(service_name="Wash & Dry")
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1)

    job = service.advance_load("INV-1", 1, LoadStatus.FOLDING)

    assert job.find_load(1).status == LoadStatus.FOLDING
    assert job.find_load(1).machine_id == washer.id
    assert _machine_status(service, washer.id) == MachineStatus.IN_USE
    assert job.current_step == job.status_flow.index("FOLDING")


def test_reopening_completed_load_clears_machine(service, make_job, washer):
    make_job()
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1)
    service.complete_load("INV-1", 1)

    job = service.advance_load("INV-1", 1, "QUEUED")

    load = job.find_load(1)
    assert load.status == LoadStatus.QUEUED
    assert load.machine_id is None
    assert load.completed_at is None
    assert job.completion_notified is False


def test_wash_and_dry_moves_to_a_dryer(service, clock, make_job, washer, dryer):
    make_job(service_name="Wash & Dry")
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1, 30)
    clock.advance(minutes=30)
    assert service.advance_elapsed_cycles() == 1
    assert service.get_job("INV-1").find_load(1).status == LoadStatus.WASHED

    service.assign_machine("INV-1", 1, dryer.id)
    job = service.start_load("INV-1", 1, 45)

    assert job.find_load(1).status == LoadStatus.DRYING
    assert _machine_status(service, washer.id) == MachineStatus.AVAILABLE
    assert _machine_status(service, dryer.id) == MachineStatus.IN_USE


def test_cannot_reassign_while_cycle_runs(service, make_job, washer, second_washer):
    make_job()
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1)

    with pytest.raises(InvalidStateError):
        service.assign_machine("INV-1", 1, second_washer.id)

    assert _machine_status(service, second_washer.id) == MachineStatus.AVAILABLE


def test_assigning_the_same_machine_again_is_a_no_op(service, make_job, washer):
    make_job()
    service.assign_machine("INV-1", 1, washer.id)

    job = service.assign_machine("INV-1", 1, washer.id)

    assert job.find_load(1).machine_id == washer.id


def test_assign_rejected_for_completed_load(service, make_job, washer, second_washer):
    make_job()
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1)
    service.complete_load("INV-1", 1)

    with pytest.raises(InvalidStateError):
        service.assign_machine("INV-1", 1, second_washer.id)


def test_elapsed_cycles_post_staff_notices(service, clock, make_job, washer):
    make_job()
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1, 30)

    clock.advance(minutes=29)
    assert service.advance_elapsed_cycles() == 0

    clock.advance(minutes=1)
    assert service.advance_elapsed_cycles() == 1
    assert service.advance_elapsed_cycles() == 0
    assert [notice.kind for notice in service.list_staff_notices()] == ["load_washed"]
    # The load rests on the machine until it is completed or moved.
    assert _machine_status(service, washer.id) == MachineStatus.IN_USE


def test_dry_again_restarts_the_timer(service, clock, make_job, dryer):
    make_job(service_name="Dry")
    service.assign_machine("INV-1", 1, dryer.id)
    service.start_load("INV-1", 1, 40)
    clock.advance(minutes=40)
    service.advance_elapsed_cycles()

    job = service.dry_again("INV-1", 1)

    load = job.find_load(1)
    assert load.status == LoadStatus.DRYING
    assert load.machine_id == dryer.id
    assert load.start_time == clock()
    assert load.end_time == clock() + timedelta(minutes=40)


def test_dry_again_only_for_drying_loads(service, make_job, washer):
    make_job()
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1)

    with pytest.raises(InvalidStateError):
        service.dry_again("INV-1", 1)


def test_update_duration_recomputes_end_time(service, make_job, washer):
    make_job()
    service.assign_machine("INV-1", 1, washer.id)
    load = service.start_load("INV-1", 1, 30).find_load(1)
    started = load.start_time

    load = service.update_load_duration("INV-1", 1, 50).find_load(1)

    assert load.duration_minutes == 50
    assert load.end_time == started + timedelta(minutes=50)
    with pytest.raises(ValidationError):
        service.update_load_duration("INV-1", 1, 0)


def test_progress_tracks_least_advanced_load(service, make_job, washer):
    job = make_job(loads=2, service_name="Wash")
    assert job.current_step == 0

    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1)
    service.complete_load("INV-1", 1)

    job = service.get_job("INV-1")
    assert job.current_step == 0
    assert job.status_flow[job.current_step] == "QUEUED"


def test_parallel_assignments_never_share_a_machine(service, make_job, washer):
    make_job("INV-1")
    make_job("INV-2")
    barrier = threading.Barrier(2)
    outcomes: dict[str, str] = {}

    def assign(transaction_id: str) -> None:
        barrier.wait()
        try:
            service.assign_machine(transaction_id, 1, washer.id)
        except ConflictError:
            outcomes[transaction_id] = "conflict"
        else:
            outcomes[transaction_id] = "assigned"

    threads = [threading.Thread(target=assign, args=(tid,)) for tid in ("INV-1", "INV-2")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes.values()) == ["assigned", "conflict"]
    holders = [
        job.transaction_id
        for job in service.jobs.list()
        if job.find_load(1).machine_id == washer.id
    ]
    assert len(holders) == 1


def test_finished_wash_moves_to_a_dryer_before_any_sweep(
    service, clock, make_job, washer, dryer
):
    make_job(service_name="Wash & Dry")
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1, 30)
    clock.advance(minutes=31)

    service.assign_machine("INV-1", 1, dryer.id)
    job = service.start_load("INV-1", 1, 45)

    load = job.find_load(1)
    assert load.status == LoadStatus.DRYING
    assert load.start_time == clock()
    assert _machine_status(service, washer.id) == MachineStatus.AVAILABLE
    assert [notice.kind for notice in service.list_staff_notices()] == ["load_washed"]


def test_start_after_the_timer_ran_out_does_not_restart_the_wash(
    service, clock, make_job, washer
):
    make_job(service_name="Wash")
    service.assign_machine("INV-1", 1, washer.id)
    service.start_load("INV-1", 1, 30)
    clock.advance(minutes=45)

    with pytest.raises(InvalidStateError):
        service.start_load("INV-1", 1, 30)

    load = service.get_job("INV-1").find_load(1)
    assert load.status == LoadStatus.WASHED
    assert load.end_time == clock() - timedelta(minutes=15)


def test_one_broken_job_does_not_stop_the_cycle_pass(
    service, clock, make_job, washer, second_washer
):
    make_job("INV-1")
    make_job("INV-2")
    for transaction_id, machine in (("INV-1", washer), ("INV-2", second_washer)):
        service.assign_machine(transaction_id, 1, machine.id)
        service.start_load(transaction_id, 1, 30)
    service.get_job("INV-1").find_load(1).end_time = "half past"
    clock.advance(minutes=30)

    assert service.advance_elapsed_cycles() == 1

    assert service.get_job("INV-2").find_load(1).status == LoadStatus.WASHED
    assert service.get_job("INV-1").find_load(1).status == LoadStatus.WASHING


def test_force_advance_walks_the_dry_flow(service, clock, notifier, make_job, dryer):
    make_job(service_name="Dry")
    service.assign_machine("INV-1", 1, dryer.id)
    service.start_load("INV-1", 1, 40)
    clock.advance(minutes=10)

    load = service.force_advance_load("INV-1", 1).find_load(1)
    assert load.status == LoadStatus.DRIED
    assert load.end_time == clock()

    load = service.force_advance_load("INV-1", 1).find_load(1)
    assert load.status == LoadStatus.FOLDING
    assert load.machine_id == dryer.id

    job = service.force_advance_load("INV-1", 1)
    assert job.find_load(1).status == LoadStatus.COMPLETED
    assert job.find_load(1).completed_at == clock()
    assert _machine_status(service, dryer.id) == MachineStatus.AVAILABLE
    assert len(notifier.of_kind(NotificationKind.LOAD_COMPLETED)) == 1

    with pytest.raises(InvalidStateError):
        service.force_advance_load("INV-1", 1)


def test_force_advance_does_not_start_a_machine(service, make_job, washer):
    make_job(service_name="Wash")
    service.assign_machine("INV-1", 1, washer.id)

    with pytest.raises(InvalidStateError):
        service.force_advance_load("INV-1", 1)

    assert service.get_job("INV-1").find_load(1).status == LoadStatus.QUEUED
