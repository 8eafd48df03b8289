"""Demonstration script walking one order through the laundry lifecycle."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pprint import pprint
from typing import Optional

from . import LaundryService, LifecycleOptions, MachineType


class _DemoClock:
    """Clock the script can move forward instead of waiting for real cycles."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


def main(start: Optional[datetime] = None) -> LaundryService:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    clock = _DemoClock(start or datetime(2024, 5, 6, 9, 0))
    laundry = LaundryService(
        options=LifecycleOptions(warning_after_hours=24, expire_after_hours=72),
        clock=clock,
    )
    laundry.update_format_settings(
        store_name="StarWash Laundry",
        address="53 A Bonifacio Street, Sta Lucia, Novaliches",
    )

    washer = laundry.machines.register_machine("Washer 1", MachineType.WASHER, capacity_kg=8)
    dryer = laundry.machines.register_machine("Dryer 1", MachineType.DRYER, capacity_kg=10)

    # Sales side hands over the paid order
    laundry.register_transaction(
        "INV-1001",
        "Juan Dela Cruz",
        "+639171234567",
        "Wash & Dry",
        1,
        consumables=[("Ariel Detergent", 1), ("Downy Fabric Conditioner", 1)],
    )
    laundry.create_job("INV-1001")

    # Wash cycle
    laundry.assign_machine("INV-1001", 1, washer.id)
    laundry.start_load("INV-1001", 1)
    clock.advance(minutes=36)
    laundry.advance_elapsed_cycles()

    # Move to a dryer
    laundry.assign_machine("INV-1001", 1, dryer.id)
    laundry.start_load("INV-1001", 1, 45)
    clock.advance(minutes=46)
    laundry.advance_elapsed_cycles()
    laundry.complete_load("INV-1001", 1)

    print("Job after completion:")
    pprint(laundry.get_job_view("INV-1001"))

    clock.advance(hours=30)
    print("Sweep report after 30 hours unclaimed:")
    pprint(laundry.run_disposal_sweep())

    receipt = laundry.claim_laundry("INV-1001", "Ana")
    print("Claim receipt:")
    pprint(receipt)
    return laundry


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
