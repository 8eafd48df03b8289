from __future__ import annotations

from laundry_system import LoadStatus, PickupStatus
from laundry_system.sample_usage import main


def test_demo_walks_an_order_to_pickup(capsys):
    laundry = main()

    job = laundry.get_job("INV-1001")
    assert job.pickup_status == PickupStatus.CLAIMED
    assert job.find_load(1).status == LoadStatus.COMPLETED
    assert job.disposal_warning_sent_at is not None
    assert job.expired is False
    assert "Claim receipt:" in capsys.readouterr().out
