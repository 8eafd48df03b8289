"""Recurring background sweep over completed-but-unclaimed jobs."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .services import LaundryService, SweepReport

logger = logging.getLogger(__name__)


class DisposalSweepScheduler:
    """Runs :meth:`tick` every ``interval_seconds`` on a daemon thread.

    ``stop`` sets the stop event and joins the thread, so a tick that is already
    running finishes before the process exits. Tests call ``tick`` directly.
    """

    def __init__(
        self,
        service: LaundryService,
        *,
        interval_seconds: Optional[float] = None,
        run_on_start: bool = False,
    ) -> None:
        if interval_seconds is None:
            interval_seconds = service.options.sweep_interval_minutes * 60
        if interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")
        self._service = service
        self._interval = interval_seconds
        self._run_on_start = run_on_start
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_report: Optional[SweepReport] = None
        self.ticks = 0

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> Optional[SweepReport]:
        """Advance finished cycles, then apply the disposal rules once.

        The two phases fail independently; the sweep still runs when advancing
        cycles raised.
        """

        self.ticks += 1
        try:
            advanced = self._service.advance_elapsed_cycles()
            if advanced:
                logger.info(f"Sweep advanced {advanced} finished cycle(s)")
        except Exception as e:
            logger.error(f"Error advancing finished cycles: {e}")

        try:
            self.last_report = self._service.run_disposal_sweep()
        except Exception as e:
            logger.error(f"Error in disposal sweep: {e}")
            return None
        return self.last_report

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._worker, daemon=True, name="disposal-sweep"
        )
        self._thread.start()
        logger.info(f"Disposal sweep started (every {self._interval:.0f}s)")

    def stop(self, timeout: Optional[float] = 30.0) -> None:
        self._stop.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Disposal sweep stopped")

    def _worker(self) -> None:
        if self._run_on_start:
            self.tick()
        while not self._stop.wait(self._interval):
            self.tick()


__all__ = ["DisposalSweepScheduler"]
