"""Single-flight periodic loop driving a reconciler's tick."""

from __future__ import annotations

import logging
import threading
from typing import Callable

LOG = logging.getLogger("bind9_operator.loop")


class ReconcileLoop:
    """Runs ``tick`` every ``interval`` seconds in a dedicated thread.

    The next wait only starts once the previous tick returned, so ticks of
    one loop never overlap. :meth:`stop` lets an in-flight tick finish.
    """

    def __init__(self, name: str, tick: Callable[[], None], interval: float):
        self.name = name
        self.tick = tick
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> None:
        """Run a single tick, logging anything it raises."""
        try:
            self.tick()
        except Exception:  # noqa: BLE001
            LOG.exception("Reconciler %s tick failed", self.name)

    def run(self) -> None:
        """Tick until stopped."""
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval)

    def start(self) -> None:
        """Start the loop thread."""
        LOG.info("Starting %s reconciler (interval %ss)", self.name, self.interval)
        self._thread = threading.Thread(target=self.run, name=f"reconcile-{self.name}", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop scheduling ticks and wait for the current one to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
