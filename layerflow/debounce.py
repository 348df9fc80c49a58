"""
Debounced recomputation for bursts of editor changes.

Only the latest scheduled run may deliver a result; anything it supersedes is
dropped, even if it has already started computing.
"""

import logging
import threading
from typing import Any, Callable, Optional

from layerflow import config

logger = logging.getLogger(__name__)


class Debouncer:
    def __init__(self, delay: Optional[float] = None):
        self.delay = config.DEBOUNCE_SECONDS if delay is None else delay
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self, compute: Callable[[], Any], deliver: Callable[[Any], None]) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            timer = threading.Timer(self.delay, self._run, args=(self._generation, compute, deliver))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def _run(self, generation: int, compute: Callable[[], Any], deliver: Callable[[Any], None]) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        try:
            result = compute()
        except Exception:
            logger.exception("Debounced recomputation failed")
            return
        if not self._is_current(generation):
            logger.debug("Dropping superseded result (generation %d)", generation)
            return
        deliver(result)
