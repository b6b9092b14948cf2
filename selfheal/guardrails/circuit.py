from __future__ import annotations

import logging
import threading
from collections import deque
from enum import Enum
from time import monotonic
from typing import Any, Callable

from selfheal.config.schema import CircuitBreakerConfig

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class Permit(str, Enum):
    REGULAR = "REGULAR"
    TRIAL = "TRIAL"


class CircuitBreaker:
    """Disables healing after repeated failed heals and probes recovery after a cooldown.

    Failures are counted in a sliding window. Reaching ``failure_threshold``
    inside the window opens the circuit. Once ``cooldown_seconds`` have
    elapsed the next :meth:`try_acquire` moves the circuit to HALF_OPEN and
    hands out exactly one :attr:`Permit.TRIAL`. Only outcomes reported with
    ``trial=True`` close, re-open or release the half-open circuit; heals
    that started while it was closed cannot. Every check-and-transition
    happens under one lock.
    """

    def __init__(self, config: CircuitBreakerConfig | None = None, clock: Callable[[], float] = monotonic) -> None:
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at: float | None = None
        self._trial_in_flight = False
        self._total_failures = 0
        self._total_successes = 0
        self._rejections = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    def try_acquire(self) -> Permit | None:
        """Returns the permit for a heal attempt, or None while healing is disabled."""

        with self._lock:
            if not self.config.enabled:
                return Permit.REGULAR
            self._refresh()
            if self._state is CircuitState.CLOSED:
                return Permit.REGULAR
            if self._state is CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                logger.info("Circuit half-open: allowing one trial heal")
                return Permit.TRIAL
            self._rejections += 1
            return None

    def record_success(self, trial: bool = False) -> None:
        with self._lock:
            self._total_successes += 1
            if trial and self._holds_trial():
                self._close()

    def record_failure(self, trial: bool = False) -> None:
        with self._lock:
            self._total_failures += 1
            now = self._clock()
            if trial and self._holds_trial():
                self._open(now, "trial heal failed")
                return
            self._failures.append(now)
            self._prune(now)
            if self.config.enabled and self._state is CircuitState.CLOSED and len(self._failures) >= self.config.failure_threshold:
                self._open(now, f"{len(self._failures)} failed heals within {self.config.window_seconds:g}s")

    def record_neutral(self, trial: bool = False) -> None:
        """Releases a half-open trial whose outcome says nothing about heal quality."""

        with self._lock:
            if trial and self._holds_trial():
                self._trial_in_flight = False

    def force_open(self) -> None:
        with self._lock:
            self._open(self._clock(), "forced open")

    def reset(self) -> None:
        with self._lock:
            self._close()
            logger.info("Circuit reset")

    def failures_in_window(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._failures)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            self._refresh()
            return {
                "state": self._state.value,
                "failures_in_window": len(self._failures),
                "total_failures": self._total_failures,
                "total_successes": self._total_successes,
                "rejections": self._rejections,
            }

    def _refresh(self) -> None:
        now = self._clock()
        self._prune(now)
        if (
            self._state is CircuitState.OPEN
            and self._opened_at is not None
            and now - self._opened_at >= self.config.cooldown_seconds
        ):
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False

    def _holds_trial(self) -> bool:
        return self._state is CircuitState.HALF_OPEN and self._trial_in_flight

    def _prune(self, now: float) -> None:
        horizon = now - self.config.window_seconds
        while self._failures and self._failures[0] <= horizon:
            self._failures.popleft()

    def _open(self, now: float, reason: str) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._trial_in_flight = False
        logger.warning("Circuit opened: %s; healing disabled for %ss", reason, self.config.cooldown_seconds)

    def _close(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info("Circuit closed")
        self._state = CircuitState.CLOSED
        self._failures.clear()
        self._opened_at = None
        self._trial_in_flight = False
