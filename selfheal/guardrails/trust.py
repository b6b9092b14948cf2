from __future__ import annotations

import logging
import threading
from collections import deque
from enum import Enum
from time import monotonic
from typing import Any, Callable

from selfheal.config.schema import TrustConfig
from selfheal.core.metadata import TrustLevel

logger = logging.getLogger(__name__)


class Route(str, Enum):
    SHADOW = "SHADOW"
    APPROVAL = "APPROVAL"
    AUTO = "AUTO"


class TrustLadder:
    """Progressive auto-apply authority earned by successful heals.

    ``successes_to_promote`` consecutive successes with no failure inside the
    trailing window raise the level by one and restart the count. Any failure
    drops the level by one and zeroes the count. Levels stay within the
    configured bounds.
    """

    def __init__(self, config: TrustConfig | None = None, clock: Callable[[], float] = monotonic) -> None:
        self.config = config or TrustConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._level = self.config.initial_level
        self._consecutive_successes = 0
        self._failures: deque[float] = deque()
        self._total_successes = 0
        self._total_failures = 0

    @property
    def level(self) -> TrustLevel:
        with self._lock:
            return self._level

    @property
    def consecutive_successes(self) -> int:
        with self._lock:
            return self._consecutive_successes

    def route(self, confidence: float) -> Route:
        with self._lock:
            level = self._level
        if level is TrustLevel.L0_SHADOW:
            return Route.SHADOW
        if level is TrustLevel.L3_AUTO_ALL:
            return Route.AUTO
        if level is TrustLevel.L2_AUTO_SAFE and confidence >= self.config.auto_apply_threshold:
            return Route.AUTO
        return Route.APPROVAL

    def record_success(self) -> TrustLevel:
        with self._lock:
            self._total_successes += 1
            self._consecutive_successes += 1
            self._prune(self._clock())
            if self._consecutive_successes >= self.config.successes_to_promote and not self._failures:
                self._consecutive_successes = 0
                if self._level < self.config.max_level:
                    previous, self._level = self._level, self._level.promoted()
                    logger.info("Trust promoted %s -> %s", previous.name, self._level.name)
            return self._level

    def record_failure(self) -> TrustLevel:
        with self._lock:
            self._total_failures += 1
            now = self._clock()
            self._failures.append(now)
            self._prune(now)
            self._consecutive_successes = 0
            if self._level > self.config.min_level:
                previous, self._level = self._level, self._level.demoted()
                logger.warning("Trust demoted %s -> %s", previous.name, self._level.name)
            return self._level

    def failures_in_window(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._failures)

    def success_rate(self) -> float:
        with self._lock:
            total = self._total_successes + self._total_failures
            return self._total_successes / total if total else 0.0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            self._prune(self._clock())
            return {
                "level": self._level.name,
                "consecutive_successes": self._consecutive_successes,
                "failures_in_window": len(self._failures),
                "total_successes": self._total_successes,
                "total_failures": self._total_failures,
                "success_rate": self.success_rate(),
            }

    def _prune(self, now: float) -> None:
        horizon = now - self.config.failure_window_seconds
        while self._failures and self._failures[0] <= horizon:
            self._failures.popleft()
