from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from selfheal.core.metadata import utc_now

INITIAL_SCORE = 100.0
SUCCESS_BONUS = 2.0
FAILURE_PENALTY = 15.0
HEAL_PENALTY = 10.0


class StabilityLevel(str, Enum):
    VERY_STABLE = "VERY_STABLE"
    STABLE = "STABLE"
    MODERATE = "MODERATE"
    UNSTABLE = "UNSTABLE"
    VERY_UNSTABLE = "VERY_UNSTABLE"

    @classmethod
    def for_score(cls, score: float) -> StabilityLevel:
        if score >= 90:
            return cls.VERY_STABLE
        if score >= 75:
            return cls.STABLE
        if score >= 50:
            return cls.MODERATE
        if score >= 25:
            return cls.UNSTABLE
        return cls.VERY_UNSTABLE


@dataclass(slots=True)
class LocatorStabilityEntry:
    """Reliability history of one locator.

    The score is derived from the counters on every read so it can never be
    stale. Heals lower it even when they succeed because a locator that needs
    healing is fragile.
    """

    locator: str
    successes: int = 0
    failures: int = 0
    heals: int = 0
    last_updated: datetime = field(default_factory=utc_now)

    @property
    def score(self) -> float:
        raw = INITIAL_SCORE + SUCCESS_BONUS * self.successes - FAILURE_PENALTY * self.failures - HEAL_PENALTY * self.heals
        raw = max(0.0, min(100.0, raw))
        attempts = self.successes + self.failures
        if attempts:
            raw *= 0.5 + 0.5 * (self.successes / attempts)
        return round(raw, 2)

    @property
    def level(self) -> StabilityLevel:
        return StabilityLevel.for_score(self.score)


class StabilityTracker:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[str, LocatorStabilityEntry] = {}

    def record_success(self, locator: str) -> LocatorStabilityEntry:
        return self._update(locator, successes=1)

    def record_failure(self, locator: str) -> LocatorStabilityEntry:
        return self._update(locator, failures=1)

    def record_heal(self, locator: str) -> LocatorStabilityEntry:
        return self._update(locator, heals=1)

    def get(self, locator: str) -> LocatorStabilityEntry | None:
        with self._lock:
            return self._entries.get(locator)

    def entries(self) -> list[LocatorStabilityEntry]:
        with self._lock:
            return list(self._entries.values())

    def summary(self) -> dict[StabilityLevel, int]:
        counts = {level: 0 for level in StabilityLevel}
        for entry in self.entries():
            counts[entry.level] += 1
        return counts

    def most_unstable(self, limit: int = 10) -> list[LocatorStabilityEntry]:
        return sorted(self.entries(), key=lambda entry: entry.score)[:limit]

    def load(self, entry: LocatorStabilityEntry) -> None:
        with self._lock:
            self._entries[entry.locator] = entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _update(self, locator: str, successes: int = 0, failures: int = 0, heals: int = 0) -> LocatorStabilityEntry:
        with self._lock:
            entry = self._entries.get(locator)
            if entry is None:
                entry = self._entries[locator] = LocatorStabilityEntry(locator)
            entry.successes += successes
            entry.failures += failures
            entry.heals += heals
            entry.last_updated = utc_now()
            return entry
