from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime

from selfheal.core.metadata import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BlacklistEntry:
    original_locator: str
    healed_locator: str
    reason: str = ""
    created_at: datetime = field(default_factory=utc_now)


class HealBlacklist:
    """Permanently rejected (original, healed) locator pairs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, str], BlacklistEntry] = {}

    def add(self, original_locator: str, healed_locator: str, reason: str = "") -> BlacklistEntry:
        key = (original_locator, healed_locator)
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                return existing
            entry = self._entries[key] = BlacklistEntry(original_locator, healed_locator, reason)
        logger.info("Blacklisted heal %s -> %s (%s)", original_locator, healed_locator, reason or "no reason")
        return entry

    def is_blacklisted(self, original_locator: str, healed_locator: str) -> bool:
        with self._lock:
            return (original_locator, healed_locator) in self._entries

    def entries(self) -> list[BlacklistEntry]:
        with self._lock:
            return list(self._entries.values())

    def load(self, entries) -> None:
        with self._lock:
            for entry in entries:
                self._entries.setdefault((entry.original_locator, entry.healed_locator), entry)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
