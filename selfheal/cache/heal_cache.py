"""Single-flight cache of heal resolutions keyed by locator fingerprint.

Concurrent callers that fail on the same locator in the same context wait for
the first caller's computation instead of repeating candidate generation,
reasoning-service calls or approval prompts. Only APPROVE_AND_REMEMBER
resolutions outlive the computation; they stay until invalidated or cleared.
"""
from __future__ import annotations

import hashlib
import logging
import re
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable
from urllib.parse import urlsplit, urlunsplit

from selfheal.approval.decision import ApprovalDecision
from selfheal.core.metadata import ElementSnapshot, HealContext, HealProposal

logger = logging.getLogger(__name__)

_UUID_SEGMENT = re.compile(r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}(?=/|$)", re.IGNORECASE)
_NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")


def page_pattern(url: str) -> str:
    if not url:
        return ""
    parts = urlsplit(url)
    path = _UUID_SEGMENT.sub("/{uuid}", parts.path)
    path = _NUMERIC_SEGMENT.sub("/{id}", path)
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def fingerprint(context: HealContext, locator: str) -> str:
    content = "|".join(
        (context.feature, context.scenario, context.step, page_pattern(context.page_url), locator.strip())
    )
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class HealResolution:
    """What a heal computation decided, plus what is needed to replay it."""

    decision: ApprovalDecision
    proposal: HealProposal | None = None
    snapshot: ElementSnapshot | None = None
    from_cache: bool = False


class _Flight:
    __slots__ = ("done", "result", "error")

    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: HealResolution | None = None
        self.error: BaseException | None = None


class HealCache:
    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._lock = threading.Lock()
        self._remembered: dict[str, HealResolution] = {}
        self._in_flight: dict[str, _Flight] = {}
        self._hits = 0
        self._misses = 0
        self._joins = 0

    def resolve(self, key: str, compute: Callable[[], HealResolution]) -> HealResolution:
        with self._lock:
            cached = self._remembered.get(key) if self.enabled else None
            if cached is not None:
                self._hits += 1
                return replace(cached, from_cache=True)
            flight = self._in_flight.get(key)
            owner = flight is None
            if owner:
                flight = self._in_flight[key] = _Flight()
                self._misses += 1
            else:
                self._joins += 1

        if not owner:
            logger.debug("Waiting for in-flight heal %s", key)
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.result

        try:
            result = compute()
        except BaseException as exc:
            flight.error = exc
            raise
        else:
            flight.result = result
            if self.enabled and result.decision.remember:
                with self._lock:
                    self._remembered[key] = result
            return result
        finally:
            with self._lock:
                self._in_flight.pop(key, None)
            flight.done.set()

    def get(self, key: str) -> HealResolution | None:
        with self._lock:
            return self._remembered.get(key)

    def remember(self, key: str, resolution: HealResolution) -> None:
        with self._lock:
            self._remembered[key] = replace(resolution, from_cache=False)

    def remembered(self) -> dict[str, HealResolution]:
        with self._lock:
            return dict(self._remembered)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            removed = self._remembered.pop(key, None) is not None
        if removed:
            logger.info("Invalidated remembered heal %s", key)
        return removed

    def clear(self) -> int:
        with self._lock:
            count = len(self._remembered)
            self._remembered.clear()
        logger.info("Cleared %d remembered heals", count)
        return count

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "joined": self._joins,
                "in_flight": len(self._in_flight),
                "size": len(self._remembered),
            }
