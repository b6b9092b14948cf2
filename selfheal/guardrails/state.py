from __future__ import annotations

import threading
from time import monotonic
from typing import Any, Callable

from selfheal.config.schema import HealerConfig
from selfheal.core.exceptions import HealingDisabled
from selfheal.guardrails.blacklist import HealBlacklist
from selfheal.guardrails.circuit import CircuitBreaker, Permit
from selfheal.guardrails.stability import StabilityTracker
from selfheal.guardrails.trust import TrustLadder


class GuardrailState:
    """Shared guardrail state for every engine in a run.

    Build one per process (or per session pool) and pass it to each
    :class:`~selfheal.core.healer.HealingEngine`. Heal outcomes update the
    circuit breaker and the trust ladder together under one lock so a
    failure and its demotion are never observed separately.
    """

    def __init__(self, config: HealerConfig | None = None, clock: Callable[[], float] = monotonic) -> None:
        self.config = config or HealerConfig()
        self.circuit = CircuitBreaker(self.config.circuit_breaker, clock)
        self.trust = TrustLadder(self.config.trust, clock)
        self.stability = StabilityTracker()
        self.blacklist = HealBlacklist()
        self._lock = threading.RLock()

    def acquire_heal(self) -> bool:
        """Returns True when this heal is the half-open trial; pass that flag back with its outcome."""

        with self._lock:
            permit = self.circuit.try_acquire()
            if permit is None:
                raise HealingDisabled(f"Healing disabled: circuit is {self.circuit.state.value}")
            return permit is Permit.TRIAL

    def record_success(self, trial: bool = False) -> None:
        with self._lock:
            self.circuit.record_success(trial)
            self.trust.record_success()

    def record_failure(self, trial: bool = False) -> None:
        with self._lock:
            self.circuit.record_failure(trial)
            self.trust.record_failure()

    def record_neutral(self, trial: bool = False) -> None:
        with self._lock:
            self.circuit.record_neutral(trial)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "circuit": self.circuit.stats(),
                "trust": self.trust.stats(),
                "blacklisted_pairs": len(self.blacklist),
            }
