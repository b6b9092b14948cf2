from __future__ import annotations

import pytest
from pydantic import ValidationError

from selfheal.config.schema import CircuitBreakerConfig, HealerConfig, TrustConfig
from selfheal.core.exceptions import HealingDisabled
from selfheal.core.metadata import TrustLevel
from selfheal.guardrails.blacklist import HealBlacklist
from selfheal.guardrails.circuit import CircuitBreaker, CircuitState, Permit
from selfheal.guardrails.stability import LocatorStabilityEntry, StabilityLevel, StabilityTracker
from selfheal.guardrails.state import GuardrailState
from selfheal.guardrails.trust import Route, TrustLadder
from tests.helpers import FakeClock


def breaker(clock: FakeClock, **overrides) -> CircuitBreaker:
    return CircuitBreaker(CircuitBreakerConfig(**overrides), clock)


def test_circuit_opens_after_threshold_failures_in_window():
    clock = FakeClock()
    circuit = breaker(clock, failure_threshold=3, window_seconds=300)
    circuit.record_failure()
    circuit.record_failure()
    assert circuit.state is CircuitState.CLOSED
    circuit.record_failure()
    assert circuit.state is CircuitState.OPEN
    assert circuit.try_acquire() is None
    assert circuit.stats()["rejections"] == 1


def test_circuit_forgets_failures_outside_window():
    clock = FakeClock()
    circuit = breaker(clock, failure_threshold=3, window_seconds=300)
    circuit.record_failure()
    circuit.record_failure()
    clock.advance(301)
    circuit.record_failure()
    assert circuit.state is CircuitState.CLOSED
    assert circuit.failures_in_window() == 1


def test_half_open_allows_exactly_one_trial():
    clock = FakeClock()
    circuit = breaker(clock, failure_threshold=1, cooldown_seconds=1800)
    circuit.record_failure()
    clock.advance(1799)
    assert circuit.try_acquire() is None
    clock.advance(1)
    assert circuit.state is CircuitState.HALF_OPEN
    assert circuit.try_acquire() is Permit.TRIAL
    assert circuit.try_acquire() is None
    circuit.record_success(trial=True)
    assert circuit.state is CircuitState.CLOSED
    assert circuit.failures_in_window() == 0
    assert circuit.try_acquire() is Permit.REGULAR


def test_failed_trial_reopens_and_restarts_cooldown():
    clock = FakeClock()
    circuit = breaker(clock, failure_threshold=1, cooldown_seconds=60)
    circuit.record_failure()
    clock.advance(60)
    assert circuit.try_acquire() is Permit.TRIAL
    circuit.record_failure(trial=True)
    assert circuit.state is CircuitState.OPEN
    clock.advance(59)
    assert circuit.state is CircuitState.OPEN
    clock.advance(1)
    assert circuit.state is CircuitState.HALF_OPEN


def test_neutral_outcome_releases_the_trial():
    clock = FakeClock()
    circuit = breaker(clock, failure_threshold=1, cooldown_seconds=10)
    circuit.record_failure()
    clock.advance(10)
    assert circuit.try_acquire() is Permit.TRIAL
    circuit.record_neutral(trial=True)
    assert circuit.state is CircuitState.HALF_OPEN
    assert circuit.try_acquire() is Permit.TRIAL


def test_outcomes_of_heals_started_while_closed_leave_the_trial_alone():
    clock = FakeClock()
    circuit = breaker(clock, failure_threshold=1, cooldown_seconds=10)
    assert circuit.try_acquire() is Permit.REGULAR
    circuit.record_failure()
    clock.advance(10)
    assert circuit.try_acquire() is Permit.TRIAL

    circuit.record_neutral()
    assert circuit.try_acquire() is None
    circuit.record_failure()
    assert circuit.state is CircuitState.HALF_OPEN
    circuit.record_success()
    assert circuit.state is CircuitState.HALF_OPEN
    assert circuit.try_acquire() is None

    circuit.record_success(trial=True)
    assert circuit.state is CircuitState.CLOSED


def test_guardrail_state_hands_out_one_trial_until_its_owner_reports():
    clock = FakeClock()
    state = GuardrailState(
        HealerConfig(circuit_breaker=CircuitBreakerConfig(failure_threshold=1, cooldown_seconds=10)),
        clock,
    )
    slow = state.acquire_heal()
    state.record_failure(slow)
    clock.advance(11)
    trial = state.acquire_heal()
    assert (slow, trial) == (False, True)

    state.record_neutral(slow)
    with pytest.raises(HealingDisabled):
        state.acquire_heal()

    state.record_neutral(trial)
    assert state.acquire_heal() is True


def test_disabled_circuit_never_blocks():
    circuit = breaker(FakeClock(), enabled=False, failure_threshold=1)
    circuit.record_failure()
    circuit.record_failure()
    assert circuit.try_acquire() is Permit.REGULAR


def test_force_open_and_reset():
    circuit = breaker(FakeClock())
    circuit.force_open()
    assert circuit.state is CircuitState.OPEN
    circuit.reset()
    assert circuit.state is CircuitState.CLOSED


def test_guardrail_state_rejects_heals_while_open():
    state = GuardrailState(HealerConfig(circuit_breaker=CircuitBreakerConfig(failure_threshold=1)), FakeClock())
    state.acquire_heal()
    state.record_failure()
    with pytest.raises(HealingDisabled):
        state.acquire_heal()


def test_guardrail_failure_updates_circuit_and_trust_together():
    state = GuardrailState(HealerConfig(), FakeClock())
    state.record_failure()
    assert state.circuit.failures_in_window() == 1
    assert state.trust.level is TrustLevel.L0_SHADOW
    assert state.stats()["trust"]["total_failures"] == 1


def ladder(clock: FakeClock, **overrides) -> TrustLadder:
    return TrustLadder(TrustConfig(**overrides), clock)


def test_consecutive_successes_promote_exactly_one_level():
    trust = ladder(FakeClock(), successes_to_promote=3)
    trust.record_success()
    trust.record_success()
    assert trust.level is TrustLevel.L1_SUGGEST
    trust.record_success()
    assert trust.level is TrustLevel.L2_AUTO_SAFE
    assert trust.consecutive_successes == 0


def test_promotion_stops_at_max_level():
    trust = ladder(FakeClock(), successes_to_promote=1, max_level="L2_AUTO_SAFE")
    for _ in range(5):
        trust.record_success()
    assert trust.level is TrustLevel.L2_AUTO_SAFE


def test_failure_demotes_one_level_and_resets_counter():
    trust = ladder(FakeClock(), successes_to_promote=2, initial_level="L2_AUTO_SAFE")
    trust.record_success()
    trust.record_failure()
    assert trust.level is TrustLevel.L1_SUGGEST
    assert trust.consecutive_successes == 0


def test_recent_failure_blocks_promotion_until_it_ages_out():
    clock = FakeClock()
    trust = ladder(clock, successes_to_promote=3, failure_window_seconds=3600)
    trust.record_failure()
    assert trust.level is TrustLevel.L0_SHADOW
    for _ in range(3):
        trust.record_success()
    assert trust.level is TrustLevel.L0_SHADOW
    clock.advance(3601)
    trust.record_success()
    assert trust.level is TrustLevel.L1_SUGGEST


def test_demotion_stops_at_min_level():
    trust = ladder(FakeClock(), initial_level="L1_SUGGEST", min_level="L1_SUGGEST")
    trust.record_failure()
    assert trust.level is TrustLevel.L1_SUGGEST


def test_route_by_level_and_confidence():
    assert ladder(FakeClock(), initial_level="L0_SHADOW").route(1.0) is Route.SHADOW
    assert ladder(FakeClock(), initial_level="L1_SUGGEST").route(1.0) is Route.APPROVAL
    safe = ladder(FakeClock(), initial_level="L2_AUTO_SAFE", auto_apply_threshold=0.8)
    assert safe.route(0.8) is Route.AUTO
    assert safe.route(0.79) is Route.APPROVAL
    assert ladder(FakeClock(), initial_level="L3_AUTO_ALL").route(0.1) is Route.AUTO


def test_trust_success_rate():
    trust = ladder(FakeClock())
    trust.record_success()
    trust.record_success()
    trust.record_failure()
    assert trust.success_rate() == pytest.approx(2 / 3)


def test_unknown_trust_level_is_rejected_at_load():
    with pytest.raises(ValidationError):
        TrustConfig(initial_level="L9_ROGUE")
    with pytest.raises(ValidationError):
        TrustConfig(initial_level="L0_SHADOW", min_level="L1_SUGGEST")


def test_trust_level_names_accept_short_forms():
    assert TrustLevel.parse("L2") is TrustLevel.L2_AUTO_SAFE
    assert TrustLevel.parse("suggest") is TrustLevel.L1_SUGGEST


def test_stability_score_rewards_success_and_penalises_heals():
    assert LocatorStabilityEntry("#a", successes=1).score == 100.0
    assert LocatorStabilityEntry("#a", successes=1, heals=1).score == 92.0
    assert LocatorStabilityEntry("#a", successes=1, heals=2).level is StabilityLevel.STABLE
    assert LocatorStabilityEntry("#a", failures=1).score == 42.5
    assert LocatorStabilityEntry("#a", failures=1).level is StabilityLevel.UNSTABLE
    assert LocatorStabilityEntry("#a", failures=6).level is StabilityLevel.VERY_UNSTABLE


def test_stability_tracker_summary_and_ranking():
    tracker = StabilityTracker()
    tracker.record_success("#ok")
    tracker.record_failure("#flaky")
    tracker.record_success("#flaky")
    tracker.record_failure("#broken")
    tracker.record_failure("#broken")
    summary = tracker.summary()
    assert summary[StabilityLevel.VERY_STABLE] == 1
    assert sum(summary.values()) == 3
    assert [entry.locator for entry in tracker.most_unstable(2)] == ["#broken", "#flaky"]


def test_stability_score_is_recomputed_on_update():
    tracker = StabilityTracker()
    before = tracker.record_success("#a").score
    after = tracker.record_heal("#a").score
    assert after < before


def test_blacklist_matches_exact_pairs_only():
    blacklist = HealBlacklist()
    first = blacklist.add("#old", "#new", "wrong button")
    assert blacklist.add("#old", "#new", "again") is first
    assert blacklist.is_blacklisted("#old", "#new")
    assert not blacklist.is_blacklisted("#old", "#other")
    assert not blacklist.is_blacklisted("#new", "#old")
    assert len(blacklist) == 1
