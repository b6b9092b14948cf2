from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from selenium.common.exceptions import NoSuchElementException, WebDriverException

from selfheal.approval.callbacks import ConsoleApprovalCallback
from selfheal.approval.decision import ApprovalDecision, DecisionKind
from selfheal.approval.workflow import ApprovalWorkflow
from selfheal.cache.heal_cache import HealCache, HealResolution, fingerprint
from selfheal.config.schema import HealerConfig
from selfheal.core.actions import ActionExecutor
from selfheal.core.candidates import CandidateGenerator
from selfheal.core.exceptions import HealingError
from selfheal.core.finder import LocatorFinder
from selfheal.core.metadata import (
    ActionType,
    ElementCandidate,
    ElementSnapshot,
    HealContext,
    HealProposal,
    HealStatus,
)
from selfheal.guardrails.state import GuardrailState
from selfheal.guardrails.trust import Route
from selfheal.logging.artifacts import ArtifactManager
from selfheal.logging.audit import HealHistory
from selfheal.logging.records import (
    BlacklistRecord,
    DecisionArchive,
    RememberedHealRecord,
    StabilityRecord,
)
from selfheal.utils.dom_extract import capture_snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActionResult:
    locator: str
    action_type: ActionType
    used_locator: str
    strategy: str
    healed: bool = False
    confidence: float | None = None
    from_cache: bool = False
    proposal_id: str | None = None


class HealingEngine:
    """Runs test actions and heals locators that no longer match.

    One engine drives one browser session. Guardrail state, the heal cache
    and the approval workflow may be shared between engines running in
    parallel. Call :meth:`start` before the first action of a test and
    :meth:`stop` after the last one.
    """

    def __init__(
        self,
        driver,
        config: HealerConfig | None = None,
        state: GuardrailState | None = None,
        cache: HealCache | None = None,
        approval: ApprovalWorkflow | None = None,
        reasoning_client=None,
        history: HealHistory | None = None,
        artifacts: ArtifactManager | None = None,
    ) -> None:
        self.driver = driver
        self.config = config or (state.config if state is not None else HealerConfig())
        self.state = state or GuardrailState(self.config)
        self.cache = cache or HealCache(self.config.cache.enabled)
        self.approval = approval or ApprovalWorkflow(ConsoleApprovalCallback(), self.config.approval.timeout_seconds)
        self.history = history
        if artifacts is None and self.config.artifacts_root:
            artifacts = ArtifactManager(self.config.artifacts_root)
        self.artifacts = artifacts
        self.finder = LocatorFinder(driver)
        self.executor = ActionExecutor(driver, self.config.guardrails)
        self.generator = CandidateGenerator(driver, self.config.guardrails, reasoning_client)
        self._context: HealContext | None = None
        self._references: dict[str, ElementSnapshot] = {}

    # Lifecycle

    def start(self, context: HealContext) -> HealingEngine:
        self._context = context
        logger.debug("Healing engine started for %s / %s", context.feature, context.scenario)
        return self

    def stop(self) -> None:
        self._context = None
        self._references.clear()

    @property
    def running(self) -> bool:
        return self._context is not None

    # Actions

    def resolve_and_act(
        self,
        locator: str,
        action_type: ActionType | str,
        action_data: Any = None,
        intent: str = "",
        step: str = "",
    ) -> ActionResult:
        if self._context is None:
            raise RuntimeError("HealingEngine.start() must be called before resolve_and_act()")
        action = ActionType.parse(action_type)
        context = self._context.for_step(step, self._current_url())

        element = self.finder.find_first(locator, self.config.guardrails.lookup_timeout_seconds)
        if element is not None:
            self.state.stability.record_success(locator)
            self._references[locator] = capture_snapshot(element)
            strategy = self.executor.perform(action, element, action_data)
            return ActionResult(locator, action, locator, strategy)

        self.state.stability.record_failure(locator)
        key = fingerprint(context, locator)
        trial = self.state.acquire_heal()
        logger.info("Locator %s failed; healing (fingerprint %s)", locator, key)

        try:
            resolution = self.cache.resolve(
                key,
                lambda: self._compute(key, locator, action, intent or context.step, context, trial),
            )
        except Exception:
            self.state.record_neutral(trial)
            raise
        if not resolution.decision.approved:
            self.state.record_neutral(trial)
            reason = resolution.decision.reason or resolution.decision.kind.value
            raise NoSuchElementException(f"No element matches locator {locator!r}; heal not applied ({reason})")
        return self._apply(key, locator, action, action_data, resolution, trial)

    def _compute(
        self,
        key: str,
        locator: str,
        action: ActionType,
        intent: str,
        context: HealContext,
        trial: bool = False,
    ) -> HealResolution:
        try:
            return self._decide(key, locator, action, intent, context, trial)
        except Exception:
            self.state.record_failure(trial)
            raise

    def _decide(
        self,
        key: str,
        locator: str,
        action: ActionType,
        intent: str,
        context: HealContext,
        trial: bool = False,
    ) -> HealResolution:
        artifact_paths = self.artifacts.capture(self.driver, key) if self.artifacts is not None else {}
        candidates = self.generator.generate(locator, intent, action, self._references.get(locator))
        if not candidates:
            logger.warning("No replacement candidate found for %s", locator)
            self.state.record_failure(trial)
            return HealResolution(ApprovalDecision.reject("no replacement candidate found"))

        best = candidates[0]
        proposal = self._propose(best, context, locator, action)
        if self.state.blacklist.is_blacklisted(locator, best.locator):
            reason = f"heal {locator} -> {proposal.proposed_locator} is blacklisted"
            logger.info("Refusing heal %s -> %s: pair is blacklisted", locator, proposal.proposed_locator)
            self.approval.notify_rejected(proposal, reason)
            self._record(proposal, HealStatus.BLACKLISTED, DecisionKind.REJECT_AND_BLACKLIST, artifact_paths)
            return HealResolution(ApprovalDecision.reject_and_blacklist(reason, "blacklist"), proposal)

        keyword = self._forbidden_keyword(best, intent)
        if keyword is not None:
            reason = f"candidate looks destructive ({keyword!r}) and the intent does not ask for it"
            logger.warning("Refusing heal %s -> %s: %s", locator, proposal.proposed_locator, reason)
            self.approval.notify_rejected(proposal, reason)
            self._record(proposal, HealStatus.REJECTED, DecisionKind.REJECT, artifact_paths)
            return HealResolution(ApprovalDecision.reject(reason, "guardrail"), proposal)

        route = self.state.trust.route(proposal.confidence)
        logger.info(
            "Proposing %s -> %s (confidence %.2f, route %s)",
            locator,
            proposal.proposed_locator,
            proposal.confidence,
            route.value,
        )
        if route is Route.AUTO:
            self.approval.notify_auto_applied(proposal)
            self._record(proposal, HealStatus.PENDING, DecisionKind.APPROVE, artifact_paths)
            return HealResolution(ApprovalDecision.approve("auto"), proposal, best.snapshot)

        decision = self.approval.request_approval(proposal)
        if route is Route.SHADOW:
            return self._shadow(proposal, decision, artifact_paths)

        if decision.approved:
            self._record(proposal, HealStatus.PENDING, decision.kind, artifact_paths)
            return HealResolution(decision, proposal, best.snapshot)
        if decision.neutral:
            self._record(proposal, HealStatus.PENDING, decision.kind, artifact_paths)
            return HealResolution(decision, proposal)

        if decision.blacklist:
            self.state.blacklist.add(locator, proposal.proposed_locator, decision.reason)
        self.state.record_failure(trial)
        status = HealStatus.BLACKLISTED if decision.blacklist else HealStatus.REJECTED
        self._record(proposal, status, decision.kind, artifact_paths)
        return HealResolution(decision, proposal)

    def _shadow(self, proposal: HealProposal, decision: ApprovalDecision, artifact_paths: dict[str, str]) -> HealResolution:
        if decision.blacklist:
            self.state.blacklist.add(proposal.original_locator, proposal.proposed_locator, decision.reason)
            status = HealStatus.BLACKLISTED
        elif decision.kind is DecisionKind.REJECT:
            status = HealStatus.REJECTED
        else:
            status = HealStatus.PENDING
        self._record(proposal, status, decision.kind, artifact_paths)
        logger.info("Shadow mode: logged %s -> %s without applying it", proposal.original_locator, proposal.proposed_locator)
        return HealResolution(ApprovalDecision.skip(f"shadow mode, reviewer said {decision.kind.value}"), proposal)

    def _apply(
        self,
        key: str,
        locator: str,
        action: ActionType,
        action_data: Any,
        resolution: HealResolution,
        trial: bool = False,
    ) -> ActionResult:
        proposal = resolution.proposal
        try:
            element = self.executor.refind(resolution.snapshot)
            strategy = self.executor.perform(action, element, action_data)
        except HealingError as exc:
            logger.warning("Healed %s on %s failed: %s", action.value, proposal.proposed_locator, exc)
            self.state.record_failure(trial)
            if resolution.decision.remember:
                self.cache.invalidate(key)
            self._update_status(proposal.id, HealStatus.REJECTED)
            raise

        self.state.record_success(trial)
        self.state.stability.record_heal(locator)
        self._references[locator] = resolution.snapshot
        if not resolution.from_cache:
            self._update_status(proposal.id, HealStatus.ACCEPTED)
        return ActionResult(
            locator=locator,
            action_type=action,
            used_locator=proposal.proposed_locator,
            strategy=strategy,
            healed=True,
            confidence=proposal.confidence,
            from_cache=resolution.from_cache,
            proposal_id=proposal.id,
        )

    # Reporting and persistence

    def get_stability_summary(self) -> dict[str, int]:
        return {level.value: count for level, count in self.state.stability.summary().items()}

    def clear_cache(self) -> int:
        return self.cache.clear()

    def export_decisions(self, path: str | Path) -> Path:
        archive = DecisionArchive(
            history=self.history.entries() if self.history is not None else [],
            blacklist=[BlacklistRecord.from_entry(entry) for entry in self.state.blacklist.entries()],
            stability=[StabilityRecord.from_entry(entry) for entry in self.state.stability.entries()],
            remembered=[
                RememberedHealRecord.from_resolution(key, resolution)
                for key, resolution in self.cache.remembered().items()
            ],
        )
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(archive.model_dump_json(indent=2), encoding="utf-8")
        return target

    def import_decisions(self, path: str | Path) -> DecisionArchive:
        archive = DecisionArchive.model_validate_json(Path(path).read_text(encoding="utf-8"))
        self.state.blacklist.load(record.to_entry() for record in archive.blacklist)
        for record in archive.stability:
            self.state.stability.load(record.to_entry())
        for record in archive.remembered:
            self.cache.remember(record.fingerprint, record.to_resolution())
        if self.history is not None:
            self.history.load(archive.history)
        logger.info(
            "Imported %d blacklist entries, %d stability entries and %d remembered heals",
            len(archive.blacklist),
            len(archive.stability),
            len(archive.remembered),
        )
        return archive

    # Helpers

    @staticmethod
    def _propose(candidate: ElementCandidate, context: HealContext, locator: str, action: ActionType) -> HealProposal:
        return HealProposal.from_candidate(candidate, context=context, original_locator=locator, action_type=action)

    def _forbidden_keyword(self, candidate: ElementCandidate, intent: str) -> str | None:
        described = " ".join((candidate.label, candidate.snapshot.text, candidate.snapshot.aria_label)).lower()
        wanted = intent.lower()
        for keyword in self.config.guardrails.forbidden_keywords:
            if keyword in described and keyword not in wanted:
                return keyword
        return None

    def _record(
        self,
        proposal: HealProposal,
        status: HealStatus,
        decision: DecisionKind,
        artifact_paths: dict[str, str],
    ) -> None:
        if self.history is not None:
            self.history.record(proposal, status, decision, artifact_paths)

    def _update_status(self, record_id: str, status: HealStatus) -> None:
        if self.history is not None and self.history.get(record_id) is not None:
            self.history.update_status(record_id, status)

    def _current_url(self) -> str:
        try:
            return self.driver.current_url or ""
        except WebDriverException:
            return ""
