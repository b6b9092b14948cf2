from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from selfheal.approval.decision import ApprovalDecision, DecisionKind
from selfheal.cache.heal_cache import HealResolution
from selfheal.core.metadata import (
    ActionType,
    ElementSnapshot,
    HealContext,
    HealProposal,
    HealStatus,
    utc_now,
)
from selfheal.guardrails.blacklist import BlacklistEntry
from selfheal.guardrails.stability import LocatorStabilityEntry, StabilityLevel

ARCHIVE_VERSION = 1


class HistoryRecord(BaseModel):
    id: str
    timestamp: datetime = Field(default_factory=utc_now)
    feature: str = ""
    scenario: str = ""
    step: str = ""
    page_url: str = ""
    original_locator: str
    healed_locator: str = ""
    action_type: ActionType
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""
    status: HealStatus = HealStatus.PENDING
    decision: DecisionKind | None = None
    artifact_paths: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_proposal(cls, proposal: HealProposal, status: HealStatus, decision: DecisionKind | None = None) -> HistoryRecord:
        return cls(
            id=proposal.id,
            timestamp=proposal.created_at,
            feature=proposal.context.feature,
            scenario=proposal.context.scenario,
            step=proposal.context.step,
            page_url=proposal.context.page_url,
            original_locator=proposal.original_locator,
            healed_locator=proposal.proposed_locator,
            action_type=proposal.action_type,
            confidence=proposal.confidence,
            reasoning=proposal.reasoning,
            status=status,
            decision=decision,
        )


class BlacklistRecord(BaseModel):
    original_locator: str
    healed_locator: str
    reason: str = ""
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_entry(cls, entry: BlacklistEntry) -> BlacklistRecord:
        return cls(
            original_locator=entry.original_locator,
            healed_locator=entry.healed_locator,
            reason=entry.reason,
            created_at=entry.created_at,
        )

    def to_entry(self) -> BlacklistEntry:
        return BlacklistEntry(self.original_locator, self.healed_locator, self.reason, self.created_at)


class StabilityRecord(BaseModel):
    locator: str
    successes: int = Field(default=0, ge=0)
    failures: int = Field(default=0, ge=0)
    heals: int = Field(default=0, ge=0)
    # score and level are exported for readers; imports recompute them from the counters
    score: float | None = None
    level: StabilityLevel | None = None
    last_updated: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_entry(cls, entry: LocatorStabilityEntry) -> StabilityRecord:
        return cls(
            locator=entry.locator,
            successes=entry.successes,
            failures=entry.failures,
            heals=entry.heals,
            score=entry.score,
            level=entry.level,
            last_updated=entry.last_updated,
        )

    def to_entry(self) -> LocatorStabilityEntry:
        return LocatorStabilityEntry(self.locator, self.successes, self.failures, self.heals, self.last_updated)


class SnapshotRecord(BaseModel):
    tag: str
    id: str = ""
    name: str = ""
    aria_label: str = ""
    test_id: str = ""
    text: str = ""
    classes: str = ""
    captured_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_snapshot(cls, snapshot: ElementSnapshot) -> SnapshotRecord:
        return cls(
            tag=snapshot.tag,
            id=snapshot.id,
            name=snapshot.name,
            aria_label=snapshot.aria_label,
            test_id=snapshot.test_id,
            text=snapshot.text,
            classes=snapshot.classes,
            captured_at=snapshot.captured_at,
        )

    def to_snapshot(self) -> ElementSnapshot:
        return ElementSnapshot(**self.model_dump())


class RememberedHealRecord(BaseModel):
    fingerprint: str
    feature: str = ""
    scenario: str = ""
    step: str = ""
    page_url: str = ""
    original_locator: str
    healed_locator: str
    action_type: ActionType
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    decided_by: str = ""
    decided_at: datetime = Field(default_factory=utc_now)
    snapshot: SnapshotRecord

    @classmethod
    def from_resolution(cls, fingerprint: str, resolution: HealResolution) -> RememberedHealRecord:
        proposal = resolution.proposal
        return cls(
            fingerprint=fingerprint,
            feature=proposal.context.feature,
            scenario=proposal.context.scenario,
            step=proposal.context.step,
            page_url=proposal.context.page_url,
            original_locator=proposal.original_locator,
            healed_locator=proposal.proposed_locator,
            action_type=proposal.action_type,
            confidence=proposal.confidence,
            reasoning=proposal.reasoning,
            decided_by=resolution.decision.decided_by,
            decided_at=resolution.decision.decided_at,
            snapshot=SnapshotRecord.from_snapshot(resolution.snapshot),
        )

    def to_resolution(self) -> HealResolution:
        proposal = HealProposal(
            context=HealContext(self.feature, self.scenario, self.step, self.page_url),
            original_locator=self.original_locator,
            proposed_locator=self.healed_locator,
            action_type=self.action_type,
            confidence=self.confidence,
            reasoning=self.reasoning,
        )
        decision = ApprovalDecision(
            DecisionKind.APPROVE_AND_REMEMBER,
            decided_by=self.decided_by,
            decided_at=self.decided_at,
        )
        return HealResolution(decision, proposal, self.snapshot.to_snapshot())


class DecisionArchive(BaseModel):
    """Everything a run learned, in a form another run can import."""

    version: int = ARCHIVE_VERSION
    exported_at: datetime = Field(default_factory=utc_now)
    history: list[HistoryRecord] = Field(default_factory=list)
    blacklist: list[BlacklistRecord] = Field(default_factory=list)
    stability: list[StabilityRecord] = Field(default_factory=list)
    remembered: list[RememberedHealRecord] = Field(default_factory=list)
