from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any


class ActionType(str, Enum):
    CLICK = "CLICK"
    TYPE = "TYPE"
    SELECT = "SELECT"
    CLEAR = "CLEAR"
    HOVER = "HOVER"
    DOUBLE_CLICK = "DOUBLE_CLICK"
    RIGHT_CLICK = "RIGHT_CLICK"
    SUBMIT = "SUBMIT"

    @classmethod
    def parse(cls, value: str | ActionType) -> ActionType:
        if isinstance(value, ActionType):
            return value
        try:
            return cls[str(value).strip().upper().replace("-", "_")]
        except KeyError:
            raise ValueError(f"Unsupported action type: {value}") from None


class TrustLevel(IntEnum):
    """Auto-apply authority, lowest to highest."""

    L0_SHADOW = 0
    L1_SUGGEST = 1
    L2_AUTO_SAFE = 2
    L3_AUTO_ALL = 3

    @classmethod
    def parse(cls, value: str | int | TrustLevel) -> TrustLevel:
        if isinstance(value, TrustLevel):
            return value
        if isinstance(value, int):
            return cls(value)
        normalized = str(value).strip().upper()
        for level in cls:
            if normalized in {level.name, level.name.split("_", 1)[0], level.name.split("_", 1)[1]}:
                return level
        raise ValueError(f"Unknown trust level: {value!r}")

    def promoted(self) -> TrustLevel:
        return TrustLevel(min(self + 1, TrustLevel.L3_AUTO_ALL))

    def demoted(self) -> TrustLevel:
        return TrustLevel(max(self - 1, TrustLevel.L0_SHADOW))


class HealStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    BLACKLISTED = "BLACKLISTED"


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class ElementSnapshot:
    """Identity of an element captured when it was last resolved."""

    tag: str
    id: str = ""
    name: str = ""
    aria_label: str = ""
    test_id: str = ""
    text: str = ""
    classes: str = ""
    captured_at: datetime = field(default_factory=utc_now)

    def describe(self) -> str:
        parts = [self.tag]
        for label, value in (
            ("id", self.id),
            ("name", self.name),
            ("aria-label", self.aria_label),
            ("data-testid", self.test_id),
            ("text", self.text),
        ):
            if value:
                parts.append(f"{label}={value!r}")
        return " ".join(parts)


@dataclass(slots=True)
class ElementCandidate:
    """A replacement element discovered on the live page.

    ``element`` is a driver handle and is only meaningful inside the session
    that produced it; it is never persisted.
    """

    locator: str
    confidence: float
    rationale: str
    snapshot: ElementSnapshot
    label: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    element: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class HealContext:
    feature: str = ""
    scenario: str = ""
    step: str = ""
    page_url: str = ""

    def for_step(self, step: str, page_url: str = "") -> HealContext:
        return HealContext(
            feature=self.feature,
            scenario=self.scenario,
            step=step or self.step,
            page_url=page_url or self.page_url,
        )


@dataclass(frozen=True, slots=True)
class HealProposal:
    context: HealContext
    original_locator: str
    proposed_locator: str
    action_type: ActionType
    confidence: float
    reasoning: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_candidate(
        cls,
        candidate: ElementCandidate,
        *,
        context: HealContext,
        original_locator: str,
        action_type: ActionType,
    ) -> HealProposal:
        return cls(
            context=context,
            original_locator=original_locator,
            proposed_locator=candidate.locator,
            action_type=action_type,
            confidence=candidate.confidence,
            reasoning=candidate.rationale,
        )
