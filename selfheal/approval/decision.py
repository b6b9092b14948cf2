from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from selfheal.core.metadata import utc_now


class DecisionKind(str, Enum):
    APPROVE = "APPROVE"
    APPROVE_AND_REMEMBER = "APPROVE_AND_REMEMBER"
    REJECT = "REJECT"
    REJECT_AND_BLACKLIST = "REJECT_AND_BLACKLIST"
    SKIP = "SKIP"
    TIMEOUT = "TIMEOUT"


@dataclass(frozen=True, slots=True)
class ApprovalDecision:
    kind: DecisionKind
    reason: str = ""
    decided_by: str = ""
    decided_at: datetime = field(default_factory=utc_now)

    @classmethod
    def approve(cls, decided_by: str = "") -> ApprovalDecision:
        return cls(DecisionKind.APPROVE, decided_by=decided_by)

    @classmethod
    def approve_and_remember(cls, decided_by: str = "") -> ApprovalDecision:
        return cls(DecisionKind.APPROVE_AND_REMEMBER, decided_by=decided_by)

    @classmethod
    def reject(cls, reason: str = "", decided_by: str = "") -> ApprovalDecision:
        return cls(DecisionKind.REJECT, reason, decided_by)

    @classmethod
    def reject_and_blacklist(cls, reason: str = "", decided_by: str = "") -> ApprovalDecision:
        return cls(DecisionKind.REJECT_AND_BLACKLIST, reason, decided_by)

    @classmethod
    def skip(cls, reason: str = "") -> ApprovalDecision:
        return cls(DecisionKind.SKIP, reason)

    @classmethod
    def timeout(cls) -> ApprovalDecision:
        return cls(DecisionKind.TIMEOUT, "no decision before the approval timeout")

    @property
    def approved(self) -> bool:
        return self.kind in {DecisionKind.APPROVE, DecisionKind.APPROVE_AND_REMEMBER}

    @property
    def remember(self) -> bool:
        return self.kind is DecisionKind.APPROVE_AND_REMEMBER

    @property
    def blacklist(self) -> bool:
        return self.kind is DecisionKind.REJECT_AND_BLACKLIST

    @property
    def neutral(self) -> bool:
        """True for outcomes that say nothing about heal quality."""
        return self.kind in {DecisionKind.SKIP, DecisionKind.TIMEOUT}
