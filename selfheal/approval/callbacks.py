from __future__ import annotations

import sys
from typing import TextIO

from selfheal.approval.decision import ApprovalDecision
from selfheal.core.metadata import HealProposal


class ApprovalCallback:
    """Decision-maker consulted when a heal needs review.

    ``request_approval`` may be a plain method or ``async def``. The notify
    hooks are informational and do nothing unless overridden.
    """

    name = "callback"

    def request_approval(self, proposal: HealProposal) -> ApprovalDecision:
        raise NotImplementedError

    def notify_auto_applied(self, proposal: HealProposal) -> None:
        return None

    def notify_rejected(self, proposal: HealProposal, reason: str) -> None:
        return None


class ConsoleApprovalCallback(ApprovalCallback):
    """Interactive reviewer reading one choice per proposal from a text stream."""

    name = "console"
    RULE = "-" * 63

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

    def request_approval(self, proposal: HealProposal) -> ApprovalDecision:
        self._print_proposal(proposal)
        choice = self._read_line()
        if not choice:
            return ApprovalDecision.skip("no choice entered")

        key = choice[0].upper()
        if key == "Y":
            self._write("  Heal APPROVED")
            return ApprovalDecision.approve(self.name)
        if key == "R":
            self._write("  Heal APPROVED and will be remembered")
            return ApprovalDecision.approve_and_remember(self.name)
        if key == "N":
            reason = self._prompt("  Reason (optional): ") or "Rejected by reviewer"
            self._write("  Heal REJECTED")
            return ApprovalDecision.reject(reason, self.name)
        if key == "B":
            reason = self._prompt("  Reason: ") or "Blacklisted by reviewer"
            self._write("  Heal REJECTED and BLACKLISTED")
            return ApprovalDecision.reject_and_blacklist(reason, self.name)
        self._write("  Heal SKIPPED")
        return ApprovalDecision.skip("skipped by reviewer")

    def notify_auto_applied(self, proposal: HealProposal) -> None:
        self._write("")
        self._write("Auto-applied heal:")
        self._write(f"   {proposal.original_locator} -> {proposal.proposed_locator}")
        self._write(f"   Confidence: {proposal.confidence:.1%}")

    def notify_rejected(self, proposal: HealProposal, reason: str) -> None:
        self._write("")
        self._write("Heal rejected by guardrails:")
        self._write(f"   {proposal.original_locator} -> {proposal.proposed_locator}: {reason}")

    def _print_proposal(self, proposal: HealProposal) -> None:
        context = proposal.context
        lines = [
            "",
            "=" * 63,
            "HEAL PROPOSAL".center(63),
            "=" * 63,
            f"  Feature:    {context.feature}",
            f"  Scenario:   {context.scenario}",
            f"  Step:       {context.step}",
            "",
            f"  Original locator:  {proposal.original_locator}",
            f"  Proposed locator:  {proposal.proposed_locator}",
            f"  Action:            {proposal.action_type.value}",
            f"  Confidence:        {proposal.confidence:.1%}",
            "",
            "  Reasoning:",
            f"    {proposal.reasoning}",
            self.RULE,
            "  [Y] Approve this heal",
            "  [R] Approve and remember for this step",
            "  [N] Reject this heal",
            "  [B] Reject and block this heal permanently",
            "  [S] Skip without a decision",
            self.RULE,
        ]
        for line in lines:
            self._write(line)
        self._prompt_marker("  Your choice: ")

    def _prompt(self, message: str) -> str:
        self._prompt_marker(message)
        return self._read_line()

    def _prompt_marker(self, message: str) -> None:
        self.stdout.write(message)
        self.stdout.flush()

    def _read_line(self) -> str:
        line = self.stdin.readline()
        return line.strip() if line else ""

    def _write(self, line: str) -> None:
        self.stdout.write(line + "\n")
