from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from concurrent.futures import Future, InvalidStateError
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass

from selfheal.approval.callbacks import ApprovalCallback
from selfheal.approval.decision import ApprovalDecision
from selfheal.core.exceptions import ApprovalTimeout
from selfheal.core.metadata import HealProposal

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ApprovalRecord:
    proposal: HealProposal
    decision: ApprovalDecision


class ApprovalWorkflow:
    """Asks the decision-maker about a proposal and waits a bounded time for the answer.

    The responder runs on a daemon thread so a reviewer who never answers
    cannot keep the test process alive. When the wait expires the pending
    answer is cancelled and TIMEOUT is returned; an answer that arrives later
    is discarded.
    """

    def __init__(self, callback: ApprovalCallback, timeout_seconds: float = 300.0) -> None:
        self.callback = callback
        self.timeout_seconds = timeout_seconds
        self._lock = threading.Lock()
        self._history: list[ApprovalRecord] = []

    def request_approval(self, proposal: HealProposal) -> ApprovalDecision:
        try:
            decision = self._wait(proposal)
        except ApprovalTimeout:
            logger.warning("Approval timed out after %ss for %s", self.timeout_seconds, proposal.original_locator)
            decision = ApprovalDecision.timeout()
        except Exception as exc:
            logger.warning("Approval responder failed for %s: %s", proposal.original_locator, exc)
            decision = ApprovalDecision.skip(f"responder error: {exc}")
        self._record(proposal, decision)
        return decision

    def notify_auto_applied(self, proposal: HealProposal) -> None:
        self._notify(self.callback.notify_auto_applied, proposal)
        self._record(proposal, ApprovalDecision.approve("auto"))

    def notify_rejected(self, proposal: HealProposal, reason: str) -> None:
        self._notify(self.callback.notify_rejected, proposal, reason)

    def history(self) -> list[ApprovalRecord]:
        with self._lock:
            return list(self._history)

    def _wait(self, proposal: HealProposal) -> ApprovalDecision:
        future: Future = Future()
        worker = threading.Thread(
            target=self._respond,
            args=(proposal, future),
            name="heal-approval",
            daemon=True,
        )
        worker.start()
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeout as exc:
            future.cancel()
            raise ApprovalTimeout(f"No approval decision within {self.timeout_seconds}s") from exc

    def _respond(self, proposal: HealProposal, future: Future) -> None:
        try:
            decision = self.callback.request_approval(proposal)
            if inspect.isawaitable(decision):
                decision = asyncio.run(_await(decision))
            if not isinstance(decision, ApprovalDecision):
                raise TypeError(f"Approval responder returned {type(decision).__name__}, not ApprovalDecision")
        except BaseException as exc:
            try:
                future.set_exception(exc)
            except InvalidStateError:
                logger.debug("Discarding responder error after timeout: %s", exc)
            return
        try:
            future.set_result(decision)
        except InvalidStateError:
            logger.debug("Discarding late approval decision %s", decision.kind.value)

    @staticmethod
    def _notify(hook, *args) -> None:
        try:
            hook(*args)
        except Exception as exc:
            logger.warning("Approval notification failed: %s", exc)

    def _record(self, proposal: HealProposal, decision: ApprovalDecision) -> None:
        with self._lock:
            self._history.append(ApprovalRecord(proposal, decision))


async def _await(awaitable):
    return await awaitable
