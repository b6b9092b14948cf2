from __future__ import annotations

import json
import threading
from pathlib import Path

from selfheal.approval.decision import DecisionKind
from selfheal.core.metadata import HealProposal, HealStatus
from selfheal.logging.records import HistoryRecord


class HealHistory:
    """Audit trail of heal attempts.

    Every new record and every status change appends one JSON line to
    ``heal_history.jsonl``; the latest state of each record is also kept in
    memory for export. Pass ``root=None`` to keep the history in memory only.
    """

    def __init__(self, root: str | Path | None = "artifacts") -> None:
        self._lock = threading.Lock()
        self._records: dict[str, HistoryRecord] = {}
        self.path: Path | None = None
        if root is not None:
            root_path = Path(root)
            root_path.mkdir(parents=True, exist_ok=True)
            self.path = root_path / "heal_history.jsonl"

    def record(
        self,
        proposal: HealProposal,
        status: HealStatus = HealStatus.PENDING,
        decision: DecisionKind | None = None,
        artifact_paths: dict[str, str] | None = None,
    ) -> HistoryRecord:
        entry = HistoryRecord.from_proposal(proposal, status, decision)
        if artifact_paths:
            entry.artifact_paths = dict(artifact_paths)
        with self._lock:
            self._records[entry.id] = entry
            self._append(entry)
        return entry

    def update_status(self, record_id: str, status: HealStatus, decision: DecisionKind | None = None) -> HistoryRecord:
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise KeyError(f"Unknown heal history entry: {record_id}")
            changes = {"status": status}
            if decision is not None:
                changes["decision"] = decision
            updated = current.model_copy(update=changes)
            self._records[record_id] = updated
            self._append(updated)
            return updated

    def get(self, record_id: str) -> HistoryRecord | None:
        with self._lock:
            return self._records.get(record_id)

    def entries(self) -> list[HistoryRecord]:
        with self._lock:
            return list(self._records.values())

    def load(self, records: list[HistoryRecord]) -> None:
        with self._lock:
            for record in records:
                self._records.setdefault(record.id, record)

    def _append(self, entry: HistoryRecord) -> None:
        if self.path is None:
            return
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry.model_dump(mode="json")) + "\n")
