from __future__ import annotations

from dataclasses import dataclass, field

from essaycoach.domain.dto import ProgressSnapshot
from essaycoach.domain.models import ProgressStage


@dataclass
class _ProgressEntry:
    stage: ProgressStage
    total_items: int
    current_item: int = 0


@dataclass
class InMemoryProgressStore:
    """Process-lifetime progress map; each feedback id has a single writer."""

    entries: dict[str, _ProgressEntry] = field(default_factory=dict)

    def reserve(self, feedback_id: str) -> bool:
        """Claim the key for a scheduled run; False when another run already holds it."""
        if feedback_id in self.entries:
            return False
        self.entries[feedback_id] = _ProgressEntry(stage=ProgressStage.QUEUED, total_items=0)
        return True

    def start(self, feedback_id: str, *, total_items: int = 0) -> None:
        self.entries[feedback_id] = _ProgressEntry(stage=ProgressStage.STARTED, total_items=total_items)

    def set_stage(self, feedback_id: str, stage: ProgressStage, *, total_items: int | None = None) -> None:
        entry = self.entries.get(feedback_id)
        if entry is None:
            entry = _ProgressEntry(stage=stage, total_items=total_items or 0)
            self.entries[feedback_id] = entry
            return
        entry.stage = stage
        if total_items is not None:
            entry.total_items = total_items

    def advance(self, feedback_id: str) -> None:
        entry = self.entries.get(feedback_id)
        if entry is None:
            return
        entry.current_item += 1

    def get(self, feedback_id: str) -> ProgressSnapshot | None:
        entry = self.entries.get(feedback_id)
        if entry is None:
            return None
        return ProgressSnapshot(
            stage=entry.stage,
            total_items=entry.total_items,
            current_item=entry.current_item,
        )

    def clear(self, feedback_id: str) -> None:
        self.entries.pop(feedback_id, None)

    def active_ids(self) -> list[str]:
        return list(self.entries)
