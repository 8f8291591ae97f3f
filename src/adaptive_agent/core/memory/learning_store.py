"""Append-only, capacity-bounded log of interaction outcomes."""

import structlog

from adaptive_agent.core.domain.buffers import RingBuffer
from adaptive_agent.core.domain.models import LearningRecord

DEFAULT_LEARNING_CAPACITY = 1000


class LearningStore:
    """
    Ring buffer of LearningRecords.

    The store never holds more than ``capacity`` records; once full, each new
    record evicts the oldest one. Records are frozen and never mutated after
    insertion.
    """

    def __init__(self, capacity: int = DEFAULT_LEARNING_CAPACITY):
        self._records: RingBuffer[LearningRecord] = RingBuffer(capacity)
        self.logger = structlog.get_logger().bind(component="learning_store")

    @property
    def capacity(self) -> int:
        return self._records.capacity

    def record(self, entry: LearningRecord) -> None:
        evicted = self._records.append(entry)
        self.logger.debug(
            "learning_recorded",
            session_id=entry.session_id,
            success=entry.success,
            quality_score=entry.quality_score,
            evicted=evicted is not None,
        )

    def get_recent(self, limit: int = 100) -> list[LearningRecord]:
        """Return the newest ``limit`` records in chronological order."""
        return self._records.latest(limit)

    def get_session_records(self, session_id: str, limit: int = 100) -> list[LearningRecord]:
        records = [r for r in self._records if r.session_id == session_id]
        return records[-limit:] if limit > 0 else []

    def success_rate(self, session_id: str | None = None) -> float:
        records = [r for r in self._records if session_id is None or r.session_id == session_id]
        if not records:
            return 0.0
        return sum(1 for r in records if r.success) / len(records)

    def clear(self) -> None:
        self._records.clear()
        self.logger.debug("learning_cleared")

    def __len__(self) -> int:
        return len(self._records)
