"""
Progress aggregation and the live progress side-channel.

ProgressAggregator keeps the persisted counters of an analysis in sync with
its item results. It always recounts and writes absolute values, so any
number of workers may invoke it concurrently and in any order.

ProgressTracker is the in-memory side-channel the scheduler publishes while
it runs: phase, counters, the item currently being worked on and a per-item
status map. Subscribers are called with a fresh payload after every change.
"""

import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from codereview.domain.analysis_state import AnalysisStatus, ItemStatus, ProgressPhase
from codereview.infrastructure.persistence.analysis_repository import AnalysisRepository
from codereview.models import Analysis, AnalysisResult

logger = logging.getLogger(__name__)

ProgressSubscriber = Callable[[Dict], None]


class ProgressAggregator:
    """Recompute completed/failed counters of an analysis from its item results."""

    def __init__(self, session: Session):
        self.repository = AnalysisRepository(session)

    def recompute(self, analysis_id: str) -> Tuple[int, int]:
        """
        Count item results per status and write the absolute counters.

        Returns:
            (completed_items, failed_items) as written
        """
        counts = self.repository.count_item_statuses(analysis_id)
        completed = counts.get(ItemStatus.COMPLETED.value, 0)
        failed = counts.get(ItemStatus.FAILED.value, 0)

        if not self.repository.set_counters(analysis_id, completed, failed):
            logger.warning(f"[Progress] Analysis {analysis_id} vanished before recompute")
        else:
            logger.debug(
                f"[Progress] Analysis {analysis_id}: completed={completed}, failed={failed}"
            )
        return completed, failed


class ProgressTracker:
    """Live progress of one running analysis."""

    def __init__(self, analysis_id: str, item_ids: Iterable[str] = ()):
        self.analysis_id = analysis_id
        self.phase = ProgressPhase.INITIALIZING
        self.current_item: Optional[str] = None
        self.items: Dict[str, str] = {item_id: ItemStatus.PENDING.value for item_id in item_ids}
        self._subscribers: List[ProgressSubscriber] = []
        self._lock = threading.Lock()

    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def completed_items(self) -> int:
        return sum(1 for status in self.items.values() if status == ItemStatus.COMPLETED.value)

    @property
    def failed_items(self) -> int:
        return sum(1 for status in self.items.values() if status == ItemStatus.FAILED.value)

    def subscribe(self, callback: ProgressSubscriber) -> Callable[[], None]:
        """Register a subscriber; returns a function that removes it again."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def set_items(self, item_ids: Iterable[str]) -> None:
        with self._lock:
            self.items = {item_id: ItemStatus.PENDING.value for item_id in item_ids}
        self._publish()

    def set_phase(self, phase: ProgressPhase, current_item: Optional[str] = None) -> None:
        with self._lock:
            self.phase = ProgressPhase(phase)
            self.current_item = current_item
        logger.info(f"[Progress] Analysis {self.analysis_id}: phase={self.phase.value}")
        self._publish()

    def mark_item(self, item_id: str, status: str) -> None:
        status = ItemStatus(status).value
        with self._lock:
            self.items[item_id] = status
            if status == ItemStatus.PROCESSING.value:
                self.current_item = item_id
            elif self.current_item == item_id:
                self.current_item = None
        self._publish()

    def snapshot(self) -> Dict:
        with self._lock:
            payload = {
                "status": self.phase.value,
                "totalItems": self.total_items,
                "completedItems": self.completed_items,
                "failedItems": self.failed_items,
                "items": dict(self.items),
            }
            if self.current_item is not None:
                payload["currentItem"] = self.current_item
        return payload

    def _publish(self) -> None:
        payload = self.snapshot()
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(payload)
            except Exception as e:
                logger.warning(f"[Progress] Subscriber failed for {self.analysis_id}: {e}")


class ProgressRegistry:
    """Trackers of analyses currently being orchestrated in this process."""

    def __init__(self):
        self.active: Dict[str, ProgressTracker] = {}
        self._lock = threading.Lock()

    def track(self, analysis_id: str, item_ids: Iterable[str] = ()) -> ProgressTracker:
        tracker = ProgressTracker(analysis_id, item_ids)
        with self._lock:
            self.active[analysis_id] = tracker
        return tracker

    def get(self, analysis_id: str) -> Optional[ProgressTracker]:
        with self._lock:
            return self.active.get(analysis_id)

    def discard(self, analysis_id: str) -> None:
        with self._lock:
            self.active.pop(analysis_id, None)


progress_registry = ProgressRegistry()


def progress_from_state(analysis: Analysis, results: List[AnalysisResult]) -> Dict:
    """
    Derive a progress payload from persisted rows, for analyses that have no
    live tracker (not started yet, finished, or run by another process).
    """
    items = {result.rubric_item_id: result.status for result in results}
    status = AnalysisStatus(analysis.status)
    if status == AnalysisStatus.PENDING:
        phase = ProgressPhase.INITIALIZING
    elif status == AnalysisStatus.RUNNING:
        phase = ProgressPhase.EVALUATING
    else:
        phase = ProgressPhase.COMPLETING

    payload = {
        "status": phase.value,
        "totalItems": analysis.total_items,
        "completedItems": analysis.completed_items,
        "failedItems": analysis.failed_items,
        "items": items,
    }
    processing = [item_id for item_id, s in items.items() if s == ItemStatus.PROCESSING.value]
    if processing:
        payload["currentItem"] = processing[0]
    return payload
