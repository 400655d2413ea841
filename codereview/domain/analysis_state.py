"""
Status vocabularies and transition rules for analyses and their item results.

An Analysis moves pending -> running -> {completed | failed}; orchestration
failures may also jump pending -> failed. An AnalysisResult moves
pending -> processing -> {completed | failed} and only ever moves forward.
Terminal states have no outgoing transitions.
"""

from enum import Enum
from typing import Dict, FrozenSet


class EvaluationKind(str, Enum):
    YES_NO = "yes_no"
    RANGE = "range"
    COMMENTS = "comments"
    CODE_EXAMPLES = "code_examples"
    OPTIONS = "options"


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProgressPhase(str, Enum):
    """Phases reported on the progress side-channel."""

    INITIALIZING = "initializing"
    FETCHING_REPO = "fetching_repo"
    EVALUATING = "evaluating"
    COMPLETING = "completing"


# running -> running is accepted so a redelivered orchestration run can
# re-announce itself without failing.
ANALYSIS_TRANSITIONS: Dict[AnalysisStatus, FrozenSet[AnalysisStatus]] = {
    AnalysisStatus.PENDING: frozenset({AnalysisStatus.RUNNING, AnalysisStatus.FAILED}),
    AnalysisStatus.RUNNING: frozenset(
        {AnalysisStatus.RUNNING, AnalysisStatus.COMPLETED, AnalysisStatus.FAILED}
    ),
    AnalysisStatus.COMPLETED: frozenset(),
    AnalysisStatus.FAILED: frozenset(),
}

# processing -> processing is the idempotent re-announcement of a retry attempt.
ITEM_TRANSITIONS: Dict[ItemStatus, FrozenSet[ItemStatus]] = {
    ItemStatus.PENDING: frozenset(
        {ItemStatus.PROCESSING, ItemStatus.COMPLETED, ItemStatus.FAILED}
    ),
    ItemStatus.PROCESSING: frozenset(
        {ItemStatus.PROCESSING, ItemStatus.COMPLETED, ItemStatus.FAILED}
    ),
    ItemStatus.COMPLETED: frozenset(),
    ItemStatus.FAILED: frozenset(),
}

TERMINAL_ANALYSIS_STATUSES = frozenset({AnalysisStatus.COMPLETED, AnalysisStatus.FAILED})
TERMINAL_ITEM_STATUSES = frozenset({ItemStatus.COMPLETED, ItemStatus.FAILED})


def can_transition_analysis(current: AnalysisStatus, target: AnalysisStatus) -> bool:
    return AnalysisStatus(target) in ANALYSIS_TRANSITIONS[AnalysisStatus(current)]


def can_transition_item(current: ItemStatus, target: ItemStatus) -> bool:
    return ItemStatus(target) in ITEM_TRANSITIONS[ItemStatus(current)]


def is_terminal_item(status: str) -> bool:
    return ItemStatus(status) in TERMINAL_ITEM_STATUSES
